from __future__ import annotations

import asyncio
import logging
import math
from typing import Protocol

import httpx

from pagereader.core.settings import Settings, get_settings
from pagereader.schemas.reader import ReadingAnchor
from pagereader.services.api_client import ReaderApiError
from pagereader.services.state_store import ReaderStateStore


logger = logging.getLogger(__name__)


class PositionRemote(Protocol):
    @property
    def signed_in(self) -> bool: ...

    async def fetch_reading_position(self, book_id: str) -> ReadingAnchor | None: ...

    async def save_position(self, book_id: str, anchor: ReadingAnchor, lang: str | None = None) -> None: ...


class ReadingPositionStore:
    """One anchor per book: local write always, remote write throttled per book.

    A remote write inside the cool-down window is deferred to the end of the
    window and carries only the latest anchor.
    """

    def __init__(
        self,
        state: ReaderStateStore,
        remote: PositionRemote | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self.state = state
        self.remote = remote
        self.settings = settings or get_settings()
        self.interval = self.settings.remote_save_interval_sec
        self._last_remote: dict[str, float] = {}
        self._deferred: dict[str, asyncio.TimerHandle] = {}
        self._latest: dict[str, tuple[ReadingAnchor, str | None]] = {}
        self._writes: set[asyncio.Task[None]] = set()
        self.remote_writes = 0

    @property
    def signed_in(self) -> bool:
        return self.remote is not None and self.remote.signed_in

    def get_anchor(self, book_id: str) -> ReadingAnchor | None:
        return self.state.get_anchor(book_id)

    def set_anchor(self, book_id: str, anchor: ReadingAnchor, *, lang: str | None = None) -> None:
        self.state.set_anchor(book_id, anchor)
        if self.signed_in:
            self._schedule_remote(book_id, anchor, lang)

    async def load(self, book_id: str) -> ReadingAnchor | None:
        """Remote anchor wins for signed-in readers; otherwise the local one."""
        if self.signed_in:
            try:
                remote_anchor = await self.remote.fetch_reading_position(book_id)  # type: ignore[union-attr]
            except (ReaderApiError, httpx.HTTPError) as exc:
                logger.warning("failed to fetch remote reading position for book=%s: %s", book_id, exc)
                remote_anchor = None
            if remote_anchor is not None:
                self.state.set_anchor(book_id, remote_anchor)
                return remote_anchor
        return self.state.get_anchor(book_id)

    def remove_book(self, book_id: str) -> None:
        timer = self._deferred.pop(book_id, None)
        if timer is not None:
            timer.cancel()
        self._latest.pop(book_id, None)
        self._last_remote.pop(book_id, None)
        self.state.remove_book(book_id)

    async def flush(self) -> None:
        """Send deferred writes now and wait for every write in flight."""
        for book_id in list(self._deferred):
            self._deferred.pop(book_id).cancel()
            self._fire(book_id)
        if self._writes:
            await asyncio.gather(*self._writes)

    def _schedule_remote(self, book_id: str, anchor: ReadingAnchor, lang: str | None) -> None:
        loop = asyncio.get_running_loop()
        self._latest[book_id] = (anchor, lang)
        if book_id in self._deferred:
            return
        elapsed = loop.time() - self._last_remote.get(book_id, -math.inf)
        if elapsed >= self.interval:
            self._fire(book_id)
            return
        self._deferred[book_id] = loop.call_later(self.interval - elapsed, self._fire_deferred, book_id)

    def _fire_deferred(self, book_id: str) -> None:
        self._deferred.pop(book_id, None)
        self._fire(book_id)

    def _fire(self, book_id: str) -> None:
        item = self._latest.pop(book_id, None)
        if item is None:
            return
        anchor, lang = item
        self._last_remote[book_id] = asyncio.get_running_loop().time()
        task = asyncio.create_task(self._save_remote(book_id, anchor, lang))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _save_remote(self, book_id: str, anchor: ReadingAnchor, lang: str | None) -> None:
        if self.remote is None:
            return
        self.remote_writes += 1
        try:
            await self.remote.save_position(book_id, anchor, lang)
        except (ReaderApiError, httpx.HTTPError) as exc:
            logger.warning("remote position save failed for book=%s block=%s: %s", book_id, anchor.block_id, exc)
