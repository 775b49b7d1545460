from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, Iterable, Protocol, Sequence

import httpx

from pagereader.core.settings import Settings, get_settings
from pagereader.schemas.content import ContentBlock, TranslatedBlockResult, apply_translation
from pagereader.schemas.reader import EventMessage
from pagereader.services.api_client import ReaderApiError
from pagereader.services.content import ChapterContent
from pagereader.services.events import EventBus


logger = logging.getLogger(__name__)


class Priority(str, Enum):
    HIGH = "high"
    LOW = "low"


class TranslationSource(Protocol):
    def translate_stream(
        self,
        chapter_id: str,
        lang: str,
        block_ids: Sequence[str],
        *,
        anchor_block_id: str | None = None,
        direction: str = "down",
    ) -> AsyncIterator[TranslatedBlockResult]: ...


@dataclass
class BatchStats:
    size: int = 0
    hits: int = 0
    misses: int = 0
    errors: int = 0

    def record(self, result: TranslatedBlockResult) -> None:
        if result.status != "ok":
            self.errors += 1
        elif result.cache == "hit":
            self.hits += 1
        else:
            self.misses += 1


@dataclass
class _Batch:
    ids: list[str]
    priorities: dict[str, Priority]
    content: ChapterContent
    stats: BatchStats = field(default_factory=BatchStats)
    started: float = field(default_factory=time.perf_counter)
    task: asyncio.Task[None] | None = None

    @property
    def high(self) -> bool:
        return any(priority is Priority.HIGH for priority in self.priorities.values())


class TranslationScheduler:
    """Fetches translations for blocks near the reader, one batch at a time.

    State is scoped to one chapter+language context (``reset``). Blocks move
    pending -> inflight -> translated; a high priority flush preempts a low
    priority batch and returns its blocks to pending with their original
    priority.
    """

    def __init__(
        self,
        source: TranslationSource,
        *,
        settings: Settings | None = None,
        bus: EventBus | None = None,
        on_translated: Callable[[list[ContentBlock]], None] | None = None,
    ) -> None:
        self.source = source
        self.settings = settings or get_settings()
        self.bus = bus
        self.on_translated = on_translated
        self.book_id: str | None = None
        self.content: ChapterContent | None = None
        self.enabled = False

        self.pending_high: dict[str, None] = {}
        self.pending_low: dict[str, None] = {}
        self.queued_high: dict[str, None] = {}
        self.queued_low: dict[str, None] = {}
        self.inflight: dict[str, Priority] = {}
        self.translated: set[str] = set()

        self.totals = BatchStats()
        self._batch: _Batch | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._timer_high = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._translating = False
        self._unlisten: Callable[[], None] | None = None

    # -- context ---------------------------------------------------------

    def attach(self, bus: EventBus) -> None:
        """Enqueue at high priority every block the reader can currently see."""
        if self._unlisten is not None:
            self._unlisten()
        self.bus = bus
        self._unlisten = bus.listen("blocks_visible", self._on_blocks_visible)

    def reset(self, content: ChapterContent | None, *, enabled: bool = True, book_id: str | None = None) -> None:
        self.abort_all()
        self.translated.clear()
        self.content = content
        self.enabled = enabled and content is not None
        if book_id is not None:
            self.book_id = book_id

    @property
    def is_inflight(self) -> bool:
        return self._batch is not None

    @property
    def inflight_is_high(self) -> bool:
        return self._batch is not None and self._batch.high

    @property
    def is_translating(self) -> bool:
        return self._translating

    async def wait_idle(self) -> None:
        await self._idle.wait()

    # -- enqueue ---------------------------------------------------------

    def enqueue(self, block_ids: Iterable[str], priority: Priority = Priority.LOW) -> int:
        ids = list(block_ids)
        if not self.enabled or not ids:
            return 0
        high = priority is Priority.HIGH
        added = sum(1 for block_id in ids if self._accept(block_id, high))
        logger.info(
            "enqueue_blocks chapter=%s lang=%s requested=%s newly_enqueued=%s priority=%s",
            self.content.chapter_id if self.content else None,
            self.content.lang if self.content else None,
            len(ids),
            added,
            priority.value,
        )
        if added and (high or self._batch is None):
            self._schedule_flush(high)
        return added

    def enqueue_immediate(self, block_ids: Iterable[str]) -> int:
        return self.enqueue(block_ids, Priority.HIGH)

    def _accept(self, block_id: str, high: bool) -> bool:
        if block_id in self.translated or block_id in self.inflight:
            return False
        if self.content is None or not self.content.is_translatable(block_id):
            return False
        if high:
            promoted = block_id in self.pending_low or block_id in self.queued_low
            self.pending_low.pop(block_id, None)
            self.queued_low.pop(block_id, None)
            if not promoted and (block_id in self.pending_high or block_id in self.queued_high):
                return False
        elif any(block_id in ids for ids in (self.pending_high, self.pending_low, self.queued_high, self.queued_low)):
            return False

        if self._batch is not None:
            target = self.queued_high if high else self.queued_low
        else:
            target = self.pending_high if high else self.pending_low
        target[block_id] = None
        return True

    def _on_blocks_visible(self, message: EventMessage) -> None:
        self.enqueue_immediate(message.payload.get("block_ids") or [])

    # -- flushing --------------------------------------------------------

    def _schedule_flush(self, high: bool) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            high = high or self._timer_high
        debounce_ms = self.settings.high_priority_debounce_ms if high else self.settings.low_priority_debounce_ms
        if debounce_ms <= 0:
            self._flush(high)
            return
        self._timer_high = high
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(debounce_ms / 1000, self._on_timer)

    def _on_timer(self) -> None:
        high = self._timer_high
        self._timer = None
        self._timer_high = False
        self._flush(high)

    def _flush(self, high: bool = False) -> None:
        if self.content is None:
            return
        if self._batch is not None:
            if not high or self._batch.high:
                return
            self._preempt()

        ordered = list(self.pending_high) + [bid for bid in self.pending_low if bid not in self.pending_high]
        if not ordered:
            self._mark_idle()
            return

        cap = self.settings.max_batch_size
        ids, overflow = ordered[:cap], ordered[cap:]
        priorities = {bid: Priority.HIGH if bid in self.pending_high else Priority.LOW for bid in ids}
        overflow_high = {bid: None for bid in overflow if bid in self.pending_high}
        overflow_low = {bid: None for bid in overflow if bid not in self.pending_high}
        self.pending_high = overflow_high
        self.pending_low = overflow_low

        batch = _Batch(ids=ids, priorities=priorities, content=self.content)
        batch.stats.size = len(ids)
        self.inflight.update(priorities)
        self._batch = batch
        self._idle.clear()
        self._set_translating(True)
        logger.info(
            "flush_start chapter=%s lang=%s batch_size=%s overflow=%s high=%s",
            batch.content.chapter_id,
            batch.content.lang,
            len(ids),
            len(overflow),
            batch.high,
        )
        batch.task = asyncio.create_task(self._run(batch))

    def _preempt(self) -> None:
        batch = self._batch
        if batch is None:
            return
        self._batch = None
        if batch.task is not None:
            batch.task.cancel()
        returned = 0
        for block_id in batch.ids:
            priority = self.inflight.pop(block_id, None)
            if priority is None:
                continue
            target = self.pending_high if priority is Priority.HIGH else self.pending_low
            target[block_id] = None
            returned += 1
        self._drain_queued()
        logger.info(
            "abort_inflight reason=high_priority_preempt chapter=%s returned=%s",
            batch.content.chapter_id,
            returned,
        )

    async def _run(self, batch: _Batch) -> None:
        try:
            stream = self.source.translate_stream(
                batch.content.chapter_id,
                batch.content.lang,
                batch.ids,
                anchor_block_id=batch.ids[0],
                direction="down",
            )
            async for result in stream:
                if self._batch is not batch:
                    break
                self._apply_result(batch, result)
        except asyncio.CancelledError:
            logger.debug("translation batch cancelled chapter=%s", batch.content.chapter_id)
            raise
        except (ReaderApiError, httpx.HTTPError) as exc:
            logger.warning(
                "translation batch failed chapter=%s lang=%s size=%s: %s",
                batch.content.chapter_id,
                batch.content.lang,
                len(batch.ids),
                exc,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "translation batch failed unexpectedly chapter=%s lang=%s size=%s: %r",
                batch.content.chapter_id,
                batch.content.lang,
                len(batch.ids),
                exc,
            )
        self._complete(batch)

    def _apply_result(self, batch: _Batch, result: TranslatedBlockResult) -> None:
        block_id = result.block_id
        if block_id not in batch.priorities or block_id not in self.inflight:
            return
        del self.inflight[block_id]
        self.translated.add(block_id)
        batch.stats.record(result)
        self.totals.record(result)
        logger.debug("block_received block=%s cache=%s status=%s", block_id, result.cache, result.status)

        if result.status != "ok" or not result.translated_text:
            return
        original = batch.content.get(block_id)
        if original is None:
            return
        translated = apply_translation(original, result.translated_text)
        if translated is None:
            return
        batch.content.merge([translated])
        if self.on_translated is not None:
            self.on_translated([translated])
        if self.bus is not None:
            self.bus.publish(
                "blocks_translated",
                {"chapter_id": batch.content.chapter_id, "block_ids": [block_id]},
                book_id=self.book_id,
            )

    def _complete(self, batch: _Batch) -> None:
        if self._batch is not batch:
            return
        self._batch = None
        for block_id in batch.ids:
            if self.inflight.get(block_id) is not None:
                # No result arrived; leave untranslated until re-enqueued.
                del self.inflight[block_id]

        duration_ms = round((time.perf_counter() - batch.started) * 1000)
        logger.info(
            "flush_done chapter=%s lang=%s batch_size=%s hits=%s misses=%s errors=%s duration_ms=%s",
            batch.content.chapter_id,
            batch.content.lang,
            batch.stats.size,
            batch.stats.hits,
            batch.stats.misses,
            batch.stats.errors,
            duration_ms,
        )

        self._drain_queued()
        if self.pending_high:
            self._flush(True)
        elif self.pending_low:
            self._flush(False)
        else:
            self._mark_idle()

    def _drain_queued(self) -> None:
        for block_id in self.queued_high:
            self.pending_low.pop(block_id, None)
            self.pending_high[block_id] = None
        for block_id in self.queued_low:
            if block_id not in self.pending_high:
                self.pending_low[block_id] = None
        self.queued_high.clear()
        self.queued_low.clear()

    # -- cancellation ----------------------------------------------------

    def abort_all(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            self._timer_high = False
        batch = self._batch
        self._batch = None
        if batch is not None and batch.task is not None:
            batch.task.cancel()
        dropped = len(self.pending_high) + len(self.pending_low) + len(self.queued_high) + len(self.queued_low)
        dropped += len(self.inflight)
        self.pending_high.clear()
        self.pending_low.clear()
        self.queued_high.clear()
        self.queued_low.clear()
        self.inflight.clear()
        if batch is not None or dropped:
            logger.info("abort_all dropped=%s had_inflight=%s", dropped, batch is not None)
        self._mark_idle()

    def _mark_idle(self) -> None:
        if self._batch is None:
            self._idle.set()
            self._set_translating(False)

    def _set_translating(self, value: bool) -> None:
        if self._translating == value:
            return
        self._translating = value
        if self.bus is not None:
            self.bus.publish("translating", {"active": value}, book_id=self.book_id)
