from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

import httpx

from pagereader.core.settings import Settings, get_settings
from pagereader.schemas.content import Book, Chapter
from pagereader.schemas.reader import EventMessage, ReadingAnchor, utcnow
from pagereader.services.api_client import ReaderApiClient, ReaderApiError
from pagereader.services.content import ChapterContent
from pagereader.services.events import EventBus
from pagereader.services.gestures import TouchPoint, classify_touch
from pagereader.services.paginator import (
    NOT_FOUND,
    BlockHeightRegistry,
    Page,
    compute_pages,
    find_page_by_block_position,
    find_page_for_block,
)
from pagereader.services.position_store import ReadingPositionStore
from pagereader.services.scheduler import Priority, TranslationScheduler
from pagereader.services.state_store import ReaderStateStore


logger = logging.getLogger(__name__)


class NavigationSource(str, Enum):
    TOC = "toc"
    SEARCH = "search"
    SLIDER = "slider"
    LINK = "link"
    RESTORE_ANCHOR = "restore_anchor"
    MANUAL_SCROLL = "manual_scroll"


@dataclass(frozen=True)
class NavigationIntent:
    source: NavigationSource
    chapter_index: int | None = None
    block_id: str | None = None
    block_position: int | None = None
    page_index: int | None = None

    @property
    def is_jump(self) -> bool:
        return self.source is not NavigationSource.MANUAL_SCROLL


@dataclass(frozen=True)
class PageTarget:
    block_id: str | None = None
    block_position: int | None = None
    last_page: bool = False
    commit: bool = False


class NavigationController:
    """Turns reader intents into pagination, anchor and translation work for one book.

    Jumps abort outstanding translation work and commit the target anchor before
    the destination is paginated. Organic page turns only move the anchor.
    """

    def __init__(
        self,
        book_id: str,
        client: ReaderApiClient,
        *,
        state: ReaderStateStore,
        positions: ReadingPositionStore | None = None,
        scheduler: TranslationScheduler | None = None,
        bus: EventBus | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.book_id = book_id
        self.client = client
        self.state = state
        self.bus = bus or EventBus()
        self.positions = positions or ReadingPositionStore(state, client, settings=self.settings)
        self.scheduler = scheduler or TranslationScheduler(client, settings=self.settings)
        self.scheduler.attach(self.bus)
        self.bus.listen("translating", self._on_translating)

        self.heights = BlockHeightRegistry()
        self.book: Book | None = None
        self.chapters: list[Chapter] = []
        self.chapter_index = 0
        self.lang = state.language_for(book_id)
        self.content: ChapterContent | None = None
        self.pages: list[Page] = []
        self.page_index = 0
        self.page_height = 0.0
        self.font_size = state.reader_settings.font_size
        self.load_error: str | None = None
        self._pending: PageTarget | None = None
        self._layout_key: tuple[Any, ...] | None = None
        self._anchor_locked = False

    # -- accessors -------------------------------------------------------

    @property
    def chapter(self) -> Chapter | None:
        if 0 <= self.chapter_index < len(self.chapters):
            return self.chapters[self.chapter_index]
        return None

    @property
    def current_page(self) -> Page:
        if 0 <= self.page_index < len(self.pages):
            return self.pages[self.page_index]
        return []

    @property
    def translation_enabled(self) -> bool:
        source = self.book.original_language if self.book else None
        return not source or source.lower() != self.lang.lower()

    @property
    def pending_target(self) -> PageTarget | None:
        return self._pending

    def _chapter_index_of(self, chapter_id: str) -> int | None:
        for idx, chapter in enumerate(self.chapters):
            if chapter.id == chapter_id:
                return idx
        return None

    # -- loading ---------------------------------------------------------

    async def open(self) -> bool:
        try:
            self.book = await self.client.fetch_book(self.book_id)
            self.chapters = await self.client.fetch_chapters(self.book_id)
        except Exception as exc:  # noqa: BLE001
            self.load_error = str(exc)
            logger.warning("failed to open book=%s: %s", self.book_id, exc)
            return False
        if not self.chapters:
            self.load_error = "book has no chapters"
            return False

        index = 0
        anchor = await self.positions.load(self.book_id)
        if anchor is not None:
            found = self._chapter_index_of(anchor.chapter_id)
            if found is not None:
                index = found
                self._pending = PageTarget(anchor.block_id, anchor.block_position)
        return await self._enter_chapter(index)

    async def _enter_chapter(self, index: int, *, lang: str | None = None) -> bool:
        if not 0 <= index < len(self.chapters):
            logger.warning("chapter index out of range book=%s index=%s", self.book_id, index)
            return False
        chapter = self.chapters[index]
        lang = lang or self.lang
        try:
            blocks = await self.client.fetch_content(chapter.id, lang)
            content = ChapterContent(chapter.id, lang, blocks)
        except Exception as exc:  # noqa: BLE001
            self.load_error = str(exc)
            logger.warning("failed to load chapter=%s lang=%s: %s", chapter.id, lang, exc)
            self._pending = None
            return False

        self.load_error = None
        self.chapter_index = index
        self.lang = lang
        self.content = content
        self.heights.clear()
        self.scheduler.reset(self.content, enabled=self.translation_enabled, book_id=self.book_id)
        self.pages = []
        self.page_index = 0
        self._layout_key = None
        if self._pending is None:
            self._pending = PageTarget()
        self.bus.publish(
            "chapter_loaded",
            {"chapter_id": chapter.id, "lang": lang, "block_count": len(blocks)},
            book_id=self.book_id,
        )
        self._repaginate()
        return True

    # -- pagination ------------------------------------------------------

    def set_page_height(self, height: float) -> bool:
        self.page_height = height
        return self._repaginate()

    def set_font_size(self, size: int) -> bool:
        self.state.set_font_size(size)
        if size == self.font_size:
            return False
        self.font_size = size
        self.heights.clear()
        return self._repaginate()

    def report_heights(self, heights: Mapping[str, float]) -> bool:
        self.heights.report_many(heights)
        return self._repaginate()

    def _repaginate(self) -> bool:
        if self.content is None:
            return False
        key = (self.content.structure_key, self.page_height, self.font_size, self.heights.measured_count)
        if key == self._layout_key:
            return False
        if self.pages and self._pending is None:
            self._pending = self._target_for_current_position()
        self._layout_key = key
        self.pages = compute_pages(
            self.content.blocks,
            self.heights.as_mapping(),
            self.page_height,
            fallback_height=self.settings.fallback_block_height,
        )
        logger.debug("paginated chapter=%s pages=%s page_height=%s", self.content.chapter_id, len(self.pages), self.page_height)
        if self.pages:
            self._settle()
        return True

    def _target_for_current_position(self) -> PageTarget | None:
        anchor = self.positions.get_anchor(self.book_id)
        if anchor is not None and self.content is not None and anchor.chapter_id == self.content.chapter_id:
            return PageTarget(anchor.block_id, anchor.block_position)
        page = self.current_page
        if page and self.content is not None:
            return PageTarget(page[0], self.content.position_of(page[0]))
        return None

    def _resolve(self, target: PageTarget) -> tuple[int, bool]:
        if target.last_page:
            return len(self.pages) - 1, False
        if target.block_id:
            index = find_page_for_block(self.pages, target.block_id)
            if index != NOT_FOUND:
                return index, True
        if target.block_position is not None and self.content is not None:
            return find_page_by_block_position(self.pages, self.content.blocks, target.block_position), False
        return 0, False

    def _settle(self) -> None:
        target, self._pending = self._pending, None
        if target is None:
            self.page_index = min(self.page_index, len(self.pages) - 1)
            self._show_page(commit_anchor=False)
            return
        self.page_index, exact = self._resolve(target)
        if self._anchor_locked:
            self._show_page(commit_anchor=False)
        elif exact and target.commit and target.block_id:
            self._commit_anchor(target.block_id)
            self._show_page(commit_anchor=False)
        else:
            # fallback resolution moves the anchor to what is actually shown
            self._show_page(commit_anchor=not exact)

    def _show_page(self, *, commit_anchor: bool) -> None:
        page = self.current_page
        if not page or self.content is None:
            return
        if commit_anchor:
            self._commit_anchor(page[0])
        self.bus.publish(
            "page_changed",
            {"chapter_id": self.content.chapter_id, "page_index": self.page_index, "page_count": len(self.pages)},
            book_id=self.book_id,
        )
        self.bus.publish(
            "blocks_visible",
            {"chapter_id": self.content.chapter_id, "block_ids": list(page)},
            book_id=self.book_id,
        )
        window = self.pages[self.page_index + 1 : self.page_index + 1 + self.settings.prefetch_pages]
        ahead = [block_id for upcoming in window for block_id in upcoming]
        if ahead:
            self.scheduler.enqueue(ahead, Priority.LOW)
        self._update_progress()

    def _update_progress(self) -> None:
        if not self.chapters or not self.pages:
            return
        within = (self.page_index + 1) / len(self.pages)
        progress = (self.chapter_index + within) / len(self.chapters) * 100
        self.state.update_progress(self.book_id, self.chapter_index, round(progress, 2))

    def _commit_anchor(self, block_id: str, *, chapter_id: str | None = None, position: int | None = None) -> None:
        if chapter_id is None and self.content is not None:
            chapter_id = self.content.chapter_id
        if position is None and self.content is not None:
            position = self.content.position_of(block_id)
        if chapter_id is None or position is None:
            return
        anchor = ReadingAnchor(chapter_id=chapter_id, block_id=block_id, block_position=position)
        self.positions.set_anchor(self.book_id, anchor, lang=self.lang)
        self.bus.publish("anchor_committed", anchor.model_dump(mode="json"), book_id=self.book_id)

    # -- navigation ------------------------------------------------------

    async def navigate(self, intent: NavigationIntent) -> bool:
        logger.info(
            "navigate book=%s source=%s chapter=%s block=%s page=%s",
            self.book_id,
            intent.source.value,
            intent.chapter_index,
            intent.block_id,
            intent.page_index,
        )
        if not intent.is_jump:
            return self._turn_to(self.page_index if intent.page_index is None else intent.page_index)

        self.scheduler.abort_all()
        index = self.chapter_index if intent.chapter_index is None else intent.chapter_index
        if not 0 <= index < len(self.chapters):
            logger.warning("navigate to unknown chapter book=%s index=%s", self.book_id, index)
            return False
        same_chapter = self.content is not None and self.content.chapter_id == self.chapters[index].id

        target = PageTarget(intent.block_id, intent.block_position)
        if intent.source is NavigationSource.SLIDER and intent.page_index is not None and same_chapter and self.pages:
            first = self.pages[max(0, min(intent.page_index, len(self.pages) - 1))][0]
            target = PageTarget(first, self.content.position_of(first))  # type: ignore[union-attr]

        if target.block_id is not None:
            position = target.block_position
            if position is None and same_chapter:
                position = self.content.position_of(target.block_id)  # type: ignore[union-attr]
            if position is not None:
                target = PageTarget(target.block_id, position)
                self._commit_anchor(target.block_id, chapter_id=self.chapters[index].id, position=position)
            else:
                # position unknown until the destination chapter loads
                target = PageTarget(target.block_id, commit=True)

        self._pending = target
        if not same_chapter:
            return await self._enter_chapter(index)
        if self.pages:
            self._settle()
        return True

    def _turn_to(self, page_index: int) -> bool:
        if not self.pages:
            return False
        index = max(0, min(page_index, len(self.pages) - 1))
        if index == self.page_index:
            return False
        self.page_index = index
        self._show_page(commit_anchor=not self._anchor_locked)
        return True

    async def next_page(self) -> bool:
        if not self.pages:
            return False
        if self.page_index + 1 < len(self.pages):
            return await self.navigate(NavigationIntent(NavigationSource.MANUAL_SCROLL, page_index=self.page_index + 1))
        if self.chapter_index + 1 < len(self.chapters):
            self._pending = PageTarget()
            return await self._enter_chapter(self.chapter_index + 1)
        return False

    async def prev_page(self) -> bool:
        if not self.pages:
            return False
        if self.page_index > 0:
            return await self.navigate(NavigationIntent(NavigationSource.MANUAL_SCROLL, page_index=self.page_index - 1))
        if self.chapter_index > 0:
            self._pending = PageTarget(last_page=True)
            return await self._enter_chapter(self.chapter_index - 1)
        return False

    async def handle_touch(self, start: TouchPoint, end: TouchPoint, screen_width: float) -> bool:
        action = classify_touch(start, end, screen_width)
        if action == "next":
            return await self.next_page()
        if action == "prev":
            return await self.prev_page()
        return False

    async def go_to_chapter(self, index: int) -> bool:
        return await self.navigate(NavigationIntent(NavigationSource.TOC, chapter_index=index))

    async def go_to_block(
        self,
        chapter_index: int,
        block_id: str,
        *,
        block_position: int | None = None,
        source: NavigationSource = NavigationSource.LINK,
    ) -> bool:
        return await self.navigate(
            NavigationIntent(source, chapter_index=chapter_index, block_id=block_id, block_position=block_position)
        )

    async def restore_anchor(self) -> bool:
        anchor = self.positions.get_anchor(self.book_id)
        if anchor is None:
            return False
        index = self._chapter_index_of(anchor.chapter_id)
        if index is None:
            return False
        return await self.navigate(
            NavigationIntent(
                NavigationSource.RESTORE_ANCHOR,
                chapter_index=index,
                block_id=anchor.block_id,
                block_position=anchor.block_position,
            )
        )

    # -- language --------------------------------------------------------

    async def switch_language(self, lang: str) -> bool:
        lang = lang.lower()
        if lang == self.lang.lower():
            return False

        locked = self._locked_anchor()
        if locked is not None:
            self.positions.set_anchor(self.book_id, locked, lang=lang)
        self.scheduler.abort_all()

        self._anchor_locked = True
        try:
            if locked is not None:
                self._pending = PageTarget(locked.block_id, locked.block_position)
            loaded = await self._enter_chapter(self.chapter_index, lang=lang)
        finally:
            self._anchor_locked = False
        if not loaded:
            return False

        self.state.set_book_language(self.book_id, lang)
        if self.positions.signed_in:
            try:
                await self.client.update_language(self.book_id, lang)
            except (ReaderApiError, httpx.HTTPError) as exc:
                logger.warning("failed to record language=%s for book=%s: %s", lang, self.book_id, exc)
        return True

    def _locked_anchor(self) -> ReadingAnchor | None:
        if self.content is None:
            return None
        anchor = self.positions.get_anchor(self.book_id)
        if anchor is not None and anchor.chapter_id == self.content.chapter_id:
            return anchor.model_copy(update={"updated_at": utcnow()})
        page = self.current_page
        if not page:
            return None
        position = self.content.position_of(page[0])
        if position is None:
            return None
        return ReadingAnchor(chapter_id=self.content.chapter_id, block_id=page[0], block_position=position)

    # -- lifecycle -------------------------------------------------------

    def _on_translating(self, message: EventMessage) -> None:
        self.state.set_is_translating(self.book_id, bool(message.payload.get("active")))

    async def close(self) -> None:
        self.scheduler.abort_all()
        await self.positions.flush()
