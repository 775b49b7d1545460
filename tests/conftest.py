"""Shared fixtures for pagereader tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncIterator, Sequence

import pytest

from pagereader.core.settings import Settings
from pagereader.schemas.content import (
    Book,
    Chapter,
    ContentBlock,
    HrBlock,
    ImageBlock,
    ListBlock,
    ParagraphBlock,
    TranslatedBlockResult,
)
from pagereader.schemas.reader import ReadingAnchor
from pagereader.services.api_client import ReaderApiError


def make_block(block_id: str, position: int, text: str | None = None) -> ParagraphBlock:
    return ParagraphBlock(id=block_id, position=position, text=text or f"Block {block_id}")


def make_blocks(count: int, *, prefix: str = "b", step: int = 10) -> list[ContentBlock]:
    return [make_block(f"{prefix}{i}", i * step) for i in range(count)]


class FakeReaderClient:
    """In-process stand-in for ReaderApiClient.

    ``translate_stream`` waits on ``gate`` (when set) before emitting results, so
    tests can hold a batch inflight.
    """

    def __init__(self, *, token: str | None = None) -> None:
        self.token = token
        self.books: dict[str, Book] = {}
        self.chapters: dict[str, list[Chapter]] = {}
        self.content: dict[tuple[str, str], list[ContentBlock]] = {}
        self.translations: dict[tuple[str, str], dict[str, str]] = {}
        self.remote_position: ReadingAnchor | None = None
        self.translate_calls: list[dict] = []
        self.content_calls: list[tuple[str, str | None]] = []
        self.saved_positions: list[tuple[str, ReadingAnchor, str | None]] = []
        self.language_updates: list[tuple[str, str]] = []
        self.gate: asyncio.Event | None = None
        self.fail_translate = False
        self.fail_content = False
        self.fail_save = False
        self.fail_fetch_position = False

    @property
    def signed_in(self) -> bool:
        return bool(self.token)

    def add_book(
        self,
        book_id: str,
        chapters: dict[str, list[ContentBlock]],
        *,
        original_language: str | None = "en",
    ) -> None:
        self.books[book_id] = Book(id=book_id, title=book_id, original_language=original_language)
        self.chapters[book_id] = [
            Chapter(id=chapter_id, book_id=book_id, index=idx, title=chapter_id)
            for idx, chapter_id in enumerate(chapters)
        ]
        for chapter_id, blocks in chapters.items():
            self.content[(chapter_id, "*")] = blocks

    async def fetch_book(self, book_id: str) -> Book:
        if book_id not in self.books:
            raise ReaderApiError("HTTP 404: Book not found", 404)
        return self.books[book_id]

    async def fetch_chapters(self, book_id: str) -> list[Chapter]:
        return list(self.chapters.get(book_id, []))

    async def fetch_content(self, chapter_id: str, lang: str | None = None) -> list[ContentBlock]:
        self.content_calls.append((chapter_id, lang))
        await asyncio.sleep(0)
        if self.fail_content:
            raise ReaderApiError("HTTP 503: unavailable", 503)
        blocks = self.content.get((chapter_id, (lang or "").lower())) or self.content.get((chapter_id, "*"))
        if blocks is None:
            raise ReaderApiError("HTTP 404: Chapter not found", 404)
        return list(blocks)

    async def translate_stream(
        self,
        chapter_id: str,
        lang: str,
        block_ids: Sequence[str],
        *,
        anchor_block_id: str | None = None,
        direction: str = "down",
    ) -> AsyncIterator[TranslatedBlockResult]:
        self.translate_calls.append(
            {
                "chapter_id": chapter_id,
                "lang": lang,
                "block_ids": list(block_ids),
                "anchor_block_id": anchor_block_id,
                "direction": direction,
            }
        )
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_translate:
            raise ReaderApiError("HTTP 502: translation backend down", 502)
        table = self.translations.get((chapter_id, lang.lower()), {})
        for block_id in block_ids:
            await asyncio.sleep(0)
            text = table.get(block_id, f"[{lang}] {block_id}")
            yield TranslatedBlockResult(block_id=block_id, status="ok", cache="miss", translated_text=text)

    async def fetch_reading_position(self, book_id: str) -> ReadingAnchor | None:
        if self.fail_fetch_position:
            raise ReaderApiError("HTTP 500: boom", 500)
        return self.remote_position

    async def save_position(self, book_id: str, anchor: ReadingAnchor, lang: str | None = None) -> None:
        await asyncio.sleep(0)
        if self.fail_save:
            raise ReaderApiError("HTTP 500: boom", 500)
        self.saved_positions.append((book_id, anchor, lang))

    async def update_language(self, book_id: str, lang: str) -> None:
        self.language_updates.append((book_id, lang))


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        storage_root=tmp_path,
        api_base_url="http://testserver",
        remote_save_interval_sec=0.05,
        prefetch_pages=1,
    )


@pytest.fixture
def fake_client() -> FakeReaderClient:
    return FakeReaderClient()


@pytest.fixture
def mixed_blocks() -> list[ContentBlock]:
    return [
        make_block("p1", 0),
        ImageBlock(id="img", position=10, src="cover.png", alt="cover"),
        ListBlock(id="l1", position=20, ordered=True, items=["one", "two"]),
        HrBlock(id="hr", position=30),
        make_block("p2", 40),
    ]
