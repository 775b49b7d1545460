from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import orjson

from pagereader.schemas.content import (
    BLOCK_LIST_ADAPTER,
    UNTRANSLATABLE_TYPES,
    Book,
    Chapter,
    ContentBlock,
    ListBlock,
    TranslatedBlockResult,
    apply_translation,
)
from pagereader.schemas.reader import ReadingAnchor, SavePositionRequest


logger = logging.getLogger(__name__)

Translation = str | list[str]


class Catalog:
    """In-memory books, chapters and per-language translations for the dev service.

    Directory layout for ``from_directory``::

        books.json                   [Book, ...]
        chapters.json                {book_id: [Chapter, ...]}
        content/<chapter_id>.json    [ContentBlock, ...]
        translations/<chapter_id>.json  {LANG: {block_id: text | [items]}}
    """

    def __init__(
        self,
        books: list[Book] | None = None,
        chapters: dict[str, list[Chapter]] | None = None,
        content: dict[str, list[ContentBlock]] | None = None,
        translations: dict[str, dict[str, dict[str, Translation]]] | None = None,
    ) -> None:
        self.books = {book.id: book for book in books or []}
        self.chapters = chapters or {}
        self.content = content or {}
        self.translations = {
            chapter_id: {lang.upper(): mapping for lang, mapping in by_lang.items()}
            for chapter_id, by_lang in (translations or {}).items()
        }
        self.positions: dict[str, SavePositionRequest] = {}
        self.languages: dict[str, str] = {}

    @classmethod
    def from_directory(cls, root: Path) -> Catalog:
        books = [Book.model_validate(item) for item in _read_json(root / "books.json", [])]
        chapters = {
            book_id: [Chapter.model_validate(item) for item in items]
            for book_id, items in _read_json(root / "chapters.json", {}).items()
        }
        content = {
            path.stem: BLOCK_LIST_ADAPTER.validate_python(_read_json(path, []))
            for path in sorted((root / "content").glob("*.json"))
        }
        translations = {path.stem: _read_json(path, {}) for path in sorted((root / "translations").glob("*.json"))}
        logger.info("loaded catalog from %s: books=%s chapters=%s", root, len(books), len(content))
        return cls(books=books, chapters=chapters, content=content, translations=translations)

    def translation_for(self, chapter_id: str, lang: str, block_id: str) -> Translation | None:
        return self.translations.get(chapter_id, {}).get(lang.upper(), {}).get(block_id)

    def localized(self, chapter_id: str, lang: str | None) -> list[ContentBlock] | None:
        blocks = self.content.get(chapter_id)
        if blocks is None:
            return None
        if not lang:
            return list(blocks)
        return [self._localize(chapter_id, lang, block) for block in blocks]

    def _localize(self, chapter_id: str, lang: str, block: ContentBlock) -> ContentBlock:
        if block.type in UNTRANSLATABLE_TYPES:
            return block
        translation = self.translation_for(chapter_id, lang, block.id)
        if translation is None:
            return block
        if isinstance(block, ListBlock) and isinstance(translation, list):
            return block.model_copy(update={"items": translation})
        text = "\n".join(translation) if isinstance(translation, list) else translation
        return apply_translation(block, text) or block

    def translate(self, chapter_id: str, lang: str, block_ids: list[str]) -> list[TranslatedBlockResult]:
        wanted = set(block_ids)
        results: list[TranslatedBlockResult] = []
        for block in self.content.get(chapter_id, []):
            if block.id not in wanted or block.type in UNTRANSLATABLE_TYPES:
                continue
            translation = self.translation_for(chapter_id, lang, block.id)
            if translation is None:
                results.append(TranslatedBlockResult(block_id=block.id, status="error", cache="miss"))
                continue
            text = "\n".join(translation) if isinstance(translation, list) else translation
            results.append(TranslatedBlockResult(block_id=block.id, status="ok", cache="hit", translated_text=text))
        return results

    def save_position(self, book_id: str, request: SavePositionRequest) -> None:
        self.positions[book_id] = request

    def get_position(self, book_id: str) -> ReadingAnchor | None:
        request = self.positions.get(book_id)
        if request is None:
            return None
        return ReadingAnchor(
            chapter_id=request.chapter_id,
            block_id=request.block_id,
            block_position=request.block_position,
            updated_at=request.updated_at_client,
        )


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    return orjson.loads(path.read_bytes())
