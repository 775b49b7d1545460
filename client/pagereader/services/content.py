from __future__ import annotations

from typing import Iterable, Sequence

from pagereader.schemas.content import UNTRANSLATABLE_TYPES, ContentBlock


class ChapterContent:
    """Ordered blocks of one chapter in one language.

    Merging translated blocks replaces text in place; block membership and order
    never change after construction.
    """

    def __init__(self, chapter_id: str, lang: str, blocks: Sequence[ContentBlock]) -> None:
        self.chapter_id = chapter_id
        self.lang = lang
        self._blocks: list[ContentBlock] = list(blocks)
        self._index: dict[str, int] = {block.id: idx for idx, block in enumerate(self._blocks)}
        if len(self._index) != len(self._blocks):
            raise ValueError(f"duplicate block ids in chapter {chapter_id}")

    @property
    def blocks(self) -> list[ContentBlock]:
        return self._blocks

    @property
    def structure_key(self) -> tuple[str, ...]:
        return tuple(block.id for block in self._blocks)

    def get(self, block_id: str) -> ContentBlock | None:
        idx = self._index.get(block_id)
        return self._blocks[idx] if idx is not None else None

    def position_of(self, block_id: str) -> int | None:
        block = self.get(block_id)
        return block.position if block else None

    def is_translatable(self, block_id: str) -> bool:
        block = self.get(block_id)
        return block is not None and block.type not in UNTRANSLATABLE_TYPES

    def merge(self, translated: Iterable[ContentBlock]) -> int:
        merged = 0
        for block in translated:
            idx = self._index.get(block.id)
            if idx is None:
                continue
            self._blocks[idx] = block
            merged += 1
        return merged

    def __contains__(self, block_id: object) -> bool:
        return block_id in self._index

    def __len__(self) -> int:
        return len(self._blocks)
