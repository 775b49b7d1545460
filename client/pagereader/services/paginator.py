from __future__ import annotations

from typing import Mapping, Sequence

from pagereader.schemas.content import ContentBlock


FALLBACK_BLOCK_HEIGHT = 80.0
NOT_FOUND = -1

Page = list[str]


def compute_pages(
    blocks: Sequence[ContentBlock],
    block_heights: Mapping[str, float],
    page_height: float,
    *,
    fallback_height: float = FALLBACK_BLOCK_HEIGHT,
) -> list[Page]:
    """Pack blocks into pages of at most ``page_height`` without splitting any block.

    A block taller than the page gets a page of its own. A page is closed only when
    the next block would push it strictly past ``page_height``.
    """
    if not blocks or page_height <= 0:
        return []

    pages: list[Page] = []
    current: Page = []
    current_height = 0.0

    for block in blocks:
        height = block_heights.get(block.id, fallback_height)
        if current and current_height + height > page_height:
            pages.append(current)
            current = [block.id]
            current_height = height
        else:
            current.append(block.id)
            current_height += height

    if current:
        pages.append(current)
    return pages


def find_page_for_block(pages: Sequence[Sequence[str]], block_id: str) -> int:
    for index, page in enumerate(pages):
        if block_id in page:
            return index
    return NOT_FOUND


def find_page_by_block_position(
    pages: Sequence[Sequence[str]],
    blocks: Sequence[ContentBlock],
    target_position: int,
) -> int:
    """First page whose first block sits at or after ``target_position``, else the last page."""
    positions = {block.id: block.position for block in blocks}
    for index, page in enumerate(pages):
        first_position = positions.get(page[0], -1) if page else -1
        if first_position >= target_position:
            return index
    return max(0, len(pages) - 1)


class BlockHeightRegistry:
    """Last measured height per block id, as reported by the hosting surface."""

    def __init__(self) -> None:
        self._heights: dict[str, float] = {}

    def report(self, block_id: str, height: float) -> None:
        if height < 0:
            raise ValueError(f"negative height for block {block_id}: {height}")
        self._heights[block_id] = float(height)

    def report_many(self, heights: Mapping[str, float]) -> None:
        for block_id, height in heights.items():
            self.report(block_id, height)

    def get(self, block_id: str) -> float | None:
        return self._heights.get(block_id)

    def as_mapping(self) -> Mapping[str, float]:
        return dict(self._heights)

    def clear(self) -> None:
        self._heights.clear()

    @property
    def measured_count(self) -> int:
        return len(self._heights)

    def __contains__(self, block_id: object) -> bool:
        return block_id in self._heights

    def __len__(self) -> int:
        return len(self._heights)
