from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


Theme = Literal["dark", "light"]
ReaderEventName = Literal[
    "blocks_visible",
    "page_changed",
    "translating",
    "blocks_translated",
    "anchor_committed",
    "chapter_loaded",
]


def utcnow() -> datetime:
    return datetime.now(UTC)


class ReadingAnchor(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    chapter_id: str = Field(alias="chapterId")
    block_id: str = Field(alias="blockId")
    block_position: int = Field(alias="blockPosition")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")


class SavePositionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chapter_id: str = Field(alias="chapterId")
    block_id: str = Field(alias="blockId")
    block_position: int = Field(alias="blockPosition")
    lang: str | None = None
    updated_at_client: datetime = Field(alias="updatedAtClient")

    @classmethod
    def from_anchor(cls, anchor: ReadingAnchor, lang: str | None) -> SavePositionRequest:
        return cls(
            chapter_id=anchor.chapter_id,
            block_id=anchor.block_id,
            block_position=anchor.block_position,
            lang=lang.upper() if lang else None,
            updated_at_client=anchor.updated_at,
        )


class ReaderSettings(BaseModel):
    font_size: int = 18
    theme: Theme = "dark"
    language: str = "en"


class BookProgress(BaseModel):
    chapter: int
    progress: float
    last_read: datetime = Field(default_factory=utcnow)


class PersistedState(BaseModel):
    settings: ReaderSettings = Field(default_factory=ReaderSettings)
    per_book_languages: dict[str, str] = Field(default_factory=dict)
    progress: dict[str, BookProgress] = Field(default_factory=dict)
    reading_anchors: dict[str, ReadingAnchor] = Field(default_factory=dict)


class EventMessage(BaseModel):
    event: ReaderEventName
    book_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    ts: datetime = Field(default_factory=utcnow)
