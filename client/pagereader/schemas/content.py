from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


BlockType = Literal["paragraph", "heading", "quote", "list", "image", "hr"]
TranslationStatus = Literal["ok", "error"]
CacheState = Literal["hit", "miss"]

UNTRANSLATABLE_TYPES = frozenset({"image", "hr"})


class _Block(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    position: int


class ParagraphBlock(_Block):
    type: Literal["paragraph"] = "paragraph"
    text: str


class HeadingBlock(_Block):
    type: Literal["heading"] = "heading"
    level: Literal[1, 2, 3] = 1
    text: str


class QuoteBlock(_Block):
    type: Literal["quote"] = "quote"
    text: str


class ListBlock(_Block):
    type: Literal["list"] = "list"
    ordered: bool = False
    items: list[str] = Field(default_factory=list)


class ImageBlock(_Block):
    type: Literal["image"] = "image"
    src: str
    alt: str = ""
    caption: str | None = None


class HrBlock(_Block):
    type: Literal["hr"] = "hr"


ContentBlock = Annotated[
    Union[ParagraphBlock, HeadingBlock, QuoteBlock, ListBlock, ImageBlock, HrBlock],
    Field(discriminator="type"),
]

BLOCK_LIST_ADAPTER: TypeAdapter[list[ContentBlock]] = TypeAdapter(list[ContentBlock])


class Book(BaseModel):
    id: str
    title: str
    author: str | None = None
    cover_url: str | None = None
    original_language: str | None = None
    available_languages: list[str] = Field(default_factory=list)
    status: str = "published"
    created_at: datetime | None = None


class Chapter(BaseModel):
    id: str
    book_id: str
    index: int
    title: str
    created_at: datetime | None = None


class TranslateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lang: str
    block_ids: list[str] = Field(alias="blockIds")
    anchor_block_id: str | None = Field(default=None, alias="anchorBlockId")
    direction: Literal["down", "up"] = "down"


class TranslatedBlockResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    block_id: str = Field(alias="blockId")
    status: TranslationStatus = "ok"
    cache: CacheState = "miss"
    translated_text: str | None = Field(default=None, alias="translatedText")


def block_text(block: ContentBlock) -> str | None:
    if isinstance(block, ListBlock):
        return "\n".join(block.items)
    if isinstance(block, (ParagraphBlock, HeadingBlock, QuoteBlock)):
        return block.text
    return None


def apply_translation(block: ContentBlock, translated_text: str) -> ContentBlock | None:
    """Return a copy of ``block`` carrying ``translated_text``, or None for image/hr blocks."""
    if isinstance(block, (ParagraphBlock, HeadingBlock, QuoteBlock)):
        return block.model_copy(update={"text": translated_text})
    if isinstance(block, ListBlock):
        items = [line for line in translated_text.split("\n") if line]
        return block.model_copy(update={"items": items})
    return None
