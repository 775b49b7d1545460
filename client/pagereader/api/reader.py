from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

import orjson
from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from pagereader.schemas.content import Book, Chapter, TranslatedBlockResult, TranslateRequest
from pagereader.schemas.reader import SavePositionRequest
from pagereader.services.api_client import NDJSON_MEDIA_TYPE
from pagereader.services.catalog import Catalog

router = APIRouter(tags=["reader"])


def _catalog(request: Request) -> Catalog:
    return request.app.state.catalog


def _require_book(catalog: Catalog, book_id: str) -> Book:
    book = catalog.books.get(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


@router.get("/books/{book_id}", response_model=Book)
def get_book(book_id: str, request: Request) -> Book:
    return _require_book(_catalog(request), book_id)


@router.get("/books/{book_id}/chapters", response_model=list[Chapter])
def get_chapters(book_id: str, request: Request) -> list[Chapter]:
    catalog = _catalog(request)
    _require_book(catalog, book_id)
    return sorted(catalog.chapters.get(book_id, []), key=lambda c: c.index)


@router.get("/chapters/{chapter_id}/content")
def get_content(chapter_id: str, request: Request, lang: str | None = None) -> JSONResponse:
    blocks = _catalog(request).localized(chapter_id, lang)
    if blocks is None:
        raise HTTPException(status_code=404, detail="Chapter not found")
    return JSONResponse(content=[block.model_dump(mode="json") for block in blocks])


async def _ndjson_stream(results: list[TranslatedBlockResult]) -> AsyncIterator[bytes]:
    for result in results:
        yield orjson.dumps(result.model_dump(mode="json", by_alias=True)) + b"\n"
        await asyncio.sleep(0)


@router.post("/chapters/{chapter_id}/translate", response_model=None)
def translate(chapter_id: str, body: TranslateRequest, request: Request) -> StreamingResponse | JSONResponse:
    catalog = _catalog(request)
    if chapter_id not in catalog.content:
        raise HTTPException(status_code=404, detail="Chapter not found")
    lang = body.lang.upper()

    if "ndjson" in request.headers.get("accept", ""):
        results = catalog.translate(chapter_id, lang, body.block_ids)
        return StreamingResponse(
            _ndjson_stream(results),
            media_type=NDJSON_MEDIA_TYPE,
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    wanted = set(body.block_ids)
    blocks = catalog.localized(chapter_id, lang) or []
    return JSONResponse(content=[block.model_dump(mode="json") for block in blocks if block.id in wanted])


@router.get("/books/{book_id}/reading-position")
def get_reading_position(book_id: str, request: Request) -> JSONResponse:
    catalog = _catalog(request)
    _require_book(catalog, book_id)
    anchor = catalog.get_position(book_id)
    if anchor is None:
        return JSONResponse(content=None)
    return JSONResponse(content=anchor.model_dump(mode="json", by_alias=True))


@router.put("/books/{book_id}/reading-position")
def put_reading_position(book_id: str, body: SavePositionRequest, request: Request) -> dict[str, Any]:
    catalog = _catalog(request)
    _require_book(catalog, book_id)
    catalog.save_position(book_id, body)
    return {"id": book_id, "saved": True}


@router.patch("/books/{book_id}/language")
def patch_language(book_id: str, request: Request, payload: dict[str, Any] | None = Body(default=None)) -> dict[str, Any]:
    catalog = _catalog(request)
    _require_book(catalog, book_id)
    selected = (payload or {}).get("selected_language")
    if selected:
        catalog.languages[book_id] = str(selected).upper()
    return {"id": book_id, "selected_language": catalog.languages.get(book_id)}
