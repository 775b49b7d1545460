from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Sequence

import httpx
import orjson
from pydantic import ValidationError

from pagereader.core.settings import Settings, get_settings
from pagereader.schemas.content import (
    BLOCK_LIST_ADAPTER,
    Book,
    Chapter,
    ContentBlock,
    TranslatedBlockResult,
    TranslateRequest,
    block_text,
)
from pagereader.schemas.reader import ReadingAnchor, SavePositionRequest
from pagereader.services.ndjson import NdjsonDecoder


NDJSON_MEDIA_TYPE = "application/x-ndjson"
logger = logging.getLogger(__name__)


class ReaderApiError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _format_http_error(resp: httpx.Response) -> str:
    detail = ""
    try:
        data = resp.json()
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict):
                detail = str(err.get("message") or err.get("code") or "")
            elif isinstance(err, str):
                detail = err
            if not detail:
                detail = str(data.get("message") or data.get("detail") or "")
        elif data is not None:
            detail = str(data)
    except ValueError:
        detail = resp.text.strip()

    detail = detail.strip()
    if detail:
        return f"HTTP {resp.status_code}: {detail}"
    return f"HTTP {resp.status_code}"


def _results_from_blocks(items: Any) -> list[TranslatedBlockResult]:
    """Rebuild streamed-shape results from a one-shot JSON array of blocks."""
    if not isinstance(items, list):
        raise ReaderApiError("unexpected translate response shape")
    results: list[TranslatedBlockResult] = []
    for item in items:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        try:
            block = BLOCK_LIST_ADAPTER.validate_python([item])[0]
        except ValidationError:
            logger.debug("skipping invalid block in translate response: %s", item.get("id"))
            continue
        results.append(
            TranslatedBlockResult(block_id=block.id, status="ok", cache="miss", translated_text=block_text(block))
        )
    return results


def _result_from_record(record: dict[str, Any]) -> TranslatedBlockResult | None:
    try:
        return TranslatedBlockResult.model_validate(record)
    except ValidationError:
        logger.debug("skipping invalid translate record: %s", record)
        return None


class ReaderApiClient:
    """Async client for the remote content, translation and position service."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.token = token if token is not None else self.settings.api_token
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        self._client = http_client or httpx.AsyncClient(
            base_url=self.settings.api_base_url,
            headers=headers,
            timeout=self.settings.request_timeout_sec,
            transport=transport,
        )

    @property
    def signed_in(self) -> bool:
        return bool(self.token)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ReaderApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _path(self, path: str) -> str:
        return f"{self.settings.api_prefix}{path}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._client.request(method, self._path(path), **kwargs)
        if resp.status_code >= 400:
            raise ReaderApiError(_format_http_error(resp), resp.status_code)
        if not resp.content:
            return None
        return orjson.loads(resp.content)

    async def fetch_book(self, book_id: str) -> Book:
        return Book.model_validate(await self._request("GET", f"/books/{book_id}"))

    async def fetch_chapters(self, book_id: str) -> list[Chapter]:
        data = await self._request("GET", f"/books/{book_id}/chapters")
        chapters = [Chapter.model_validate(item) for item in data or []]
        chapters.sort(key=lambda c: c.index)
        return chapters

    async def fetch_content(self, chapter_id: str, lang: str | None = None) -> list[ContentBlock]:
        params = {"lang": lang.upper()} if lang else None
        data = await self._request("GET", f"/chapters/{chapter_id}/content", params=params)
        return BLOCK_LIST_ADAPTER.validate_python(data or [])

    async def translate_stream(
        self,
        chapter_id: str,
        lang: str,
        block_ids: Sequence[str],
        *,
        anchor_block_id: str | None = None,
        direction: str = "down",
    ) -> AsyncIterator[TranslatedBlockResult]:
        """Yield one result per block as the service resolves it.

        Cancelling the consuming task closes the underlying response.
        """
        body = TranslateRequest(
            lang=lang.upper(),
            block_ids=list(block_ids),
            anchor_block_id=anchor_block_id,
            direction=direction,  # type: ignore[arg-type]
        ).model_dump(by_alias=True)
        headers = {"Accept": f"{NDJSON_MEDIA_TYPE}, application/json"}

        async with self._client.stream(
            "POST",
            self._path(f"/chapters/{chapter_id}/translate"),
            content=orjson.dumps(body),
            headers=headers,
        ) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                raise ReaderApiError(_format_http_error(resp), resp.status_code)

            content_type = resp.headers.get("content-type", "")
            if "ndjson" not in content_type:
                raw = await resp.aread()
                for result in _results_from_blocks(orjson.loads(raw) if raw else []):
                    yield result
                return

            decoder = NdjsonDecoder()
            async for chunk in resp.aiter_bytes():
                for record in decoder.feed(chunk):
                    result = _result_from_record(record)
                    if result is not None:
                        yield result
            for record in decoder.flush():
                result = _result_from_record(record)
                if result is not None:
                    yield result

    async def fetch_reading_position(self, book_id: str) -> ReadingAnchor | None:
        try:
            data = await self._request("GET", f"/books/{book_id}/reading-position")
        except ReaderApiError as exc:
            if exc.status_code == 404:
                return None
            raise
        if not isinstance(data, dict) or not data.get("blockId"):
            return None
        return ReadingAnchor.model_validate(data)

    async def save_position(self, book_id: str, anchor: ReadingAnchor, lang: str | None = None) -> None:
        payload = SavePositionRequest.from_anchor(anchor, lang).model_dump(mode="json", by_alias=True)
        await self._request("PUT", f"/books/{book_id}/reading-position", content=orjson.dumps(payload))

    async def update_language(self, book_id: str, lang: str) -> None:
        payload = {"selected_language": lang.upper()}
        await self._request("PATCH", f"/books/{book_id}/language", content=orjson.dumps(payload))
