"""Tests for ReaderApiClient against the dev content service and mocked transports."""

import httpx
import orjson
import pytest

from pagereader.main import create_app
from pagereader.schemas.content import Book, Chapter, ImageBlock, ListBlock, ParagraphBlock
from pagereader.schemas.reader import ReadingAnchor
from pagereader.services.api_client import NDJSON_MEDIA_TYPE, ReaderApiClient, ReaderApiError
from pagereader.services.catalog import Catalog


@pytest.fixture
def catalog():
    return Catalog(
        books=[Book(id="book-1", title="Moby Dick", original_language="en")],
        chapters={
            "book-1": [
                Chapter(id="ch-b", book_id="book-1", index=1, title="Two"),
                Chapter(id="ch-a", book_id="book-1", index=0, title="One"),
            ]
        },
        content={
            "ch-a": [
                ParagraphBlock(id="p1", position=0, text="Hello"),
                ListBlock(id="l1", position=10, items=["one", "two"]),
                ImageBlock(id="img", position=20, src="whale.png"),
                ParagraphBlock(id="p2", position=30, text="Untranslated"),
            ]
        },
        translations={"ch-a": {"fr": {"p1": "Bonjour", "l1": ["un", "deux"]}}},
    )


def service_client(catalog, settings, **kwargs):
    app = create_app(catalog, settings)
    return ReaderApiClient(settings, transport=httpx.ASGITransport(app=app), **kwargs)


def mock_client(settings, handler, **kwargs):
    return ReaderApiClient(settings, transport=httpx.MockTransport(handler), **kwargs)


# ==============================================================================
# Content
# ==============================================================================


@pytest.mark.asyncio
async def test_fetch_book_and_sorted_chapters(catalog, settings):
    async with service_client(catalog, settings) as client:
        book = await client.fetch_book("book-1")
        chapters = await client.fetch_chapters("book-1")

    assert book.title == "Moby Dick"
    assert book.original_language == "en"
    assert [chapter.id for chapter in chapters] == ["ch-a", "ch-b"]


@pytest.mark.asyncio
async def test_missing_book_raises_with_status(catalog, settings):
    async with service_client(catalog, settings) as client:
        with pytest.raises(ReaderApiError) as excinfo:
            await client.fetch_book("nope")

    assert excinfo.value.status_code == 404
    assert str(excinfo.value) == "HTTP 404: Book not found"


@pytest.mark.asyncio
async def test_fetch_content_original_and_localized(catalog, settings):
    async with service_client(catalog, settings) as client:
        original = await client.fetch_content("ch-a")
        localized = await client.fetch_content("ch-a", "fr")

    assert [block.id for block in original] == ["p1", "l1", "img", "p2"]
    assert original[0].text == "Hello"
    assert localized[0].text == "Bonjour"
    assert localized[1].items == ["un", "deux"]
    assert localized[3].text == "Untranslated"


# ==============================================================================
# Translation streaming
# ==============================================================================


@pytest.mark.asyncio
async def test_translate_stream_over_ndjson(catalog, settings):
    async with service_client(catalog, settings) as client:
        results = [
            result
            async for result in client.translate_stream("ch-a", "fr", ["p1", "l1", "img", "p2"], anchor_block_id="p1")
        ]

    by_id = {result.block_id: result for result in results}
    assert list(by_id) == ["p1", "l1", "p2"]
    assert by_id["p1"].translated_text == "Bonjour"
    assert by_id["p1"].cache == "hit"
    assert by_id["l1"].translated_text == "un\ndeux"
    assert by_id["p2"].status == "error"


@pytest.mark.asyncio
async def test_translate_request_body_and_headers(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = orjson.loads(request.content)
        seen["accept"] = request.headers["accept"]
        seen["auth"] = request.headers.get("authorization")
        seen["path"] = request.url.path
        line = orjson.dumps({"blockId": "p1", "status": "ok", "cache": "miss", "translatedText": "Hola"})
        return httpx.Response(200, content=line + b"\n", headers={"content-type": NDJSON_MEDIA_TYPE})

    async with mock_client(settings, handler, token="secret") as client:
        results = [r async for r in client.translate_stream("ch-a", "es", ["p1"], anchor_block_id="p1")]

    assert seen["path"] == "/api/chapters/ch-a/translate"
    assert seen["body"] == {"lang": "ES", "blockIds": ["p1"], "anchorBlockId": "p1", "direction": "down"}
    assert NDJSON_MEDIA_TYPE in seen["accept"]
    assert seen["auth"] == "Bearer secret"
    assert results[0].translated_text == "Hola"


@pytest.mark.asyncio
async def test_invalid_stream_records_are_skipped(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        body = b'{"blockId": "a", "translatedText": "x"}\n{"status": "ok"}\ngarbage\n{"blockId": "b"}'
        return httpx.Response(200, content=body, headers={"content-type": NDJSON_MEDIA_TYPE})

    async with mock_client(settings, handler) as client:
        results = [r async for r in client.translate_stream("ch", "fr", ["a", "b"])]

    assert [r.block_id for r in results] == ["a", "b"]


@pytest.mark.asyncio
async def test_json_array_fallback_is_treated_as_cache_miss(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                {"id": "p1", "position": 0, "type": "paragraph", "text": "Bonjour"},
                {"id": "l1", "position": 10, "type": "list", "items": ["un", "deux"]},
            ],
        )

    async with mock_client(settings, handler) as client:
        results = [r async for r in client.translate_stream("ch", "fr", ["p1", "l1"])]

    assert [(r.block_id, r.cache, r.translated_text) for r in results] == [
        ("p1", "miss", "Bonjour"),
        ("l1", "miss", "un\ndeux"),
    ]


@pytest.mark.asyncio
async def test_dev_service_answers_json_array_without_ndjson_accept(catalog, settings):
    app = create_app(catalog, settings)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as http:
        resp = await http.post(
            "/api/chapters/ch-a/translate",
            json={"lang": "fr", "blockIds": ["p1"]},
            headers={"Accept": "application/json"},
        )

    assert resp.status_code == 200
    assert resp.json() == [{"id": "p1", "position": 0, "type": "paragraph", "text": "Bonjour"}]


@pytest.mark.asyncio
async def test_translate_stream_error_status(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": {"message": "translator offline"}})

    async with mock_client(settings, handler) as client:
        with pytest.raises(ReaderApiError) as excinfo:
            async for _ in client.translate_stream("ch", "fr", ["p1"]):
                pass

    assert excinfo.value.status_code == 503
    assert str(excinfo.value) == "HTTP 503: translator offline"


@pytest.mark.asyncio
async def test_plain_text_error_body(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    async with mock_client(settings, handler) as client:
        with pytest.raises(ReaderApiError, match="HTTP 502: bad gateway"):
            await client.fetch_chapters("book-1")


# ==============================================================================
# Reading position and language
# ==============================================================================


@pytest.mark.asyncio
async def test_reading_position_round_trip(catalog, settings):
    anchor = ReadingAnchor(chapter_id="ch-a", block_id="l1", block_position=10)

    async with service_client(catalog, settings, token="secret") as client:
        assert await client.fetch_reading_position("book-1") is None
        await client.save_position("book-1", anchor, "fr")
        loaded = await client.fetch_reading_position("book-1")

    assert loaded == anchor
    assert catalog.positions["book-1"].lang == "FR"


@pytest.mark.asyncio
async def test_reading_position_404_is_none(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"detail": "Not found"})

    async with mock_client(settings, handler) as client:
        assert await client.fetch_reading_position("book-1") is None


@pytest.mark.asyncio
async def test_update_language(catalog, settings):
    async with service_client(catalog, settings) as client:
        await client.update_language("book-1", "de")

    assert catalog.languages["book-1"] == "DE"


def test_signed_in_follows_token(settings):
    assert ReaderApiClient(settings, token="t").signed_in
    assert not ReaderApiClient(settings).signed_in
