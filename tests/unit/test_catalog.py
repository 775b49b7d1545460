"""Tests for the dev service catalog and app factory."""

import orjson
import pytest
from fastapi.testclient import TestClient

from pagereader.main import create_app
from pagereader.services.catalog import Catalog


@pytest.fixture
def catalog_root(tmp_path):
    root = tmp_path / "catalog"
    (root / "content").mkdir(parents=True)
    (root / "translations").mkdir()
    (root / "books.json").write_bytes(orjson.dumps([{"id": "b1", "title": "Walden", "original_language": "en"}]))
    (root / "chapters.json").write_bytes(
        orjson.dumps({"b1": [{"id": "ch1", "book_id": "b1", "index": 0, "title": "Economy"}]})
    )
    (root / "content" / "ch1.json").write_bytes(
        orjson.dumps(
            [
                {"id": "p1", "position": 0, "type": "paragraph", "text": "When I wrote"},
                {"id": "l1", "position": 1, "type": "list", "items": ["a", "b"]},
                {"id": "hr", "position": 2, "type": "hr"},
            ]
        )
    )
    (root / "translations" / "ch1.json").write_bytes(
        orjson.dumps({"fr": {"p1": "Quand j'ai écrit", "l1": ["x", "y"]}})
    )
    return root


def test_from_directory(catalog_root):
    catalog = Catalog.from_directory(catalog_root)

    assert catalog.books["b1"].title == "Walden"
    assert [c.id for c in catalog.chapters["b1"]] == ["ch1"]
    assert catalog.translation_for("ch1", "FR", "p1") == "Quand j'ai écrit"
    localized = catalog.localized("ch1", "fr")
    assert localized[1].items == ["x", "y"]
    assert localized[2].type == "hr"


def test_translate_reports_hits_and_misses(catalog_root):
    catalog = Catalog.from_directory(catalog_root)
    results = catalog.translate("ch1", "fr", ["p1", "l1", "hr"])
    assert [(r.block_id, r.status, r.cache) for r in results] == [("p1", "ok", "hit"), ("l1", "ok", "hit")]
    assert results[1].translated_text == "x\ny"

    missing = catalog.translate("ch1", "de", ["p1"])
    assert missing[0].status == "error"
    assert missing[0].translated_text is None


def test_app_loads_catalog_from_settings(catalog_root, settings):
    app = create_app(settings=settings.model_copy(update={"catalog_root": catalog_root}))
    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}
        resp = client.get("/api/chapters/ch1/content", params={"lang": "FR"})
        assert resp.status_code == 200
        assert resp.json()[0]["text"] == "Quand j'ai écrit"
        assert client.get("/api/chapters/nope/content").status_code == 404
        assert client.patch("/api/books/b1/language").json() == {"id": "b1", "selected_language": None}
