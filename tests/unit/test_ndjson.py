"""Tests for the incremental NDJSON decoder."""

from pagereader.services.ndjson import NdjsonDecoder


def test_complete_lines_decode_in_one_feed():
    decoder = NdjsonDecoder()
    records = decoder.feed(b'{"blockId": "a"}\n{"blockId": "b"}\n')
    assert [r["blockId"] for r in records] == ["a", "b"]
    assert decoder.pending_bytes == 0


def test_partial_line_is_held_until_completed():
    decoder = NdjsonDecoder()
    assert decoder.feed(b'{"blockId": "a"}\n{"block') == [{"blockId": "a"}]
    assert decoder.pending_bytes > 0
    assert decoder.feed(b'Id": "b"}\n') == [{"blockId": "b"}]


def test_multibyte_character_split_across_chunks():
    payload = '{"translatedText": "Привет"}\n'.encode("utf-8")
    decoder = NdjsonDecoder()
    split = payload.index("р".encode("utf-8")) + 1
    assert decoder.feed(payload[:split]) == []
    assert decoder.feed(payload[split:]) == [{"translatedText": "Привет"}]


def test_malformed_and_blank_lines_are_skipped():
    decoder = NdjsonDecoder()
    records = decoder.feed(b'{"blockId": "a"}\n\nnot json\n[1, 2]\n{"blockId": "b"}\n')
    assert [r["blockId"] for r in records] == ["a", "b"]
    assert decoder.skipped == 2


def test_flush_returns_trailing_record_without_newline():
    decoder = NdjsonDecoder()
    assert decoder.feed(b'{"blockId": "a"}') == []
    assert decoder.flush() == [{"blockId": "a"}]
    assert decoder.flush() == []


def test_crlf_line_endings():
    decoder = NdjsonDecoder()
    assert decoder.feed(b'{"blockId": "a"}\r\n{"blockId": "b"}\r\n') == [{"blockId": "a"}, {"blockId": "b"}]
