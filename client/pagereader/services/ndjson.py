from __future__ import annotations

import logging
from typing import Any

import orjson


logger = logging.getLogger(__name__)


class NdjsonDecoder:
    """Incremental decoder for newline-delimited JSON.

    Bytes are buffered until a full line is available, so a record split across
    chunks (or a multi-byte character split across chunks) decodes once complete.
    Lines that are blank, malformed or not JSON objects are skipped.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.skipped = 0

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        if not chunk:
            return []
        self._buffer.extend(chunk)
        end = self._buffer.rfind(b"\n")
        if end < 0:
            return []
        complete = bytes(self._buffer[:end])
        del self._buffer[: end + 1]
        return self._parse_lines(complete.split(b"\n"))

    def flush(self) -> list[dict[str, Any]]:
        remainder = bytes(self._buffer)
        self._buffer.clear()
        return self._parse_lines([remainder])

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def _parse_lines(self, lines: list[bytes]) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        for raw in lines:
            line = raw.strip()
            if not line:
                continue
            try:
                record = orjson.loads(line)
            except orjson.JSONDecodeError:
                self.skipped += 1
                logger.debug("skipping malformed ndjson line: %r", line[:120])
                continue
            if isinstance(record, dict):
                records.append(record)
            else:
                self.skipped += 1
        return records
