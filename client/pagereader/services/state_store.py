from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Protocol

import orjson
from pydantic import ValidationError
from redis import Redis
from redis.exceptions import RedisError

from pagereader.core.settings import Settings, get_settings
from pagereader.schemas.reader import BookProgress, PersistedState, ReaderSettings, ReadingAnchor, Theme


logger = logging.getLogger(__name__)


def _dumps(data: Any) -> bytes:
    return orjson.dumps(data)


def _loads(raw: bytes | str | None, default: Any) -> Any:
    if not raw:
        return default
    return orjson.loads(raw)


class StateBackend(Protocol):
    def load(self) -> dict[str, Any] | None: ...

    def save(self, data: dict[str, Any]) -> None: ...


class FileStateBackend:
    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> dict[str, Any] | None:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return None
        return _loads(raw, None)

    def save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        tmp.write_bytes(_dumps(data))
        os.replace(tmp, self.path)


class RedisStateBackend:
    def __init__(self, redis: Redis, key: str) -> None:
        self.redis = redis
        self.key = key

    @classmethod
    def from_settings(cls, settings: Settings) -> RedisStateBackend:
        return cls(Redis.from_url(settings.redis_url, decode_responses=True), settings.redis_state_key)

    def load(self) -> dict[str, Any] | None:
        return _loads(self.redis.get(self.key), None)

    def save(self, data: dict[str, Any]) -> None:
        self.redis.set(self.key, _dumps(data).decode("utf-8"))


def build_state_backend(settings: Settings) -> StateBackend:
    if settings.state_backend == "redis":
        return RedisStateBackend.from_settings(settings)
    return FileStateBackend(settings.state_path)


class ReaderStateStore:
    """Owned reader state: settings, per-book language, progress and anchors.

    Every mutation is applied in memory first and then mirrored to the backend.
    Only ``PersistedState`` fields survive a restart; the per-book translating
    flag lives in memory only.
    """

    def __init__(self, backend: StateBackend | None = None, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.backend = backend
        self.is_translating_by_book: dict[str, bool] = {}
        self._state = self._load()

    def _defaults(self) -> PersistedState:
        return PersistedState(
            settings=ReaderSettings(
                font_size=self.settings.default_font_size,
                theme=self.settings.default_theme,
                language=self.settings.default_language,
            )
        )

    def _load(self) -> PersistedState:
        if self.backend is None:
            return self._defaults()
        try:
            data = self.backend.load()
        except (OSError, RedisError, orjson.JSONDecodeError) as exc:
            logger.warning("failed to load reader state, using defaults: %s", exc)
            return self._defaults()
        if not data:
            return self._defaults()
        try:
            return PersistedState.model_validate(data)
        except ValidationError as exc:
            logger.warning("discarding invalid persisted reader state: %s", exc)
            return self._defaults()

    def _persist(self) -> None:
        if self.backend is None:
            return
        try:
            self.backend.save(self._state.model_dump(mode="json"))
        except (OSError, RedisError) as exc:
            logger.warning("failed to persist reader state: %s", exc)

    def snapshot(self) -> PersistedState:
        return self._state.model_copy(deep=True)

    @property
    def reader_settings(self) -> ReaderSettings:
        return self._state.settings

    def set_font_size(self, size: int) -> None:
        if size <= 0:
            raise ValueError(f"font size must be positive, got {size}")
        self._state.settings = self._state.settings.model_copy(update={"font_size": size})
        self._persist()

    def set_theme(self, theme: Theme) -> None:
        self._state.settings = self._state.settings.model_copy(update={"theme": theme})
        self._persist()

    def set_language(self, language: str) -> None:
        self._state.settings = self._state.settings.model_copy(update={"language": language.lower()})
        self._persist()

    def language_for(self, book_id: str) -> str:
        return self._state.per_book_languages.get(book_id, self._state.settings.language)

    def set_book_language(self, book_id: str, language: str) -> None:
        self._state.per_book_languages[book_id] = language.lower()
        self._persist()

    def update_progress(self, book_id: str, chapter: int, progress: float) -> None:
        self._state.progress[book_id] = BookProgress(chapter=chapter, progress=max(0.0, min(100.0, progress)))
        self._persist()

    def get_progress(self, book_id: str) -> BookProgress | None:
        return self._state.progress.get(book_id)

    def set_anchor(self, book_id: str, anchor: ReadingAnchor) -> None:
        self._state.reading_anchors[book_id] = anchor
        self._persist()

    def get_anchor(self, book_id: str) -> ReadingAnchor | None:
        return self._state.reading_anchors.get(book_id)

    def remove_book(self, book_id: str) -> None:
        self._state.reading_anchors.pop(book_id, None)
        self._state.progress.pop(book_id, None)
        self._state.per_book_languages.pop(book_id, None)
        self.is_translating_by_book.pop(book_id, None)
        self._persist()

    def set_is_translating(self, book_id: str, value: bool) -> None:
        self.is_translating_by_book[book_id] = value

    def is_translating(self, book_id: str) -> bool:
        return self.is_translating_by_book.get(book_id, False)
