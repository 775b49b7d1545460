from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "pagereader"
    api_prefix: str = "/api"
    api_base_url: str = "http://localhost:8000"
    api_token: str | None = None
    request_timeout_sec: float = Field(default=30.0, gt=0)
    max_batch_size: int = Field(default=20, ge=1)
    high_priority_debounce_ms: int = Field(default=0, ge=0)
    low_priority_debounce_ms: int = Field(default=0, ge=0)
    prefetch_pages: int = Field(default=2, ge=0)
    fallback_block_height: float = 80.0
    remote_save_interval_sec: float = Field(default=1.0, ge=0)
    default_font_size: int = 18
    default_theme: Literal["dark", "light"] = "dark"
    default_language: str = "en"
    state_backend: Literal["file", "redis"] = "file"
    storage_root: Path = Field(default=Path("/tmp/pagereader"))
    state_file_name: str = "state.json"
    redis_url: str = "redis://localhost:6379/0"
    redis_state_key: str = "pagereader:state"
    catalog_root: Path | None = None

    @property
    def state_path(self) -> Path:
        return self.storage_root / self.state_file_name


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.storage_root.mkdir(parents=True, exist_ok=True)
    return settings
