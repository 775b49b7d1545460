from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pagereader.api.reader import router as reader_router
from pagereader.core.settings import Settings, get_settings
from pagereader.services.catalog import Catalog


def create_app(catalog: Catalog | None = None, settings: Settings | None = None) -> FastAPI:
    """Development content service speaking the same contract as the remote reader API."""
    settings = settings or get_settings()
    if catalog is None:
        catalog = Catalog.from_directory(settings.catalog_root) if settings.catalog_root else Catalog()

    app = FastAPI(title=f"{settings.app_name}-dev-service")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.catalog = catalog
    app.include_router(reader_router, prefix=settings.api_prefix)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
