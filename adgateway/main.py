from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request

from . import __version__
from .ad.client import ConnectionFactory
from .log_config import setup_logging
from .routers import auth as auth_router
from .routers import directory as directory_router
from .settings import SettingsStore, get_store

logger = logging.getLogger(__name__)


def create_app(
    settings_store: SettingsStore | None = None,
    connection_factory: ConnectionFactory | None = None,
) -> FastAPI:
    app = FastAPI(title="AD Gateway", version=__version__)
    app.state.settings_store = settings_store or get_store()
    app.state.connection_factory = connection_factory

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)

        path = request.url.path
        if request.url.query:
            path += "?" + request.url.query
        logger.info(
            "request method=%s path=%s status=%d duration=%.3fs client=%s",
            request.method,
            path,
            response.status_code,
            time.monotonic() - start,
            request.client.host if request.client else "",
        )
        return response

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "OK"}

    app.include_router(auth_router.router)
    app.include_router(directory_router.router)
    return app


def main() -> None:
    """Run the API server with uvicorn using the loaded settings."""
    import uvicorn

    store = get_store()
    settings = store.load()
    setup_logging(settings.log_level, settings.log_dir, settings.log_retention_days)

    logger.info("listening on %s:%d", settings.listen_host, settings.listen_port)
    uvicorn.run(create_app(store), host=settings.listen_host, port=settings.listen_port, log_config=None)


if __name__ == "__main__":
    main()
