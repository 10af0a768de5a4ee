"""FastAPI app factory: static mounts, upload route, health endpoint."""
from __future__ import annotations

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response

from fileserver import __version__
from fileserver.api import router as api_router
from fileserver.api.mounts import MountTable
from fileserver.config import Settings
from fileserver.logging_conf import get_logger

logger = get_logger("app")

# Packaged landing page and upload form, served under "/".
ASSET_PACKAGE = ("fileserver", "html")


def build_mounts(settings: Settings) -> MountTable:
    """The default roots: packaged assets, the data dir and the uploads dir."""
    table = MountTable()
    table.mount("/", packages=[ASSET_PACKAGE], fallback=settings.root_fallback)
    table.mount("/data", settings.data_dir)
    table.mount("/uploads", settings.upload_dir)
    return table


def create_app(settings: Settings | None = None, mounts: MountTable | None = None) -> FastAPI:
    settings = settings or Settings()
    mounts = mounts if mounts is not None else build_mounts(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "startup",
            extra={
                "event": "startup",
                "data_dir": str(settings.data_dir),
                "upload_dir": str(settings.upload_dir),
            },
        )
        yield
        logger.info("shutdown", extra={"event": "shutdown"})

    app = FastAPI(title="fileserver", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    route_paths = {getattr(r, "path", None) for r in api_router.routes}

    @app.middleware("http")
    async def request_logger(request: Request, call_next: Callable[[Request], Awaitable[Response]]):
        """Request logging with a correlation id and the static root hit.

        Static responses are tagged with the mount that served them, so a
        404 under /uploads can be told apart from one under /data.
        """
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        request.state.request_id = request_id
        path = request.url.path
        served_by = None if path in route_paths else mounts.match(path)
        fields = {
            "method": request.method,
            "path": path,
            "mount": served_by.name if served_by else None,
            "request_id": request_id,
        }

        start = time.perf_counter()
        logger.info("request.start", extra={"event": "request_start", **fields})
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request.error", extra={"event": "request_error", **fields})
            raise
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request.end",
            extra={
                "event": "request_end",
                **fields,
                "status_code": response.status_code,
                "elapsed_ms": round(elapsed_ms, 2),
            },
        )
        return response

    # Routes first: the "/" mount matches everything and must come last.
    app.include_router(api_router)
    mounts.install(app)

    return app
