"""API server for ``quoteauth serve``.

Builds the FastAPI application with the versioned ``/api/v1/`` routers, CORS
and the storage-fault handler, and runs it under uvicorn.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quoteauth.oauth2.errors import StorageError

logger = logging.getLogger(__name__)


async def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"error": "server_error", "error_description": "Internal server error"},
    )


def create_api_app() -> FastAPI:
    """Build the FastAPI application."""
    from quoteauth import __version__
    from quoteauth.api.v1 import mount_v1_routers
    from quoteauth.config import get_settings

    settings = get_settings()
    app = FastAPI(
        title="QuoteAuth",
        description="Authorization server for third-party proposal workspace apps.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    if settings.cors_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    app.add_exception_handler(StorageError, _storage_error_handler)
    mount_v1_routers(app)
    return app


def run_api_server(host: str | None = None, port: int | None = None, dev: bool = False) -> None:
    """Start the API server."""
    import uvicorn

    from quoteauth.config import get_settings

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    logger.info("API docs: http://%s:%d/api/v1/docs", host, port)

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "quoteauth.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            log_level="debug",
        )
    else:
        uvicorn.run(create_api_app(), host=host, port=port, log_config=None)
