"""
FastAPI Application Factory & Configuration.

This module initializes the FastAPI application instance. It is responsible for:
1.  **Middleware Setup**: CORS for browser clients.
2.  **Exception Handling**: every error leaves as ``{"error": <public message>}``.
3.  **Routing**: generation, history, jobs, conversation and health.
4.  **Lifecycle**: the job store is created on startup; unfinished jobs are
    cancelled on shutdown.

Design Pattern
--------------
We use an **Application Factory** pattern (``create_app``) so tests can spin
up isolated app instances and override dependencies per test.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from textviz import __version__
from textviz.api.job_store import JobStore
from textviz.api.routers import conversation, generation, history, jobs
from textviz.core.errors import TextVizError
from textviz.core.settings import get_logger, load_settings

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    ASGI Lifespan context manager.

    - **Startup**: initialize the in-memory job store singleton.
    - **Shutdown**: cancel whatever is still running.
    """
    logger.info("textviz API starting (env=%s)", load_settings().environment)
    store = JobStore.get_instance()
    yield
    store.clear()
    logger.info("textviz API stopped")


def create_app() -> FastAPI:
    """
    Construct and configure the textviz FastAPI application.

    Returns
    -------
    FastAPI
        The configured ASGI application ready to be served by Uvicorn.
    """
    app = FastAPI(
        title="textviz API",
        description="Text to animated HTML/Canvas visualizations",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # -----------------------------------------------------------------------
    # Middleware
    # -----------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Global Exception Handlers
    # -----------------------------------------------------------------------
    @app.exception_handler(TextVizError)
    async def textviz_error_handler(request: Request, exc: TextVizError) -> JSONResponse:
        """Map the error taxonomy onto its status code and public message."""
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        else:
            logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Query/path validation failures are client errors (400)."""
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "Invalid request.")
        return JSONResponse(
            status_code=400,
            content={"error": f"{location}: {message}" if location else message},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all: log the traceback, return a generic 500."""
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    app.include_router(generation.router)
    app.include_router(history.router)
    app.include_router(jobs.router)
    app.include_router(conversation.router)

    @app.get("/health", tags=["System"])
    async def health_check() -> dict[str, str]:
        """Simple liveness check."""
        return {
            "status": "ok",
            "environment": load_settings().environment,
            "version": __version__,
        }

    return app


__all__ = ["create_app"]
