"""
ServerKit — FastAPI Application Factory
========================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance
       bound to one ConnectionManager.
Who:   Called by uvicorn to start the server (uvicorn serverkit.main:app)
       and by tests with their own manager.

Application Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                     FastAPI App                         │
    │                                                         │
    │  Middleware Chain:                                      │
    │  ┌───────────────┐ ┌──────────────┐ ┌──────────┐ ┌────┐ │
    │  │ Response Time │→│ Cache Headers│→│Size Limit│→│GZip│ │
    │  └───────────────┘ └──────────────┘ └──────────┘ └────┘ │
    │                                                         │
    │  Routes:                                                │
    │  ┌──────────────┐ ┌──────────────┐ ┌─────────────────┐  │
    │  │ GET /health  │ │ GET /metrics │ │ GET /api/db/ping│  │
    │  └──────────────┘ └──────────────┘ └─────────────────┘  │
    │                                                         │
    │  Exception Handlers:                                    │
    │  ┌───────────────────────────────────────────────────┐  │
    │  │ Validation→400 │ TooLarge→413 │ DB→503 │ Timeout→504│ │
    │  └───────────────────────────────────────────────────┘  │
    └─────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, log the database target. The first
              connection is made lazily by the first request needing it.
    Shutdown: close the ConnectionManager (dispose the cached engine).
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request

from serverkit import __version__
from serverkit.config import Settings, settings as default_settings
from serverkit.database import ConnectionManager, ConnectionOptions
from serverkit.exceptions import (
    DatabaseConnectionError,
    HandlerError,
    OperationTimeoutError,
    RequestTooLargeError,
    ServerKitError,
    ValidationError,
)
from serverkit.middleware.cache_headers import CacheHeadersMiddleware
from serverkit.middleware.compression import enable_compression
from serverkit.middleware.size_limit import RequestSizeLimitMiddleware, too_large_response
from serverkit.middleware.timing import ResponseTimeMiddleware
from serverkit.responses import error_response
from serverkit.routes import health

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Called once during app startup, before any other initialization.
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Third-party libraries that log every operation
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for consistent error responses.

    Handler hierarchy:
        RequestTooLargeError    → 413 Payload Too Large
        ValidationError         → 400 Bad Request
        HandlerError            → 500 Internal Server Error
        DatabaseConnectionError → 503 Service Unavailable
        OperationTimeoutError   → 504 Gateway Timeout
        ServerKitError (base)   → 500 Internal Server Error

    Any other exception is converted to the generic 500 by
    ResponseTimeMiddleware, so that response still carries X-Response-Time.

    Every handler logs method and path; details in exc.context stay
    server-side.
    """

    @app.exception_handler(RequestTooLargeError)
    async def handle_too_large(request: Request, exc: RequestTooLargeError):
        logger.warning("%s %s: %s", request.method, request.url.path, exc.message)
        return too_large_response(exc)

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning(
            "%s %s: validation error: %s", request.method, request.url.path, exc.message
        )
        return error_response(400, "Validation failed", exc.message)

    @app.exception_handler(HandlerError)
    async def handle_handler_error(request: Request, exc: HandlerError):
        logger.error(
            "%s %s: handler error: %s | Context: %s",
            request.method,
            request.url.path,
            exc.message,
            exc.context,
        )
        return error_response(500, "Internal server error", exc.message)

    @app.exception_handler(DatabaseConnectionError)
    async def handle_connection_error(request: Request, exc: DatabaseConnectionError):
        logger.error(
            "%s %s: database unavailable: %s", request.method, request.url.path, exc.message
        )
        return error_response(503, "Database unavailable", "Could not connect to the database")

    @app.exception_handler(OperationTimeoutError)
    async def handle_timeout(request: Request, exc: OperationTimeoutError):
        logger.error(
            "%s %s: %s", request.method, request.url.path, exc.message
        )
        return error_response(504, "Operation timed out", exc.message, timeoutMs=exc.timeout_ms)

    @app.exception_handler(ServerKitError)
    async def handle_serverkit_error(request: Request, exc: ServerKitError):
        logger.error(
            "%s %s: %s | Context: %s", request.method, request.url.path, exc.message, exc.context
        )
        return error_response(500, "Internal server error", exc.message)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    manager: Optional[ConnectionManager] = None,
    config: Optional[Settings] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        manager: ConnectionManager to bind routes to. A new one built from
                 `config` when omitted.
        config:  Settings; the module-level singleton when omitted.
    """
    config = config or default_settings
    manager = manager or ConnectionManager(ConnectionOptions.from_settings(config))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(config.log_level)
        logger.info("=" * 60)
        logger.info("ServerKit %s starting up...", __version__)
        logger.info("Database host: %s", config.database_host())
        logger.info("Listening on: %s:%d", config.backend_host, config.backend_port)
        logger.info("Max request size: %s", config.max_request_size)
        logger.info("Slow request threshold: %dms", config.slow_request_threshold_ms)
        logger.info("=" * 60)

        yield

        logger.info("ServerKit shutting down...")
        await manager.close()
        logger.info("Shutdown complete.")

    app = FastAPI(
        title="ServerKit API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.connection_manager = manager

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added = first to execute.
    enable_compression(
        app, level=config.compression_level, threshold=config.compression_threshold
    )
    app.add_middleware(RequestSizeLimitMiddleware, max_size=config.max_request_size)
    app.add_middleware(CacheHeadersMiddleware)
    app.add_middleware(
        ResponseTimeMiddleware, slow_threshold_ms=config.slow_request_threshold_ms
    )

    register_exception_handlers(app)

    app.include_router(
        health.build_router(manager, slow_threshold_ms=config.slow_request_threshold_ms)
    )

    return app


app = create_app()
