"""
ServerKit — Endpoint Wrappers
==============================

What:  Higher-order functions that wrap FastAPI endpoints with error
       forwarding, database connection handling and duration monitoring.
How:   Each wrapper returns an async function decorated with functools.wraps,
       so FastAPI still sees the original endpoint's signature and injects
       the same parameters. The Request used for logging is found among the
       call arguments (endpoints that want method/path in logs should accept
       `request: Request`).

Composition (outermost first):
    with_database_and_monitoring(fn, manager)
        = with_performance_monitoring(
              with_database(
                  async_handler(fn), manager))

    Monitoring is outermost, so the logged duration includes the time spent
    producing the 500 envelope when the database is unreachable.

Usage:
    @router.get("/api/items")
    @with_database_and_monitoring_for(manager)
    async def list_items(request: Request):
        ...
"""

import functools
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Tuple

from fastapi import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse

from serverkit.exceptions import ServerKitError, HandlerError
from serverkit.responses import error_response

logger = logging.getLogger(__name__)

Endpoint = Callable[..., Any]
AsyncEndpoint = Callable[..., Awaitable[Any]]

SLOW_OPERATION_MS = 1000


def find_request(args: Tuple[Any, ...], kwargs: dict) -> Optional[Request]:
    """Returns the first Starlette Request among positional/keyword arguments."""
    for value in (*args, *kwargs.values()):
        if isinstance(value, Request):
            return value
    return None


def describe(request: Optional[Request]) -> Tuple[str, str]:
    """(method, path) for log lines; dashes when no request is available."""
    if request is None:
        return "-", "-"
    return request.method, request.url.path


def _forward(error: Exception, request: Optional[Request]) -> Exception:
    """
    Decide what reaches the framework's exception handlers.

    Application errors and HTTPExceptions already map to a response and pass
    through untouched; anything else becomes a HandlerError.
    """
    if isinstance(error, (ServerKitError, HTTPException)):
        return error
    method, path = describe(request)
    logger.error("Unhandled error in %s %s: %s", method, path, error, exc_info=error)
    return HandlerError(
        message=str(error) or error.__class__.__name__,
        method=method,
        path=path,
        context={"error_type": error.__class__.__name__},
    )


# ══════════════════════════════════════════════════════════════════════════
# Error Forwarding
# ══════════════════════════════════════════════════════════════════════════

def async_handler(fn: Endpoint) -> AsyncEndpoint:
    """
    Forward any failure of `fn` to the framework's exception handlers.

    `fn` may be a coroutine function or a plain function; awaitable results
    are awaited.
    """

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            forwarded = _forward(e, find_request(args, kwargs))
            if forwarded is e:
                raise
            raise forwarded from e

    return wrapper


def catch_async(fn: AsyncEndpoint) -> AsyncEndpoint:
    """
    Like async_handler, but only for coroutine functions.

    Raises:
        TypeError: at wrap time, if `fn` is not a coroutine function.
    """
    if not inspect.iscoroutinefunction(fn):
        raise TypeError(f"catch_async expects a coroutine function, got {fn!r}")

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            forwarded = _forward(e, find_request(args, kwargs))
            if forwarded is e:
                raise
            raise forwarded from e

    return wrapper


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

def database_error_response(error: BaseException) -> JSONResponse:
    return error_response(500, "Database operation failed", str(error))


def with_database(fn: Endpoint, manager) -> AsyncEndpoint:
    """
    Ensure a database connection before running `fn`.

    Any exception, from connect() or from `fn` itself, is logged and turned
    into the 500 database envelope; nothing propagates.

    Args:
        fn:      The endpoint to wrap.
        manager: ConnectionManager providing connect().
    """

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            await manager.connect()
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            method, path = describe(find_request(args, kwargs))
            logger.error("Database operation error in %s %s: %s", method, path, e)
            return database_error_response(e)

    return wrapper


# ══════════════════════════════════════════════════════════════════════════
# Monitoring
# ══════════════════════════════════════════════════════════════════════════

def with_performance_monitoring(
    fn: Endpoint, slow_threshold_ms: int = SLOW_OPERATION_MS
) -> AsyncEndpoint:
    """
    Measure how long `fn` takes.

    Slower than slow_threshold_ms → WARNING. Failures are logged with the
    elapsed time and re-raised unchanged.
    """

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            method, path = describe(find_request(args, kwargs))
            logger.error(
                "Request failed: %s %s after %.0fms: %s",
                method,
                path,
                duration_ms,
                e,
                extra={"method": method, "path": path, "duration_ms": round(duration_ms, 2)},
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        if duration_ms > slow_threshold_ms:
            method, path = describe(find_request(args, kwargs))
            logger.warning(
                "Slow request: %s %s took %.0fms",
                method,
                path,
                duration_ms,
                extra={"method": method, "path": path, "duration_ms": round(duration_ms, 2)},
            )
        return result

    return wrapper


def with_database_and_monitoring(
    fn: Endpoint, manager, slow_threshold_ms: int = SLOW_OPERATION_MS
) -> AsyncEndpoint:
    """monitoring(database(async_handler(fn)))"""
    return with_performance_monitoring(
        with_database(async_handler(fn), manager), slow_threshold_ms=slow_threshold_ms
    )


def with_database_and_monitoring_for(
    manager, slow_threshold_ms: int = SLOW_OPERATION_MS
) -> Callable[[Endpoint], AsyncEndpoint]:
    """Decorator form of with_database_and_monitoring bound to one manager."""
    return functools.partial(
        with_database_and_monitoring, manager=manager, slow_threshold_ms=slow_threshold_ms
    )
