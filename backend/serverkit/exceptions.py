"""
ServerKit — Custom Exception Hierarchy
=======================================

What:  Application-specific exceptions for the connection cache, the endpoint
       wrappers and the HTTP middleware.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return the `{"success": false, ...}` JSON envelope with the right status.
Who:   Raised by the database layer, wrappers and utilities; caught by the
       global handlers or by the wrappers themselves.

Exception Hierarchy:
    ServerKitError (base)
    ├── DatabaseConnectionError       → 503 Service Unavailable
    ├── InvalidStateTransitionError   → 500 Internal Server Error
    ├── HandlerError                  → 500 Internal Server Error
    ├── ValidationError               → 400 Bad Request
    │   └── RequestTooLargeError      → 413 Payload Too Large
    └── OperationTimeoutError         → 504 Gateway Timeout
"""

from typing import Any, Dict, Optional


class ServerKitError(Exception):
    """
    Base exception for all ServerKit errors.

    Attributes:
        message:  Human-readable error description
        context:  Additional debug info (logged, not returned to clients)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class DatabaseConnectionError(ServerKitError):
    """
    Raised when a database connection cannot be established.

    When:    Engine creation or the verification query fails inside
             ConnectionManager.connect(). The original driver error is
             chained as __cause__.
    HTTP:    503 Service Unavailable (when it reaches the global handler)
    """

    def __init__(
        self,
        message: str = "Could not connect to the database",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InvalidStateTransitionError(ServerKitError):
    """Raised when the connection state machine is asked for a forbidden move."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"Cannot transition connection state from {current} to {requested}",
            context={"current": current, "requested": requested},
        )
        self.current = current
        self.requested = requested


class HandlerError(ServerKitError):
    """
    Raised when a wrapped endpoint fails with an unexpected exception.

    What:    Carries the failing request's method and path so the global
             handler can log it; the original exception is chained.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "Request handler failed",
        method: Optional[str] = None,
        path: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if method:
            ctx["method"] = method
        if path:
            ctx["path"] = path
        super().__init__(message=message, context=ctx)
        self.method = method
        self.path = path


class ValidationError(ServerKitError):
    """
    Raised when client input fails validation.

    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class RequestTooLargeError(ValidationError):
    """
    Raised when a request body exceeds the configured size ceiling.

    HTTP:    413 Payload Too Large, body carries the configured limit string
             as `maxSize`.
    """

    def __init__(
        self,
        max_size: str,
        content_length: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["max_size"] = max_size
        if content_length is not None:
            ctx["content_length"] = content_length
        super().__init__(
            message="Request entity too large",
            field="content-length",
            context=ctx,
        )
        self.max_size = max_size
        self.content_length = content_length


class OperationTimeoutError(ServerKitError, TimeoutError):
    """
    Raised by with_timeout() when the timer fires before the operation settles.

    Also a builtin TimeoutError so callers can catch it generically.
    HTTP:    504 Gateway Timeout
    """

    def __init__(
        self,
        timeout_ms: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["timeout_ms"] = timeout_ms
        super().__init__(
            message=f"Operation timed out after {timeout_ms}ms",
            context=ctx,
        )
        self.timeout_ms = timeout_ms
