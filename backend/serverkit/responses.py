"""
ServerKit — Error Response Envelopes
=====================================

What:  Builds the JSON error body shared by exception handlers, middleware
       and endpoint wrappers.
Who:   serverkit.main exception handlers, ResponseTimeMiddleware (unhandled
       errors), RequestSizeLimitMiddleware and with_database.

Envelope:
    {"success": false, "error": "<category>", "message": "<detail>", ...extra}

`message` is omitted when None; extra keyword arguments are added as-is
(e.g. maxSize, timeoutMs).
"""

from typing import Any, Optional

from starlette.responses import JSONResponse

UNEXPECTED_ERROR_MESSAGE = (
    "An unexpected error occurred. Please try again or contact support."
)


def error_response(
    status_code: int, error: str, message: Optional[str] = None, **extra: Any
) -> JSONResponse:
    content = {"success": False, "error": error}
    if message is not None:
        content["message"] = message
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def unexpected_error_response() -> JSONResponse:
    """500 for exceptions no handler claimed; the detail stays in the logs."""
    return error_response(500, "Internal server error", UNEXPECTED_ERROR_MESSAGE)
