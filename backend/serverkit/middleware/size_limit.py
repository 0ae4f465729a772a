"""
ServerKit — Request Size Limiting Middleware
=============================================

What:  Rejects requests whose declared Content-Length exceeds a ceiling.
How:   The ceiling is a human size string ("10mb") parsed once with
       parse_size(); the Content-Length header is compared before the
       endpoint runs.
When:  Before any endpoint reads the body.

Response on rejection:
    HTTP 413
    {"success": false, "error": "Request entity too large", "maxSize": "10mb"}

Requests with no Content-Length, a zero length or a non-numeric value pass
through; chunked bodies are not counted.
"""

import logging
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from serverkit.exceptions import RequestTooLargeError
from serverkit.performance import parse_size
from serverkit.responses import error_response

logger = logging.getLogger(__name__)


def declared_length(request: Request) -> Optional[int]:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def too_large_response(error: RequestTooLargeError) -> JSONResponse:
    """413 envelope; also used by the app's RequestTooLargeError handler."""
    return error_response(413, error.message, maxSize=error.max_size)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """
    Args:
        max_size: Ceiling as a size string (default: "10mb").
    """

    def __init__(self, app, max_size: str = "10mb", **kwargs):
        super().__init__(app, **kwargs)
        self.max_size = max_size
        self.max_bytes = parse_size(max_size)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        content_length = declared_length(request)

        if content_length and content_length > self.max_bytes:
            error = RequestTooLargeError(
                max_size=self.max_size, content_length=content_length
            )
            logger.warning(
                "Rejected %s %s: Content-Length %d exceeds %s",
                request.method,
                request.url.path,
                content_length,
                self.max_size,
            )
            return too_large_response(error)

        return await call_next(request)
