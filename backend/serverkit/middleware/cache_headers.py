"""
ServerKit — Cache-Control Middleware
=====================================

What:  Assigns Cache-Control by request path.

Rules (first match wins):
    *.js, *.css, *.png, *.jpg, *.jpeg, *.gif, *.ico, *.svg → public, max-age=3600
    /api/...                                               → public, max-age=300
    anything else                                          → untouched

An endpoint that sets its own Cache-Control keeps it.
"""

import re
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

STATIC_ASSET_PATTERN = re.compile(r"\.(js|css|png|jpg|jpeg|gif|ico|svg)$")

STATIC_CACHE_CONTROL = "public, max-age=3600"
API_CACHE_CONTROL = "public, max-age=300"


def cache_control_for(path: str) -> Optional[str]:
    """Cache-Control value for a request path, or None to leave it alone."""
    if STATIC_ASSET_PATTERN.search(path):
        return STATIC_CACHE_CONTROL
    if path.startswith("/api/"):
        return API_CACHE_CONTROL
    return None


class CacheHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        value = cache_control_for(request.url.path)
        if value is not None:
            response.headers.setdefault("Cache-Control", value)
        return response
