"""
ServerKit — Response Timing Middleware
=======================================

What:  Measures each request, exposes the duration in an X-Response-Time
       header and logs the request.
How:   Stores the start time on request.state.start_time, awaits the rest of
       the chain, then sets `X-Response-Time: <ms>ms` on the response.
When:  Outermost application middleware, so the figure covers everything
       below it. Exceptions no handler claimed are turned into the generic
       500 envelope here, so that response carries the header too.

Log levels:
    duration > slow threshold → WARNING ("Slow request: ...")
    5xx                       → ERROR
    4xx                       → WARNING
    everything else           → INFO
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from serverkit.responses import unexpected_error_response

logger = logging.getLogger("serverkit.access")

RESPONSE_TIME_HEADER = "X-Response-Time"


class ResponseTimeMiddleware(BaseHTTPMiddleware):
    """
    Adds X-Response-Time to every response and logs slow requests.

    Args:
        slow_threshold_ms: Requests taking longer than this are logged at
                           WARNING (default: 1000).
    """

    def __init__(self, app, slow_threshold_ms: int = 1000, **kwargs):
        super().__init__(app, **kwargs)
        self.slow_threshold_ms = slow_threshold_ms

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start_time = time.perf_counter()
        request.state.start_time = start_time

        try:
            response = await call_next(request)
        except Exception as e:
            # Unclaimed by any exception handler; ServerErrorMiddleware sits outside this one
            logger.error(
                "Unhandled error in %s %s: %s",
                request.method,
                request.url.path,
                str(e),
                exc_info=True,
            )
            response = unexpected_error_response()

        duration_ms = round((time.perf_counter() - start_time) * 1000)
        response.headers[RESPONSE_TIME_HEADER] = f"{duration_ms}ms"

        method = request.method
        path = request.url.path
        status = response.status_code
        extra = {
            "method": method,
            "path": path,
            "status": status,
            "duration_ms": duration_ms,
        }

        if duration_ms > self.slow_threshold_ms:
            logger.warning(
                "Slow request: %s %s - %dms", method, path, duration_ms, extra=extra
            )
            return response

        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(log_level, "%s %s %d %dms", method, path, status, duration_ms, extra=extra)
        return response
