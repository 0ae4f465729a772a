"""
ServerKit — Compression Middleware
===================================

What:  GZip compression that clients can opt out of.
How:   Starlette's GZipMiddleware (level 6, 1 KB threshold by default);
       requests carrying an `x-no-compression` header bypass it.
"""

from fastapi import FastAPI
from starlette.middleware.gzip import GZipMiddleware
from starlette.types import Receive, Scope, Send

NO_COMPRESSION_HEADER = b"x-no-compression"


class ConditionalGZipMiddleware(GZipMiddleware):
    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            header_names = {name.lower() for name, _ in scope.get("headers", [])}
            if NO_COMPRESSION_HEADER in header_names:
                await self.app(scope, receive, send)
                return
        await super().__call__(scope, receive, send)


def enable_compression(app: FastAPI, level: int = 6, threshold: int = 1024) -> None:
    """Register ConditionalGZipMiddleware on `app`."""
    app.add_middleware(
        ConditionalGZipMiddleware, minimum_size=threshold, compresslevel=level
    )
