# Middleware package init
"""
ServerKit — Middleware Package
===============================

What:  Cross-cutting concerns applied to every request, plus the endpoint
       wrappers in handlers.py.

Middleware Chain (order matters!):
    Request → [Response Time] → [Cache Headers] → [Size Limit] → [GZip] → Route Handler

    1. Response Time first: the measured duration covers the whole chain
    2. Cache Headers: sets Cache-Control once the response exists
    3. Size Limit: rejects oversized bodies before any endpoint runs
    4. GZip: compresses what the endpoint produced

    The order is reversed for responses:
    Response ← [Response Time] ← [Cache Headers] ← [Size Limit] ← [GZip] ← Route Handler
"""
