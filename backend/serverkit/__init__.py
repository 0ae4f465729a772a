"""
ServerKit — Application Package Initializer
============================================

What: Middleware helpers, endpoint wrappers and a cached database connection
      manager for FastAPI services.
Who:  Imported by the application factory, by tests and by uvicorn.

Layout:

    ┌─────────────────────────────────────┐
    │        main (App Factory)           │  ← wiring, exception handlers
    ├─────────────────────────────────────┤
    │   middleware / routes (HTTP Layer)  │  ← timing, caching, size limits
    ├─────────────────────────────────────┤
    │      performance (Utilities)        │  ← metrics, batching, timeouts
    ├─────────────────────────────────────┤
    │      database (Connection Cache)    │  ← ConnectionManager
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
