# Routes package init
"""
ServerKit — Routes Package
===========================

Route Inventory:
    - health.py:  GET /health               (service + database health)
                  GET /metrics              (process and pool metrics)
                  GET /api/database/ping    (database-wrapped ping)
"""
