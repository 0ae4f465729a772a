"""
ServerKit — Operational Routes
===============================

What:  Health, metrics and database ping endpoints.
How:   build_router(manager) binds the routes to an explicit
       ConnectionManager instead of a module-level connection.
       slow_threshold_ms is passed on to the ping route's monitoring wrapper.
Who:   Called by Docker health checks, load balancers and monitoring.

Health Check:
    healthy:   the database is connected, or connect() succeeds now (HTTP 200)
    unhealthy: connect() fails (HTTP 503)
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from serverkit import __version__
from serverkit.database import ConnectionManager
from serverkit.exceptions import DatabaseConnectionError
from serverkit.middleware.handlers import SLOW_OPERATION_MS, with_database_and_monitoring
from serverkit.performance import collect_metrics, get_uptime
from serverkit.schemas.status import HealthResponse, MetricsSnapshot

logger = logging.getLogger(__name__)


def build_router(
    manager: ConnectionManager, slow_threshold_ms: int = SLOW_OPERATION_MS
) -> APIRouter:
    router = APIRouter(tags=["Health"])

    @router.get(
        "/health",
        response_model=HealthResponse,
        summary="Service health check",
        responses={503: {"model": HealthResponse}},
    )
    async def health_check():
        """
        Report service and database status.

        A disconnected manager is given one connect() attempt so a cold
        process reports healthy once the database is reachable.
        """
        overall = "healthy"
        status_code = 200
        if not manager.is_connected():
            try:
                await manager.connect()
            except DatabaseConnectionError as e:
                overall = "unhealthy"
                status_code = 503
                logger.warning("Health check: database unreachable: %s", e.message)

        body = HealthResponse(
            status=overall,
            version=__version__,
            database=manager.get_status(),
            uptime_seconds=get_uptime(),
        )
        return JSONResponse(
            status_code=status_code, content=body.model_dump(by_alias=True)
        )

    @router.get(
        "/metrics",
        response_model=MetricsSnapshot,
        summary="Process and connection pool metrics",
    )
    async def metrics() -> MetricsSnapshot:
        return collect_metrics(manager)

    async def ping_database(request: Request):
        return {"success": True, "status": manager.get_status().model_dump(by_alias=True)}

    router.add_api_route(
        "/api/database/ping",
        with_database_and_monitoring(
            ping_database, manager, slow_threshold_ms=slow_threshold_ms
        ),
        methods=["GET"],
        summary="Ensure a database connection and report its status",
    )

    return router
