"""
ServerKit — Status and Metrics Schemas
=======================================

What:  Pydantic models for connection status, pool statistics and the
       metrics snapshot returned by the operational endpoints.
How:   Fields are snake_case in Python and camelCase on the wire
       (ready_state → readyState); FastAPI serializes response models by
       alias, and collect_metrics() callers use model_dump(by_alias=True).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for wire models: camelCase aliases, snake_case accepted too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConnectionStatus(CamelModel):
    """
    What:  Readiness of the cached database connection.
    Who:   Returned by ConnectionManager.get_status() and embedded in /health.
    """
    state: str = Field(description="disconnected, connected, connecting, disconnecting or unknown")
    ready_state: int = Field(description="Numeric readiness state (0-3)")
    host: Optional[str] = Field(default=None, description="Database host of the last engine")
    name: Optional[str] = Field(default=None, description="Database name of the last engine")


class PoolStats(CamelModel):
    total_connections: int = Field(default=0, description="Pooled connections, in use or idle")
    available_connections: int = Field(default=0, description="Idle pooled connections")
    ready_state: int
    host: Optional[str] = None
    name: Optional[str] = None


class MemoryUsage(CamelModel):
    """Process memory in megabytes (rounded)."""
    rss: int
    vms: int
    uss: Optional[int] = Field(default=None, description="Unique set size, where the platform reports it")


class CpuUsage(CamelModel):
    """Cumulative process CPU time in seconds."""
    user: float
    system: float


class MetricsSnapshot(CamelModel):
    """
    What:  Point-in-time process and connection pool metrics.
    Who:   Returned by collect_metrics() and GET /metrics.
    """
    memory: MemoryUsage
    uptime: float = Field(description="Seconds since the process started")
    cpu_usage: CpuUsage
    connection_pool: PoolStats
    timestamp: str = Field(description="UTC ISO 8601 collection time")


class HealthResponse(CamelModel):
    """
    What:  Health check response showing service and database status.
    Who:   Returned by GET /health for monitoring and load balancer probes.
    """
    status: str = Field(description="Overall service status: healthy or unhealthy")
    version: str = Field(description="Application version")
    database: ConnectionStatus
    uptime_seconds: float = Field(description="Seconds since the process started")
