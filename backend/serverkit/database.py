"""
ServerKit — Database Connection Cache
======================================

What:  An explicitly owned ConnectionManager that caches one async SQLAlchemy
       engine and re-establishes it when the cached one is gone or not ready.
How:   connect() returns the cached engine while the readiness state is
       CONNECTED; otherwise it builds a new engine with the static pooling
       options, verifies it with SELECT 1 and registers engine event observers
       that empty the cache on errors and disconnects.
Who:   Created by the app factory and injected into the database wrappers,
       health route and metrics collector.
When:  First connect() happens lazily on the first request that needs it;
       close() runs at application shutdown.

Readiness State Machine:
    DISCONNECTED → CONNECTING → CONNECTED → DISCONNECTING → DISCONNECTED
                        │            │             │
                        └→ DISCONNECTED (failure)  └→ CONNECTED (failed teardown)
                                     └→ DISCONNECTED (error / disconnect event)

Connection Pooling Strategy:
    pool_size=max_pool_size, max_overflow=0:  hard ceiling on pooled connections
    pool_timeout=server_selection_timeout:    how long to wait for a free connection
    pool_recycle=max_idle_time:               drop connections older than this
    pool_pre_ping=True:                       liveness check on checkout
    connect_args={"timeout": socket_timeout}: driver-level connect timeout
"""

import asyncio
import logging
from enum import IntEnum
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import event, text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import QueuePool

from serverkit.config import Settings
from serverkit.exceptions import DatabaseConnectionError, InvalidStateTransitionError
from serverkit.schemas.status import ConnectionStatus, PoolStats

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Readiness State
# ══════════════════════════════════════════════════════════════════════════

class ReadyState(IntEnum):
    """Numeric readiness states, as reported in ConnectionStatus.readyState."""

    DISCONNECTED = 0
    CONNECTED = 1
    CONNECTING = 2
    DISCONNECTING = 3


STATE_NAMES: Dict[int, str] = {
    0: "disconnected",
    1: "connected",
    2: "connecting",
    3: "disconnecting",
}


def state_name(ready_state: int) -> str:
    """Maps a numeric readiness state to its name, 'unknown' if unmapped."""
    return STATE_NAMES.get(int(ready_state), "unknown")


class ConnectionStateMachine:
    """
    Tracks the readiness state of a ConnectionManager.

    Only the transitions listed in ALLOWED are legal; anything else raises
    InvalidStateTransitionError and leaves the state unchanged.
    """

    ALLOWED = {
        ReadyState.DISCONNECTED: {ReadyState.CONNECTING},
        ReadyState.CONNECTING: {ReadyState.CONNECTED, ReadyState.DISCONNECTED},
        ReadyState.CONNECTED: {ReadyState.DISCONNECTING, ReadyState.DISCONNECTED},
        ReadyState.DISCONNECTING: {ReadyState.DISCONNECTED, ReadyState.CONNECTED},
    }

    def __init__(self) -> None:
        self.state = ReadyState.DISCONNECTED

    def can_transition(self, target: ReadyState) -> bool:
        return target in self.ALLOWED[self.state]

    def transition(self, target: ReadyState) -> None:
        if not self.can_transition(target):
            raise InvalidStateTransitionError(
                current=state_name(self.state), requested=state_name(target)
            )
        logger.debug(
            "Connection state %s -> %s", state_name(self.state), state_name(target)
        )
        self.state = target


# ══════════════════════════════════════════════════════════════════════════
# Connection Options
# ══════════════════════════════════════════════════════════════════════════

class ConnectionOptions(BaseModel):
    """Static pooling configuration applied to every engine a manager builds."""

    model_config = ConfigDict(frozen=True)

    max_pool_size: int = 10
    server_selection_timeout_ms: int = 5000
    socket_timeout_ms: int = 45_000
    max_idle_time_ms: int = 30_000
    heartbeat_frequency_ms: int = 10_000

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConnectionOptions":
        return cls(
            max_pool_size=settings.db_max_pool_size,
            server_selection_timeout_ms=settings.db_server_selection_timeout_ms,
            socket_timeout_ms=settings.db_socket_timeout_ms,
            max_idle_time_ms=settings.db_max_idle_time_ms,
            heartbeat_frequency_ms=settings.db_heartbeat_frequency_ms,
        )

    def engine_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for create_async_engine()."""
        return {
            "pool_size": self.max_pool_size,
            "max_overflow": 0,
            "pool_timeout": self.server_selection_timeout_ms / 1000,
            "pool_recycle": self.max_idle_time_ms // 1000,
            "pool_pre_ping": True,
            "connect_args": {"timeout": self.socket_timeout_ms / 1000},
        }


# ══════════════════════════════════════════════════════════════════════════
# Connection Manager
# ══════════════════════════════════════════════════════════════════════════

EngineFactory = Callable[..., AsyncEngine]


class ConnectionManager:
    """
    Owns at most one cached AsyncEngine.

    Args:
        options:        Pooling options; defaults to ConnectionOptions().
        database_url:   Fixed URL. When None, DATABASE_URL is re-read from the
                        environment on every connection attempt.
        engine_factory: Builds the engine; create_async_engine by default.

    Usage:
        manager = ConnectionManager(ConnectionOptions.from_settings(settings))
        engine = await manager.connect()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        await manager.close()
    """

    def __init__(
        self,
        options: Optional[ConnectionOptions] = None,
        database_url: Optional[str] = None,
        engine_factory: EngineFactory = create_async_engine,
    ):
        self.options = options or ConnectionOptions()
        self._database_url = database_url
        self._engine_factory = engine_factory
        self._engine: Optional[AsyncEngine] = None
        self._stale_engine: Optional[AsyncEngine] = None
        self._url: Optional[URL] = None
        self._state = ConnectionStateMachine()
        self._lifecycle_lock = asyncio.Lock()
        self._awaiting_reconnect = False

    # ── Read accessors ────────────────────────────────────────────────────

    @property
    def engine(self) -> Optional[AsyncEngine]:
        """The cached engine, or None."""
        return self._engine

    @property
    def ready_state(self) -> ReadyState:
        return self._state.state

    def is_connected(self) -> bool:
        return self._state.state == ReadyState.CONNECTED

    def get_status(self) -> ConnectionStatus:
        ready_state = self._state.state
        return ConnectionStatus(
            state=state_name(ready_state),
            ready_state=int(ready_state),
            host=self._url.host if self._url is not None else None,
            name=self._url.database if self._url is not None else None,
        )

    def pool_stats(self) -> PoolStats:
        """Pooled connection counts for the cached engine (zeros when none)."""
        total = 0
        available = 0
        if self._engine is not None:
            pool = self._engine.pool
            if isinstance(pool, QueuePool):
                available = pool.checkedin()
                total = available + pool.checkedout()
        status = self.get_status()
        return PoolStats(
            total_connections=total,
            available_connections=available,
            ready_state=status.ready_state,
            host=status.host,
            name=status.name,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def _resolve_url(self) -> str:
        if self._database_url is not None:
            return self._database_url
        return Settings().database_url

    async def connect(self) -> AsyncEngine:
        """
        Return the cached engine, establishing a new one if needed.

        Raises:
            DatabaseConnectionError: engine creation or verification failed.
                The cache is left empty and the state DISCONNECTED.
        """
        async with self._lifecycle_lock:
            if self._engine is not None and self.is_connected():
                logger.debug("Using cached database connection")
                return self._engine

            if self._state.state != ReadyState.DISCONNECTED:
                # Cached engine exists but is not ready: drop the reference
                self._state.transition(ReadyState.DISCONNECTED)
            self._engine = None
            if self._stale_engine is not None:
                await self._dispose_quietly(self._stale_engine)
                self._stale_engine = None
            self._state.transition(ReadyState.CONNECTING)

            engine: Optional[AsyncEngine] = None
            try:
                url = self._resolve_url()
                logger.info("Connecting to database...")
                engine = self._engine_factory(url, **self.options.engine_kwargs())
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
            except Exception as e:
                logger.error("Database connection failed: %s", str(e))
                self._engine = None
                self._state.transition(ReadyState.DISCONNECTED)
                if engine is not None:
                    await self._dispose_quietly(engine)
                raise DatabaseConnectionError(
                    message=f"Could not connect to the database: {e}",
                    context={"error": str(e)},
                ) from e

            self._engine = engine
            self._url = engine.url
            self._awaiting_reconnect = False
            self._register_observers(engine)
            self._state.transition(ReadyState.CONNECTED)
            logger.info(
                "Database connected successfully (host=%s, name=%s)",
                self._url.host,
                self._url.database,
            )
            return engine

    async def close(self) -> None:
        """
        Dispose the cached engine, if any.

        Disposal errors are logged and swallowed; the cache is kept in that case.
        Holds the same lock as connect(), so a connect() issued while dispose()
        is pending waits for it and then builds a fresh engine.
        """
        async with self._lifecycle_lock:
            if self._engine is None:
                return

            engine = self._engine
            if self._state.state == ReadyState.CONNECTED:
                self._state.transition(ReadyState.DISCONNECTING)
            try:
                await engine.dispose()
            except Exception as e:
                logger.error("Error closing database connection: %s", str(e))
                if self._state.state == ReadyState.DISCONNECTING:
                    self._state.transition(ReadyState.CONNECTED)
                return

            if self._engine is engine:
                self._engine = None
            if self._state.state == ReadyState.DISCONNECTING:
                self._state.transition(ReadyState.DISCONNECTED)
            logger.info("Database connection closed")

    async def _dispose_quietly(self, engine: AsyncEngine) -> None:
        try:
            await engine.dispose()
        except Exception as e:
            logger.warning("Failed to dispose unusable engine: %s", str(e))

    # ── Observers ─────────────────────────────────────────────────────────

    def on_error(self, error: BaseException) -> None:
        """Connection-level error: log and empty the cache."""
        logger.error("Database connection error: %s", str(error))
        self._invalidate()

    def on_disconnected(self) -> None:
        """Connection lost: log and empty the cache."""
        logger.warning("Database disconnected")
        self._invalidate()

    def on_reconnected(self) -> None:
        logger.info("Database reconnected")
        self._awaiting_reconnect = False

    def _invalidate(self) -> None:
        if self._engine is not None:
            self._stale_engine = self._engine
        self._engine = None
        self._awaiting_reconnect = True
        if self._state.can_transition(ReadyState.DISCONNECTED):
            self._state.transition(ReadyState.DISCONNECTED)

    def _register_observers(self, engine: AsyncEngine) -> None:
        """
        Hooks SQLAlchemy engine and pool events to the observer methods.

        handle_error: only disconnect-class errors invalidate the cache.
        invalidate:   the pool discarded a connection as unusable.
        connect:      a new DBAPI connection after a disconnect is a reconnect.

        handle_error and invalidate are ignored once `engine` is no longer
        cached. The connect hook only ever fires for an engine _invalidate()
        has already dropped (connect() clears _awaiting_reconnect before it
        registers these hooks), so on_reconnected() only logs; it never
        restores the cache. The next connect() builds a new engine.
        """
        sync_engine = engine.sync_engine

        def handle_error(context) -> None:
            if context.is_disconnect and self._engine is engine:
                self.on_error(context.original_exception)

        def handle_invalidate(dbapi_connection, connection_record, exception) -> None:
            if self._engine is engine:
                self.on_disconnected()

        def handle_connect(dbapi_connection, connection_record) -> None:
            if self._awaiting_reconnect and self._url == engine.url:
                self.on_reconnected()

        event.listen(sync_engine, "handle_error", handle_error)
        event.listen(sync_engine, "invalidate", handle_invalidate)
        event.listen(sync_engine, "connect", handle_connect)
