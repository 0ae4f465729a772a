"""
ServerKit — Performance Utilities
==================================

What:  Stateless helpers for process metrics, size parsing, batched async
       processing and timeouts.
Who:   Used by the middleware (parse_size), the /metrics route
       (collect_metrics) and application code (batch_process, with_timeout).

Units:
    Memory figures are megabytes rounded to the nearest integer.
    CPU figures are cumulative seconds. Timeouts are milliseconds.
"""

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, List, Optional, TypeVar

import psutil

from serverkit.config import SIZE_PATTERN
from serverkit.exceptions import OperationTimeoutError
from serverkit.schemas.status import CpuUsage, MemoryUsage, MetricsSnapshot, PoolStats

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

BYTES_PER_MB = 1024 * 1024

SIZE_UNITS = {
    "b": 1,
    "kb": 1024,
    "mb": 1024 * 1024,
    "gb": 1024 * 1024 * 1024,
}


# ══════════════════════════════════════════════════════════════════════════
# Process Snapshot
# ══════════════════════════════════════════════════════════════════════════

def _to_mb(value: int) -> int:
    return round(value / BYTES_PER_MB)


def get_memory_usage(process: Optional[psutil.Process] = None) -> MemoryUsage:
    """
    Memory snapshot of the current process, in megabytes.

    uss is only reported where psutil can read it (Linux, macOS, Windows);
    it needs memory_full_info(), which can be denied for other processes.
    """
    process = process or psutil.Process()
    info = process.memory_info()
    uss = None
    try:
        uss = _to_mb(process.memory_full_info().uss)
    except (psutil.AccessDenied, AttributeError):
        logger.debug("USS not available for pid %s", process.pid)
    return MemoryUsage(rss=_to_mb(info.rss), vms=_to_mb(info.vms), uss=uss)


def get_cpu_usage(process: Optional[psutil.Process] = None) -> CpuUsage:
    times = (process or psutil.Process()).cpu_times()
    return CpuUsage(user=times.user, system=times.system)


def get_uptime(process: Optional[psutil.Process] = None) -> float:
    """Seconds since the process was created."""
    created = (process or psutil.Process()).create_time()
    return round(time.time() - created, 2)


def collect_metrics(manager) -> MetricsSnapshot:
    """
    Collect memory, uptime, CPU and connection pool metrics.

    Args:
        manager: ConnectionManager whose pool is reported.
    """
    process = psutil.Process()
    return MetricsSnapshot(
        memory=get_memory_usage(process),
        uptime=get_uptime(process),
        cpu_usage=get_cpu_usage(process),
        connection_pool=manager.pool_stats() if manager is not None else PoolStats(ready_state=0),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


# ══════════════════════════════════════════════════════════════════════════
# Size Parsing
# ══════════════════════════════════════════════════════════════════════════

def parse_size(size: str) -> int:
    """
    Parse a human size string into bytes.

    Examples:
        parse_size("10mb")  → 10485760
        parse_size("1.5kb") → 1536
        parse_size("512")   → 512 (bytes when no unit is given)
        parse_size("bogus") → 0
    """
    match = SIZE_PATTERN.match(size.lower())
    if not match:
        return 0
    value = float(match.group(1))
    unit = match.group(2) or "b"
    return int(value * SIZE_UNITS[unit])


# ══════════════════════════════════════════════════════════════════════════
# Async Helpers
# ══════════════════════════════════════════════════════════════════════════

async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def batch_process(
    items: Iterable[T],
    batch_size: int = 100,
    processor: Optional[Callable[[T], Any]] = None,
) -> List[Any]:
    """
    Process items in fixed-size batches.

    Items within a batch run concurrently; batches run one after another.
    Results keep the input order. The processor may be a plain function or
    return an awaitable.

    Raises:
        ValueError: batch_size < 1 or no processor given.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    if processor is None:
        raise ValueError("processor is required")

    items = list(items)
    results: List[Any] = []
    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        batch_results = await asyncio.gather(
            *(_resolve(processor(item)) for item in batch)
        )
        results.extend(batch_results)
        logger.debug(
            "Processed batch %d-%d of %d", start, start + len(batch), len(items)
        )
    return results


def _consume_result(task: "asyncio.Future[Any]") -> None:
    # Abandoned operations still settle; retrieve the outcome so asyncio
    # does not warn about an unretrieved exception.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Operation finished after its timeout with error: %s", exc)


async def with_timeout(operation: Awaitable[R], timeout_ms: int = 10_000) -> R:
    """
    Race an awaitable against a timer.

    The operation is not cancelled when the timer wins; only the caller
    stops waiting for it.

    Raises:
        OperationTimeoutError: the operation did not finish within timeout_ms.
    """
    task = asyncio.ensure_future(operation)
    done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    if task in done:
        return task.result()

    task.add_done_callback(_consume_result)
    logger.warning("Operation timed out after %dms", timeout_ms)
    raise OperationTimeoutError(timeout_ms=timeout_ms)
