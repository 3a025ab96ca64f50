"""Request timing for the generation endpoints.

For every request under a monitored prefix the ``performance`` logger
receives one structured record with the wall-clock time, the time spent
inside completion calls (summed over retries and fallbacks) and the
number of completion attempts.
"""

from __future__ import annotations

import time
import logging
from typing import Optional, Dict
from contextvars import ContextVar
from fastapi import Request

from talentquiz.core.config import settings

logger = logging.getLogger(__name__)
perf_logger = logging.getLogger("performance")

_MONITORED_PREFIXES = ("/ai", "/quiz-edit")

# Context variables for tracking timings across async operations.
# The LLM counters live in a mutable dict: the endpoint runs in a child
# task whose ContextVar.set() calls are invisible to the middleware.
_request_start_time: ContextVar[float] = ContextVar("request_start_time")
_llm_stats: ContextVar[Optional[Dict[str, float]]] = ContextVar("llm_stats", default=None)


def _stats() -> Dict[str, float]:
    stats = _llm_stats.get()
    if stats is None:
        stats = {"llm_time": 0.0, "llm_attempts": 0}
        _llm_stats.set(stats)
    return stats


def set_request_start_time() -> None:
    """Mark the start of request processing and reset the LLM counters."""
    _request_start_time.set(time.time())
    _llm_stats.set({"llm_time": 0.0, "llm_attempts": 0})


def get_request_elapsed_time() -> float:
    """Seconds since :func:`set_request_start_time`, or 0.0 outside a request."""
    try:
        start = _request_start_time.get()
        return time.time() - start
    except LookupError:
        return 0.0


def record_llm_time(seconds: float) -> None:
    """Add the duration of one completion attempt to the request total.

    Args:
        seconds: Elapsed time in seconds
    """
    stats = _stats()
    stats["llm_time"] += seconds
    stats["llm_attempts"] += 1
    logger.debug(f"LLM attempt completed in {seconds:.3f}s")


def get_performance_metrics() -> Dict[str, float]:
    """Snapshot of the current request: ``llm_time``, ``llm_attempts``, ``total_time``."""
    stats = _stats()
    return {
        "llm_time": stats["llm_time"],
        "llm_attempts": stats["llm_attempts"],
        "total_time": get_request_elapsed_time(),
    }


def log_performance_metrics(
    endpoint: str,
    method: str,
    status_code: int,
) -> None:
    """Log performance metrics in structured format."""
    metrics = get_performance_metrics()
    other_time = max(0.0, metrics["total_time"] - metrics["llm_time"])

    perf_logger.info(
        "request_performance",
        extra={
            "endpoint": endpoint,
            "method": method,
            "status_code": status_code,
            "total_time": round(metrics["total_time"], 3),
            "llm_time": round(metrics["llm_time"], 3),
            "llm_attempts": metrics["llm_attempts"],
            "other_time": round(other_time, 3),
        }
    )


async def performance_monitoring_middleware(request: Request, call_next):
    """Reset the per-request counters, run the endpoint, emit the timing record.

    In development the response also carries ``X-Response-Time`` and, when a
    completion ran, ``X-LLM-Time``.
    """
    set_request_start_time()

    response = await call_next(request)

    total_time = get_request_elapsed_time()

    if request.url.path.startswith(_MONITORED_PREFIXES):
        log_performance_metrics(
            endpoint=request.url.path,
            method=request.method,
            status_code=response.status_code,
        )

    if settings.ENVIRONMENT == "development":
        metrics = get_performance_metrics()
        response.headers["X-Response-Time"] = f"{total_time:.3f}s"
        if metrics["llm_time"] > 0:
            response.headers["X-LLM-Time"] = f"{metrics['llm_time']:.3f}s"

    return response


class PerformanceTimer:
    """Monotonic stopwatch used around each completion attempt.

    Example:
        with PerformanceTimer() as timer:
            await completer.complete(...)
        record_llm_time(timer.elapsed)
    """

    def __init__(self):
        self.start_time: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start_time
        return False

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed * 1000.0
