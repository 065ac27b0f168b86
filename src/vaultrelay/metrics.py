"""Simple metrics and telemetry for the relay.

This module provides:
- Request timing (fed by the API middleware)
- Store operation timing, with a count of slow operations
- Rate limit rejection counters, by limit scope
- Simple in-memory metrics that can be exposed via an endpoint

Metrics are designed to be lightweight and not require external dependencies.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from functools import wraps
from threading import Lock
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

# Type variable for generic function decoration
F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_SLOW_OPERATION_MS = 100


@dataclass
class TimingStats:
    """Running count, mean and worst case for one timed name."""

    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    slow: int = 0

    def record(self, duration_ms: float, slow: bool = False) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.max_ms = max(self.max_ms, duration_ms)
        if slow:
            self.slow += 1

    def to_dict(self) -> dict:
        avg_ms = self.total_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "avg_ms": round(avg_ms, 2),
            "max_ms": round(self.max_ms, 2),
            "slow": self.slow,
        }


@dataclass
class Metrics:
    """Global metrics collector.

    ``slow_operation_ms`` is the threshold past which a store operation is
    counted as slow and logged. The app lifespan sets it from RelayOptions.
    """

    slow_operation_ms: float = DEFAULT_SLOW_OPERATION_MS
    _lock: Lock = field(default_factory=Lock)
    store_operations: dict[str, TimingStats] = field(default_factory=lambda: defaultdict(TimingStats))
    request_stats: dict[str, TimingStats] = field(default_factory=lambda: defaultdict(TimingStats))
    rate_limited: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _start_time: float = field(default_factory=time.time)

    def record_store_operation(self, operation: str, duration_ms: float) -> bool:
        """Record a store operation timing. Returns True if it was slow."""
        slow = duration_ms > self.slow_operation_ms
        with self._lock:
            self.store_operations[operation].record(duration_ms, slow)
        return slow

    def record_request(self, endpoint: str, duration_ms: float) -> None:
        with self._lock:
            self.request_stats[endpoint].record(duration_ms)

    def record_rate_limited(self, scope: str) -> None:
        with self._lock:
            self.rate_limited[scope] += 1

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self._start_time

    def to_dict(self) -> dict:
        """Export metrics as a dictionary."""
        with self._lock:
            return {
                "uptime_seconds": round(self.uptime_seconds, 1),
                "store_operations": {k: v.to_dict() for k, v in self.store_operations.items()},
                "requests": {k: v.to_dict() for k, v in self.request_stats.items()},
                "rate_limited": dict(self.rate_limited),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self.store_operations.clear()
            self.request_stats.clear()
            self.rate_limited.clear()
            self._start_time = time.time()
            self.slow_operation_ms = DEFAULT_SLOW_OPERATION_MS


# Global metrics instance
metrics = Metrics()


def timed_operation(operation_name: str) -> Callable[[F], F]:
    """Decorator to time a function and record it as a store operation.

    Usage:
        @timed_operation("post_message")
        def post_message(self, message_id, vault_id, blob) -> int:
            ...
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                duration_ms = (time.perf_counter() - start) * 1000
                if metrics.record_store_operation(operation_name, duration_ms):
                    logger.warning(f"Slow operation: {operation_name} took {duration_ms:.1f}ms")

        return wrapper  # type: ignore

    return decorator
