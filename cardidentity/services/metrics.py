"""
Accelerator performance metrics.

Tracks response times, cache hit rates and error rates for calls to the
remote accelerator tier, and derives a degradation verdict from them.

The verdict is re-evaluated from the counters on every call; there is no
open/half-open/closed breaker state.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from cardidentity.config import DEGRADED_ERROR_RATE, DEGRADED_LATENCY_MS

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class EndpointMetrics:
    """Running counters for one endpoint."""

    count: int = 0
    total_time: float = 0.0
    min_time: float = float("inf")
    max_time: float = 0.0
    errors: int = 0


@dataclass(frozen=True)
class EndpointStat:
    endpoint: str
    avg_time: float
    count: int
    errors: int


@dataclass(frozen=True)
class MetricsSnapshot:
    """Derived view of the counters. Rates are percentages."""

    total_requests: int
    successful_requests: int
    failed_requests: int
    success_rate: float
    average_response_time: float
    min_response_time: float
    max_response_time: float
    cache_hit_rate: float
    error_rate: float
    top_errors: list[tuple[str, int]] = field(default_factory=list)
    endpoint_stats: list[EndpointStat] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return (
            self.average_response_time > DEGRADED_LATENCY_MS
            or self.error_rate > DEGRADED_ERROR_RATE
        )


class MetricsCollector:
    """Counters for accelerator calls."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Zero all counters."""
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.total_response_time = 0.0
        self.min_response_time = float("inf")
        self.max_response_time = 0.0
        self.cache_hits = 0
        self.cache_misses = 0
        self.errors_by_type: dict[str, int] = {}
        self.endpoints: dict[str, EndpointMetrics] = {}

    def record_success(
        self,
        endpoint: str,
        latency_ms: float,
        cache_hit: bool | None = None,
    ) -> None:
        """Record a successful call."""
        self.total_requests += 1
        self.successful_requests += 1
        self.total_response_time += latency_ms
        self.min_response_time = min(self.min_response_time, latency_ms)
        self.max_response_time = max(self.max_response_time, latency_ms)

        if cache_hit is not None:
            if cache_hit:
                self.cache_hits += 1
            else:
                self.cache_misses += 1

        stats = self.endpoints.setdefault(endpoint, EndpointMetrics())
        stats.count += 1
        stats.total_time += latency_ms
        stats.min_time = min(stats.min_time, latency_ms)
        stats.max_time = max(stats.max_time, latency_ms)

    def record_failure(self, endpoint: str, error_kind: str) -> None:
        """Record a failed call."""
        self.total_requests += 1
        self.failed_requests += 1
        self.errors_by_type[error_kind] = self.errors_by_type.get(error_kind, 0) + 1

        stats = self.endpoints.setdefault(endpoint, EndpointMetrics())
        stats.errors += 1

    def summarize(self) -> MetricsSnapshot:
        """Derive the snapshot. Pure: counters are not modified."""
        total = self.total_requests

        avg = (
            self.total_response_time / self.successful_requests
            if self.successful_requests > 0
            else 0.0
        )
        success_rate = self.successful_requests / total * 100 if total > 0 else 100.0
        error_rate = self.failed_requests / total * 100 if total > 0 else 0.0

        cache_checks = self.cache_hits + self.cache_misses
        cache_hit_rate = self.cache_hits / cache_checks * 100 if cache_checks > 0 else 0.0

        top_errors = sorted(self.errors_by_type.items(), key=lambda kv: (-kv[1], kv[0]))[:5]

        endpoint_stats = [
            EndpointStat(
                endpoint=name,
                avg_time=stats.total_time / stats.count if stats.count > 0 else 0.0,
                count=stats.count,
                errors=stats.errors,
            )
            for name, stats in self.endpoints.items()
        ]
        endpoint_stats.sort(key=lambda s: (-s.count, s.endpoint))

        return MetricsSnapshot(
            total_requests=total,
            successful_requests=self.successful_requests,
            failed_requests=self.failed_requests,
            success_rate=success_rate,
            average_response_time=avg,
            min_response_time=0.0 if self.min_response_time == float("inf") else self.min_response_time,
            max_response_time=self.max_response_time,
            cache_hit_rate=cache_hit_rate,
            error_rate=error_rate,
            top_errors=top_errors,
            endpoint_stats=endpoint_stats,
        )

    def is_degraded(self) -> bool:
        """True iff average latency > 2000 ms or error rate > 5%."""
        return self.summarize().degraded

    async def track(self, endpoint: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run an accelerator call, recording its latency or failure.

        Exceptions are recorded by class name and re-raised.
        """
        start = time.perf_counter()
        try:
            result = await operation()
        except Exception as e:
            self.record_failure(endpoint, type(e).__name__)
            raise
        self.record_success(endpoint, (time.perf_counter() - start) * 1000)
        return result

    def log_summary(self) -> None:
        """Write the snapshot to the log."""
        summary = self.summarize()
        logger.info(
            "Accelerator metrics: %d requests, %.2f%% success, avg %.2fms "
            "(min %.2fms / max %.2fms), cache hit %.2f%%, error rate %.2f%%",
            summary.total_requests,
            summary.success_rate,
            summary.average_response_time,
            summary.min_response_time,
            summary.max_response_time,
            summary.cache_hit_rate,
            summary.error_rate,
        )
        for error_type, count in summary.top_errors:
            logger.info("  %s: %d", error_type, count)

        if summary.degraded:
            logger.warning("Accelerator performance degraded")
