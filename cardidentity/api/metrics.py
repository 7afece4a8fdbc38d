"""
Accelerator metrics endpoints.

Expose the MetricsCollector snapshot and degradation verdict, and allow
operators to reset counters after an outage is resolved.
"""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from cardidentity.api.deps import EngineDep
from cardidentity.config import DEGRADED_ERROR_RATE, DEGRADED_LATENCY_MS

router = APIRouter(prefix="/metrics", tags=["metrics"])


class EndpointStatResponse(BaseModel):
    endpoint: str
    avg_time: float
    count: int
    errors: int


class ErrorCount(BaseModel):
    error: str
    count: int


class MetricsResponse(BaseModel):
    """Derived accelerator metrics. Times in ms, rates in percent."""

    total_requests: int
    successful_requests: int
    failed_requests: int
    success_rate: float
    average_response_time: float
    min_response_time: float
    max_response_time: float
    cache_hit_rate: float
    error_rate: float
    degraded: bool
    top_errors: list[ErrorCount] = Field(default_factory=list)
    endpoint_stats: list[EndpointStatResponse] = Field(default_factory=list)


class MetricsHealthResponse(BaseModel):
    status: str
    degraded: bool
    accelerator_configured: bool
    average_response_time: float
    error_rate: float
    latency_threshold_ms: float = DEGRADED_LATENCY_MS
    error_rate_threshold: float = DEGRADED_ERROR_RATE


class MessageResponse(BaseModel):
    message: str


@router.get("", response_model=MetricsResponse)
async def get_metrics(engine: EngineDep) -> MetricsResponse:
    snapshot = engine.metrics.summarize()
    return MetricsResponse(
        total_requests=snapshot.total_requests,
        successful_requests=snapshot.successful_requests,
        failed_requests=snapshot.failed_requests,
        success_rate=snapshot.success_rate,
        average_response_time=snapshot.average_response_time,
        min_response_time=snapshot.min_response_time,
        max_response_time=snapshot.max_response_time,
        cache_hit_rate=snapshot.cache_hit_rate,
        error_rate=snapshot.error_rate,
        degraded=snapshot.degraded,
        top_errors=[ErrorCount(error=kind, count=count) for kind, count in snapshot.top_errors],
        endpoint_stats=[
            EndpointStatResponse(
                endpoint=stat.endpoint,
                avg_time=stat.avg_time,
                count=stat.count,
                errors=stat.errors,
            )
            for stat in snapshot.endpoint_stats
        ],
    )


@router.get("/health", response_model=MetricsHealthResponse)
async def metrics_health(engine: EngineDep) -> MetricsHealthResponse:
    """Degradation verdict as used by the resolver."""
    snapshot = engine.metrics.summarize()
    return MetricsHealthResponse(
        status="degraded" if snapshot.degraded else "healthy",
        degraded=snapshot.degraded,
        accelerator_configured=engine.accelerator.enabled,
        average_response_time=snapshot.average_response_time,
        error_rate=snapshot.error_rate,
    )


@router.post("/reset", response_model=MessageResponse)
async def reset_metrics(engine: EngineDep) -> MessageResponse:
    engine.metrics.reset()
    return MessageResponse(message="Metrics reset")


@router.post("/log", response_model=MessageResponse)
async def log_metrics(engine: EngineDep) -> MessageResponse:
    engine.metrics.log_summary()
    return MessageResponse(message="Metrics logged")
