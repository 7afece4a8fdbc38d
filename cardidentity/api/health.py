"""
Health check endpoints.

Liveness and readiness probes; readiness checks the card store.
"""

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from cardidentity.api.deps import EngineDep
from cardidentity.models.failure import StoreUnavailableError

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Liveness probe.

    Returns healthy if the service is running.
    Does not check dependencies.
    """
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(response: Response, engine: EngineDep) -> HealthResponse:
    """
    Readiness probe.

    Returns 503 if the card store cannot be queried.
    """
    try:
        await engine.store.count()
    except StoreUnavailableError:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database="disconnected")
    return HealthResponse(status="ready", database="connected")
