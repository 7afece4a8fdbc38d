"""
Failure taxonomy for card identity resolution.

Outcomes:
- Found: a tier produced a complete card
- NotFound: no tier produced a match (a value, not an exception)
- Cancelled: caller aborted; asyncio.CancelledError propagates untouched

Exceptions:
- TierUnavailableError: a tier could not be reached (recorded, never surfaced alone)
- StoreUnavailableError: the persistent store failed (treated as a tier miss)
- UpstreamError: the live API answered with an error (surfaced, retryable)
- ParseError: malformed data from a tier or the bulk dump (fatal for the operation)
"""

from dataclasses import dataclass
from enum import Enum

from cardidentity.models.card import CardRecord


class FailureKind(str, Enum):
    """Classification of failure types."""

    NOT_FOUND = "not_found"
    TIER_UNAVAILABLE = "tier_unavailable"
    STORE_UNAVAILABLE = "store_unavailable"
    UPSTREAM_ERROR = "upstream_error"
    PARSE_ERROR = "parse_error"
    CANCELLED = "cancelled"


class Tier(str, Enum):
    """Fallback layers, cheapest first."""

    ACCELERATOR = "accelerator"
    STORE = "store"
    UPSTREAM = "upstream"


class ResolutionStatus(str, Enum):
    """Terminal states of a resolution request."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class ResolutionResult:
    """Result of resolving one identity query."""

    status: ResolutionStatus
    card: CardRecord | None = None
    tier: Tier | None = None

    @classmethod
    def found(cls, card: CardRecord, tier: Tier) -> "ResolutionResult":
        return cls(status=ResolutionStatus.FOUND, card=card, tier=tier)

    @classmethod
    def not_found(cls) -> "ResolutionResult":
        return cls(status=ResolutionStatus.NOT_FOUND)

    @classmethod
    def cancelled(cls) -> "ResolutionResult":
        return cls(status=ResolutionStatus.CANCELLED)

    @property
    def is_found(self) -> bool:
        return self.status is ResolutionStatus.FOUND


class EngineError(Exception):
    """
    Base class for classified engine failures.

    Subclass this for errors where the engine knows exactly what went wrong.
    """

    kind: FailureKind = FailureKind.UPSTREAM_ERROR

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class TierUnavailableError(EngineError):
    """A tier could not be reached or answered unusably."""

    kind = FailureKind.TIER_UNAVAILABLE

    def __init__(self, tier: Tier, message: str, detail: str | None = None):
        self.tier = tier
        super().__init__(message, detail)


class StoreUnavailableError(EngineError):
    """
    The persistent store could not serve the request.

    Distinct from "not found": callers fall through to the next tier.
    """

    kind = FailureKind.STORE_UNAVAILABLE


class UpstreamError(EngineError):
    """
    The live upstream API was reached but failed.

    Surfaced to callers; retryable for transport errors, 429 and 5xx.
    """

    kind = FailureKind.UPSTREAM_ERROR

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, detail)

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class ParseError(EngineError):
    """Malformed data from a tier or from the bulk dump."""

    kind = FailureKind.PARSE_ERROR
