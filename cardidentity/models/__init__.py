from cardidentity.models.card import (
    DEFAULT_LANGUAGE,
    FACE_SEPARATOR,
    CardFace,
    CardQuery,
    CardRecord,
    ImportStats,
    RelatedPart,
    TokenPart,
)
from cardidentity.models.failure import (
    EngineError,
    FailureKind,
    ParseError,
    ResolutionResult,
    ResolutionStatus,
    StoreUnavailableError,
    Tier,
    TierUnavailableError,
    UpstreamError,
)

__all__ = [
    "DEFAULT_LANGUAGE",
    "FACE_SEPARATOR",
    "CardFace",
    "CardQuery",
    "CardRecord",
    "EngineError",
    "FailureKind",
    "ImportStats",
    "ParseError",
    "RelatedPart",
    "ResolutionResult",
    "ResolutionStatus",
    "StoreUnavailableError",
    "Tier",
    "TierUnavailableError",
    "TokenPart",
    "UpstreamError",
]
