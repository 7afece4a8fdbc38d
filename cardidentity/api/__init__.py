from cardidentity.api.cards import router as cards_router
from cardidentity.api.health import router as health_router
from cardidentity.api.metrics import router as metrics_router

__all__ = [
    "cards_router",
    "health_router",
    "metrics_router",
]
