import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cardidentity.api import cards_router, health_router, metrics_router
from cardidentity.config import settings
from cardidentity.context import EngineContext

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the engine context for the lifetime of the application."""
    engine = EngineContext(settings)
    await engine.start()
    app.state.engine = engine
    try:
        yield
    finally:
        await engine.close()
        logger.info("Engine context closed")


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("cardidentity"),
    lifespan=lifespan,
)

app.include_router(cards_router)
app.include_router(health_router)
app.include_router(metrics_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
