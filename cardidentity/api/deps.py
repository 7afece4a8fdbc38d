"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from cardidentity.context import EngineContext


def get_engine(request: Request) -> EngineContext:
    """The EngineContext opened by the application lifespan."""
    engine: EngineContext = request.app.state.engine
    return engine


EngineDep = Annotated[EngineContext, Depends(get_engine)]
