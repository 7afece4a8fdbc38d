"""
Card resolution API endpoints.

Thin HTTP surface over the tiered resolver, token resolver and store.
Not found maps to 404; upstream failures map to 502 with a retryable flag.
"""

from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from cardidentity.api.deps import EngineDep
from cardidentity.db.store import format_bytes
from cardidentity.models.card import DEFAULT_LANGUAGE, CardQuery, TokenPart
from cardidentity.models.failure import ResolutionResult, StoreUnavailableError, UpstreamError
from cardidentity.parsers.scryfall import card_to_scryfall

router = APIRouter(tags=["cards"])


class CardResponse(BaseModel):
    """A resolved card and the tier that answered."""

    tier: str
    card: dict[str, Any]


class TokenPartModel(BaseModel):
    name: str = ""
    id: str | None = None
    uri: str | None = None
    type_line: str | None = None


class TokenRequest(BaseModel):
    tokens: list[TokenPartModel] = Field(..., description="Token references to resolve")
    lang: str = DEFAULT_LANGUAGE


class TokenResponse(BaseModel):
    tokens: list[TokenPartModel] = Field(default_factory=list)
    cancelled: bool = False


class CardQueryModel(BaseModel):
    name: str = ""
    set_code: str | None = None
    collector_number: str | None = None
    lang: str = DEFAULT_LANGUAGE
    is_token: bool = False


class BatchRequest(BaseModel):
    queries: list[CardQueryModel] = Field(..., description="Identities to resolve")


class BatchResponse(BaseModel):
    """Cards keyed by lower-cased name, "set:number" and face names."""

    cards: dict[str, dict[str, Any]] = Field(default_factory=dict)
    not_found: list[CardQueryModel] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    used_accelerator: bool = False


class AutocompleteResponse(BaseModel):
    data: list[str] = Field(default_factory=list)


class CacheStatsResponse(BaseModel):
    cards: int
    size_bytes: int
    size: str
    hot_cache: dict[str, int]


def _upstream_failure(e: UpstreamError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"message": e.message, "retryable": e.retryable, "status_code": e.status_code},
    )


def _to_response(result: ResolutionResult, what: str) -> CardResponse:
    if not result.is_found or result.card is None or result.tier is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Card not found: {what}")
    return CardResponse(tier=result.tier.value, card=card_to_scryfall(result.card))


@router.get("/cards/autocomplete", response_model=AutocompleteResponse)
async def autocomplete(
    engine: EngineDep,
    q: Annotated[str, Query(description="Partial card name")] = "",
) -> AutocompleteResponse:
    try:
        return AutocompleteResponse(data=await engine.upstream.autocomplete(q))
    except UpstreamError as e:
        raise _upstream_failure(e) from e


@router.get("/cards/named", response_model=CardResponse)
async def card_by_name(
    engine: EngineDep,
    name: Annotated[str, Query(min_length=1, description="Card name")],
    lang: str = DEFAULT_LANGUAGE,
) -> CardResponse:
    """Best printing for a name."""
    try:
        result = await engine.resolver.resolve_by_name(name, lang)
    except UpstreamError as e:
        raise _upstream_failure(e) from e
    return _to_response(result, name)


@router.get("/cards/{set_code}/{collector_number}", response_model=CardResponse)
async def card_by_set_number(
    engine: EngineDep,
    set_code: str,
    collector_number: str,
    lang: str = DEFAULT_LANGUAGE,
) -> CardResponse:
    """Exact printing by set code, collector number and language."""
    try:
        result = await engine.resolver.resolve_by_set_number(set_code, collector_number, lang)
    except UpstreamError as e:
        raise _upstream_failure(e) from e
    return _to_response(result, f"{set_code}/{collector_number}/{lang}")


@router.post("/cards/batch", response_model=BatchResponse)
async def resolve_batch(engine: EngineDep, request: BatchRequest) -> BatchResponse:
    queries = [CardQuery(**query.model_dump()) for query in request.queries]
    result = await engine.resolver.resolve_batch(queries)
    return BatchResponse(
        cards={key: card_to_scryfall(card) for key, card in result.index().items()},
        not_found=[
            CardQueryModel(
                name=q.name,
                set_code=q.set_code,
                collector_number=q.collector_number,
                lang=q.lang,
                is_token=q.is_token,
            )
            for q in result.not_found
        ],
        failed=sorted(result.failed),
        used_accelerator=result.used_accelerator,
    )


@router.post("/cards/tokens", response_model=TokenResponse)
async def resolve_tokens(engine: EngineDep, request: TokenRequest) -> TokenResponse:
    """Latest printing per distinct token identity."""
    parts = [TokenPart(**token.model_dump()) for token in request.tokens]
    resolved = await engine.tokens.resolve(parts, lang=request.lang)
    return TokenResponse(
        tokens=[
            TokenPartModel(name=t.name, id=t.id, uri=t.uri, type_line=t.type_line)
            for t in resolved.tokens
        ],
        cancelled=resolved.cancelled,
    )


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(engine: EngineDep) -> CacheStatsResponse:
    try:
        count = await engine.store.count()
        size = await engine.store.size_bytes()
    except StoreUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message
        ) from e
    return CacheStatsResponse(
        cards=count,
        size_bytes=size,
        size=format_bytes(size),
        hot_cache=engine.hot_cache.stats(),
    )
