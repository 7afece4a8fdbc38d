"""
Tiered card identity resolution.

Resolution order, cheapest first:
1. Remote accelerator (only if configured, healthy by metrics and
   answering the probe; English queries only)
2. Persistent store via the hot cache
3. Live upstream API (rate limited), written back to the store

INVARIANTS:
- Accelerator and store failures are logged and fall through, never raised
- Exhausting every tier cleanly yields NOT_FOUND, a value
- An upstream failure on the last tier raises UpstreamError
- Cooperative cancellation stops further tier attempts and yields CANCELLED;
  task cancellation (asyncio.CancelledError) propagates untouched
"""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from cardidentity.config import ACCELERATOR_CONCURRENCY
from cardidentity.db.store import CardStore
from cardidentity.models.card import DEFAULT_LANGUAGE, CardQuery, CardRecord
from cardidentity.models.failure import (
    ResolutionResult,
    StoreUnavailableError,
    Tier,
    TierUnavailableError,
    UpstreamError,
)
from cardidentity.services.accelerator import AcceleratorClient
from cardidentity.services.scoring import pick_best
from cardidentity.services.scryfall_client import ScryfallClient

logger = logging.getLogger(__name__)


@dataclass
class BatchResolution:
    """
    Outcome of resolving many queries at once.

    Attributes:
        cards: Query key -> resolved card
        tiers: Query key -> tier that answered
        not_found: Queries no tier could answer
        failed: Query key -> upstream error for that query
        used_accelerator: True if the accelerator tier was consulted
        cancelled: True if the batch stopped early on request
    """

    cards: dict[str, CardRecord] = field(default_factory=dict)
    tiers: dict[str, Tier] = field(default_factory=dict)
    not_found: list[CardQuery] = field(default_factory=list)
    failed: dict[str, UpstreamError] = field(default_factory=dict)
    used_accelerator: bool = False
    cancelled: bool = False

    def add(self, query: CardQuery, card: CardRecord, tier: Tier) -> None:
        self.cards[query.key] = card
        self.tiers[query.key] = tier

    def index(self) -> dict[str, CardRecord]:
        """
        Cards keyed for caller lookup.

        Keys are the lower-cased name, "set:number" and each face name.
        The first card to claim a key keeps it.
        """
        indexed: dict[str, CardRecord] = {}
        for card in self.cards.values():
            keys = [card.name.lower()]
            if card.set_code and card.collector_number:
                keys.append(f"{card.set_code}:{card.collector_number}".lower())
            keys.extend(face.lower() for face in card.face_names())
            for key in keys:
                indexed.setdefault(key, card)
        return indexed


def _is_cancelled(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def _matches(query: CardQuery, card: CardRecord) -> bool:
    if query.is_exact:
        return (card.set_code or "").lower() == (query.set_code or "").lower() and (
            card.collector_number or ""
        ).lower() == (query.collector_number or "").lower()
    name = query.name.strip().lower()
    return (
        card.name.lower() == name
        or card.front_face_name.lower() == name
        or name in (face.lower() for face in card.face_names())
    )


class TieredResolver:
    """Resolves identity queries through accelerator, store and upstream tiers."""

    def __init__(
        self,
        store: CardStore,
        upstream: ScryfallClient,
        accelerator: AcceleratorClient | None = None,
    ) -> None:
        self.store = store
        self.upstream = upstream
        self.accelerator = accelerator

    # --- Single queries ---

    async def resolve(
        self,
        query: CardQuery,
        cancel: asyncio.Event | None = None,
    ) -> ResolutionResult:
        """
        Resolve one query through the tiers.

        Raises:
            UpstreamError: The live tier was needed and failed
        """
        if _is_cancelled(cancel):
            return ResolutionResult.cancelled()

        if await self._accelerator_ready(query.lang):
            card = await self._try_accelerator(query)
            if card is not None:
                logger.debug("Resolved %s via accelerator", query.key)
                return ResolutionResult.found(card, Tier.ACCELERATOR)
            if _is_cancelled(cancel):
                return ResolutionResult.cancelled()

        card = await self._try_store(query)
        if card is not None:
            logger.debug("Resolved %s via store", query.key)
            return ResolutionResult.found(card, Tier.STORE)
        if _is_cancelled(cancel):
            return ResolutionResult.cancelled()

        card = await self._fetch_upstream(query)
        if card is None:
            logger.info("No tier could resolve %s", query.key)
            return ResolutionResult.not_found()

        await self.store.upsert(card)
        logger.debug("Resolved %s via upstream", query.key)
        return ResolutionResult.found(card, Tier.UPSTREAM)

    async def resolve_by_name(
        self,
        name: str,
        lang: str = DEFAULT_LANGUAGE,
        is_token: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> ResolutionResult:
        return await self.resolve(CardQuery(name=name, lang=lang, is_token=is_token), cancel)

    async def resolve_by_set_number(
        self,
        set_code: str,
        collector_number: str,
        lang: str = DEFAULT_LANGUAGE,
        cancel: asyncio.Event | None = None,
    ) -> ResolutionResult:
        query = CardQuery(set_code=set_code, collector_number=collector_number, lang=lang)
        return await self.resolve(query, cancel)

    # --- Tiers ---

    async def _accelerator_ready(self, lang: str) -> bool:
        if self.accelerator is None or not self.accelerator.enabled:
            return False
        if (lang or DEFAULT_LANGUAGE).lower() != DEFAULT_LANGUAGE:
            return False
        return await self.accelerator.is_healthy()

    async def _try_accelerator(self, query: CardQuery) -> CardRecord | None:
        if self.accelerator is None:
            return None
        try:
            return await self.accelerator.fetch_one(query)
        except TierUnavailableError as e:
            logger.warning("Accelerator lookup failed for %s: %s", query.key, e.message)
            return None

    async def _try_store(self, query: CardQuery) -> CardRecord | None:
        try:
            if query.set_code and query.collector_number:
                return await self.store.find_by_set_number_lang(
                    query.set_code, query.collector_number, query.lang
                )
            return await self.store.lookup_by_name(query.name, query.lang)
        except StoreUnavailableError as e:
            logger.warning("Store lookup failed for %s: %s", query.key, e.message)
            return None

    async def _fetch_upstream(self, query: CardQuery) -> CardRecord | None:
        """Live lookup. Raises UpstreamError."""
        if query.set_code and query.collector_number:
            return await self.upstream.card_by_set_number(
                query.set_code, query.collector_number, query.lang
            )

        name = query.name.strip().replace('"', "")
        lang = (query.lang or DEFAULT_LANGUAGE).lower()
        candidates = await self.upstream.search(
            f'!"{name}" lang:{lang}', unique="prints", include_extras=query.is_token
        )
        candidates = [card for card in candidates if card.lang.lower() == lang]
        best = pick_best(candidates, name)
        if best is not None:
            return best

        if lang == DEFAULT_LANGUAGE:
            return await self.upstream.named(fuzzy=name)
        return None

    # --- Batches ---

    async def resolve_batch(
        self,
        queries: Iterable[CardQuery],
        cancel: asyncio.Event | None = None,
    ) -> BatchResolution:
        """
        Resolve many queries, forwarding only accelerator misses onward.

        Duplicate queries (same normalized key) are resolved once. Upstream
        failures are reported per query in the result instead of raised.
        """
        unique: dict[str, CardQuery] = {}
        for query in queries:
            if query.is_exact or query.name.strip():
                unique.setdefault(query.key, query)

        result = BatchResolution()
        if not unique:
            return result

        pending = list(unique.values())
        eligible = [q for q in pending if (q.lang or DEFAULT_LANGUAGE).lower() == DEFAULT_LANGUAGE]
        misses = [q for q in pending if q not in eligible]

        if eligible and await self._accelerator_ready(DEFAULT_LANGUAGE):
            result.used_accelerator = True
            semaphore = asyncio.Semaphore(ACCELERATOR_CONCURRENCY)

            async def lookup(query: CardQuery) -> tuple[CardQuery, CardRecord | None]:
                async with semaphore:
                    if _is_cancelled(cancel):
                        return query, None
                    return query, await self._try_accelerator(query)

            hits = 0
            for query, card in await asyncio.gather(*(lookup(q) for q in eligible)):
                if card is not None:
                    result.add(query, card, Tier.ACCELERATOR)
                    hits += 1
                else:
                    misses.append(query)
            logger.info("Accelerator answered %d of %d batch queries", hits, len(eligible))
        else:
            misses.extend(eligible)

        if _is_cancelled(cancel):
            result.cancelled = True
            return result

        if misses:
            await self._resolve_fallback_batch(misses, result, cancel)
        return result

    async def _resolve_fallback_batch(
        self,
        queries: list[CardQuery],
        result: BatchResolution,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Store tier per query, then upstream for what is left."""
        remaining: list[CardQuery] = []
        for query in queries:
            if _is_cancelled(cancel):
                result.cancelled = True
                return
            card = await self._try_store(query)
            if card is not None:
                result.add(query, card, Tier.STORE)
            else:
                remaining.append(query)

        if _is_cancelled(cancel):
            result.cancelled = True
            return
        if not remaining:
            return

        # The collection endpoint ignores language and token-only printings
        collectable = [
            q
            for q in remaining
            if not q.is_token and (q.lang or DEFAULT_LANGUAGE).lower() == DEFAULT_LANGUAGE
        ]
        individual = [q for q in remaining if q not in collectable]

        fetched: list[CardRecord] = []
        if collectable:
            fetched.extend(await self._collect(collectable, result))

        for query in individual:
            if _is_cancelled(cancel):
                result.cancelled = True
                break
            try:
                card = await self._fetch_upstream(query)
            except UpstreamError as e:
                logger.warning("Upstream lookup failed for %s: %s", query.key, e.message)
                result.failed[query.key] = e
                continue
            if card is None:
                result.not_found.append(query)
            else:
                result.add(query, card, Tier.UPSTREAM)
                fetched.append(card)

        if fetched:
            try:
                await self.store.upsert_batch(fetched)
            except StoreUnavailableError as e:
                logger.warning("Failed to cache %d fetched cards: %s", len(fetched), e.message)

    async def _collect(self, queries: list[CardQuery], result: BatchResolution) -> list[CardRecord]:
        identifiers = []
        for query in queries:
            if query.set_code and query.collector_number:
                identifiers.append(
                    {"set": query.set_code.lower(), "collector_number": query.collector_number}
                )
            else:
                identifiers.append({"name": query.name.strip()})

        try:
            found, not_found = await self.upstream.collection(identifiers)
        except UpstreamError as e:
            logger.warning("Upstream collection lookup failed: %s", e.message)
            for query in queries:
                result.failed[query.key] = e
            return []

        logger.debug("Collection lookup: %d found, %d not found", len(found), len(not_found))
        matched: list[CardRecord] = []
        for query in queries:
            card = next((c for c in found if _matches(query, c)), None)
            if card is None:
                result.not_found.append(query)
            else:
                result.add(query, card, Tier.UPSTREAM)
                matched.append(card)
        return matched
