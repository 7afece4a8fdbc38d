"""
Token resolution.

Maps TokenPart references (possibly pointing at stale printings) to the
latest printing of each distinct token identity.

Per token:
1. Find the linked printing: embedded id, then the id or set/number in
   its URI, then its name (as a token query through the tiered resolver)
2. Collect every known printing sharing the linked oracle_id in the
   requested language and keep the most recently released one
3. Emit it unless an earlier token already produced the same identity

Tokens whose identity cannot be resolved are passed through unchanged.
"""

import asyncio
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from cardidentity.db.store import CardStore
from cardidentity.models.card import DEFAULT_LANGUAGE, CardQuery, CardRecord, TokenPart
from cardidentity.models.failure import (
    ResolutionResult,
    ResolutionStatus,
    StoreUnavailableError,
    Tier,
    UpstreamError,
)
from cardidentity.parsers.scryfall import parse_token_uri, token_part_from_card
from cardidentity.services.resolver import TieredResolver
from cardidentity.services.scryfall_client import ScryfallClient

logger = logging.getLogger(__name__)

_NUMBER_PARTS = re.compile(r"(\d+)|(\D+)")


def _collector_number_key(number: str | None) -> tuple[tuple[int, int, str], ...]:
    """Natural sort key: "10a" > "9b" > "9"."""
    if not number:
        return ()
    return tuple(
        (1, int(digits), "") if digits else (0, 0, text.lower())
        for digits, text in _NUMBER_PARTS.findall(number)
    )


def latest_printing(printings: Iterable[CardRecord]) -> CardRecord | None:
    """Most recent release; ties go to the later set code, then collector number."""
    return max(
        printings,
        key=lambda card: (
            card.released_at or "",
            (card.set_code or "").lower(),
            _collector_number_key(card.collector_number),
            card.id,
        ),
        default=None,
    )


def _source_key(token: TokenPart) -> str:
    return f"id:{token.id}" if token.id else f"name:{token.name.lower()}"


@dataclass
class TokenResolution:
    """
    Outcome of resolving a list of token references.

    Attributes:
        tokens: Latest printing per distinct identity, in input order
        cancelled: True if resolution stopped early on request; tokens
            then holds only those finished before the stop
    """

    tokens: list[TokenPart] = field(default_factory=list)
    cancelled: bool = False


class TokenResolver:
    """Resolves token references to their latest printings."""

    def __init__(
        self,
        store: CardStore,
        resolver: TieredResolver,
        upstream: ScryfallClient,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.upstream = upstream

    async def resolve(
        self,
        tokens: Iterable[TokenPart],
        lang: str = DEFAULT_LANGUAGE,
        cancel: asyncio.Event | None = None,
    ) -> TokenResolution:
        """
        Latest printing per distinct identity, in input order.

        Nameless tokens are skipped. When cancel is set, the token being
        worked on is dropped and no further tokens are attempted.
        """
        seen_sources: set[str] = set()
        seen_identities: set[str] = set()
        outcome = TokenResolution()

        for token in tokens:
            if cancel is not None and cancel.is_set():
                outcome.cancelled = True
                break
            if not token.name:
                continue

            source = _source_key(token)
            if source in seen_sources:
                continue
            seen_sources.add(source)

            linked = await self._linked_card(token, lang, cancel)
            if linked.status is ResolutionStatus.CANCELLED:
                outcome.cancelled = True
                break

            latest = await self._latest_for(linked.card, lang) if linked.card is not None else None
            if cancel is not None and cancel.is_set():
                outcome.cancelled = True
                break

            if latest is not None:
                result = token_part_from_card(latest, token)
                identity = f"oracle:{latest.oracle_id}" if latest.oracle_id else _source_key(result)
            else:
                result = token
                identity = source

            if identity in seen_identities:
                continue
            seen_identities.add(identity)
            outcome.tokens.append(result)

        if outcome.cancelled:
            logger.info("Token resolution cancelled after %d tokens", len(outcome.tokens))
        return outcome

    async def _by_id(self, card_id: str) -> ResolutionResult:
        try:
            card = await self.store.find_by_id(card_id)
        except StoreUnavailableError as e:
            logger.warning("Store lookup for token %s failed: %s", card_id, e.message)
            card = None
        if card is not None:
            return ResolutionResult.found(card, Tier.STORE)

        try:
            card = await self.upstream.card_by_id(card_id)
        except UpstreamError as e:
            logger.warning("Upstream lookup for token %s failed: %s", card_id, e.message)
            return ResolutionResult.not_found()
        if card is None:
            return ResolutionResult.not_found()
        await self.store.upsert(card)
        return ResolutionResult.found(card, Tier.UPSTREAM)

    async def _linked_card(
        self,
        token: TokenPart,
        lang: str,
        cancel: asyncio.Event | None,
    ) -> ResolutionResult:
        hints = parse_token_uri(token.uri)
        uri_id = hints.get("id")
        for card_id in (token.id, uri_id if uri_id != token.id else None):
            if not card_id:
                continue
            result = await self._by_id(card_id)
            if cancel is not None and cancel.is_set():
                return ResolutionResult.cancelled()
            if result.is_found:
                return result

        queries = []
        if "set" in hints and "number" in hints:
            queries.append(
                CardQuery(
                    name=token.name,
                    set_code=hints["set"],
                    collector_number=hints["number"],
                    lang=lang,
                    is_token=True,
                )
            )
        queries.append(CardQuery(name=token.name, lang=lang, is_token=True))

        for query in queries:
            try:
                result = await self.resolver.resolve(query, cancel)
            except UpstreamError as e:
                logger.warning("Token lookup %s failed: %s", query.key, e.message)
                continue
            if result.status is not ResolutionStatus.NOT_FOUND:
                return result
        return ResolutionResult.not_found()

    async def _latest_for(self, linked: CardRecord, lang: str) -> CardRecord:
        if not linked.oracle_id:
            return linked

        printings: dict[str, CardRecord] = {linked.id: linked}
        try:
            for card in await self.store.find_by_oracle_id(linked.oracle_id):
                printings.setdefault(card.id, card)
            imported = await self.store.last_import_time() is not None
        except StoreUnavailableError as e:
            logger.warning("Store printings lookup failed for %s: %s", linked.oracle_id, e.message)
            imported = False

        # Without a bulk import the store only knows printings fetched on demand
        if not imported:
            try:
                for card in await self.upstream.prints(linked.oracle_id):
                    printings.setdefault(card.id, card)
            except UpstreamError as e:
                logger.warning("Upstream printings lookup failed for %s: %s", linked.oracle_id, e.message)

        lang = lang.lower()
        matching = [
            card
            for card in printings.values()
            if card.oracle_id == linked.oracle_id and card.lang.lower() == lang
        ]
        return latest_printing(matching) or linked
