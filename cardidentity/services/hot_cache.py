"""
In-process hot cache.

Memoizes three things for the lifetime of the process:
- Compiled lookup statements, keyed by SQL template text
- Resolved cards, keyed by normalized (set, number, lang)
- Chosen best matches for name lookups, keyed by normalized (name, lang)

INVARIANTS:
- Any successful card write clears both card maps in full
- A lookup that started before a clear never repopulates the cache
  (guarded by a generation counter)
"""

import json
import logging

from cachetools import LRUCache
from sqlalchemy import TextClause, text

from cardidentity.config import HOT_CACHE_CAPACITY, HOT_CACHE_MAX_ITEM_BYTES
from cardidentity.models.card import DEFAULT_LANGUAGE, CardRecord
from cardidentity.parsers.scryfall import card_to_scryfall

logger = logging.getLogger(__name__)


def card_key(set_code: str, collector_number: str, lang: str = DEFAULT_LANGUAGE) -> str:
    """Normalized hot-card key."""
    return f"{set_code.lower()}:{collector_number.lower()}:{lang.lower()}"


def name_key(name: str, lang: str = DEFAULT_LANGUAGE) -> str:
    """Normalized scoring-result key."""
    return f"{name.strip().lower()}:{lang.lower()}"


class HotCache:
    """RAM cache in front of the persistent store."""

    def __init__(
        self,
        capacity: int = HOT_CACHE_CAPACITY,
        max_item_bytes: int = HOT_CACHE_MAX_ITEM_BYTES,
    ) -> None:
        self.max_item_bytes = max_item_bytes
        self._statements: dict[str, TextClause] = {}
        self._cards: LRUCache[str, CardRecord] = LRUCache(maxsize=capacity)
        self._scoring: LRUCache[str, CardRecord] = LRUCache(maxsize=capacity)
        self._generation = 0

    # --- Statement cache ---

    def statement(self, sql: str) -> TextClause:
        """Get the compiled statement for a SQL template, building it once."""
        stmt = self._statements.get(sql)
        if stmt is None:
            stmt = text(sql)
            self._statements[sql] = stmt
        return stmt

    def clear_statements(self) -> None:
        self._statements.clear()

    @property
    def statement_count(self) -> int:
        return len(self._statements)

    # --- Card maps ---

    @property
    def generation(self) -> int:
        """Incremented on every invalidation."""
        return self._generation

    def _fits(self, key: str, card: CardRecord) -> bool:
        size = len(json.dumps(card_to_scryfall(card)))
        if size > self.max_item_bytes:
            logger.debug("Hot cache item %s too large (%d bytes), skipping", key, size)
            return False
        return True

    def get_card(self, key: str) -> CardRecord | None:
        return self._cards.get(key)

    def put_card(self, key: str, card: CardRecord, generation: int | None = None) -> None:
        """
        Cache a resolved card.

        Args:
            key: Normalized key from card_key()
            card: Card to cache
            generation: Generation observed when the lookup began; stale
                lookups are dropped
        """
        if generation is not None and generation != self._generation:
            return
        if self._fits(key, card):
            self._cards[key] = card

    def get_best_match(self, key: str) -> CardRecord | None:
        return self._scoring.get(key)

    def put_best_match(self, key: str, card: CardRecord, generation: int | None = None) -> None:
        if generation is not None and generation != self._generation:
            return
        if self._fits(key, card):
            self._scoring[key] = card

    def invalidate(self) -> None:
        """Drop every cached card and scoring result."""
        self._cards.clear()
        self._scoring.clear()
        self._generation += 1

    def stats(self) -> dict[str, int]:
        return {
            "statements": len(self._statements),
            "cards": len(self._cards),
            "scoring_results": len(self._scoring),
            "generation": self._generation,
        }
