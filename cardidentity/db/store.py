"""
Persistent card store.

Durable, indexed storage of card printings, key/value metadata, cached
upstream responses and the type/token catalogs built by bulk import.

INVARIANTS:
- Writes replace whole records (delete + insert by primary id)
- Batch writes are all-or-nothing
- Every successful card write invalidates the hot cache in full
- Records whose related parts were never fetched are never returned
  by the set/number or name lookups (they force a refresh)
- Store failures raise StoreUnavailableError, never "not found"
"""

import json
import logging
import time
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, insert, select, tuple_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardidentity.models.card import DEFAULT_LANGUAGE, FACE_SEPARATOR, CardRecord
from cardidentity.models.db import (
    CardDB,
    CardTypeDB,
    MetadataDB,
    ResponseCacheDB,
    TokenNameDB,
)
from cardidentity.models.failure import StoreUnavailableError
from cardidentity.parsers.scryfall import face_from_dict, face_to_dict, part_from_dict, part_to_dict
from cardidentity.services.hot_cache import HotCache, card_key, name_key
from cardidentity.services.scoring import pick_best

logger = logging.getLogger(__name__)

LAST_IMPORT_KEY = "last_import"

# Keeps IN (...) lists under SQLite's bound-parameter limit
_DELETE_CHUNK = 500

_CARD_COLUMNS = (
    "id, oracle_id, name, set_code, collector_number, lang, colors, mana_cost, cmc, "
    "type_line, rarity, layout, released_at, image_uris, card_faces, all_parts"
)

SQL_BY_SET_NUMBER_LANG = (
    f"SELECT {_CARD_COLUMNS} FROM cards "
    "WHERE lower(set_code) = :set_code AND lower(collector_number) = :number "
    "AND lower(lang) = :lang LIMIT 1"
)
SQL_BY_NAME = f"SELECT {_CARD_COLUMNS} FROM cards WHERE name_key = :name AND lower(lang) = :lang"
SQL_BY_FRONT_FACE = (
    f"SELECT {_CARD_COLUMNS} FROM cards "
    "WHERE name_key LIKE :pattern ESCAPE '\\' AND lower(lang) = :lang"
)
SQL_BY_ID = f"SELECT {_CARD_COLUMNS} FROM cards WHERE id = :id"
SQL_BY_ORACLE_ID = f"SELECT {_CARD_COLUMNS} FROM cards WHERE oracle_id = :oracle_id"
SQL_COUNT = "SELECT COUNT(*) FROM cards"


def _load_json(value: Any) -> Any:
    # Text queries hand back JSON columns undecoded on some drivers
    if isinstance(value, str | bytes):
        return json.loads(value)
    return value


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def card_to_row(card: CardRecord) -> dict[str, Any]:
    """Serialize a CardRecord to column values."""
    return {
        "id": card.id,
        "oracle_id": card.oracle_id,
        "name": card.name,
        "name_key": card.name.lower(),
        "set_code": card.set_code,
        "collector_number": card.collector_number,
        "lang": card.lang,
        "colors": list(card.colors) if card.colors is not None else None,
        "mana_cost": card.mana_cost,
        "cmc": card.mana_value,
        "type_line": card.type_line,
        "rarity": card.rarity,
        "layout": card.layout,
        "released_at": card.released_at,
        "image_uris": dict(card.image_uris) if card.image_uris is not None else None,
        "card_faces": (
            [face_to_dict(f) for f in card.card_faces] if card.card_faces is not None else None
        ),
        # None = never fetched, [] = fetched with none
        "all_parts": (
            [part_to_dict(p) for p in card.related_parts]
            if card.related_parts is not None
            else None
        ),
    }


def _printing_key(row: dict[str, Any]) -> tuple[str, str, str] | None:
    if not row["set_code"] or not row["collector_number"]:
        return None
    return (
        row["set_code"].lower(),
        row["collector_number"].lower(),
        (row["lang"] or DEFAULT_LANGUAGE).lower(),
    )


def row_to_card(row: Any) -> CardRecord:
    """Deserialize a result row mapping to a CardRecord."""
    colors = _load_json(row["colors"])
    faces = _load_json(row["card_faces"])
    parts = _load_json(row["all_parts"])
    image_uris = _load_json(row["image_uris"])
    cmc = row["cmc"]

    return CardRecord(
        id=row["id"],
        oracle_id=row["oracle_id"],
        name=row["name"],
        set_code=row["set_code"],
        collector_number=row["collector_number"],
        lang=row["lang"],
        colors=tuple(colors) if colors is not None else None,
        mana_cost=row["mana_cost"],
        mana_value=float(cmc) if cmc is not None else None,
        type_line=row["type_line"],
        rarity=row["rarity"],
        layout=row["layout"],
        released_at=row["released_at"],
        image_uris=image_uris,
        card_faces=tuple(face_from_dict(f) for f in faces) if faces is not None else None,
        related_parts=tuple(part_from_dict(p) for p in parts) if parts is not None else None,
    )


def format_bytes(num_bytes: int) -> str:
    """Format a byte count for humans (e.g. "1.5 MB")."""
    if num_bytes <= 0:
        return "0 B"
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


class CardStore:
    """
    Card cache backed by SQLAlchemy.

    The store is a cache, not the source of truth: single-card write
    failures are logged and reported as False rather than raised.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hot_cache: HotCache,
    ) -> None:
        self._session_factory = session_factory
        self.hot_cache = hot_cache

    # --- Internal helpers ---

    async def _fetch_rows(self, sql: str, params: dict[str, Any]) -> list[Any]:
        stmt = self.hot_cache.statement(sql)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt, params)
                return list(result.mappings().all())
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Card store query failed", detail=str(e)) from e

    @staticmethod
    async def _write_cards(session: AsyncSession, cards: Sequence[CardRecord]) -> None:
        # Last occurrence of a duplicated id or printing wins
        by_id = {card.id: card_to_row(card) for card in cards}
        by_printing: dict[Any, dict[str, Any]] = {}
        for row in by_id.values():
            by_printing[_printing_key(row) or ("id", row["id"])] = row
        rows = list(by_printing.values())

        ids = [row["id"] for row in rows]
        for start in range(0, len(ids), _DELETE_CHUNK):
            chunk = ids[start : start + _DELETE_CHUNK]
            await session.execute(delete(CardDB).where(CardDB.id.in_(chunk)))

        printings = [key for key in map(_printing_key, rows) if key is not None]
        printing_columns = tuple_(
            func.lower(CardDB.set_code),
            func.lower(CardDB.collector_number),
            func.lower(CardDB.lang),
        )
        step = _DELETE_CHUNK // 3
        for start in range(0, len(printings), step):
            chunk = printings[start : start + step]
            await session.execute(delete(CardDB).where(printing_columns.in_(chunk)))

        if rows:
            await session.execute(insert(CardDB), rows)

    # --- Card writes ---

    async def upsert(self, card: CardRecord) -> bool:
        """
        Insert or replace one card.

        Returns:
            True if written. False if the store is unavailable; the failure
            is logged and callers carry on.
        """
        try:
            async with self._session_factory() as session, session.begin():
                await self._write_cards(session, [card])
        except SQLAlchemyError as e:
            logger.warning("Failed to cache card %s: %s", card.id, e)
            return False

        self.hot_cache.invalidate()
        return True

    async def upsert_batch(self, cards: Sequence[CardRecord]) -> int:
        """
        Insert or replace many cards in one transaction.

        Returns:
            Number of cards written

        Raises:
            StoreUnavailableError: If the batch failed; nothing was applied
        """
        if not cards:
            return 0
        try:
            async with self._session_factory() as session, session.begin():
                await self._write_cards(session, cards)
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Batch card write failed", detail=str(e)) from e

        self.hot_cache.invalidate()
        return len(cards)

    async def import_batch(
        self,
        cards: Sequence[CardRecord],
        type_entries: Sequence[tuple[str, str, bool]],
        token_names: Iterable[str],
    ) -> int:
        """
        Write one bulk import batch: cards, then type and token catalogs.

        Everything commits together or not at all.

        Args:
            cards: Converted card records
            type_entries: (card_id, type, is_token) tuples
            token_names: Names of token cards in the batch

        Returns:
            Number of cards written

        Raises:
            StoreUnavailableError: If the batch failed; nothing was applied
        """
        names = sorted(set(token_names))
        try:
            async with self._session_factory() as session, session.begin():
                await self._write_cards(session, cards)
                await self._write_card_types(session, type_entries)
                await self._write_token_names(session, names)
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Bulk import batch write failed", detail=str(e)) from e

        self.hot_cache.invalidate()
        return len(cards)

    # --- Card lookups ---

    async def find_by_set_number_lang(
        self,
        set_code: str,
        collector_number: str,
        lang: str = DEFAULT_LANGUAGE,
    ) -> CardRecord | None:
        """
        Exact printing lookup, case-insensitive.

        Returns None when absent or when related parts were never fetched.

        Raises:
            StoreUnavailableError: If the store cannot be queried
        """
        key = card_key(set_code, collector_number, lang)
        cached = self.hot_cache.get_card(key)
        if cached is not None:
            logger.debug("Hot cache HIT for %s", key)
            return cached

        generation = self.hot_cache.generation
        rows = await self._fetch_rows(
            SQL_BY_SET_NUMBER_LANG,
            {
                "set_code": set_code.lower(),
                "number": collector_number.lower(),
                "lang": lang.lower(),
            },
        )
        if not rows:
            return None

        card = row_to_card(rows[0])
        if not card.is_complete:
            return None

        self.hot_cache.put_card(key, card, generation)
        return card

    async def find_by_name(self, name: str, lang: str = DEFAULT_LANGUAGE) -> list[CardRecord]:
        """
        Candidate printings for a name.

        Exact case-insensitive matches first; only if there are none,
        multi-faced cards whose front face carries the name. Incomplete
        records are dropped.

        Raises:
            StoreUnavailableError: If the store cannot be queried
        """
        query = name.strip().lower()
        params = {"name": query, "lang": lang.lower()}

        rows = await self._fetch_rows(SQL_BY_NAME, params)
        if not rows:
            pattern = _escape_like(query) + _escape_like(FACE_SEPARATOR) + "%"
            rows = await self._fetch_rows(
                SQL_BY_FRONT_FACE, {"pattern": pattern, "lang": lang.lower()}
            )

        cards = [row_to_card(row) for row in rows]
        return [card for card in cards if card.is_complete]

    async def lookup_by_name(
        self,
        name: str,
        lang: str = DEFAULT_LANGUAGE,
    ) -> CardRecord | None:
        """
        Best stored match for a name.

        Uses the scoring-result cache before querying and scoring candidates.

        Raises:
            StoreUnavailableError: If the store cannot be queried
        """
        key = name_key(name, lang)
        cached = self.hot_cache.get_best_match(key)
        if cached is not None:
            logger.debug("Scoring cache HIT for %s", key)
            return cached

        generation = self.hot_cache.generation
        candidates = await self.find_by_name(name, lang)
        if not candidates:
            logger.debug("lookup_by_name(%r, %r): not found", name, lang)
            return None

        best = pick_best(candidates, name)
        if best is None:
            return None

        logger.debug(
            "lookup_by_name(%r, %r): %d candidates, picked %s:%s",
            name,
            lang,
            len(candidates),
            best.set_code,
            best.collector_number,
        )
        self.hot_cache.put_best_match(key, best, generation)
        return best

    async def find_by_id(self, card_id: str) -> CardRecord | None:
        """Printing by primary id (complete or not)."""
        rows = await self._fetch_rows(SQL_BY_ID, {"id": card_id})
        return row_to_card(rows[0]) if rows else None

    async def find_by_oracle_id(self, oracle_id: str) -> list[CardRecord]:
        """All stored printings sharing an identity."""
        rows = await self._fetch_rows(SQL_BY_ORACLE_ID, {"oracle_id": oracle_id})
        return [row_to_card(row) for row in rows]

    # --- Introspection ---

    async def count(self) -> int:
        """Total stored printings."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(self.hot_cache.statement(SQL_COUNT))
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Card count failed", detail=str(e)) from e

    async def size_bytes(self) -> int:
        """Approximate on-disk size of the store."""
        try:
            async with self._session_factory() as session:
                backend = session.bind.dialect.name
                if backend == "sqlite":
                    page_count = await session.scalar(self.hot_cache.statement("PRAGMA page_count"))
                    page_size = await session.scalar(self.hot_cache.statement("PRAGMA page_size"))
                    return int(page_count or 0) * int(page_size or 0)
                if backend == "postgresql":
                    size = await session.scalar(
                        self.hot_cache.statement("SELECT pg_database_size(current_database())")
                    )
                    return int(size or 0)
                return 0
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Store size query failed", detail=str(e)) from e

    # --- Metadata ---

    async def get_metadata(self, key: str) -> str | None:
        try:
            async with self._session_factory() as session:
                entry = await session.get(MetadataDB, key)
                return entry.value if entry else None
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Metadata read failed", detail=str(e)) from e

    async def set_metadata(self, key: str, value: str) -> None:
        """Upsert a metadata value."""
        try:
            async with self._session_factory() as session, session.begin():
                await session.merge(MetadataDB(key=key, value=value))
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Metadata write failed", detail=str(e)) from e

    async def last_import_time(self) -> datetime | None:
        """Timestamp of the last completed bulk import, if any."""
        value = await self.get_metadata(LAST_IMPORT_KEY)
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            logger.warning("Ignoring unparseable import timestamp %r", value)
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    async def record_import_time(self, when: datetime | None = None) -> None:
        await self.set_metadata(LAST_IMPORT_KEY, (when or datetime.now(UTC)).isoformat())

    # --- Upstream response cache ---

    async def get_cached_response(self, endpoint: str, query_hash: str) -> Any | None:
        """
        Cached upstream payload, or None when absent or expired.

        Cache failures count as misses.
        """
        try:
            async with self._session_factory() as session:
                entry = await session.get(ResponseCacheDB, (endpoint, query_hash))
        except SQLAlchemyError as e:
            logger.warning("Response cache read failed: %s", e)
            return None

        if entry is None or entry.expires_at <= int(time.time() * 1000):
            return None
        logger.debug("Response cache HIT for %s:%s", endpoint, query_hash[:8])
        return json.loads(entry.response)

    async def put_cached_response(
        self,
        endpoint: str,
        query_hash: str,
        payload: Any,
        ttl_seconds: int,
    ) -> None:
        """Store an upstream payload until now + ttl. Failures are logged."""
        now = int(time.time() * 1000)
        entry = ResponseCacheDB(
            endpoint=endpoint,
            query_hash=query_hash,
            response=json.dumps(payload),
            created_at=now,
            expires_at=now + ttl_seconds * 1000,
        )
        try:
            async with self._session_factory() as session, session.begin():
                await session.merge(entry)
        except SQLAlchemyError as e:
            logger.warning("Response cache write failed: %s", e)

    # --- Type and token catalogs ---

    @staticmethod
    async def _write_card_types(
        session: AsyncSession,
        entries: Sequence[tuple[str, str, bool]],
    ) -> None:
        if not entries:
            return
        unique = {(card_id, type_): is_token for card_id, type_, is_token in entries}
        card_ids = sorted({card_id for card_id, _ in unique})
        for start in range(0, len(card_ids), _DELETE_CHUNK):
            chunk = card_ids[start : start + _DELETE_CHUNK]
            await session.execute(delete(CardTypeDB).where(CardTypeDB.card_id.in_(chunk)))
        await session.execute(
            insert(CardTypeDB),
            [
                {"card_id": card_id, "type": type_, "is_token": is_token}
                for (card_id, type_), is_token in unique.items()
            ],
        )

    @staticmethod
    async def _write_token_names(session: AsyncSession, names: Sequence[str]) -> None:
        if not names:
            return
        existing: set[str] = set()
        for start in range(0, len(names), _DELETE_CHUNK):
            chunk = names[start : start + _DELETE_CHUNK]
            result = await session.execute(
                select(TokenNameDB.name).where(TokenNameDB.name.in_(chunk))
            )
            existing.update(result.scalars().all())
        missing = [{"name": name} for name in names if name not in existing]
        if missing:
            await session.execute(insert(TokenNameDB), missing)

    async def is_known_token(self, name: str) -> bool:
        """True if a token card with this name was seen during import."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(TokenNameDB.name).where(TokenNameDB.name == name).limit(1)
                )
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Token name lookup failed", detail=str(e)) from e

    async def cards_with_type(self, type_: str, tokens_only: bool = False) -> list[str]:
        """Ids of cards whose type line carries a type token."""
        stmt = select(CardTypeDB.card_id).where(CardTypeDB.type == type_.lower())
        if tokens_only:
            stmt = stmt.where(CardTypeDB.is_token.is_(True))
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt.order_by(CardTypeDB.card_id))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreUnavailableError("Type lookup failed", detail=str(e)) from e
