"""
Bulk card import.

Streams the upstream "all cards" dump into the persistent store in
bounded, transactional batches, building the type and token-name
catalogs on the way.

Failure policy:
- Dump metadata failure aborts before any write
- A parse error aborts the whole import; committed batches stay, the
  import timestamp is not recorded, and the next run starts over
"""

import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from cardidentity.config import settings
from cardidentity.db.store import CardStore
from cardidentity.models.card import CardRecord, ImportStats
from cardidentity.models.failure import ParseError, UpstreamError
from cardidentity.parsers.scryfall import card_from_scryfall, iter_json_array, parse_type_line

logger = logging.getLogger(__name__)

BULK_DATA_TYPE = "all-cards"

_TOKEN_LAYOUTS = {"token", "double_faced_token", "emblem"}


@dataclass(frozen=True)
class DumpInfo:
    """Locator for the bulk dump."""

    download_uri: str
    size: int | None = None
    updated_at: str | None = None


def is_token_card(card: CardRecord, type_tokens: list[str]) -> bool:
    return "token" in type_tokens or card.layout in _TOKEN_LAYOUTS


class BulkImporter:
    """
    Populates the card store from the upstream bulk dump.

    Args:
        store: Destination store
        http: Shared httpx client
        api_url: Upstream API root (dump metadata lives under /bulk-data)
        batch_size: Cards per transactional flush
    """

    def __init__(
        self,
        store: CardStore,
        http: httpx.AsyncClient,
        api_url: str = settings.scryfall_api_url,
        batch_size: int = settings.bulk_batch_size,
        freshness_days: int = settings.bulk_freshness_days,
        user_agent: str = settings.user_agent,
        download_timeout: float = settings.bulk_download_timeout,
        request_timeout: float = settings.request_timeout,
    ) -> None:
        self.store = store
        self._http = http
        self.api_url = api_url.rstrip("/")
        self.batch_size = batch_size
        self.freshness = timedelta(days=freshness_days)
        self.user_agent = user_agent
        self.download_timeout = download_timeout
        self.request_timeout = request_timeout

    @property
    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self.user_agent, "Accept": "application/json"}

    async def should_import(self, now: datetime | None = None) -> bool:
        """True if no import was ever recorded or the last one is stale."""
        last = await self.store.last_import_time()
        if last is None:
            return True
        return (now or datetime.now(UTC)) - last > self.freshness

    async def fetch_dump_info(self) -> DumpInfo:
        """
        Look up the dump's download locator.

        Raises:
            UpstreamError: The metadata call failed
            ParseError: The metadata had no download URI
        """
        url = f"{self.api_url}/bulk-data/{BULK_DATA_TYPE}"
        try:
            response = await self._http.get(url, headers=self._headers, timeout=self.request_timeout)
        except httpx.RequestError as e:
            raise UpstreamError("Bulk data metadata request failed", detail=str(e)) from e

        if response.is_error:
            raise UpstreamError(
                f"Bulk data metadata returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            info: dict[str, Any] = response.json()
        except ValueError as e:
            raise ParseError("Bulk data metadata is not JSON", detail=str(e)) from e

        download_uri = info.get("download_uri")
        if not download_uri:
            raise ParseError("Bulk data metadata has no download_uri")

        return DumpInfo(
            download_uri=download_uri,
            size=info.get("size"),
            updated_at=info.get("updated_at"),
        )

    async def run(self, force: bool = False) -> ImportStats | None:
        """
        Import the dump if due (or forced).

        Returns:
            Import statistics, or None if skipped because the store is fresh

        Raises:
            UpstreamError: Metadata or download failed
            ParseError: The dump was malformed
            StoreUnavailableError: A batch could not be written
        """
        if not force and not await self.should_import():
            logger.info("Card store is fresh, skipping bulk import")
            return None

        info = await self.fetch_dump_info()
        logger.info(
            "Downloading bulk data from %s (%s bytes)",
            info.download_uri,
            info.size if info.size is not None else "unknown",
        )

        try:
            async with self._http.stream(
                "GET",
                info.download_uri,
                headers=self._headers,
                timeout=self.download_timeout,
            ) as response:
                if response.is_error:
                    raise UpstreamError(
                        f"Bulk data download returned HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                stats = await self.import_records(iter_json_array(response.aiter_bytes()))
        except httpx.RequestError as e:
            raise UpstreamError("Bulk data download failed", detail=str(e)) from e

        await self.store.record_import_time()
        return stats

    async def import_records(self, records: AsyncIterator[dict[str, Any]]) -> ImportStats:
        """
        Convert and write records in batches of batch_size.

        Raises:
            ParseError: A record was malformed (import aborts)
            StoreUnavailableError: A batch could not be written
        """
        stats = ImportStats()
        start = time.perf_counter()

        cards: list[CardRecord] = []
        type_entries: list[tuple[str, str, bool]] = []
        token_names: set[str] = set()
        all_token_names: set[str] = set()

        async def flush() -> None:
            written = await self.store.import_batch(cards, type_entries, token_names)
            stats.cards_imported += written
            stats.batches += 1
            all_token_names.update(token_names)
            logger.info(
                "Flushed batch %d: %d cards (%d total)",
                stats.batches,
                written,
                stats.cards_imported,
            )
            cards.clear()
            type_entries.clear()
            token_names.clear()

        try:
            async for payload in records:
                card = card_from_scryfall(payload)
                type_tokens = parse_type_line(card.type_line or "")
                token = is_token_card(card, type_tokens)

                cards.append(card)
                type_entries.extend((card.id, type_, token) for type_ in type_tokens)
                if token:
                    token_names.add(card.name)

                if len(cards) >= self.batch_size:
                    await flush()

            if cards:
                await flush()
        except ParseError as e:
            logger.error(
                "Bulk import aborted after %d cards: %s", stats.cards_imported, e.message
            )
            raise

        stats.token_names = len(all_token_names)
        stats.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Bulk import complete: %d cards in %d batches, %d token names, %.0fms",
            stats.cards_imported,
            stats.batches,
            stats.token_names,
            stats.duration_ms,
        )
        return stats
