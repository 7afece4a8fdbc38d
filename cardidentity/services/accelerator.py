"""
Remote accelerator tier client.

The accelerator is an optional caching proxy in front of the upstream
API. It answers with a {"success": bool, "data": ...} envelope. Every
call is timed by the MetricsCollector, and any failure surfaces here as
TierUnavailableError so the resolver can fall through.
"""

import logging
from typing import Any

import httpx

from cardidentity.config import settings
from cardidentity.models.card import CardQuery, CardRecord
from cardidentity.models.failure import ParseError, Tier, TierUnavailableError
from cardidentity.parsers.scryfall import card_from_scryfall
from cardidentity.services.metrics import MetricsCollector

logger = logging.getLogger(__name__)


class AcceleratorClient:
    """
    Client for the Scryfall cache microservice.

    Args:
        http: httpx client whose base_url points at the accelerator, or
            None when no accelerator is configured
        metrics: Collector observing every call
    """

    def __init__(
        self,
        http: httpx.AsyncClient | None,
        metrics: MetricsCollector,
        timeout: float = settings.request_timeout,
        probe_timeout: float = settings.probe_timeout,
    ) -> None:
        self._http = http
        self.metrics = metrics
        self.timeout = timeout
        self.probe_timeout = probe_timeout

    @property
    def enabled(self) -> bool:
        return self._http is not None

    async def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any | None:
        """
        GET and unwrap the envelope.

        Returns:
            The envelope's data, or None for a 404 / unsuccessful lookup

        Raises:
            TierUnavailableError: Unreachable, non-2xx or undecodable
        """
        if self._http is None:
            raise TierUnavailableError(Tier.ACCELERATOR, "Accelerator not configured")

        try:
            response = await self._http.get(
                path, params=params, timeout=timeout if timeout is not None else self.timeout
            )
        except httpx.RequestError as e:
            raise TierUnavailableError(
                Tier.ACCELERATOR, f"Accelerator request failed: {path}", detail=str(e)
            ) from e

        if response.status_code == 404:
            return None
        if response.is_error:
            raise TierUnavailableError(
                Tier.ACCELERATOR, f"Accelerator returned HTTP {response.status_code} for {path}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TierUnavailableError(
                Tier.ACCELERATOR, f"Accelerator returned invalid JSON for {path}", detail=str(e)
            ) from e

        if not isinstance(body, dict) or not body.get("success"):
            return None
        return body.get("data")

    async def is_available(self) -> bool:
        """Reachability probe with the short probe timeout."""
        if not self.enabled:
            return False
        try:
            await self.metrics.track(
                "/health", lambda: self._get("/health", timeout=self.probe_timeout)
            )
        except TierUnavailableError as e:
            logger.warning("Accelerator probe failed: %s", e.message)
            return False
        return True

    async def is_healthy(self) -> bool:
        """Configured, not degraded by metrics, and answering the probe."""
        if not self.enabled:
            return False
        if self.metrics.is_degraded():
            logger.info("Accelerator degraded, skipping tier")
            return False
        return await self.is_available()

    async def search(self, q: str, page_size: int | None = None) -> list[CardRecord]:
        params: dict[str, Any] = {"q": q}
        if page_size is not None:
            params["page_size"] = page_size

        async def call() -> list[CardRecord]:
            data = await self._get("/cards/search", params)
            if not data:
                return []
            return [self._to_card(payload) for payload in data.get("data", [])]

        return await self.metrics.track("/cards/search", call)

    async def named(self, exact: str | None = None, fuzzy: str | None = None) -> CardRecord | None:
        params = {"exact": exact} if exact else {"fuzzy": fuzzy}

        async def call() -> CardRecord | None:
            data = await self._get("/cards/named", params)
            return self._to_card(data) if data else None

        return await self.metrics.track("/cards/named", call)

    async def fetch_one(self, query: CardQuery) -> CardRecord | None:
        """
        Look up one identity.

        Raises:
            TierUnavailableError: The accelerator failed
        """
        if query.is_exact:
            cards = await self.search(
                f"set:{query.set_code} number:{query.collector_number}", page_size=1
            )
            return cards[0] if cards else None

        card = await self.named(exact=query.name)
        if card is None:
            card = await self.named(fuzzy=query.name)
        return card

    @staticmethod
    def _to_card(payload: Any) -> CardRecord:
        if not isinstance(payload, dict):
            raise TierUnavailableError(Tier.ACCELERATOR, "Accelerator returned a non-object card")
        try:
            return card_from_scryfall(payload)
        except ParseError as e:
            raise TierUnavailableError(Tier.ACCELERATOR, e.message, detail=e.detail) from e
