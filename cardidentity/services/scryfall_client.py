"""
Live upstream (Scryfall) API client.

Every outbound call goes through one shared RateLimiter and carries the
configured User-Agent. Read endpoints are memoized in the persistent
response cache with per-endpoint TTLs.

Outcomes:
- 404 is "not found" (None / empty list), never an exception
- Other non-2xx statuses and transport errors raise UpstreamError
- Undecodable bodies raise ParseError
"""

import asyncio
import hashlib
import json
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from cardidentity.config import COLLECTION_BATCH_SIZE, RESPONSE_CACHE_TTL, settings
from cardidentity.db.store import CardStore
from cardidentity.models.card import DEFAULT_LANGUAGE, CardRecord
from cardidentity.models.failure import ParseError, UpstreamError
from cardidentity.parsers.scryfall import card_from_scryfall

logger = logging.getLogger(__name__)


def query_hash(endpoint: str, params: Mapping[str, Any]) -> str:
    """SHA-256 of the endpoint plus its sorted parameters."""
    normalized = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return hashlib.sha256(f"{endpoint}:{normalized}".encode()).hexdigest()


class RateLimiter:
    """
    Enforces a minimum spacing between outbound calls.

    The last-call timestamp is read and updated under one lock, so
    concurrent callers queue up instead of bursting.
    """

    def __init__(self, min_interval: float = settings.rate_limit_delay) -> None:
        self.min_interval = min_interval
        self._lock = asyncio.Lock()
        self._last_call = 0.0

    async def wait(self) -> None:
        async with self._lock:
            elapsed = time.monotonic() - self._last_call
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
            self._last_call = time.monotonic()


class ScryfallClient:
    """
    Async client for the upstream catalog API.

    Args:
        http: Shared httpx client (headers and timeouts are applied per call)
        store: Card store holding the response cache; None disables caching
        base_url: API root
        rate_limiter: Shared limiter; a private one is created if omitted
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        store: CardStore | None = None,
        base_url: str = settings.scryfall_api_url,
        rate_limiter: RateLimiter | None = None,
        timeout: float = settings.request_timeout,
        user_agent: str = settings.user_agent,
    ) -> None:
        self._http = http
        self._store = store
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter or RateLimiter()
        self.timeout = timeout
        self.user_agent = user_agent
        self._inflight: dict[str, asyncio.Future[list[dict[str, Any]]]] = {}

    # --- Transport ---

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any | None:
        """
        Rate-limited request.

        Returns:
            Decoded JSON body, or None for 404

        Raises:
            UpstreamError: Transport failure or non-2xx status
            ParseError: Body is not JSON
        """
        await self.rate_limiter.wait()
        url = self._url(path)
        logger.debug("Upstream %s %s %s", method, url, dict(params or {}))

        try:
            response = await self._http.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.RequestError as e:
            raise UpstreamError(f"Upstream request failed: {method} {url}", detail=str(e)) from e

        if response.status_code == 404:
            return None
        if response.is_error:
            raise UpstreamError(
                f"Upstream returned HTTP {response.status_code} for {url}",
                status_code=response.status_code,
                detail=response.text[:500],
            )

        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ParseError(f"Upstream returned invalid JSON for {url}", detail=str(e)) from e

    async def _cached_get(
        self,
        endpoint: str,
        path: str,
        params: Mapping[str, Any],
        cache_params: Mapping[str, Any] | None = None,
    ) -> Any | None:
        key = query_hash(endpoint, cache_params if cache_params is not None else params)
        if self._store is not None:
            cached = await self._store.get_cached_response(endpoint, key)
            if cached is not None:
                return cached

        payload = await self._request("GET", path, params=params)
        if payload is not None and self._store is not None:
            await self._store.put_cached_response(
                endpoint, key, payload, RESPONSE_CACHE_TTL[endpoint]
            )
        return payload

    # --- Endpoints ---

    async def autocomplete(self, q: str) -> list[str]:
        """Card name completions. Queries under two characters return []."""
        q = q.strip()
        if len(q) < 2:
            return []
        payload = await self._cached_get("autocomplete", "/cards/autocomplete", {"q": q})
        if payload is None:
            return []
        return list(payload.get("data", []))

    async def named(self, exact: str | None = None, fuzzy: str | None = None) -> CardRecord | None:
        """Single card by exact or fuzzy name."""
        if exact:
            params = {"exact": exact}
        elif fuzzy:
            params = {"fuzzy": fuzzy}
        else:
            raise ValueError("named() needs exact or fuzzy")

        payload = await self._cached_get("named", "/cards/named", params)
        return card_from_scryfall(payload) if payload is not None else None

    async def _search_pages(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        key = query_hash("search", params)
        if self._store is not None:
            cached = await self._store.get_cached_response("search", key)
            if cached is not None:
                return list(cached)

        page = await self._request("GET", "/cards/search", params=params)
        if page is None:
            # No matches is never cached
            return []

        results: list[dict[str, Any]] = []
        while page is not None:
            results.extend(page.get("data", []))
            next_page = page.get("next_page")
            if not page.get("has_more") or not next_page:
                break
            page = await self._request("GET", next_page)

        if self._store is not None:
            await self._store.put_cached_response("search", key, results, RESPONSE_CACHE_TTL["search"])
        return results

    async def search(
        self,
        q: str,
        unique: str = "cards",
        include_extras: bool = False,
    ) -> list[CardRecord]:
        """
        Full-text search, following next_page until exhausted.

        Concurrent identical searches share one in-flight request.
        """
        params: dict[str, Any] = {"q": q, "unique": unique}
        if include_extras:
            params["include_extras"] = "true"

        key = query_hash("search", params)
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(self._search_pages(params))
            self._inflight[key] = future

            def _forget(done: asyncio.Future[list[dict[str, Any]]]) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]

            future.add_done_callback(_forget)
        else:
            logger.debug("Joining in-flight search %r", q)

        payloads = await asyncio.shield(future)
        return [card_from_scryfall(payload) for payload in payloads]

    async def card_by_set_number(
        self,
        set_code: str,
        collector_number: str,
        lang: str = DEFAULT_LANGUAGE,
    ) -> CardRecord | None:
        """Exact printing by set, collector number and language."""
        path = f"/cards/{set_code.lower()}/{collector_number}"
        if lang and lang.lower() != DEFAULT_LANGUAGE:
            path = f"{path}/{lang.lower()}"
        payload = await self._cached_get(
            "card",
            path,
            {},
            cache_params={"set": set_code.lower(), "number": collector_number, "lang": lang.lower()},
        )
        return card_from_scryfall(payload) if payload is not None else None

    async def card_by_id(self, card_id: str) -> CardRecord | None:
        """Printing by upstream id."""
        payload = await self._cached_get("card", f"/cards/{card_id}", {}, cache_params={"id": card_id})
        return card_from_scryfall(payload) if payload is not None else None

    async def collection(
        self,
        identifiers: Sequence[Mapping[str, str]],
    ) -> tuple[list[CardRecord], list[dict[str, str]]]:
        """
        Resolve many identifiers, COLLECTION_BATCH_SIZE per call.

        Args:
            identifiers: Scryfall identifier objects ({"name": ...} or
                {"set": ..., "collector_number": ...})

        Returns:
            (found cards, identifiers upstream reported as not found)
        """
        found: list[CardRecord] = []
        not_found: list[dict[str, str]] = []

        for start in range(0, len(identifiers), COLLECTION_BATCH_SIZE):
            chunk = [dict(identifier) for identifier in identifiers[start : start + COLLECTION_BATCH_SIZE]]
            payload = await self._request(
                "POST", "/cards/collection", json_body={"identifiers": chunk}
            )
            if payload is None:
                not_found.extend(chunk)
                continue
            found.extend(card_from_scryfall(card) for card in payload.get("data", []))
            not_found.extend(payload.get("not_found", []))
            logger.debug(
                "Collection chunk %d: %d found",
                start // COLLECTION_BATCH_SIZE + 1,
                len(payload.get("data", [])),
            )

        return found, not_found

    async def prints(self, oracle_id: str) -> list[CardRecord]:
        """Every printing of one identity, tokens included."""
        return await self.search(f"oracleid:{oracle_id}", unique="prints", include_extras=True)
