"""
Engine context.

Owns every long-lived collaborator (database engine, store, hot cache,
metrics, HTTP clients, resolver, token resolver, bulk importer) and
their startup and shutdown. Built once per process and passed to
whoever needs it; there is no module-level engine state.
"""

import asyncio
import logging
from types import TracebackType

import httpx

from cardidentity.config import Settings, settings
from cardidentity.db.database import create_engine, create_session_factory, init_db
from cardidentity.db.store import CardStore
from cardidentity.models.failure import EngineError
from cardidentity.services.accelerator import AcceleratorClient
from cardidentity.services.bulk_import import BulkImporter
from cardidentity.services.hot_cache import HotCache
from cardidentity.services.metrics import MetricsCollector
from cardidentity.services.resolver import TieredResolver
from cardidentity.services.scryfall_client import RateLimiter, ScryfallClient
from cardidentity.services.token_resolution import TokenResolver

logger = logging.getLogger(__name__)


class EngineContext:
    """
    Wires the resolution engine together.

    Usage:
        async with EngineContext() as engine:
            result = await engine.resolver.resolve_by_name("Sol Ring")
    """

    def __init__(
        self,
        config: Settings = settings,
        http: httpx.AsyncClient | None = None,
        accelerator_http: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.db_engine = create_engine(config.database_url, echo=config.debug)
        self.session_factory = create_session_factory(self.db_engine)

        self.hot_cache = HotCache()
        self.metrics = MetricsCollector()
        self.store = CardStore(self.session_factory, self.hot_cache)

        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            timeout=config.request_timeout,
            headers={"User-Agent": config.user_agent},
            follow_redirects=True,
        )

        self._owns_accelerator_http = accelerator_http is None and bool(config.scryfall_cache_url)
        if accelerator_http is None and config.scryfall_cache_url:
            accelerator_http = httpx.AsyncClient(
                base_url=config.scryfall_cache_url,
                timeout=config.request_timeout,
            )
        self.accelerator_http = accelerator_http

        self.rate_limiter = RateLimiter(config.rate_limit_delay)
        self.upstream = ScryfallClient(
            self.http,
            store=self.store,
            base_url=config.scryfall_api_url,
            rate_limiter=self.rate_limiter,
            timeout=config.request_timeout,
            user_agent=config.user_agent,
        )
        self.accelerator = AcceleratorClient(
            accelerator_http,
            self.metrics,
            timeout=config.request_timeout,
            probe_timeout=config.probe_timeout,
        )
        self.resolver = TieredResolver(self.store, self.upstream, self.accelerator)
        self.tokens = TokenResolver(self.store, self.resolver, self.upstream)
        self.importer = BulkImporter(
            self.store,
            self.http,
            api_url=config.scryfall_api_url,
            batch_size=config.bulk_batch_size,
            freshness_days=config.bulk_freshness_days,
            user_agent=config.user_agent,
            download_timeout=config.bulk_download_timeout,
            request_timeout=config.request_timeout,
        )

        self._import_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Create tables and, if configured, start the bulk import scheduler."""
        await init_db(self.db_engine)
        logger.info("Card store ready at %s", self.db_engine.url.render_as_string(hide_password=True))

        if self.config.bulk_import_enabled:
            self._import_task = asyncio.create_task(self._import_scheduler())
            logger.info(
                "Bulk import scheduler started, checking every %.0fs", self.config.bulk_check_interval
            )

    async def _import_scheduler(self) -> None:
        """Import whenever the store is stale, then wait and check again."""
        while True:
            try:
                await self.importer.run()
            except EngineError as e:
                logger.error("Background bulk import failed (%s): %s", e.kind.value, e.message)
            await asyncio.sleep(self.config.bulk_check_interval)

    @property
    def scheduler_running(self) -> bool:
        return self._import_task is not None and not self._import_task.done()

    async def close(self) -> None:
        """Stop the import scheduler and release connections."""
        if self._import_task is not None and not self._import_task.done():
            self._import_task.cancel()
            try:
                await self._import_task
            except asyncio.CancelledError:
                logger.info("Bulk import scheduler stopped")
        self._import_task = None

        if self._owns_http:
            await self.http.aclose()
        if self._owns_accelerator_http and self.accelerator_http is not None:
            await self.accelerator_http.aclose()
        await self.db_engine.dispose()

    async def __aenter__(self) -> "EngineContext":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
