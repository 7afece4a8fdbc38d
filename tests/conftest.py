from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from cardidentity.db.database import create_engine, create_session_factory, init_db
from cardidentity.db.store import CardStore
from cardidentity.models.card import CardRecord
from cardidentity.services.accelerator import AcceleratorClient
from cardidentity.services.hot_cache import HotCache
from cardidentity.services.metrics import MetricsCollector
from cardidentity.services.resolver import TieredResolver
from cardidentity.services.scryfall_client import RateLimiter, ScryfallClient

API_URL = "https://api.scryfall.com"
ACCELERATOR_URL = "http://accelerator.test"


def build_card(
    name: str = "Sol Ring",
    set_code: str = "cmd",
    collector_number: str = "129",
    lang: str = "en",
    **overrides: Any,
) -> CardRecord:
    fields: dict[str, Any] = {
        "id": f"{set_code}-{collector_number}-{lang}",
        "oracle_id": f"oracle-{name.lower().replace(' ', '-')}",
        "name": name,
        "set_code": set_code,
        "collector_number": collector_number,
        "lang": lang,
        "colors": (),
        "mana_cost": "{1}",
        "mana_value": 1.0,
        "type_line": "Artifact",
        "rarity": "uncommon",
        "layout": "normal",
        "released_at": "2011-06-17",
        "image_uris": {"png": f"https://img.test/{set_code}/{collector_number}.png"},
        "related_parts": (),
    }
    fields.update(overrides)
    return CardRecord(**fields)


def scryfall_payload(
    name: str = "Sol Ring",
    set_code: str = "cmd",
    collector_number: str = "129",
    lang: str = "en",
    **overrides: Any,
) -> dict[str, Any]:
    """Scryfall card JSON as the API returns it."""
    payload: dict[str, Any] = {
        "object": "card",
        "id": f"{set_code}-{collector_number}-{lang}",
        "oracle_id": f"oracle-{name.lower().replace(' ', '-')}",
        "name": name,
        "set": set_code,
        "collector_number": collector_number,
        "lang": lang,
        "colors": [],
        "mana_cost": "{1}",
        "cmc": 1.0,
        "type_line": "Artifact",
        "rarity": "uncommon",
        "layout": "normal",
        "released_at": "2011-06-17",
        "image_uris": {"png": f"https://img.test/{set_code}/{collector_number}.png"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_card() -> Callable[..., CardRecord]:
    return build_card


@pytest.fixture
def make_payload() -> Callable[..., dict[str, Any]]:
    return scryfall_payload


@pytest.fixture
async def db_engine(tmp_path: Path):
    """File-backed SQLite engine with all tables created."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'cards.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def hot_cache() -> HotCache:
    return HotCache()


@pytest.fixture
def store(db_engine, hot_cache: HotCache) -> CardStore:
    return CardStore(create_session_factory(db_engine), hot_cache)


@pytest.fixture
async def http_client():
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def upstream(http_client: httpx.AsyncClient, store: CardStore) -> ScryfallClient:
    """Upstream client without rate-limit spacing, caching through the store."""
    return ScryfallClient(
        http_client,
        store=store,
        base_url=API_URL,
        rate_limiter=RateLimiter(min_interval=0.0),
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
async def accelerator(metrics: MetricsCollector):
    async with httpx.AsyncClient(base_url=ACCELERATOR_URL) as client:
        yield AcceleratorClient(client, metrics)


@pytest.fixture
def resolver(store: CardStore, upstream: ScryfallClient) -> TieredResolver:
    """Resolver with no accelerator tier."""
    return TieredResolver(store, upstream)
