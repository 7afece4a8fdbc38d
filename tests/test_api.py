"""Tests for the HTTP surface."""

from pathlib import Path

import httpx
import pytest
import respx
from httpx import ASGITransport, AsyncClient

from cardidentity.api.deps import get_engine
from cardidentity.config import Settings
from cardidentity.context import EngineContext
from cardidentity.main import app

API = "https://api.scryfall.com"


@pytest.fixture
async def engine(tmp_path: Path):
    """Engine context on a throwaway database, with no accelerator."""
    config = Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        rate_limit_delay=0.0,
        scryfall_cache_url=None,
        bulk_import_enabled=False,
    )
    async with EngineContext(config) as ctx:
        yield ctx


@pytest.fixture
async def client(engine: EngineContext):
    """Provide an async test client bound to the test engine."""
    app.dependency_overrides[get_engine] = lambda: engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def test_app_metadata() -> None:
    assert app.title == "Card Identity Engine"


class TestHealth:
    async def test_health_returns_healthy(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": None}

    async def test_ready_when_store_reachable(self, client: AsyncClient) -> None:
        response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    async def test_ready_returns_503_when_store_down(self, tmp_path: Path) -> None:
        config = Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'untouched.db'}")
        broken = EngineContext(config)
        app.dependency_overrides[get_engine] = lambda: broken
        try:
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.get("/ready")
        finally:
            app.dependency_overrides.clear()
            await broken.close()

        assert response.status_code == 503
        assert response.json() == {"status": "not ready", "database": "disconnected"}


class TestCards:
    async def test_named_from_store(self, client: AsyncClient, engine: EngineContext, make_card) -> None:
        await engine.store.upsert(make_card())

        response = await client.get("/cards/named", params={"name": "Sol Ring"})

        assert response.status_code == 200
        body = response.json()
        assert body["tier"] == "store"
        assert body["card"]["set"] == "cmd"
        assert body["card"]["collector_number"] == "129"

    async def test_named_not_found(self, client: AsyncClient) -> None:
        with respx.mock(assert_all_called=False) as mock:
            mock.get(f"{API}/cards/search").mock(return_value=httpx.Response(404))
            mock.get(f"{API}/cards/named").mock(return_value=httpx.Response(404))

            response = await client.get("/cards/named", params={"name": "No Such Card"})

        assert response.status_code == 404

    async def test_upstream_failure_is_502(self, client: AsyncClient) -> None:
        with respx.mock(assert_all_called=False) as mock:
            mock.get(f"{API}/cards/cmd/129").mock(return_value=httpx.Response(503))

            response = await client.get("/cards/cmd/129")

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["retryable"] is True
        assert detail["status_code"] == 503

    async def test_set_number_from_upstream(
        self, client: AsyncClient, engine: EngineContext, make_payload
    ) -> None:
        with respx.mock(assert_all_called=False) as mock:
            mock.get(f"{API}/cards/cmd/129/de").mock(
                return_value=httpx.Response(200, json=make_payload(lang="de"))
            )

            response = await client.get("/cards/cmd/129", params={"lang": "de"})

        assert response.status_code == 200
        assert response.json()["tier"] == "upstream"
        assert await engine.store.find_by_set_number_lang("cmd", "129", "de") is not None

    async def test_batch(self, client: AsyncClient, engine: EngineContext, make_card) -> None:
        await engine.store.upsert(make_card())

        response = await client.post(
            "/cards/batch",
            json={"queries": [{"name": "Sol Ring"}, {"set_code": "cmd", "collector_number": "129"}]},
        )

        assert response.status_code == 200
        body = response.json()
        assert set(body["cards"]) == {"sol ring", "cmd:129"}
        assert body["used_accelerator"] is False

    async def test_tokens(self, client: AsyncClient, engine: EngineContext, make_card) -> None:
        await engine.store.upsert_batch(
            [
                make_card(name="Treasure", set_code="tsnc", collector_number="14", released_at="2022-04-29"),
                make_card(name="Treasure", set_code="tlci", collector_number="22", released_at="2023-11-17"),
            ]
        )
        await engine.store.record_import_time()

        response = await client.post(
            "/cards/tokens",
            json={"tokens": [{"name": "Treasure", "id": "tsnc-14-en"}, {"name": ""}]},
        )

        assert response.status_code == 200
        assert [t["id"] for t in response.json()["tokens"]] == ["tlci-22-en"]
        assert response.json()["cancelled"] is False

    async def test_autocomplete(self, client: AsyncClient) -> None:
        with respx.mock(assert_all_called=False) as mock:
            mock.get(f"{API}/cards/autocomplete").mock(
                return_value=httpx.Response(200, json={"object": "catalog", "data": ["Sol Ring"]})
            )

            response = await client.get("/cards/autocomplete", params={"q": "sol"})

        assert response.json() == {"data": ["Sol Ring"]}

    async def test_cache_stats(self, client: AsyncClient, engine: EngineContext, make_card) -> None:
        await engine.store.upsert(make_card())

        response = await client.get("/cache/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["cards"] == 1
        assert body["size_bytes"] > 0
        assert "scoring_results" in body["hot_cache"]


class TestMetrics:
    async def test_snapshot_and_reset(self, client: AsyncClient, engine: EngineContext) -> None:
        engine.metrics.record_success("/cards/named", 120.0)
        engine.metrics.record_failure("/cards/named", "TierUnavailableError")

        snapshot = (await client.get("/metrics")).json()

        assert snapshot["total_requests"] == 2
        assert snapshot["failed_requests"] == 1
        assert snapshot["degraded"] is True
        assert snapshot["top_errors"] == [{"error": "TierUnavailableError", "count": 1}]

        response = await client.post("/metrics/reset")

        assert response.status_code == 200
        assert (await client.get("/metrics")).json()["total_requests"] == 0

    async def test_health_verdict(self, client: AsyncClient) -> None:
        response = await client.get("/metrics/health")

        body = response.json()
        assert body["status"] == "healthy"
        assert body["accelerator_configured"] is False
        assert body["latency_threshold_ms"] == 2000.0

    async def test_log(self, client: AsyncClient) -> None:
        response = await client.post("/metrics/log")

        assert response.json() == {"message": "Metrics logged"}
