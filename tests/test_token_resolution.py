"""Tests for token resolution to latest printings."""

import asyncio

import httpx
import pytest
import respx

from cardidentity.models.card import TokenPart
from cardidentity.services.token_resolution import TokenResolver, latest_printing

API = "https://api.scryfall.com"


@pytest.fixture
def tokens(store, resolver, upstream) -> TokenResolver:
    return TokenResolver(store, resolver, upstream)


def treasure(make_card, set_code: str, number: str, released_at: str):
    return make_card(
        name="Treasure",
        set_code=set_code,
        collector_number=number,
        released_at=released_at,
        type_line="Token Artifact — Treasure",
        layout="token",
    )


class TestLatestPrinting:
    def test_most_recent_release_wins(self, make_card) -> None:
        old = treasure(make_card, "txln", "15", "2017-09-29")
        new = treasure(make_card, "tlci", "22", "2023-11-17")

        assert latest_printing([new, old]) == new
        assert latest_printing([old, new]) == new

    def test_same_day_prefers_later_collector_number(self, make_card) -> None:
        nine = treasure(make_card, "tsnc", "9", "2022-04-29")
        ten = treasure(make_card, "tsnc", "10", "2022-04-29")

        assert latest_printing([ten, nine]) == ten

    def test_empty(self) -> None:
        assert latest_printing([]) is None


class TestTokenResolver:
    @respx.mock
    async def test_stale_references_collapse_to_latest(self, tokens, store, make_card) -> None:
        await store.upsert_batch(
            [
                treasure(make_card, "txln", "15", "2017-09-29"),
                treasure(make_card, "tsnc", "14", "2022-04-29"),
                treasure(make_card, "tlci", "22", "2023-11-17"),
            ]
        )
        await store.record_import_time()

        resolved = await tokens.resolve(
            [
                TokenPart(name="Treasure", id="txln-15-en"),
                TokenPart(name="Treasure", id="tsnc-14-en"),
            ]
        )

        assert resolved.tokens == [
            TokenPart(
                name="Treasure",
                id="tlci-22-en",
                uri=f"{API}/cards/tlci/22",
                type_line="Token Artifact — Treasure",
            )
        ]

    @respx.mock
    async def test_without_import_asks_upstream_for_printings(
        self, tokens, store, make_card, make_payload
    ) -> None:
        await store.upsert(treasure(make_card, "tsnc", "14", "2022-04-29"))
        route = respx.get(f"{API}/cards/search").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        make_payload(
                            name="Treasure",
                            set_code="tdsk",
                            collector_number="18",
                            released_at="2024-09-27",
                            type_line="Token Artifact — Treasure",
                            layout="token",
                        )
                    ],
                    "has_more": False,
                },
            )
        )

        resolved = await tokens.resolve([TokenPart(name="Treasure", id="tsnc-14-en")])

        assert [t.id for t in resolved.tokens] == ["tdsk-18-en"]
        assert route.calls.last.request.url.params["q"] == "oracleid:oracle-treasure"

    @respx.mock
    async def test_uri_set_and_number_hint(self, tokens, store, make_card) -> None:
        await store.upsert(treasure(make_card, "tsnc", "14", "2022-04-29"))
        await store.record_import_time()

        resolved = await tokens.resolve([TokenPart(name="Treasure", uri=f"{API}/cards/tsnc/14")])

        assert [t.id for t in resolved.tokens] == ["tsnc-14-en"]

    @respx.mock
    async def test_uri_id_hint(self, tokens, store, make_card) -> None:
        await store.upsert(treasure(make_card, "tsnc", "14", "2022-04-29"))
        await store.record_import_time()

        resolved = await tokens.resolve([TokenPart(name="Treasure", uri=f"{API}/cards/tsnc-14-en")])

        assert [t.id for t in resolved.tokens] == ["tsnc-14-en"]

    @respx.mock
    async def test_unknown_id_is_fetched_and_cached(self, tokens, store, make_payload) -> None:
        await store.record_import_time()
        respx.get(f"{API}/cards/tsnc-14-en").mock(
            return_value=httpx.Response(
                200,
                json=make_payload(name="Treasure", set_code="tsnc", collector_number="14", layout="token"),
            )
        )

        resolved = await tokens.resolve([TokenPart(name="Treasure", id="tsnc-14-en")])

        assert [t.id for t in resolved.tokens] == ["tsnc-14-en"]
        assert await store.find_by_id("tsnc-14-en") is not None

    @respx.mock
    async def test_unresolvable_token_passes_through(self, tokens, store) -> None:
        await store.record_import_time()
        respx.get(f"{API}/cards/search").mock(return_value=httpx.Response(404))
        respx.get(f"{API}/cards/named").mock(return_value=httpx.Response(404))
        mystery = TokenPart(name="Mystery Token", type_line="Token Creature")

        assert (await tokens.resolve([mystery])).tokens == [mystery]

    async def test_nameless_tokens_are_skipped(self, tokens) -> None:
        with respx.mock(assert_all_called=False):
            assert (await tokens.resolve([TokenPart(name="", id="x")])).tokens == []

    @respx.mock
    async def test_duplicate_references_resolved_once(self, tokens, store, make_card) -> None:
        await store.upsert(treasure(make_card, "tsnc", "14", "2022-04-29"))
        await store.record_import_time()
        ref = TokenPart(name="Treasure", id="tsnc-14-en")

        resolved = await tokens.resolve([ref, ref])

        assert len(resolved.tokens) == 1

    @respx.mock
    async def test_distinct_identities_keep_input_order(self, tokens, store, make_card) -> None:
        clue = make_card(name="Clue", set_code="tmkm", collector_number="5", layout="token")
        await store.upsert_batch([treasure(make_card, "tsnc", "14", "2022-04-29"), clue])
        await store.record_import_time()

        resolved = await tokens.resolve(
            [TokenPart(name="Clue", id="tmkm-5-en"), TokenPart(name="Treasure", id="tsnc-14-en")]
        )

        assert [t.name for t in resolved.tokens] == ["Clue", "Treasure"]

    async def test_cancel_stops_early(self, tokens) -> None:
        cancel = asyncio.Event()
        cancel.set()

        with respx.mock(assert_all_called=False):
            resolved = await tokens.resolve([TokenPart(name="Treasure", id="a")], cancel=cancel)

        assert resolved.tokens == []
        assert resolved.cancelled is True

    async def test_completed_run_is_not_cancelled(self, tokens, store, make_card) -> None:
        await store.upsert(treasure(make_card, "tsnc", "14", "2022-04-29"))
        await store.record_import_time()

        with respx.mock(assert_all_called=False):
            resolved = await tokens.resolve([TokenPart(name="Treasure", id="tsnc-14-en")])

        assert resolved.cancelled is False

    @respx.mock
    async def test_cancel_during_lookup_drops_current_token(self, tokens, store, make_card) -> None:
        await store.upsert(treasure(make_card, "tsnc", "14", "2022-04-29"))
        await store.record_import_time()
        cancel = asyncio.Event()

        def stop_midway(request: httpx.Request) -> httpx.Response:
            cancel.set()
            return httpx.Response(404)

        route = respx.get(f"{API}/cards/missing-1").mock(side_effect=stop_midway)

        resolved = await tokens.resolve(
            [
                TokenPart(name="Clue", id="missing-1"),
                TokenPart(name="Treasure", id="tsnc-14-en"),
            ],
            cancel=cancel,
        )

        assert resolved.cancelled is True
        assert resolved.tokens == []
        assert route.call_count == 1

    @respx.mock
    async def test_cancel_inside_tiered_lookup_is_reported(self, tokens, store) -> None:
        await store.record_import_time()
        cancel = asyncio.Event()

        def stop_midway(request: httpx.Request) -> httpx.Response:
            cancel.set()
            return httpx.Response(404)

        respx.get(f"{API}/cards/search").mock(side_effect=stop_midway)
        respx.get(f"{API}/cards/named").mock(return_value=httpx.Response(404))

        resolved = await tokens.resolve(
            [TokenPart(name="Mystery Token"), TokenPart(name="Other Token")], cancel=cancel
        )

        assert resolved.cancelled is True
        assert resolved.tokens == []


class TestTokenLanguage:
    @respx.mock
    async def test_latest_printing_stays_in_requested_language(self, tokens, store, make_card) -> None:
        english = treasure(make_card, "tsnc", "14", "2022-04-29")
        japanese = make_card(
            name="Treasure",
            set_code="tdsk",
            collector_number="18",
            lang="ja",
            released_at="2024-09-27",
            type_line="Token Artifact — Treasure",
            layout="token",
        )
        await store.upsert_batch([english, japanese])
        await store.record_import_time()

        resolved = await tokens.resolve([TokenPart(name="Treasure", id="tsnc-14-en")])

        assert [t.id for t in resolved.tokens] == ["tsnc-14-en"]

    @respx.mock
    async def test_requested_language_selects_its_printing(self, tokens, store, make_card) -> None:
        english = treasure(make_card, "tdsk", "18", "2024-09-27")
        japanese = make_card(
            name="Treasure",
            set_code="tsnc",
            collector_number="14",
            lang="ja",
            released_at="2022-04-29",
            type_line="Token Artifact — Treasure",
            layout="token",
        )
        await store.upsert_batch([english, japanese])
        await store.record_import_time()

        resolved = await tokens.resolve([TokenPart(name="Treasure", id="tdsk-18-en")], lang="ja")

        assert [t.id for t in resolved.tokens] == ["tsnc-14-ja"]
