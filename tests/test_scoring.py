"""Tests for card match scoring."""

import random

import pytest

from cardidentity.services.scoring import (
    ART_SERIES_PENALTY,
    EXACT_MATCH_SCORE,
    FRONT_FACE_SCORE,
    collector_number_tiebreak,
    pick_best,
    rank_candidates,
    score_card_match,
)


class TestCollectorNumberTiebreak:
    def test_lower_number_scores_higher(self) -> None:
        assert collector_number_tiebreak("129") > collector_number_tiebreak("289")

    def test_uses_leading_digits(self) -> None:
        assert collector_number_tiebreak("129a") == collector_number_tiebreak("129")

    def test_bounded(self) -> None:
        assert 0 < collector_number_tiebreak("0") <= 0.1
        assert collector_number_tiebreak("5000") == collector_number_tiebreak("999") > 0

    @pytest.mark.parametrize("number", [None, "", "★", "S1"])
    def test_non_numeric_gets_nothing(self, number: str | None) -> None:
        assert collector_number_tiebreak(number) == 0.0


class TestScoreCardMatch:
    def test_exact_match(self, make_card) -> None:
        score = score_card_match(make_card(), "sol ring")

        assert EXACT_MATCH_SCORE < score < EXACT_MATCH_SCORE + 1

    def test_front_face_match(self, make_card) -> None:
        card = make_card(name="Delver of Secrets // Insectile Aberration")

        score = score_card_match(card, "Delver of Secrets")

        assert FRONT_FACE_SCORE < score < FRONT_FACE_SCORE + 1

    def test_unrelated_name_scores_only_tiebreak(self, make_card) -> None:
        assert score_card_match(make_card(), "Mana Crypt") < 1

    def test_art_series_penalized(self, make_card) -> None:
        normal = score_card_match(make_card(), "Sol Ring")
        art = score_card_match(make_card(layout="art_series"), "Sol Ring")

        assert normal - art == pytest.approx(ART_SERIES_PENALTY)

    def test_exact_art_series_beats_normal_front_face(self, make_card) -> None:
        exact_art = make_card(name="Fire", layout="art_series", collector_number="999")
        front_face = make_card(name="Fire // Ice", collector_number="1")

        assert score_card_match(exact_art, "Fire") > score_card_match(front_face, "Fire")

    def test_explicit_collector_number_overrides_card(self, make_card) -> None:
        card = make_card(collector_number="289")

        assert score_card_match(card, "Sol Ring", "1") > score_card_match(card, "Sol Ring")


class TestRanking:
    def test_sol_ring_prefers_earlier_collector_number(self, make_card) -> None:
        cmd = make_card(set_code="cmd", collector_number="129")
        c21 = make_card(set_code="c21", collector_number="289")

        assert pick_best([c21, cmd], "Sol Ring") == cmd

    def test_ranking_ignores_input_order(self, make_card) -> None:
        candidates = [
            make_card(set_code=set_code, collector_number=number)
            for set_code, number in [("cmd", "129"), ("c21", "289"), ("m21", "129"), ("ltc", "129a")]
        ]
        candidates.append(make_card(set_code="pip", collector_number="240", layout="art_series"))
        expected = rank_candidates(candidates, "Sol Ring")

        rng = random.Random(7)
        for _ in range(20):
            shuffled = candidates[:]
            rng.shuffle(shuffled)
            assert rank_candidates(shuffled, "Sol Ring") == expected

    def test_equal_scores_ordered_by_content(self, make_card) -> None:
        m21 = make_card(set_code="m21", collector_number="129")
        cmd = make_card(set_code="cmd", collector_number="129")

        assert rank_candidates([m21, cmd], "Sol Ring") == [cmd, m21]

    def test_exact_match_always_first(self, make_card) -> None:
        exact = make_card(name="Fire", collector_number="900", layout="art_series")
        front = make_card(name="Fire // Ice", collector_number="1")

        assert rank_candidates([front, exact], "Fire")[0] == exact

    def test_empty_candidates(self) -> None:
        assert pick_best([], "Sol Ring") is None
