"""
Card match scoring.

Ranks ambiguous name-match candidates deterministically.

Score bands (higher is better):
- Exact name match:        +200
- Front-face match:        +100
- Art series layout:        -50
- Collector number:        +(0, 0.1] tiebreak, lower number scores higher

The layout penalty is smaller than the gap between name tiers, so an
art series exact match still beats any front-face match. The tiebreak
never exceeds 0.1, so it cannot flip a layout or name-tier decision.
"""

import re

from cardidentity.models.card import FACE_SEPARATOR, CardRecord

EXACT_MATCH_SCORE = 200.0
FRONT_FACE_SCORE = 100.0
ART_SERIES_PENALTY = 50.0

_LEADING_DIGITS = re.compile(r"^\d+")


def collector_number_tiebreak(collector_number: str | None) -> float:
    """
    Small positive bonus favoring earlier collector numbers.

    Leading digits are used ("129a" -> 129); numbers past 999 share the
    smallest bonus. Non-numeric collector numbers get no bonus.
    """
    if not collector_number:
        return 0.0
    match = _LEADING_DIGITS.match(collector_number.strip())
    if not match:
        return 0.0
    number = min(int(match.group(0)), 999)
    return (1000 - number) / 10000


def score_card_match(
    card: CardRecord,
    query_name: str,
    collector_number: str | None = None,
) -> float:
    """
    Score a candidate card against a free-text name query.

    Args:
        card: Candidate printing
        query_name: Name as typed by the caller
        collector_number: Collector number to use as tiebreak
            (defaults to the card's own)

    Returns:
        Real-valued score, higher = better match
    """
    score = 0.0
    query = query_name.strip().lower()
    name = card.name.lower()

    if name == query:
        score += EXACT_MATCH_SCORE
    elif name.startswith(query + FACE_SEPARATOR):
        score += FRONT_FACE_SCORE

    if card.is_art_series:
        score -= ART_SERIES_PENALTY

    number = collector_number if collector_number is not None else card.collector_number
    score += collector_number_tiebreak(number)

    return score


def rank_candidates(candidates: list[CardRecord], query_name: str) -> list[CardRecord]:
    """
    Order candidates best-first.

    Ties on score fall back to content keys (set code, collector number,
    language, id) so the result never depends on input order.
    """

    def sort_key(card: CardRecord) -> tuple[float, str, str, str, str]:
        return (
            -score_card_match(card, query_name),
            (card.set_code or "").lower(),
            (card.collector_number or "").lower(),
            card.lang.lower(),
            card.id,
        )

    return sorted(candidates, key=sort_key)


def pick_best(candidates: list[CardRecord], query_name: str) -> CardRecord | None:
    """Return the best-scoring candidate, or None for no candidates."""
    ranked = rank_candidates(candidates, query_name)
    return ranked[0] if ranked else None
