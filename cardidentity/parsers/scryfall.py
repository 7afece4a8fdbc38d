"""
Scryfall card payload parsing.

Converts Scryfall card JSON (API responses, accelerator responses and
bulk dump entries) to CardRecord and back, derives type tokens from
type lines, and streams JSON arrays without materializing them.

Card objects: https://scryfall.com/docs/api/cards
"""

import re
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import urlparse

import ijson

from cardidentity.models.card import (
    DEFAULT_LANGUAGE,
    CardFace,
    CardRecord,
    RelatedPart,
    TokenPart,
)
from cardidentity.models.failure import ParseError


_TYPE_SPLIT = re.compile(r"\s+[—-]\s+")
_BOM = b"\xef\xbb\xbf"
_WHITESPACE = b" \t\r\n"


def _tuple_or_none(values: Any) -> tuple[str, ...] | None:
    if values is None:
        return None
    return tuple(str(v) for v in values)


def face_from_dict(face: dict[str, Any]) -> CardFace:
    return CardFace(
        name=str(face.get("name", "")),
        mana_cost=face.get("mana_cost"),
        type_line=face.get("type_line"),
        colors=_tuple_or_none(face.get("colors")),
        image_uris=face.get("image_uris"),
    )


def part_from_dict(part: dict[str, Any]) -> RelatedPart:
    return RelatedPart(
        name=str(part.get("name", "")),
        component=part.get("component"),
        id=part.get("id"),
        type_line=part.get("type_line"),
        uri=part.get("uri"),
    )


def card_from_scryfall(payload: dict[str, Any], parts_fetched: bool = True) -> CardRecord:
    """
    Convert a Scryfall card object to a CardRecord.

    Args:
        payload: Scryfall card JSON
        parts_fetched: Whether the payload is a full card object. Full objects
            omit all_parts when a card has none, so absence means "fetched,
            none" rather than "never fetched".

    Returns:
        CardRecord for the printing

    Raises:
        ParseError: If the payload is not a card object
    """
    if not isinstance(payload, dict) or not payload.get("name"):
        raise ParseError("Card payload has no name", detail=str(payload)[:200])

    set_code = payload.get("set")
    number = payload.get("collector_number")
    card_id = payload.get("id") or f"generated_{set_code}_{number}"

    faces = payload.get("card_faces")
    parts = payload.get("all_parts")
    related: tuple[RelatedPart, ...] | None
    if parts is not None:
        related = tuple(part_from_dict(p) for p in parts)
    else:
        related = () if parts_fetched else None

    cmc = payload.get("cmc")

    return CardRecord(
        id=str(card_id),
        oracle_id=payload.get("oracle_id"),
        name=str(payload["name"]),
        set_code=set_code,
        collector_number=number,
        lang=payload.get("lang") or DEFAULT_LANGUAGE,
        colors=_tuple_or_none(payload.get("colors")),
        mana_cost=payload.get("mana_cost"),
        mana_value=float(cmc) if cmc is not None else None,
        type_line=payload.get("type_line"),
        rarity=payload.get("rarity"),
        layout=payload.get("layout"),
        released_at=payload.get("released_at"),
        image_uris=payload.get("image_uris"),
        card_faces=tuple(face_from_dict(f) for f in faces) if faces is not None else None,
        related_parts=related,
    )


def face_to_dict(face: CardFace) -> dict[str, Any]:
    data: dict[str, Any] = {"name": face.name}
    if face.mana_cost is not None:
        data["mana_cost"] = face.mana_cost
    if face.type_line is not None:
        data["type_line"] = face.type_line
    if face.colors is not None:
        data["colors"] = list(face.colors)
    if face.image_uris is not None:
        data["image_uris"] = dict(face.image_uris)
    return data


def part_to_dict(part: RelatedPart) -> dict[str, Any]:
    data: dict[str, Any] = {"name": part.name}
    for key in ("component", "id", "type_line", "uri"):
        value = getattr(part, key)
        if value is not None:
            data[key] = value
    return data


def card_to_scryfall(card: CardRecord) -> dict[str, Any]:
    """Convert a CardRecord back to Scryfall card JSON shape."""
    data: dict[str, Any] = {
        "object": "card",
        "id": card.id,
        "oracle_id": card.oracle_id,
        "name": card.name,
        "set": card.set_code,
        "collector_number": card.collector_number,
        "lang": card.lang,
        "colors": list(card.colors) if card.colors is not None else None,
        "mana_cost": card.mana_cost,
        "cmc": card.mana_value,
        "type_line": card.type_line,
        "rarity": card.rarity,
        "layout": card.layout,
        "released_at": card.released_at,
        "image_uris": card.image_uris,
    }
    if card.card_faces is not None:
        data["card_faces"] = [face_to_dict(f) for f in card.card_faces]
    if card.related_parts is not None:
        data["all_parts"] = [part_to_dict(p) for p in card.related_parts]
    return {k: v for k, v in data.items() if v is not None}


def parse_type_line(type_line: str) -> list[str]:
    """
    Derive lower-case type tokens from a type line.

    Covers the supertypes and card types of every face; subtypes after
    the dash are ignored.
    Example: "Legendary Creature — Elf Druid" -> ["legendary", "creature"]

    Args:
        type_line: Full type line (faces separated by "//")

    Returns:
        Ordered, de-duplicated type tokens
    """
    tokens: list[str] = []
    seen: set[str] = set()

    for face_line in type_line.split("//"):
        types = _TYPE_SPLIT.split(face_line.strip(), maxsplit=1)[0]
        for word in types.lower().split():
            if word not in seen:
                seen.add(word)
                tokens.append(word)

    return tokens


def parse_token_uri(uri: str | None) -> dict[str, str]:
    """
    Extract identity hints from a Scryfall card URI.

    "/cards/<id>" yields {"id": ...}; "/cards/<set>/<number>" yields
    {"set": ..., "number": ...}. Anything else yields {}.
    """
    if not uri:
        return {}

    parts = [p for p in urlparse(uri).path.split("/") if p]
    if "cards" not in parts:
        return {}

    idx = parts.index("cards")
    rest = parts[idx + 1 : idx + 3]
    if not rest:
        return {}
    if len(rest) == 1:
        return {"id": rest[0]}
    return {"set": rest[0].lower(), "number": rest[1]}


def token_part_from_card(card: CardRecord, fallback: TokenPart) -> TokenPart:
    """Build a TokenPart pointing at a resolved printing."""
    if card.set_code and card.collector_number:
        uri: str | None = f"https://api.scryfall.com/cards/{card.set_code}/{card.collector_number}"
    else:
        uri = fallback.uri

    return TokenPart(
        name=card.name or fallback.name,
        id=card.id or fallback.id,
        uri=uri,
        type_line=card.type_line or fallback.type_line,
    )


class _ByteReader:
    """Async file-like view over response byte chunks, as ijson reads it."""

    def __init__(self, chunks: AsyncIterator[bytes]) -> None:
        self._chunks = chunks
        self._started = False

    async def read(self, size: int = -1) -> bytes:
        async for chunk in self._chunks:
            if not self._started:
                chunk = chunk.removeprefix(_BOM).lstrip(_WHITESPACE)
                if not chunk:
                    continue
                if not chunk.startswith(b"["):
                    raise ParseError("Bulk data is not a JSON array", detail=repr(chunk[:80]))
                self._started = True
            if chunk:
                return chunk
        return b""


async def iter_json_array(chunks: AsyncIterator[bytes]) -> AsyncIterator[dict[str, Any]]:
    """
    Incrementally parse a top-level JSON array of objects.

    Only the element being built is held in memory; numbers decode as
    int or float.

    Args:
        chunks: Raw bytes of the document, in order

    Yields:
        Each array element

    Raises:
        ParseError: On malformed JSON, non-object elements or truncation
    """
    try:
        async for value in ijson.items_async(_ByteReader(chunks), "item", use_float=True):
            if not isinstance(value, dict):
                raise ParseError("Bulk data element is not an object", detail=repr(value)[:80])
            yield value
    except ijson.JSONError as e:
        raise ParseError(f"Malformed JSON in bulk data: {e}", detail=str(e)) from e
