"""
Card identity models.

INVARIANTS:
- CardRecord is replaced whole, never partially updated
- related_parts is tri-state: None (never fetched), () (fetched, none),
  or populated. Only fetched records count as complete.
- All models are frozen (immutable after construction)
"""

from dataclasses import dataclass

DEFAULT_LANGUAGE = "en"

# Separator between face names of a multi-faced card ("Front // Back")
FACE_SEPARATOR = " // "

ART_SERIES_LAYOUT = "art_series"


@dataclass(frozen=True, slots=True)
class CardFace:
    """One face of a multi-faced card."""

    name: str
    mana_cost: str | None = None
    type_line: str | None = None
    colors: tuple[str, ...] | None = None
    image_uris: dict[str, str] | None = None


@dataclass(frozen=True, slots=True)
class RelatedPart:
    """
    A linked secondary object (token, meld part, combo piece).

    Attributes:
        name: Name of the related object
        component: Kind of link ("token", "meld_part", "combo_piece", ...)
        id: Scryfall id of the related printing
        type_line: Type line of the related object
        uri: API URI of the related printing
    """

    name: str
    component: str | None = None
    id: str | None = None
    type_line: str | None = None
    uri: str | None = None


@dataclass(frozen=True, slots=True)
class CardRecord:
    """
    Canonical identity of one card printing.

    Attributes:
        id: Unique per printing
        oracle_id: Identity shared across reprints and faces
        name: Full card name ("Front // Back" for multi-faced cards)
        set_code: Set code (e.g., "cmd")
        collector_number: Collector number within set (may carry letters)
        lang: Language code, default "en"
        colors: Color letters (W, U, B, R, G)
        mana_cost: Mana cost string (e.g., "{1}")
        mana_value: Numeric mana value
        type_line: Full type line
        rarity: common, uncommon, rare, mythic, ...
        layout: normal, transform, art_series, ...
        released_at: ISO release date of the printing
        image_uris: Size -> URL mapping
        card_faces: Faces of a multi-faced card
        related_parts: Linked tokens/parts; None means never fetched
    """

    id: str
    name: str
    oracle_id: str | None = None
    set_code: str | None = None
    collector_number: str | None = None
    lang: str = DEFAULT_LANGUAGE
    colors: tuple[str, ...] | None = None
    mana_cost: str | None = None
    mana_value: float | None = None
    type_line: str | None = None
    rarity: str | None = None
    layout: str | None = None
    released_at: str | None = None
    image_uris: dict[str, str] | None = None
    card_faces: tuple[CardFace, ...] | None = None
    related_parts: tuple[RelatedPart, ...] | None = None

    @property
    def is_complete(self) -> bool:
        """True once related parts have been fetched at least once."""
        return self.related_parts is not None

    @property
    def is_art_series(self) -> bool:
        return self.layout == ART_SERIES_LAYOUT

    @property
    def front_face_name(self) -> str:
        """Name before the face separator (whole name for single-faced cards)."""
        return self.name.split(FACE_SEPARATOR, 1)[0]

    def face_names(self) -> list[str]:
        """Names of all faces, empty for single-faced cards."""
        if not self.card_faces:
            return []
        return [face.name for face in self.card_faces if face.name]


@dataclass(frozen=True, slots=True)
class TokenPart:
    """
    Lightweight reference to a token, as embedded in related parts.

    Input to token resolution; possibly points at a stale printing.
    """

    name: str
    id: str | None = None
    uri: str | None = None
    type_line: str | None = None


@dataclass(frozen=True, slots=True)
class CardQuery:
    """
    A single identity request.

    Either a name lookup ({name, lang}) or an exact printing lookup
    ({set_code, collector_number, lang}).
    """

    name: str = ""
    set_code: str | None = None
    collector_number: str | None = None
    lang: str = DEFAULT_LANGUAGE
    is_token: bool = False

    @property
    def is_exact(self) -> bool:
        """True when the query names a specific printing."""
        return bool(self.set_code and self.collector_number)

    @property
    def key(self) -> str:
        """Normalized dedup key for batch resolution."""
        lang = (self.lang or DEFAULT_LANGUAGE).lower()
        if self.set_code and self.collector_number:
            return f"sn:{self.set_code.lower()}:{self.collector_number.lower()}:{lang}"
        return f"n:{self.name.lower()}:{lang}"


@dataclass
class ImportStats:
    """Outcome counters of one bulk import run."""

    cards_imported: int = 0
    batches: int = 0
    token_names: int = 0
    duration_ms: float = 0.0
