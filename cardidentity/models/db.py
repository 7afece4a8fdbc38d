"""
SQLAlchemy ORM models for the persistent card store.

The ORM owns the schema and indices; hot-path lookups run as cached
text statements against these tables.
"""

from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Float,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Python None is stored as SQL NULL rather than JSON "null"
NullableJSON = JSON(none_as_null=True)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class CardDB(Base):
    """
    One card printing.

    all_parts is NULL when related parts were never fetched and '[]'
    when fetched with none.
    """

    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    oracle_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    name: Mapped[str] = mapped_column(Text)
    # Python-lowered name; SQL lower() only folds ASCII
    name_key: Mapped[str] = mapped_column(Text)
    set_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    collector_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    lang: Mapped[str] = mapped_column(String(8), default="en")

    colors: Mapped[list[str] | None] = mapped_column(NullableJSON, nullable=True)
    mana_cost: Mapped[str | None] = mapped_column(Text, nullable=True)
    cmc: Mapped[float | None] = mapped_column(Float, nullable=True)
    type_line: Mapped[str | None] = mapped_column(Text, nullable=True)
    rarity: Mapped[str | None] = mapped_column(String(16), nullable=True)
    layout: Mapped[str | None] = mapped_column(String(32), nullable=True)
    released_at: Mapped[str | None] = mapped_column(String(10), nullable=True)

    image_uris: Mapped[dict[str, Any] | None] = mapped_column(NullableJSON, nullable=True)
    card_faces: Mapped[list[Any] | None] = mapped_column(NullableJSON, nullable=True)
    all_parts: Mapped[list[Any] | None] = mapped_column(NullableJSON, nullable=True)

    def __repr__(self) -> str:
        return f"<CardDB(name={self.name}, set={self.set_code}:{self.collector_number})>"


class MetadataDB(Base):
    """Key -> value metadata (e.g. last bulk import timestamp)."""

    __tablename__ = "metadata"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text)


class ResponseCacheDB(Base):
    """
    Cached upstream API response.

    Valid only while now < expires_at (epoch milliseconds).
    """

    __tablename__ = "scryfall_cache"

    endpoint: Mapped[str] = mapped_column(String(32), primary_key=True)
    query_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    response: Mapped[str] = mapped_column(Text)
    created_at: Mapped[int] = mapped_column(BigInteger)
    expires_at: Mapped[int] = mapped_column(BigInteger, index=True)


class CardTypeDB(Base):
    """Structural type tokens derived from a card's type line."""

    __tablename__ = "card_types"

    card_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    is_token: Mapped[bool] = mapped_column(Boolean, default=False)


class TokenNameDB(Base):
    """Vocabulary of known token names."""

    __tablename__ = "token_names"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)


# Case-insensitive lookup indices; a printing is stored once per language
Index("ix_cards_name_key_lang", CardDB.name_key, func.lower(CardDB.lang))
Index(
    "ix_cards_set_number_lang",
    func.lower(CardDB.set_code),
    func.lower(CardDB.collector_number),
    func.lower(CardDB.lang),
    unique=True,
)
