from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: si_entities
# ---------------------------


class SiEntity(Base):
    __tablename__ = "si_entities"

    # Identifier assigned by the external mirror (page id); stable across syncs.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Comma-separated alias tokens as they appear on statements (e.g. "WOW ,WWS").
    aliases: Mapped[str | None] = mapped_column(Text, nullable=True)
    default_transaction_type: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (Index("ix_si_entities_name", "name"),)


# ---------------------------
# Learned: si_correction_rules
# ---------------------------


class SiCorrectionRule(Base):
    __tablename__ = "si_correction_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Stored normalized (upper-cased, digits removed, whitespace collapsed) for
    # exact/contains rules; regex rules are stored verbatim.
    description_pattern: Mapped[str] = mapped_column(Text, nullable=False)
    match_type: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'exact'")
    )
    entity_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("si_entities.id", ondelete="SET NULL"), nullable=True
    )
    entity_name: Mapped[str | None] = mapped_column(String, nullable=True)
    location: Mapped[str | None] = mapped_column(String, nullable=True)
    online: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    transaction_type: Mapped[str | None] = mapped_column(String, nullable=True)
    confidence: Mapped[float] = mapped_column(
        Float, nullable=False, server_default=text("0.5")
    )
    times_applied: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "match_type in ('exact','contains','regex')", name="ck_si_rule_match_type"
        ),
        CheckConstraint(
            "transaction_type IS NULL OR transaction_type in ('purchase','transfer','income')",
            name="ck_si_rule_transaction_type",
        ),
        CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_si_rule_confidence"
        ),
        UniqueConstraint("description_pattern", "match_type", name="uq_si_rule_pattern"),
        Index("ix_si_rules_confidence", "confidence"),
    )


# ---------------------------
# Core: si_transactions
# ---------------------------


class SiTransaction(Base):
    __tablename__ = "si_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # SHA-256 of the verbatim source row; the de-duplication key across imports.
    checksum: Mapped[str] = mapped_column(CHAR(64), nullable=False, unique=True)
    raw_row: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    account: Mapped[str] = mapped_column(String, nullable=False)
    transaction_type: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'purchase'")
    )
    entity_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("si_entities.id", ondelete="SET NULL"), nullable=True
    )
    entity_name: Mapped[str | None] = mapped_column(String, nullable=True)
    location: Mapped[str | None] = mapped_column(String, nullable=True)
    online: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    # Page id in the external mirror once the write succeeded; NULL until then.
    mirror_page_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "transaction_type in ('purchase','transfer','income')",
            name="ck_si_tx_transaction_type",
        ),
        Index("ix_si_transactions_date", "date"),
        Index("ix_si_transactions_entity", "entity_id"),
    )


__all__ = [
    "Base",
    "SiCorrectionRule",
    "SiEntity",
    "SiTransaction",
]
