# ruff: noqa: I001
"""Statement-import core tables: entities, correction rules, transactions.

Revision ID: 0001_si_core
Revises: None
Create Date: 2026-02-14
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_si_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # si_entities
    op.create_table(
        "si_entities",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("aliases", sa.Text(), nullable=True),
        sa.Column("default_transaction_type", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_si_entities_name", "si_entities", ["name"])

    # si_correction_rules
    op.create_table(
        "si_correction_rules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("description_pattern", sa.Text(), nullable=False),
        sa.Column("match_type", sa.String(), nullable=False, server_default=sa.text("'exact'")),
        sa.Column(
            "entity_id",
            sa.String(),
            sa.ForeignKey("si_entities.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("entity_name", sa.String(), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("online", sa.Boolean(), nullable=True),
        sa.Column("transaction_type", sa.String(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=False, server_default=sa.text("0.5")),
        sa.Column("times_applied", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "match_type in ('exact','contains','regex')", name="ck_si_rule_match_type"
        ),
        sa.CheckConstraint(
            "transaction_type IS NULL OR transaction_type in ('purchase','transfer','income')",
            name="ck_si_rule_transaction_type",
        ),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_si_rule_confidence"),
        sa.UniqueConstraint("description_pattern", "match_type", name="uq_si_rule_pattern"),
    )
    op.create_index("ix_si_rules_confidence", "si_correction_rules", ["confidence"])

    # si_transactions
    op.create_table(
        "si_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("checksum", sa.CHAR(64), nullable=False, unique=True),
        sa.Column("raw_row", sa.Text(), nullable=False),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("account", sa.String(), nullable=False),
        sa.Column(
            "transaction_type",
            sa.String(),
            nullable=False,
            server_default=sa.text("'purchase'"),
        ),
        sa.Column(
            "entity_id",
            sa.String(),
            sa.ForeignKey("si_entities.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("entity_name", sa.String(), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("online", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("mirror_page_id", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "transaction_type in ('purchase','transfer','income')",
            name="ck_si_tx_transaction_type",
        ),
    )
    op.create_index("ix_si_transactions_date", "si_transactions", ["date"])
    op.create_index("ix_si_transactions_entity", "si_transactions", ["entity_id"])


def downgrade() -> None:
    op.drop_index("ix_si_transactions_entity", table_name="si_transactions")
    op.drop_index("ix_si_transactions_date", table_name="si_transactions")
    op.drop_table("si_transactions")
    op.drop_index("ix_si_rules_confidence", table_name="si_correction_rules")
    op.drop_table("si_correction_rules")
    op.drop_index("ix_si_entities_name", table_name="si_entities")
    op.drop_table("si_entities")
