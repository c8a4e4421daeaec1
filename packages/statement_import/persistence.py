# ruff: noqa: I001
"""Persistence of confirmed transactions.

Rows are written to ``si_transactions`` in the shared database owned by
``libs/db``. ``persist_transaction`` is idempotent on ``checksum``: confirming
the same statement row twice updates the existing row instead of inserting a
duplicate.

A transaction only counts as committed once the mirror page id is attached;
``existing_checksums`` ignores rows whose mirror write never succeeded so that
a re-import offers them again.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.imports import SiTransaction
from .logging_setup import get_logger, short
from .models import ConfirmedTransaction

_CHECKSUM_CHUNK = 500

_log = get_logger("statement_import.persistence")


def _to_decimal_2(raw: Decimal) -> Decimal:
    return raw.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _insert_for(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"unsupported database dialect for upserts: {dialect}")


class SqlCommitStore:
    """``CommitStore`` backed by ``si_transactions``."""

    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url

    def persist_transaction(self, txn: ConfirmedTransaction) -> str:
        values: dict[str, Any] = {
            "checksum": txn.checksum,
            "raw_row": txn.raw_row,
            "date": txn.date,
            "description": txn.description,
            "amount": _to_decimal_2(txn.amount),
            "account": txn.account,
            "transaction_type": txn.transaction_type,
            "entity_id": txn.entity_id,
            "entity_name": txn.entity_name,
            "location": txn.location,
            "online": txn.online,
        }
        with session_scope(database_url=self._database_url) as session:
            insert = _insert_for(session)
            stmt = insert(SiTransaction).values(values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[SiTransaction.checksum],
                set_={
                    "transaction_type": stmt.excluded.transaction_type,
                    "entity_id": stmt.excluded.entity_id,
                    "entity_name": stmt.excluded.entity_name,
                    "location": stmt.excluded.location,
                    "online": stmt.excluded.online,
                    "updated_at": datetime.now(UTC),
                },
            ).returning(SiTransaction.id)
            transaction_id = session.execute(stmt).scalar_one()
        _log.debug(
            "persist:upserted id=%s checksum=%s description=%s",
            transaction_id,
            txn.checksum[:12],
            short(txn.description),
        )
        return str(transaction_id)

    def attach_mirror_page(self, transaction_id: str, page_id: str) -> None:
        with session_scope(database_url=self._database_url) as session:
            session.execute(
                update(SiTransaction)
                .where(SiTransaction.id == int(transaction_id))
                .values(mirror_page_id=page_id)
            )

    def existing_checksums(self, checksums: Iterable[str]) -> set[str]:
        wanted = list(dict.fromkeys(c for c in checksums if c))
        found: set[str] = set()
        if not wanted:
            return found
        with session_scope(database_url=self._database_url) as session:
            for i in range(0, len(wanted), _CHECKSUM_CHUNK):
                chunk = wanted[i : i + _CHECKSUM_CHUNK]
                found.update(
                    session.scalars(
                        select(SiTransaction.checksum).where(
                            SiTransaction.checksum.in_(chunk),
                            SiTransaction.mirror_page_id.is_not(None),
                        )
                    )
                )
        return found


__all__ = ["SqlCommitStore"]
