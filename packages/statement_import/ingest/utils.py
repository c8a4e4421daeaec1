"""Ingest utilities shared by the CLI and the import service.

Bank transformers are registered in ``TRANSFORMERS`` by bank tag. CSV files
are read with ``csv.DictReader`` and header problems surface as ``csv.Error``
before any row is transformed.
"""

from __future__ import annotations

import csv
from collections.abc import Callable, Mapping
from os import PathLike
from pathlib import Path

from ..errors import InvalidRowError
from ..logging_setup import get_logger
from ..models import RawTransaction
from .adapters.amex_au_csv import REQUIRED_HEADERS as AMEX_HEADERS
from .adapters.amex_au_csv import transform_amex

type Transformer = Callable[[Mapping[str, str | None]], RawTransaction]

TRANSFORMERS: dict[str, Transformer] = {
    "amex": transform_amex,
}

_REQUIRED_HEADERS: dict[str, frozenset[str]] = {
    "amex": AMEX_HEADERS,
}

_log = get_logger("statement_import.ingest")


def _lookup(bank: str) -> Transformer:
    try:
        return TRANSFORMERS[bank.strip().lower()]
    except KeyError:
        known = ", ".join(sorted(TRANSFORMERS))
        raise InvalidRowError(f"Unknown bank {bank!r}; expected one of: {known}") from None


def transform(row: Mapping[str, str | None], *, bank: str) -> RawTransaction:
    """Dispatch ``row`` to the transformer registered for ``bank``."""

    return _lookup(bank)(row)


def load_transactions_from_csv(
    csv_path: str | PathLike[str], *, bank: str = "amex"
) -> list[RawTransaction]:
    """Read a bank CSV and return ``RawTransaction`` rows in file order.

    Raises ``csv.Error`` when the header row is missing or lacks required
    columns, and ``InvalidRowError`` (prefixed with the 1-based data-row
    number) for the first malformed row.
    """

    transformer = _lookup(bank)
    required = _REQUIRED_HEADERS.get(bank.strip().lower(), frozenset())

    p = Path(csv_path)
    with p.open(encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        headers_set = set(reader.fieldnames or [])
        if not headers_set:
            raise csv.Error(f"CSV appears to have no header row: {csv_path}")
        missing = sorted(h for h in required if h not in headers_set)
        if missing:
            raise csv.Error(
                f"CSV header mismatch for {bank} adapter. Missing columns: " + ", ".join(missing)
            )

        out: list[RawTransaction] = []
        for n, row in enumerate(reader, start=1):
            try:
                out.append(transformer(row))
            except InvalidRowError as exc:
                raise InvalidRowError(f"row {n}: {exc}") from exc

    _log.info("ingest:loaded path=%s bank=%s rows=%d", p.name, bank, len(out))
    return out


__all__ = ["TRANSFORMERS", "Transformer", "load_transactions_from_csv", "transform"]
