from __future__ import annotations

import csv
from decimal import Decimal
from pathlib import Path

import pytest

from statement_import.errors import InvalidRowError
from statement_import.ingest.utils import load_transactions_from_csv

FIXTURE = Path(__file__).parent / "fixtures" / "amex_au_sample.csv"


def test_loads_rows_in_file_order() -> None:
    rows = load_transactions_from_csv(FIXTURE)

    assert [r.date for r in rows] == [
        "2026-02-13",
        "2026-02-14",
        "2026-02-15",
        "2026-02-16",
        "2026-02-17",
    ]
    first = rows[0]
    assert first.description == "WOOLWORTHS 1234"
    assert first.amount == Decimal("-125.50")
    assert first.location == "North Sydney"
    assert rows[2].description == "UBER *TRIP HELP.UBER.COM"
    assert rows[2].online is True
    assert rows[2].location is None
    assert rows[3].amount == Decimal("500.00")
    assert len({r.checksum for r in rows}) == len(rows)


def test_reloading_gives_identical_checksums() -> None:
    first = [r.checksum for r in load_transactions_from_csv(FIXTURE)]
    again = [r.checksum for r in load_transactions_from_csv(FIXTURE)]
    assert first == again


def test_utf8_bom_is_tolerated(tmp_path: Path) -> None:
    path = tmp_path / "bom.csv"
    path.write_bytes(b"\xef\xbb\xbf" + FIXTURE.read_bytes())
    assert len(load_transactions_from_csv(path)) == 5


def test_missing_columns_raise_csv_error(tmp_path: Path) -> None:
    path = tmp_path / "bad.csv"
    path.write_text("Date,Details,Amount\n13/02/2026,COLES,1.00\n", encoding="utf-8")
    with pytest.raises(csv.Error, match="Description"):
        load_transactions_from_csv(path)


def test_empty_file_raises_csv_error(tmp_path: Path) -> None:
    path = tmp_path / "empty.csv"
    path.write_text("", encoding="utf-8")
    with pytest.raises(csv.Error, match="no header"):
        load_transactions_from_csv(path)


def test_bad_row_reports_its_number(tmp_path: Path) -> None:
    path = tmp_path / "bad_row.csv"
    path.write_text(
        "Date,Description,Amount\n13/02/2026,COLES,1.00\n2026-02-14,ALDI,2.00\n",
        encoding="utf-8",
    )
    with pytest.raises(InvalidRowError, match=r"^row 2: Invalid date format"):
        load_transactions_from_csv(path)


def test_unknown_bank_is_rejected() -> None:
    with pytest.raises(InvalidRowError, match="Unknown bank"):
        load_transactions_from_csv(FIXTURE, bank="westpac")
