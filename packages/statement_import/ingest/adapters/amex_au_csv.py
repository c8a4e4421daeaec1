"""Adapter for mapping an Amex (AU) statement CSV row to ``RawTransaction``.

CSV header (keys read by this adapter):
Date, Description, Amount, Town/City

Other columns (Country, Address, Postcode, ...) are not mapped but still take
part in ``raw_row``/``checksum`` because those cover the whole source row.

Conventions:
- ``Date`` is ``DD/MM/YYYY`` (day and month may be single digit). ISO dates and
  other separators are rejected; statements are locale specific.
- ``Amount`` is positive for charges. The sign is inverted so expenses are
  negative in the ledger.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation

from pydantic import ValidationError

from ...errors import InvalidRowError
from ...models import RawTransaction

ACCOUNT = "Amex"

REQUIRED_HEADERS: frozenset[str] = frozenset({"Date", "Description", "Amount"})

# Upper-cased substrings that flag a card-not-present purchase.
ONLINE_MARKERS: tuple[str, ...] = (
    "HELP.UBER.COM",
    "PAYPAL",
    "AMAZON",
    "NETFLIX",
    "SPOTIFY",
    "APPLE.COM",
    ".COM.AU",
    ".CO.UK",
)

_MULTI_SPACE = re.compile(r"\s{2,}")
# ASCII digits only; no superscripts or other Unicode digits.
_BANK_DATE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})", re.ASCII)


def serialize_row(row: Mapping[str, str | None]) -> str:
    """Serialize a source row verbatim (key order preserved, compact separators)."""

    return json.dumps(dict(row), ensure_ascii=False, separators=(",", ":"))


def row_checksum(raw_row: str) -> str:
    return hashlib.sha256(raw_row.encode("utf-8")).hexdigest()


def _normalize_date(value: str | None) -> str:
    if value is None:
        raise InvalidRowError("Invalid date format: missing Date")
    m = _BANK_DATE.fullmatch(value.strip())
    if m is None:
        raise InvalidRowError(f"Invalid date format: {value}")
    day, month, year = m.groups()
    return f"{year}-{month.zfill(2)}-{day.zfill(2)}"


def _normalize_amount(value: str | None) -> Decimal:
    if value is None or not value.strip():
        raise InvalidRowError(f"Invalid amount: {value!r}")
    try:
        amount = Decimal(value.strip())
    except InvalidOperation as exc:
        raise InvalidRowError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise InvalidRowError(f"Invalid amount: {value!r}")
    return amount.copy_negate()


def clean_description(value: str) -> str:
    return _MULTI_SPACE.sub(" ", value).strip()


def extract_location(town_city: str | None) -> str | None:
    """Title-case the first line of a multi-line ``Town/City`` value.

    ``"NORTH SYDNEY\\nNSW"`` -> ``"North Sydney"``; blank -> ``None``.
    """

    if not town_city:
        return None
    town = town_city.split("\n", 1)[0].strip()
    if not town:
        return None
    return " ".join(w[:1].upper() + w[1:] for w in town.lower().split(" "))


def detect_online(description: str) -> bool:
    upper = description.upper()
    return any(marker in upper for marker in ONLINE_MARKERS)


def transform_amex(row: Mapping[str, str | None], *, account: str = ACCOUNT) -> RawTransaction:
    """Convert one Amex CSV row to a ``RawTransaction``.

    Raises ``InvalidRowError`` when ``Date``, ``Description`` or ``Amount`` is
    absent or malformed. Pure: the same row always yields the same output.
    """

    raw_row = serialize_row(row)
    description = row.get("Description")
    if description is None:
        raise InvalidRowError("Missing required field: Description")

    date = _normalize_date(row.get("Date"))
    amount = _normalize_amount(row.get("Amount"))
    try:
        return RawTransaction(
            date=date,
            description=clean_description(description),
            amount=amount,
            account=account,
            location=extract_location(row.get("Town/City")),
            online=detect_online(description),
            raw_row=raw_row,
            checksum=row_checksum(raw_row),
        )
    except ValidationError as exc:
        # e.g. 31/02/2026 passes the shape check but is not a calendar date
        raise InvalidRowError(f"Invalid date format: {row.get('Date')}") from exc


__all__ = [
    "ACCOUNT",
    "ONLINE_MARKERS",
    "REQUIRED_HEADERS",
    "clean_description",
    "detect_online",
    "extract_location",
    "row_checksum",
    "serialize_row",
    "transform_amex",
]
