"""Data models for ``statement_import``.

Wire-facing shapes (what callers submit and what ``get_import_progress``
returns) are Pydantic models so request validation happens at the boundary.
Internal value objects produced by pure code (matcher results, correction
rules) are frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date as _date
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Enumerations (as Literal aliases)
# ---------------------------------------------------------------------------

type MatchType = Literal["alias", "exact", "prefix", "contains", "correction", "ai"]
type BucketStatus = Literal["matched", "uncertain", "failed", "skipped"]
type TransactionType = Literal["purchase", "transfer", "income"]
type SessionStatus = Literal["pending", "processing", "completed", "failed"]
type SessionKind = Literal["process", "execute"]
type RuleMatchType = Literal["exact", "contains", "regex"]
type WarningType = Literal[
    "AI_CATEGORIZATION_UNAVAILABLE",
    "AI_API_ERROR",
    "DEDUPLICATION_DISABLED",
]

# Mapping from canonical entity display name to stable entity id.
type EntityLookup = dict[str, str]
# Mapping from alias token (as it appears on statements) to entity display name.
type AliasTable = dict[str, str]


# ---------------------------------------------------------------------------
# Canonical transaction
# ---------------------------------------------------------------------------


class RawTransaction(BaseModel):
    """Canonical transaction emitted by a bank transformer.

    ``raw_row`` is the verbatim JSON serialization of the source row and
    ``checksum`` its SHA-256 hex digest; together they are the audit trail and
    the de-duplication key across re-imports.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    description: str
    amount: Decimal
    account: str = Field(min_length=1)
    location: str | None = None
    online: bool = False
    raw_row: str
    checksum: str = Field(min_length=1)

    @field_validator("date")
    @classmethod
    def _real_calendar_date(cls, v: str) -> str:
        try:
            _date.fromisoformat(v)
        except ValueError as exc:
            raise ValueError(f"date is not a real calendar date: {v!r}") from exc
        return v

    @field_validator("amount")
    @classmethod
    def _finite_amount(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("amount must be a finite number")
        return v


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MatchResult:
    """Outcome of the entity matcher; ``match_type`` records provenance."""

    entity_name: str
    entity_id: str
    match_type: MatchType


class EntityMatch(BaseModel):
    """Entity attached to a processed transaction (``match_type="none"`` when unresolved)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entity_id: str | None = None
    entity_name: str | None = None
    entity_url: str | None = None
    match_type: MatchType | Literal["none"] = "none"
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class ProcessedTransaction(RawTransaction):
    entity: EntityMatch = Field(default_factory=EntityMatch)
    status: BucketStatus
    skip_reason: str | None = None
    error: str | None = None
    transaction_type: TransactionType | None = None


@dataclass(frozen=True, slots=True)
class CorrectionRule:
    """An operator-confirmed mapping from a description pattern to an entity."""

    id: int
    description_pattern: str
    match_type: RuleMatchType
    entity_id: str | None
    entity_name: str | None
    location: str | None
    online: bool | None
    transaction_type: TransactionType | None
    confidence: float
    times_applied: int
    created_at: datetime
    last_used_at: datetime | None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ProcessImportInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transactions: list[RawTransaction] = Field(min_length=1)
    account: str = Field(min_length=1)


class ConfirmedTransaction(RawTransaction):
    """A transaction the operator reviewed and approved for commit.

    Purchases must carry a resolved entity; transfers and income have no
    merchant and may omit it. ``remember`` asks the execute phase to learn a
    correction rule from this decision.
    """

    transaction_type: TransactionType = "purchase"
    entity_id: str | None = None
    entity_name: str | None = None
    entity_url: str | None = None
    remember: bool = False

    @model_validator(mode="after")
    def _entity_required_for_purchases(self) -> ConfirmedTransaction:
        if self.transaction_type == "purchase":
            missing = [
                f
                for f in ("entity_id", "entity_name", "entity_url")
                if not (getattr(self, f) or "").strip()
            ]
            if missing:
                raise ValueError(
                    "confirmed purchase is missing a resolved entity: " + ", ".join(missing)
                )
        return self


class ExecuteImportInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transactions: list[ConfirmedTransaction]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ImportWarning(BaseModel):
    type: WarningType
    message: str
    affected_count: int | None = None
    details: str | None = None


class AiUsageStats(BaseModel):
    api_calls: int = 0
    cache_hits: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost_usd: float = 0.0
    avg_cost_per_call: float = 0.0


class ProcessImportResult(BaseModel):
    matched: list[ProcessedTransaction] = Field(default_factory=list)
    uncertain: list[ProcessedTransaction] = Field(default_factory=list)
    failed: list[ProcessedTransaction] = Field(default_factory=list)
    skipped: list[ProcessedTransaction] = Field(default_factory=list)
    warnings: list[ImportWarning] = Field(default_factory=list)
    ai_usage: AiUsageStats | None = None

    def bucket_total(self) -> int:
        return len(self.matched) + len(self.uncertain) + len(self.failed) + len(self.skipped)


class ExecuteFailure(BaseModel):
    item: ConfirmedTransaction
    error: str


class ExecuteImportResult(BaseModel):
    imported: int = 0
    failed: list[ExecuteFailure] = Field(default_factory=list)
    skipped: list[ConfirmedTransaction] = Field(default_factory=list)


class SessionError(BaseModel):
    """One error line on a session; ``index`` is ``None`` for session-level failures."""

    index: int | None = None
    description: str | None = None
    error: str


class ImportSession(BaseModel):
    """Pollable state of one background ``process``/``execute`` run."""

    session_id: str
    kind: SessionKind
    status: SessionStatus = "pending"
    current_step: str | None = None
    total: int
    processed_count: int = 0
    result: ProcessImportResult | ExecuteImportResult | None = None
    errors: list[SessionError] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


class SessionHandle(BaseModel):
    session_id: str


class CreatedEntity(BaseModel):
    entity_id: str
    entity_name: str
    entity_url: str


__all__ = [
    "AiUsageStats",
    "AliasTable",
    "BucketStatus",
    "ConfirmedTransaction",
    "CorrectionRule",
    "CreatedEntity",
    "EntityLookup",
    "EntityMatch",
    "ExecuteFailure",
    "ExecuteImportInput",
    "ExecuteImportResult",
    "ImportSession",
    "ImportWarning",
    "MatchResult",
    "MatchType",
    "ProcessImportInput",
    "ProcessImportResult",
    "ProcessedTransaction",
    "RawTransaction",
    "RuleMatchType",
    "SessionError",
    "SessionHandle",
    "SessionKind",
    "SessionStatus",
    "TransactionType",
]
