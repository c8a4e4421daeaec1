# ruff: noqa: I001
"""Correction rules: operator-confirmed description -> entity mappings.

Rules are matched against a *normalized* description (upper-cased, digits
removed, whitespace collapsed) so that ``WOOLWORTHS 1234`` and
``WOOLWORTHS 5678`` share one rule. Lookup order is exact rules first, then
``contains`` and ``regex`` rules; within each kind the highest confidence
(then most used) rule wins.

Regex patterns are stored verbatim and treated as untrusted: patterns longer
than ``MAX_REGEX_PATTERN_LENGTH`` or that fail to compile are skipped with a
warning. Evaluation uses the ``regex`` package so each search is abandoned
after ``REGEX_TIMEOUT_SEC`` (a catastrophic pattern simply does not match),
and only ever sees the first ``MAX_REGEX_INPUT_LENGTH`` characters.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from functools import lru_cache

import regex
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from db.client import session_scope
from db.models.imports import SiCorrectionRule
from .logging_setup import get_logger, short
from .models import CorrectionRule, RuleMatchType, TransactionType

DEFAULT_MIN_CONFIDENCE = 0.7
INITIAL_CONFIDENCE = 0.5
CONFIDENCE_STEP = 0.1

MAX_REGEX_PATTERN_LENGTH = 200
MAX_REGEX_INPUT_LENGTH = 512
REGEX_TIMEOUT_SEC = 0.05

_DIGITS = re.compile(r"\d+")
_WHITESPACE = re.compile(r"\s+")

_log = get_logger("statement_import.corrections")


def normalize_description(description: str) -> str:
    """``"Woolworths  1234 Sydney"`` -> ``"WOOLWORTHS SYDNEY"``."""

    upper = _DIGITS.sub("", description.upper())
    return _WHITESPACE.sub(" ", upper).strip()


@lru_cache(maxsize=256)
def _compile(pattern: str) -> regex.Pattern | None:
    if len(pattern) > MAX_REGEX_PATTERN_LENGTH:
        _log.warning("corrections:regex_skipped reason=too_long length=%d", len(pattern))
        return None
    try:
        return regex.compile(pattern, regex.IGNORECASE)
    except regex.error as exc:
        _log.warning("corrections:regex_skipped reason=invalid pattern=%r error=%s", pattern, exc)
        return None


def rule_matches(pattern: str, match_type: RuleMatchType, normalized: str) -> bool:
    """Evaluate one rule pattern against an already-normalized description."""

    if not pattern or not normalized:
        return False
    if match_type == "exact":
        return pattern == normalized
    if match_type == "contains":
        return pattern in normalized
    if match_type == "regex":
        compiled = _compile(pattern)
        if compiled is None:
            return False
        try:
            hit = compiled.search(normalized[:MAX_REGEX_INPUT_LENGTH], timeout=REGEX_TIMEOUT_SEC)
        except TimeoutError:
            _log.warning(
                "corrections:regex_skipped reason=timeout pattern=%r timeout_sec=%.2f",
                pattern,
                REGEX_TIMEOUT_SEC,
            )
            return False
        return hit is not None
    return False


def _to_rule(row: SiCorrectionRule) -> CorrectionRule:
    return CorrectionRule(
        id=row.id,
        description_pattern=row.description_pattern,
        match_type=row.match_type,  # type: ignore[arg-type]
        entity_id=row.entity_id,
        entity_name=row.entity_name,
        location=row.location,
        online=row.online,
        transaction_type=row.transaction_type,  # type: ignore[arg-type]
        confidence=row.confidence,
        times_applied=row.times_applied,
        created_at=row.created_at,
        last_used_at=row.last_used_at,
    )


class SqlCorrectionRuleStore:
    """``CorrectionRuleStore`` backed by the ``si_correction_rules`` table."""

    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url

    def find_matching_rule(
        self, description: str, *, min_confidence: float = DEFAULT_MIN_CONFIDENCE
    ) -> CorrectionRule | None:
        normalized = normalize_description(description)
        if not normalized:
            return None

        ordering = (SiCorrectionRule.confidence.desc(), SiCorrectionRule.times_applied.desc())
        with session_scope(database_url=self._database_url) as session:
            exact = session.scalars(
                select(SiCorrectionRule)
                .where(
                    SiCorrectionRule.match_type == "exact",
                    SiCorrectionRule.description_pattern == normalized,
                    SiCorrectionRule.confidence >= min_confidence,
                )
                .order_by(*ordering)
                .limit(1)
            ).first()
            if exact is not None:
                return _to_rule(exact)

            others = session.scalars(
                select(SiCorrectionRule)
                .where(
                    SiCorrectionRule.match_type.in_(("contains", "regex")),
                    SiCorrectionRule.confidence >= min_confidence,
                )
                .order_by(*ordering, SiCorrectionRule.id)
            ).all()
            for row in others:
                rule = _to_rule(row)
                if rule_matches(rule.description_pattern, rule.match_type, normalized):
                    return rule
        return None

    def record_application(self, rule_id: int) -> None:
        with session_scope(database_url=self._database_url) as session:
            session.execute(
                update(SiCorrectionRule)
                .where(SiCorrectionRule.id == rule_id)
                .values(
                    times_applied=SiCorrectionRule.times_applied + 1,
                    last_used_at=datetime.now(UTC),
                )
            )

    def learn(
        self,
        description: str,
        *,
        entity_id: str | None,
        entity_name: str | None,
        location: str | None = None,
        online: bool | None = None,
        transaction_type: TransactionType | None = None,
        match_type: RuleMatchType = "exact",
    ) -> CorrectionRule:
        """Create a rule for ``description`` or strengthen the existing one.

        New rules start at ``INITIAL_CONFIDENCE``; each re-confirmation adds
        ``CONFIDENCE_STEP`` (capped at 1.0) and counts as one application.
        """

        if match_type == "regex":
            pattern = description.strip()
        else:
            pattern = normalize_description(description)
        if not pattern:
            raise ValueError("cannot learn a correction rule from an empty description")

        fields = {
            "entity_id": entity_id,
            "entity_name": entity_name,
            "location": location,
            "online": online,
            "transaction_type": transaction_type,
        }
        try:
            return self._upsert(pattern, match_type, fields)
        except IntegrityError:
            # Another worker inserted the same pattern first; strengthen theirs.
            return self._upsert(pattern, match_type, fields)

    def _upsert(self, pattern: str, match_type: RuleMatchType, fields: dict) -> CorrectionRule:
        now = datetime.now(UTC)
        with session_scope(database_url=self._database_url) as session:
            row = session.scalars(
                select(SiCorrectionRule).where(
                    SiCorrectionRule.description_pattern == pattern,
                    SiCorrectionRule.match_type == match_type,
                )
            ).first()
            if row is None:
                row = SiCorrectionRule(
                    description_pattern=pattern,
                    match_type=match_type,
                    confidence=INITIAL_CONFIDENCE,
                    times_applied=0,
                    created_at=now,
                    **fields,
                )
                session.add(row)
                event = "created"
            else:
                row.confidence = min(1.0, round(row.confidence + CONFIDENCE_STEP, 4))
                row.times_applied = row.times_applied + 1
                row.last_used_at = now
                # Only supplied values overwrite; None keeps what is stored.
                for key, value in fields.items():
                    if value is not None:
                        setattr(row, key, value)
                event = "strengthened"
            session.flush()
            rule = _to_rule(row)
        _log.info(
            "corrections:%s pattern=%s entity=%s confidence=%.2f",
            event,
            short(pattern),
            rule.entity_name,
            rule.confidence,
        )
        return rule

    def list_rules(self, *, min_confidence: float | None = None) -> list[CorrectionRule]:
        stmt = select(SiCorrectionRule).order_by(
            SiCorrectionRule.confidence.desc(), SiCorrectionRule.times_applied.desc()
        )
        if min_confidence is not None:
            stmt = stmt.where(SiCorrectionRule.confidence >= min_confidence)
        with session_scope(database_url=self._database_url) as session:
            return [_to_rule(r) for r in session.scalars(stmt).all()]


__all__ = [
    "DEFAULT_MIN_CONFIDENCE",
    "MAX_REGEX_INPUT_LENGTH",
    "REGEX_TIMEOUT_SEC",
    "MAX_REGEX_PATTERN_LENGTH",
    "SqlCorrectionRuleStore",
    "normalize_description",
    "rule_matches",
]
