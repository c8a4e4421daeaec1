"""Import session orchestrator.

``ImportService`` is the public face of the package:

- ``process_import`` validates a batch, opens a ``process`` session and returns
  its id at once; a background worker then resolves every transaction through
  de-duplication, correction rules, the entity matcher and finally the
  categorization oracle, placing each in exactly one bucket.
- ``execute_import`` commits operator-confirmed transactions (persist, then
  mirror) in a second pollable session with bounded concurrency; one item
  failing never stops the others.
- ``get_import_progress`` returns a snapshot of a session, or ``None``.
- ``create_entity`` registers a new merchant synchronously.

All collaborators are injected, so one service instance owns its own worker
pool, session registry and categorization cache.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .categorization import CachedCategorizer, OpenAICategorizer, UsageTally
from .config import ImportSettings
from .corrections import SqlCorrectionRuleStore
from .entities import SqlEntityDirectory, create_entity
from .errors import CategorizationError, ImportValidationError, format_import_error
from .interfaces import (
    CategorizationOracle,
    CommitStore,
    CorrectionRuleStore,
    EntityDirectory,
    MirrorClient,
)
from .logging_setup import get_logger, short
from .matching import match_entity, resolve_entity_name
from .mirror import NotionMirror, entity_url
from .models import (
    AliasTable,
    ConfirmedTransaction,
    CorrectionRule,
    CreatedEntity,
    EntityLookup,
    EntityMatch,
    ExecuteFailure,
    ExecuteImportInput,
    ExecuteImportResult,
    ImportSession,
    ImportWarning,
    ProcessedTransaction,
    ProcessImportInput,
    ProcessImportResult,
    RawTransaction,
    SessionError,
    SessionHandle,
    WarningType,
)
from .persistence import SqlCommitStore
from .pmap import p_map
from .sessions import SessionRegistry

NO_MATCH_ERROR = "No entity match found"
AI_UNAVAILABLE_ERROR = "AI categorization unavailable"
DUPLICATE_COMMITTED = "Duplicate transaction (checksum match)"
DUPLICATE_IN_BATCH = "Duplicate transaction in this import (checksum match)"

# Oracle proposals below this confidence are treated as "no opinion".
AI_MIN_CONFIDENCE = 0.5
# Confidence reported for an oracle proposal naming an entity we do not know.
AI_NEW_ENTITY_CONFIDENCE = 0.7

_ModelT = TypeVar("_ModelT", bound=BaseModel)

_logger = get_logger("statement_import.service")


def _validate(model: type[_ModelT], payload: _ModelT | Mapping[str, Any]) -> _ModelT:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ImportValidationError(str(exc)) from exc


@dataclass
class _ProcessState:
    """Mutable state owned by one ``process`` worker."""

    entities: EntityLookup
    aliases: AliasTable
    committed: set[str]
    seen: set[str] = field(default_factory=set)
    usage: UsageTally = field(default_factory=UsageTally)
    warnings: dict[WarningType, ImportWarning] = field(default_factory=dict)
    ai_available: bool = True
    ai_unavailable_reason: str | None = None

    def warn(self, kind: WarningType, message: str, details: str | None = None) -> None:
        existing = self.warnings.get(kind)
        if existing is None:
            self.warnings[kind] = ImportWarning(
                type=kind, message=message, affected_count=1, details=details
            )
        else:
            existing.affected_count = (existing.affected_count or 0) + 1


@dataclass(frozen=True, slots=True)
class _CommitOutcome:
    item: ConfirmedTransaction
    error: str | None = None
    skipped: bool = False


class ImportService:
    def __init__(
        self,
        *,
        entities: EntityDirectory,
        rules: CorrectionRuleStore,
        commits: CommitStore,
        mirror: MirrorClient,
        oracle: CategorizationOracle | None = None,
        settings: ImportSettings | None = None,
        close_mirror: bool = False,
    ) -> None:
        self._settings = settings or ImportSettings()
        self._entities = entities
        self._rules = rules
        self._commits = commits
        self._mirror = mirror
        self._close_mirror = close_mirror
        self._owns_oracle = oracle is not None and not isinstance(oracle, CachedCategorizer)
        if self._owns_oracle:
            self._oracle: CachedCategorizer | None = CachedCategorizer(
                oracle, timeout_sec=self._settings.oracle_timeout_sec
            )
        else:
            self._oracle = oracle  # type: ignore[assignment]
        self._sessions = SessionRegistry()
        self._executor = ThreadPoolExecutor(
            max_workers=self._settings.max_workers, thread_name_prefix="si-session"
        )
        self._closed = False

    @classmethod
    def from_settings(cls, settings: ImportSettings, *, use_ai: bool = True) -> ImportService:
        """Wire the SQL stores, the Notion mirror and (optionally) the OpenAI oracle."""

        oracle = (
            OpenAICategorizer(api_key=settings.openai_api_key, model=settings.openai_model)
            if use_ai
            else None
        )
        return cls(
            entities=SqlEntityDirectory(database_url=settings.database_url),
            rules=SqlCorrectionRuleStore(database_url=settings.database_url),
            commits=SqlCommitStore(database_url=settings.database_url),
            mirror=NotionMirror(
                api_token=settings.notion_api_token,
                balance_sheet_id=settings.notion_balance_sheet_id,
                entities_db_id=settings.notion_entities_db_id,
            ),
            oracle=oracle,
            settings=settings,
            close_mirror=True,
        )

    # ---- Public API ----------------------------------------------------------

    def process_import(self, payload: ProcessImportInput | Mapping[str, Any]) -> SessionHandle:
        """Validate ``payload`` and start a background ``process`` session."""

        data = _validate(ProcessImportInput, payload)
        session = self._sessions.create("process", total=len(data.transactions))
        _logger.info(
            "process_import:queued session_id=%s account=%s total=%d",
            session.session_id,
            data.account,
            session.total,
        )
        self._submit(session.session_id, self._run_process, data)
        return SessionHandle(session_id=session.session_id)

    def execute_import(self, payload: ExecuteImportInput | Mapping[str, Any]) -> SessionHandle:
        """Validate confirmed transactions and start a background ``execute`` session."""

        data = _validate(ExecuteImportInput, payload)
        session = self._sessions.create("execute", total=len(data.transactions))
        _logger.info(
            "execute_import:queued session_id=%s total=%d", session.session_id, session.total
        )
        self._submit(session.session_id, self._run_execute, data)
        return SessionHandle(session_id=session.session_id)

    def get_import_progress(self, session_id: str) -> ImportSession | None:
        return self._sessions.get(session_id)

    def create_entity(self, name: str) -> CreatedEntity:
        return create_entity(name, directory=self._entities, mirror=self._mirror)

    def shutdown(self, *, wait: bool = True) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)
        if self._owns_oracle and self._oracle is not None:
            self._oracle.close()
        if self._close_mirror:
            self._mirror.close()  # type: ignore[attr-defined]

    def __enter__(self) -> ImportService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # ---- Worker plumbing -----------------------------------------------------

    def _submit(self, session_id: str, fn: Callable[[str, Any], None], data: Any) -> None:
        if self._closed:
            self._sessions.fail(session_id, "ImportService has been shut down")
            raise RuntimeError("ImportService has been shut down")
        self._executor.submit(self._guarded, session_id, fn, data)

    def _guarded(self, session_id: str, fn: Callable[[str, Any], None], data: Any) -> None:
        try:
            fn(session_id, data)
        except Exception as exc:
            _logger.exception("session:crashed session_id=%s", session_id)
            snapshot = self._sessions.get(session_id)
            if snapshot is not None and not snapshot.is_terminal:
                self._sessions.fail(session_id, format_import_error(exc).render())

    # ---- process -------------------------------------------------------------

    def _run_process(self, session_id: str, data: ProcessImportInput) -> None:
        result = ProcessImportResult()
        total = len(data.transactions)
        self._sessions.start(session_id, current_step="Loading entities")

        try:
            entities = dict(self._entities.list_entities())
            aliases = dict(self._entities.list_aliases())
        except Exception as exc:
            _logger.error("process_import:entities_failed session_id=%s error=%s", session_id, exc)
            self._sessions.fail(
                session_id,
                f"Failed to load entities: {format_import_error(exc).render()}",
                partial=result,
            )
            return

        self._sessions.set_step(session_id, "Checking for duplicates")
        state = _ProcessState(entities=entities, aliases=aliases, committed=set())
        try:
            state.committed = self._commits.existing_checksums(
                t.checksum for t in data.transactions
            )
        except Exception as exc:  # noqa: BLE001
            _logger.warning("process_import:dedup_disabled session_id=%s error=%s", session_id, exc)
            state.warnings["DEDUPLICATION_DISABLED"] = ImportWarning(
                type="DEDUPLICATION_DISABLED",
                message="Could not check previously imported transactions; duplicates "
                "from earlier imports will not be skipped",
                details=str(exc),
            )

        try:
            for idx, txn in enumerate(data.transactions):
                processed = self._process_one(session_id, idx, txn, state)
                getattr(result, processed.status).append(processed)
                self._sessions.advance(session_id, current_step=f"Processed {idx + 1}/{total}")
        except Exception as exc:
            _logger.exception("process_import:aborted session_id=%s", session_id)
            result.warnings = list(state.warnings.values())
            self._sessions.fail(session_id, format_import_error(exc).render(), partial=result)
            return

        result.warnings = list(state.warnings.values())
        result.ai_usage = state.usage.snapshot() if state.usage.used else None
        if result.bucket_total() != total:
            self._sessions.fail(
                session_id,
                f"Bucketed {result.bucket_total()} of {total} transactions",
                partial=result,
            )
            return
        self._sessions.complete(session_id, result)
        _logger.info(
            (
                "process_import:done session_id=%s matched=%d uncertain=%d failed=%d "
                "skipped=%d ai_calls=%d cache_hits=%d"
            ),
            session_id,
            len(result.matched),
            len(result.uncertain),
            len(result.failed),
            len(result.skipped),
            state.usage.api_calls,
            state.usage.cache_hits,
        )

    def _process_one(
        self, session_id: str, idx: int, txn: RawTransaction, state: _ProcessState
    ) -> ProcessedTransaction:
        base = txn.model_dump()
        try:
            if txn.checksum in state.committed:
                return ProcessedTransaction(
                    **base, status="skipped", skip_reason=DUPLICATE_COMMITTED
                )
            if txn.checksum in state.seen:
                return ProcessedTransaction(
                    **base, status="skipped", skip_reason=DUPLICATE_IN_BATCH
                )
            state.seen.add(txn.checksum)

            rule = self._find_rule(txn)
            if rule is not None:
                return self._from_rule(txn, rule)

            match = match_entity(txn.description, state.entities, state.aliases)
            if match is not None:
                _logger.debug(
                    "process_import:matched description=%s entity=%s via=%s",
                    short(txn.description),
                    match.entity_name,
                    match.match_type,
                )
                return ProcessedTransaction(
                    **base,
                    status="matched",
                    entity=EntityMatch(
                        entity_id=match.entity_id,
                        entity_name=match.entity_name,
                        entity_url=entity_url(match.entity_id),
                        match_type=match.match_type,
                    ),
                )

            return self._categorize(session_id, idx, txn, state)
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or exc.__class__.__name__
            _logger.warning(
                "process_import:item_failed session_id=%s index=%d error=%s",
                session_id,
                idx,
                message,
            )
            self._sessions.add_error(
                session_id, SessionError(index=idx, description=txn.description, error=message)
            )
            return ProcessedTransaction(**base, status="failed", error=message)

    def _find_rule(self, txn: RawTransaction) -> CorrectionRule | None:
        try:
            rule = self._rules.find_matching_rule(
                txn.description, min_confidence=self._settings.min_rule_confidence
            )
        except Exception as exc:  # noqa: BLE001
            _logger.warning(
                "process_import:rules_unavailable description=%s error=%s",
                short(txn.description),
                exc,
            )
            return None
        if rule is None:
            return None
        if not rule.entity_id and rule.transaction_type not in ("transfer", "income"):
            return None
        try:
            self._rules.record_application(rule.id)
        except Exception as exc:  # noqa: BLE001
            _logger.warning("process_import:rule_bump_failed rule_id=%s error=%s", rule.id, exc)
        return rule

    def _from_rule(self, txn: RawTransaction, rule: CorrectionRule) -> ProcessedTransaction:
        base = txn.model_dump()
        if rule.location is not None:
            base["location"] = rule.location
        if rule.online is not None:
            base["online"] = rule.online
        _logger.debug(
            "process_import:correction description=%s rule_id=%s confidence=%.2f",
            short(txn.description),
            rule.id,
            rule.confidence,
        )
        return ProcessedTransaction(
            **base,
            status="matched",
            transaction_type=rule.transaction_type,
            entity=EntityMatch(
                entity_id=rule.entity_id,
                entity_name=rule.entity_name,
                entity_url=entity_url(rule.entity_id) if rule.entity_id else None,
                match_type="correction",
                confidence=rule.confidence,
            ),
        )

    def _categorize(
        self, session_id: str, idx: int, txn: RawTransaction, state: _ProcessState
    ) -> ProcessedTransaction:
        base = txn.model_dump()
        if self._oracle is None:
            return ProcessedTransaction(**base, status="failed", error=NO_MATCH_ERROR)
        if not state.ai_available:
            state.warn("AI_CATEGORIZATION_UNAVAILABLE", state.ai_unavailable_reason or "")
            return ProcessedTransaction(**base, status="failed", error=AI_UNAVAILABLE_ERROR)

        try:
            lookup = self._oracle.lookup(txn.description)
        except CategorizationError as exc:
            formatted = format_import_error(exc)
            if exc.code in ("NO_API_KEY", "INSUFFICIENT_CREDITS"):
                state.ai_available = False
                state.ai_unavailable_reason = formatted.render()
                state.warn("AI_CATEGORIZATION_UNAVAILABLE", formatted.render(), formatted.details)
            else:
                state.usage.record_failed_call()
                state.warn("AI_API_ERROR", formatted.render(), formatted.details)
            self._sessions.add_error(
                session_id,
                SessionError(index=idx, description=txn.description, error=formatted.render()),
            )
            return ProcessedTransaction(**base, status="failed", error=AI_UNAVAILABLE_ERROR)

        state.usage.record(lookup)
        proposal = lookup.result
        if proposal is None or proposal.confidence < AI_MIN_CONFIDENCE:
            return ProcessedTransaction(**base, status="failed", error=NO_MATCH_ERROR)

        # AI proposals always wait for operator confirmation.
        known = resolve_entity_name(proposal.entity_name, state.entities)
        if known is not None:
            name, entity_id = known
            return ProcessedTransaction(
                **base,
                status="uncertain",
                entity=EntityMatch(
                    entity_id=entity_id,
                    entity_name=name,
                    entity_url=entity_url(entity_id),
                    match_type="ai",
                    confidence=proposal.confidence,
                ),
            )
        return ProcessedTransaction(
            **base,
            status="uncertain",
            entity=EntityMatch(
                entity_name=proposal.entity_name,
                match_type="ai",
                confidence=AI_NEW_ENTITY_CONFIDENCE,
            ),
        )

    # ---- execute -------------------------------------------------------------

    def _run_execute(self, session_id: str, data: ExecuteImportInput) -> None:
        total = len(data.transactions)
        self._sessions.start(session_id, current_step=f"Committing 0/{total}")

        try:
            committed = self._commits.existing_checksums(t.checksum for t in data.transactions)
        except Exception as exc:  # noqa: BLE001
            _logger.warning("execute_import:dedup_disabled session_id=%s error=%s", session_id, exc)
            committed = set()

        done = 0

        def _on_result(idx: int, outcome: _CommitOutcome) -> None:
            nonlocal done
            done += 1
            if outcome.error is not None:
                self._sessions.add_error(
                    session_id,
                    SessionError(
                        index=idx, description=outcome.item.description, error=outcome.error
                    ),
                )
            self._sessions.advance(session_id, current_step=f"Committing {done}/{total}")

        outcomes = p_map(
            data.transactions,
            lambda txn: self._commit_one(txn, committed),
            concurrency=self._settings.execute_concurrency,
            on_result=_on_result,
            thread_name_prefix="si-commit",
        )

        result = ExecuteImportResult()
        for outcome in outcomes:
            if outcome.skipped:
                result.skipped.append(outcome.item)
            elif outcome.error is not None:
                result.failed.append(ExecuteFailure(item=outcome.item, error=outcome.error))
            else:
                result.imported += 1
        self._sessions.complete(session_id, result)
        _logger.info(
            "execute_import:done session_id=%s imported=%d failed=%d skipped=%d",
            session_id,
            result.imported,
            len(result.failed),
            len(result.skipped),
        )

    def _commit_one(self, txn: ConfirmedTransaction, committed: set[str]) -> _CommitOutcome:
        if txn.checksum in committed:
            return _CommitOutcome(item=txn, skipped=True)
        try:
            transaction_id = self._commits.persist_transaction(txn)
            page_id = self._mirror.mirror_transaction(txn)
            self._commits.attach_mirror_page(transaction_id, page_id)
        except Exception as exc:  # noqa: BLE001
            _logger.warning(
                "execute_import:item_failed description=%s error=%s", short(txn.description), exc
            )
            return _CommitOutcome(item=txn, error=str(exc) or exc.__class__.__name__)

        if txn.remember:
            self._learn(txn)
        return _CommitOutcome(item=txn)

    def _learn(self, txn: ConfirmedTransaction) -> None:
        try:
            self._rules.learn(
                txn.description,
                entity_id=txn.entity_id,
                entity_name=txn.entity_name,
                location=txn.location,
                online=txn.online,
                transaction_type=txn.transaction_type,
            )
        except Exception as exc:  # noqa: BLE001
            _logger.warning(
                "execute_import:learn_failed description=%s error=%s", short(txn.description), exc
            )


__all__ = [
    "AI_MIN_CONFIDENCE",
    "AI_NEW_ENTITY_CONFIDENCE",
    "AI_UNAVAILABLE_ERROR",
    "DUPLICATE_COMMITTED",
    "DUPLICATE_IN_BATCH",
    "ImportService",
    "NO_MATCH_ERROR",
]
