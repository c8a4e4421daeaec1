"""Collaborator contracts consumed by the import service.

The service only ever talks to these Protocols. Concrete implementations live
in their own modules; tests pass in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .models import ConfirmedTransaction, CorrectionRule, RuleMatchType, TransactionType


@dataclass(frozen=True, slots=True)
class Categorization:
    """A categorization oracle proposal for one description."""

    entity_name: str
    entity_id: str | None = None
    category: str | None = None
    confidence: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


@dataclass(frozen=True, slots=True)
class MirroredEntity:
    page_id: str
    url: str


@runtime_checkable
class EntityDirectory(Protocol):
    def list_entities(self) -> Mapping[str, str]:
        """Return ``display name -> entity id``."""
        ...

    def list_aliases(self) -> Mapping[str, str]:
        """Return ``alias token -> display name``."""
        ...

    def find_by_name(self, name: str) -> str | None:
        """Return the id of an entity whose name matches case-insensitively."""
        ...

    def add_entity(self, entity_id: str, name: str, url: str) -> None: ...


@runtime_checkable
class CorrectionRuleStore(Protocol):
    def find_matching_rule(
        self, description: str, *, min_confidence: float = 0.7
    ) -> CorrectionRule | None: ...

    def record_application(self, rule_id: int) -> None: ...

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
    ) -> CorrectionRule: ...


@runtime_checkable
class CategorizationOracle(Protocol):
    def categorize(self, description: str) -> Categorization | None:
        """Propose an entity, or ``None`` for "no opinion".

        Raises ``CategorizationError`` when the oracle itself is unavailable.
        Must be safe to call from several threads.
        """
        ...


@runtime_checkable
class CommitStore(Protocol):
    def persist_transaction(self, txn: ConfirmedTransaction) -> str:
        """Durably store ``txn`` and return its local id."""
        ...

    def existing_checksums(self, checksums: Iterable[str]) -> set[str]: ...

    def attach_mirror_page(self, transaction_id: str, page_id: str) -> None: ...


@runtime_checkable
class MirrorClient(Protocol):
    def mirror_transaction(self, txn: ConfirmedTransaction) -> str:
        """Write ``txn`` to the external store and return the page id."""
        ...

    def create_entity_page(self, name: str) -> MirroredEntity: ...

    def archive_page(self, page_id: str) -> None: ...


__all__ = [
    "Categorization",
    "CategorizationOracle",
    "CommitStore",
    "CorrectionRuleStore",
    "EntityDirectory",
    "MirrorClient",
    "MirroredEntity",
]
