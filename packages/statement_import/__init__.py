"""Public interface for the ``statement_import`` package.

This module exposes the import service, the pure pipeline stages (bank
transformers and the entity matcher) and the public models/types as the stable
import surface. There is no runtime logic here, only symbol re-exports.
"""

from .config import ImportSettings
from .errors import (
    CategorizationError,
    EntityConflictError,
    ImportValidationError,
    InvalidRowError,
    MirrorError,
    StatementImportError,
    format_import_error,
)
from .ingest.adapters.amex_au_csv import transform_amex
from .ingest.utils import load_transactions_from_csv, transform
from .logging_setup import configure_logging
from .matching import match_entity
from .models import (
    ConfirmedTransaction,
    CreatedEntity,
    ExecuteImportInput,
    ExecuteImportResult,
    ImportSession,
    ImportWarning,
    MatchResult,
    ProcessedTransaction,
    ProcessImportInput,
    ProcessImportResult,
    RawTransaction,
    SessionHandle,
)
from .service import ImportService

__all__ = [
    # Service
    "ImportService",
    "ImportSettings",
    # Pipeline stages
    "load_transactions_from_csv",
    "match_entity",
    "transform",
    "transform_amex",
    "configure_logging",
    # Models / types
    "ConfirmedTransaction",
    "CreatedEntity",
    "ExecuteImportInput",
    "ExecuteImportResult",
    "ImportSession",
    "ImportWarning",
    "MatchResult",
    "ProcessedTransaction",
    "ProcessImportInput",
    "ProcessImportResult",
    "RawTransaction",
    "SessionHandle",
    # Errors
    "CategorizationError",
    "EntityConflictError",
    "ImportValidationError",
    "InvalidRowError",
    "MirrorError",
    "StatementImportError",
    "format_import_error",
]
