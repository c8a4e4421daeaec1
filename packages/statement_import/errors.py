"""Exception types and operator-facing error formatting.

Taxonomy
--------
- Validation errors (``InvalidRowError``, ``ImportValidationError``): raised
  synchronously, before any session exists; never retried.
- Collaborator failures (``CategorizationError``, ``MirrorError``): recorded
  per item by the orchestrator and never abort a batch.
- Everything else escaping a session worker marks that session ``failed``.

``format_import_error`` turns any of the above into a short message plus an
optional suggestion for the ``errors`` list of a polled session.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import httpx

CategorizationErrorCode = Literal["NO_API_KEY", "API_ERROR", "INSUFFICIENT_CREDITS", "TIMEOUT"]


class StatementImportError(Exception):
    """Base class for all errors raised by ``statement_import``."""


class InvalidRowError(StatementImportError, ValueError):
    """A raw bank row is missing a required field or carries a malformed value."""


class ImportValidationError(StatementImportError, ValueError):
    """A ``process_import``/``execute_import`` request failed shape validation."""


class CategorizationError(StatementImportError):
    """The categorization oracle could not produce an answer."""

    def __init__(self, message: str, code: CategorizationErrorCode) -> None:
        super().__init__(message)
        self.code: CategorizationErrorCode = code


class MirrorError(StatementImportError):
    """The external document-store mirror rejected or failed a write."""

    def __init__(
        self, message: str, *, status_code: int | None = None, code: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class EntityConflictError(StatementImportError):
    """An entity with the requested name already exists."""


@dataclass(frozen=True, slots=True)
class FormattedError:
    message: str
    suggestion: str | None = None
    details: str | None = None

    def render(self) -> str:
        return f"{self.message} - {self.suggestion}" if self.suggestion else self.message


_MIRROR_CODES: dict[str, tuple[str, str]] = {
    "object_not_found": (
        "Notion database not found",
        "Check NOTION_BALANCE_SHEET_ID and verify the database is shared with the integration",
    ),
    "unauthorized": (
        "Notion API authentication failed",
        "Check NOTION_API_TOKEN and verify it hasn't expired",
    ),
    "validation_error": (
        "Notion API validation error",
        "Check that all required properties exist in the Notion database",
    ),
    "rate_limited": (
        "Notion API rate limit exceeded",
        "Wait a moment and try again; split large imports into smaller batches",
    ),
    "timeout": (
        "Request timed out",
        "Check your internet connection and try again",
    ),
    "connection_error": (
        "Connection refused",
        "Check that the Notion API is reachable and your connection is working",
    ),
}


def format_import_error(error: BaseException, *, transaction: str | None = None) -> FormattedError:
    """Map an exception to a user-facing message with an actionable suggestion."""

    if isinstance(error, CategorizationError):
        if error.code == "NO_API_KEY":
            return FormattedError(
                "AI categorization unavailable",
                "Add OPENAI_API_KEY to .env",
                "AI categorization requires an OpenAI API key.",
            )
        if error.code == "INSUFFICIENT_CREDITS":
            return FormattedError(
                "AI API credits exhausted",
                "Add credits to the OpenAI account",
                str(error),
            )
        if error.code == "TIMEOUT":
            return FormattedError(
                "AI categorization timed out",
                "Try again or categorize the transaction manually",
                str(error),
            )
        return FormattedError(
            "AI categorization failed",
            "This may be a temporary API issue. Try again or categorize the transaction manually.",
            str(error),
        )

    if isinstance(error, MirrorError) and error.code in _MIRROR_CODES:
        message, suggestion = _MIRROR_CODES[error.code]
        return FormattedError(message, suggestion, str(error))

    if isinstance(error, httpx.TimeoutException):
        return FormattedError(
            "Request timed out", "Check your internet connection and try again", str(error)
        )
    if isinstance(error, httpx.ConnectError):
        return FormattedError(
            "Connection refused",
            "Check that the Notion API is reachable and your connection is working",
            str(error),
        )

    return FormattedError(str(error) or error.__class__.__name__, None, transaction)


__all__ = [
    "CategorizationError",
    "CategorizationErrorCode",
    "EntityConflictError",
    "FormattedError",
    "ImportValidationError",
    "InvalidRowError",
    "MirrorError",
    "StatementImportError",
    "format_import_error",
]
