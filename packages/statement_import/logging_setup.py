"""Logging for the ``statement_import`` package.

Entrypoints (the CLI, a host service) call :func:`configure_logging` once; it
attaches one ``StreamHandler`` to the ``"statement_import"`` logger and stops
propagation to the root logger. Library modules only ever call
``get_logger("statement_import.<module>")``. Until configured, the package
logger carries a ``NullHandler`` so embedding applications see nothing unless
they opt in.

Log lines use a compact ``event:name key=value`` shape, e.g.
``process_import:done session_id=... matched=3``. Statement descriptions are
passed through :func:`short` before logging.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "statement_import"
LEVEL_ENV_VAR = "STATEMENT_IMPORT_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_handler: logging.Handler | None = None


def resolve_level(level: int | str | None = None) -> int:
    """``int`` passes through; names and digit strings are parsed; ``None`` reads the env.

    Unknown names fall back to INFO.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV_VAR) or logging.INFO
    if isinstance(level, int):
        return level
    text = level.strip().upper()
    if text.isdigit():
        return int(text)
    return logging.getLevelNamesMapping().get(text, logging.INFO)


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach the package handler. Later calls are no-ops; use :func:`set_level` instead."""

    global _handler
    if _handler is not None:
        return

    pkg = logging.getLogger(PACKAGE_LOGGER)
    for existing in [h for h in pkg.handlers if isinstance(h, logging.NullHandler)]:
        pkg.removeHandler(existing)

    resolved = resolve_level(level)
    _handler = logging.StreamHandler(stream)
    _handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    _handler.setLevel(resolved)
    pkg.setLevel(resolved)
    pkg.addHandler(_handler)
    pkg.propagate = False


def set_level(level: int | str) -> None:
    """Change the package level after configuration (``-v`` on the CLI)."""

    resolved = resolve_level(level)
    logging.getLogger(PACKAGE_LOGGER).setLevel(resolved)
    if _handler is not None:
        _handler.setLevel(resolved)


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if _handler is None and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


def short(text: str | None, limit: int = 50) -> str:
    """Truncate free text (descriptions) for log lines."""

    if not text:
        return ""
    return text if len(text) <= limit else text[: limit - 3] + "..."
