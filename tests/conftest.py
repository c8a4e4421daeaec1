"""Pytest configuration for test isolation.

Settings are read from the environment (``DATABASE_URL``, ``OPENAI_API_KEY``,
``NOTION_*``, ``SI_*``). A developer's shell or ``.env`` must never leak into
tests, so an autouse fixture clears those variables for every test. Each test
that needs a database gets its own file-backed SQLite URL under ``tmp_path``.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Make sure the workspace `packages/` and `libs/db/src` dirs are on sys.path so
# `statement_import` and `db` are importable without an editable install.
_ROOT = Path(__file__).resolve().parents[1]
_SRC_DIRS = [_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT]
sys.path[:0] = [str(p) for p in _SRC_DIRS if str(p) not in sys.path]

from tests.helpers.db import bootstrap_sqlite_db, teardown_sqlite_db  # noqa: E402

_ISOLATED_ENV = (
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "NOTION_API_TOKEN",
    "NOTION_BALANCE_SHEET_ID",
    "NOTION_ENTITIES_DB_ID",
    "SI_OPENAI_MODEL",
    "SI_ORACLE_TIMEOUT_SEC",
    "SI_EXECUTE_CONCURRENCY",
    "SI_MAX_WORKERS",
    "SI_MIN_RULE_CONFIDENCE",
    "STATEMENT_IMPORT_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop every setting the package reads so tests start from defaults."""

    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sqlite_url(tmp_path: Path) -> Iterator[str]:
    """A freshly migrated SQLite database private to one test."""

    url = bootstrap_sqlite_db(tmp_path / "si.sqlite3")
    try:
        yield url
    finally:
        teardown_sqlite_db(url)
