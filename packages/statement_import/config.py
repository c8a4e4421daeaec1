"""Environment-driven settings for the import pipeline.

Values are read once per ``ImportSettings.from_env()`` call; nothing is read at
import time. The CLI loads a local ``.env`` (python-dotenv) before calling it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_str(name: str) -> str | None:
    raw = os.getenv(name)
    return raw.strip() if raw and raw.strip() else None


@dataclass(frozen=True, slots=True)
class ImportSettings:
    """Tunables for sessions, the categorization oracle and the Notion mirror."""

    database_url: str | None = None
    openai_api_key: str | None = None
    openai_model: str = "gpt-5-mini"
    oracle_timeout_sec: float = 15.0
    execute_concurrency: int = 3
    max_workers: int = 4
    min_rule_confidence: float = 0.7
    notion_api_token: str | None = None
    notion_balance_sheet_id: str | None = None
    notion_entities_db_id: str | None = None

    @classmethod
    def from_env(cls) -> ImportSettings:
        min_conf = _env_float("SI_MIN_RULE_CONFIDENCE", 0.7)
        if not 0.0 <= min_conf <= 1.0:
            raise ValueError(f"SI_MIN_RULE_CONFIDENCE must be within [0,1], got {min_conf}")
        timeout = _env_float("SI_ORACLE_TIMEOUT_SEC", 15.0)
        if timeout <= 0:
            raise ValueError(f"SI_ORACLE_TIMEOUT_SEC must be positive, got {timeout}")
        return cls(
            database_url=_env_str("DATABASE_URL"),
            openai_api_key=_env_str("OPENAI_API_KEY"),
            openai_model=_env_str("SI_OPENAI_MODEL") or "gpt-5-mini",
            oracle_timeout_sec=timeout,
            execute_concurrency=_env_int("SI_EXECUTE_CONCURRENCY", 3),
            max_workers=_env_int("SI_MAX_WORKERS", 4),
            min_rule_confidence=min_conf,
            notion_api_token=_env_str("NOTION_API_TOKEN"),
            notion_balance_sheet_id=_env_str("NOTION_BALANCE_SHEET_ID"),
            notion_entities_db_id=_env_str("NOTION_ENTITIES_DB_ID"),
        )


__all__ = ["ImportSettings"]
