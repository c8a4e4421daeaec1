from __future__ import annotations

import pytest

from statement_import.config import ImportSettings


def test_defaults_without_environment() -> None:
    settings = ImportSettings.from_env()
    assert settings == ImportSettings()
    assert settings.oracle_timeout_sec == 15.0
    assert settings.execute_concurrency == 3
    assert settings.min_rule_confidence == 0.7


def test_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite:///x.db")
    monkeypatch.setenv("OPENAI_API_KEY", " sk-test ")
    monkeypatch.setenv("SI_ORACLE_TIMEOUT_SEC", "2.5")
    monkeypatch.setenv("SI_EXECUTE_CONCURRENCY", "5")
    monkeypatch.setenv("NOTION_BALANCE_SHEET_ID", "db-tx")

    settings = ImportSettings.from_env()

    assert settings.database_url == "sqlite:///x.db"
    assert settings.openai_api_key == "sk-test"
    assert settings.oracle_timeout_sec == 2.5
    assert settings.execute_concurrency == 5
    assert settings.notion_balance_sheet_id == "db-tx"


@pytest.mark.parametrize(
    "name,value",
    [
        ("SI_ORACLE_TIMEOUT_SEC", "soon"),
        ("SI_ORACLE_TIMEOUT_SEC", "0"),
        ("SI_EXECUTE_CONCURRENCY", "0"),
        ("SI_MAX_WORKERS", "two"),
        ("SI_MIN_RULE_CONFIDENCE", "1.5"),
    ],
)
def test_invalid_values_name_the_variable(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=name):
        ImportSettings.from_env()
