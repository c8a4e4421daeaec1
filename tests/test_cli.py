# ruff: noqa: I001
from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

import statement_import.service as service_mod
from statement_import.cli import app
from statement_import.corrections import SqlCorrectionRuleStore

from tests.helpers.db import seed_entities
from tests.helpers.fakes import FakeMirror

FIXTURE = Path(__file__).parent / "fixtures" / "amex_au_sample.csv"

runner = CliRunner()


@pytest.fixture(autouse=True)
def _run_in_tmp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep the callback's .env lookup away from the working tree.
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def seeded_url(sqlite_url: str) -> str:
    seed_entities(
        database_url=sqlite_url,
        entities=[("ent-wow", "Woolworths", ["WOW "]), ("ent-mcd", "McDonald's")],
    )
    return sqlite_url


def test_import_csv_prints_bucket_summary(seeded_url: str) -> None:
    result = runner.invoke(
        app, ["import-csv", str(FIXTURE), "--no-ai", "--database-url", seeded_url, "-v"]
    )

    assert result.exit_code == 0, result.output
    assert "matched=3 uncertain=0 failed=2 skipped=0" in result.output
    assert "McDonald's (prefix)" in result.output
    assert "No entity match found" in result.output


def test_import_csv_can_commit_matched_rows(
    seeded_url: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    mirror = FakeMirror()
    monkeypatch.setattr(service_mod, "NotionMirror", lambda **_: mirror)

    first = runner.invoke(
        app,
        ["import-csv", str(FIXTURE), "--no-ai", "--database-url", seeded_url, "--commit-matched"],
    )
    assert first.exit_code == 0, first.output
    assert "imported=3 failed=0 skipped=0" in first.output
    assert len(mirror.transactions) == 3

    again = runner.invoke(
        app, ["import-csv", str(FIXTURE), "--no-ai", "--database-url", seeded_url]
    )
    assert again.exit_code == 0, again.output
    assert "matched=0 uncertain=0 failed=2 skipped=3" in again.output


def test_import_csv_reports_missing_file(seeded_url: str, tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["import-csv", str(tmp_path / "nope.csv"), "--database-url", seeded_url]
    )
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_import_csv_requires_database_url() -> None:
    result = runner.invoke(app, ["import-csv", str(FIXTURE), "--no-ai"])
    assert result.exit_code == 1
    assert "DATABASE_URL" in result.output


def test_create_entity_reports_mirror_errors(
    seeded_url: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("NOTION_ENTITIES_DB_ID", "db-ent")
    result = runner.invoke(app, ["create-entity", "Blue Bottle", "--database-url", seeded_url])
    assert result.exit_code == 1
    assert "Notion API authentication failed" in result.output


def test_rules_lists_learned_rules(seeded_url: str) -> None:
    store = SqlCorrectionRuleStore(database_url=seeded_url)
    for _ in range(2):
        store.learn("WOOLWORTHS 1234", entity_id="ent-wow", entity_name="Woolworths")

    result = runner.invoke(app, ["rules", "--database-url", seeded_url])

    assert result.exit_code == 0, result.output
    assert "0.60\t1\texact\tWOOLWORTHS\tWoolworths" in result.output


def test_rules_with_no_rules(seeded_url: str) -> None:
    result = runner.invoke(app, ["rules", "--database-url", seeded_url])
    assert result.exit_code == 0
    assert "No correction rules." in result.output
