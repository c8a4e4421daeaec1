# ruff: noqa: I001
"""CLI for the ``statement_import`` package.

Typer console interface over :class:`statement_import.service.ImportService`.
Environment variables (``DATABASE_URL``, ``OPENAI_API_KEY``, ``NOTION_*``) are
loaded from a local ``.env`` using ``python-dotenv`` before any command runs.
Business logic lives in ``statement_import.service`` and related modules.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv

from .config import ImportSettings
from .logging_setup import configure_logging, set_level
from .models import ImportSession, ProcessedTransaction, ProcessImportResult
from .service import ImportService


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank statements: resolve merchants, review buckets and commit to the "
        "ledger. Loads DATABASE_URL, OPENAI_API_KEY and NOTION_* from a local .env."
    ),
)


# ---- Small module-level helpers used by CLI commands -------------------------


def _settings(database_url: str | None) -> ImportSettings:
    try:
        settings = ImportSettings.from_env()
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        raise typer.Exit(1) from e
    if database_url:
        from dataclasses import replace

        settings = replace(settings, database_url=database_url)
    if not settings.database_url:
        print("Error: DATABASE_URL is not set in the environment.", file=sys.stderr)
        raise typer.Exit(1)
    return settings


def _wait(service: ImportService, session_id: str, *, poll_interval: float) -> ImportSession:
    """Poll ``get_import_progress`` until the session is terminal, echoing each new step."""

    last_step: str | None = None
    while True:
        snapshot = service.get_import_progress(session_id)
        if snapshot is None:
            raise RuntimeError(f"session {session_id} disappeared")
        if snapshot.current_step and snapshot.current_step != last_step:
            last_step = snapshot.current_step
            print(f"  {last_step}", file=sys.stderr)
        if snapshot.is_terminal:
            return snapshot
        time.sleep(poll_interval)


def _entity_label(item: ProcessedTransaction) -> str:
    entity = item.entity
    if entity.entity_name is None:
        return "-"
    suffix = f" {entity.confidence:.2f}" if entity.confidence is not None else ""
    return f"{entity.entity_name} ({entity.match_type}{suffix})"


def _print_process_result(result: ProcessImportResult, *, verbose: bool) -> None:
    print(
        f"matched={len(result.matched)} uncertain={len(result.uncertain)} "
        f"failed={len(result.failed)} skipped={len(result.skipped)}"
    )
    for bucket in ("matched", "uncertain", "failed", "skipped"):
        items: list[ProcessedTransaction] = getattr(result, bucket)
        if not items or (bucket == "matched" and not verbose):
            continue
        print(f"\n[{bucket}]")
        for item in items:
            note = item.error or item.skip_reason or _entity_label(item)
            print(f"{item.date}\t{item.amount}\t{item.description}\t{note}")
    for warning in result.warnings:
        count = f" ({warning.affected_count})" if warning.affected_count else ""
        print(f"warning: {warning.type}{count}: {warning.message}", file=sys.stderr)
    if result.ai_usage is not None:
        usage = result.ai_usage
        print(
            f"ai: calls={usage.api_calls} cache_hits={usage.cache_hits} "
            f"cost_usd={usage.total_cost_usd:.4f}",
            file=sys.stderr,
        )


def _confirm_matched(result: ProcessImportResult) -> list[dict]:
    """Matched items as ``execute_import`` payload rows (no review)."""

    out: list[dict] = []
    for item in result.matched:
        row = item.model_dump(exclude={"entity", "status", "skip_reason", "error"})
        row["transaction_type"] = item.transaction_type or "purchase"
        row["entity_id"] = item.entity.entity_id
        row["entity_name"] = item.entity.entity_name
        row["entity_url"] = item.entity.entity_url
        out.append(row)
    return out


# ---- Commands ----------------------------------------------------------------


@app.command("import-csv")
def import_csv_cmd(
    csv_path: Annotated[Path, typer.Argument(help="Path to a bank statement CSV", dir_okay=False)],
    *,
    bank: str = typer.Option("amex", help="Bank adapter used to read the CSV."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    no_ai: bool = typer.Option(False, "--no-ai", help="Skip the OpenAI categorization fallback."),
    commit_matched: bool = typer.Option(
        False, help="Commit every matched transaction without review."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="List matched rows and log at DEBUG."
    ),
    poll_interval: float = typer.Option(0.25, help="Seconds between progress polls."),
) -> None:
    """Process a statement CSV and print the review buckets."""

    import csv

    from .errors import InvalidRowError
    from .ingest.utils import load_transactions_from_csv

    if verbose:
        set_level("DEBUG")

    try:
        transactions = load_transactions_from_csv(csv_path, bank=bank)
    except FileNotFoundError:
        print(f"Error: File not found: {csv_path}", file=sys.stderr)
        raise typer.Exit(1) from None
    except PermissionError:
        print(f"Error: Permission denied: {csv_path}", file=sys.stderr)
        raise typer.Exit(1) from None
    except (csv.Error, InvalidRowError) as e:
        print(f"Error: Failed to parse CSV: {e}", file=sys.stderr)
        raise typer.Exit(1) from e

    if not transactions:
        print("No transactions to import.")
        return

    settings = _settings(database_url)
    with ImportService.from_settings(settings, use_ai=not no_ai) as service:
        handle = service.process_import(
            {"transactions": transactions, "account": transactions[0].account}
        )
        session = _wait(service, handle.session_id, poll_interval=poll_interval)
        if session.status == "failed" or not isinstance(session.result, ProcessImportResult):
            for err in session.errors:
                print(f"Error: {err.error}", file=sys.stderr)
            raise typer.Exit(1)
        _print_process_result(session.result, verbose=verbose)

        if not commit_matched or not session.result.matched:
            return
        handle = service.execute_import({"transactions": _confirm_matched(session.result)})
        executed = _wait(service, handle.session_id, poll_interval=poll_interval)
        outcome = executed.result
        if executed.status == "failed" or outcome is None:
            for err in executed.errors:
                print(f"Error: {err.error}", file=sys.stderr)
            raise typer.Exit(1)
        print(
            f"imported={outcome.imported} failed={len(outcome.failed)} "
            f"skipped={len(outcome.skipped)}"
        )
        for failure in outcome.failed:
            print(f"Error: {failure.item.description}: {failure.error}", file=sys.stderr)
        if outcome.failed:
            raise typer.Exit(1)


@app.command("create-entity")
def create_entity_cmd(
    name: Annotated[str, typer.Argument(help="Display name of the new merchant")],
    *,
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Create a merchant in Notion and the local registry."""

    from .errors import StatementImportError, format_import_error

    settings = _settings(database_url)
    with ImportService.from_settings(settings, use_ai=False) as service:
        try:
            created = service.create_entity(name)
        except StatementImportError as e:
            print(f"Error: {format_import_error(e).render()}", file=sys.stderr)
            raise typer.Exit(1) from e
    print(f"{created.entity_id}\t{created.entity_name}\t{created.entity_url}")


@app.command("rules")
def rules_cmd(
    *,
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    min_confidence: float | None = typer.Option(
        None, min=0.0, max=1.0, help="Only list rules at or above this confidence."
    ),
) -> None:
    """List learned correction rules, most confident first."""

    from .corrections import SqlCorrectionRuleStore

    settings = _settings(database_url)
    store = SqlCorrectionRuleStore(database_url=settings.database_url)
    rules = store.list_rules(min_confidence=min_confidence)
    if not rules:
        print("No correction rules.")
        return
    for rule in rules:
        target = rule.entity_name or rule.transaction_type or "-"
        print(
            f"{rule.confidence:.2f}\t{rule.times_applied}\t{rule.match_type}\t"
            f"{rule.description_pattern}\t{target}"
        )


@app.callback()
def _root() -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    # Load environment from .env in CWD (override=False to keep existing env)
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m statement_import.cli`
    app()
