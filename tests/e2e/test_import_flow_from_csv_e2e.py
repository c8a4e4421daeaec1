# ruff: noqa: E402, I001
from __future__ import annotations

import sys
from pathlib import Path

# Make sure the workspace source dirs are on sys.path so `statement_import` is importable
_ROOT = Path(__file__).resolve().parents[2]
_SRC_DIRS = [_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT]
sys.path[:0] = [str(p) for p in _SRC_DIRS if str(p) not in sys.path]

from statement_import.config import ImportSettings  # noqa: E402
from statement_import.corrections import SqlCorrectionRuleStore  # noqa: E402
from statement_import.ingest.utils import load_transactions_from_csv  # noqa: E402
from statement_import.interfaces import Categorization  # noqa: E402
from statement_import.models import ProcessImportResult  # noqa: E402
from statement_import.persistence import SqlCommitStore  # noqa: E402
from statement_import.service import ImportService  # noqa: E402

from tests.helpers.db import seed_entities  # noqa: E402
from tests.helpers.fakes import FakeMirror, FakeOracle, wait_for_terminal  # noqa: E402

FIXTURE = _ROOT / "tests" / "fixtures" / "amex_au_sample.csv"


def _process(service: ImportService, transactions) -> ProcessImportResult:
    handle = service.process_import({"transactions": transactions, "account": "Amex"})
    session = wait_for_terminal(service, handle.session_id)
    assert session.status == "completed", session.errors
    assert isinstance(session.result, ProcessImportResult)
    return session.result


def test_import_review_commit_and_reimport(sqlite_url: str) -> None:
    directory = seed_entities(
        database_url=sqlite_url,
        entities=[("ent-wow", "Woolworths", ["WOW "]), ("ent-uber", "Uber")],
    )
    rules = SqlCorrectionRuleStore(database_url=sqlite_url)
    commits = SqlCommitStore(database_url=sqlite_url)
    mirror = FakeMirror()
    oracle = FakeOracle(
        {"MCDONALDS 4421": Categorization(entity_name="McDonald's", confidence=0.95)}
    )
    service = ImportService(
        entities=directory,
        rules=rules,
        commits=commits,
        mirror=mirror,
        oracle=oracle,
        settings=ImportSettings(database_url=sqlite_url),
    )

    with service:
        transactions = load_transactions_from_csv(FIXTURE)
        first = _process(service, transactions)

        assert [m.entity.entity_name for m in first.matched] == ["Woolworths", "Woolworths", "Uber"]
        (mcd,) = first.uncertain
        assert (mcd.entity.entity_name, mcd.entity.match_type) == ("McDonald's", "ai")
        (payment,) = first.failed
        assert payment.description == "PAYMENT RECEIVED - THANK YOU"

        # Operator review: create the new merchant, mark the payment as a transfer.
        created = service.create_entity("McDonald's")
        confirmed = [
            {
                **m.model_dump(exclude={"entity", "status", "skip_reason", "error"}),
                "transaction_type": "purchase",
                "entity_id": m.entity.entity_id,
                "entity_name": m.entity.entity_name,
                "entity_url": m.entity.entity_url,
            }
            for m in first.matched
        ]
        confirmed.append(
            {
                **mcd.model_dump(exclude={"entity", "status", "skip_reason", "error"}),
                "transaction_type": "purchase",
                "entity_id": created.entity_id,
                "entity_name": created.entity_name,
                "entity_url": created.entity_url,
                "remember": True,
            }
        )
        confirmed.append(
            {
                **payment.model_dump(exclude={"entity", "status", "skip_reason", "error"}),
                "transaction_type": "income",
                "remember": True,
            }
        )

        handle = service.execute_import({"transactions": confirmed})
        executed = wait_for_terminal(service, handle.session_id)
        assert executed.status == "completed"
        assert executed.result.imported == 5
        assert len(mirror.transactions) == 5

        learned = {r.description_pattern: r for r in rules.list_rules()}
        assert learned["MCDONALDS"].entity_id == created.entity_id
        assert learned["PAYMENT RECEIVED - THANK YOU"].transaction_type == "income"

        again = _process(service, transactions)

    assert again.bucket_total() == 5
    assert len(again.skipped) == 5
    # Duplicates never reach the oracle on the second pass.
    assert oracle.calls == ["PAYMENT RECEIVED - THANK YOU", "MCDONALDS 4421"]
