# ruff: noqa: I001
from __future__ import annotations

import pytest

from statement_import.errors import ImportValidationError, MirrorError
from statement_import.models import ExecuteImportResult, ProcessImportResult

from tests.helpers.fakes import (
    FakeMirror,
    InMemoryCommitStore,
    InMemoryEntityDirectory,
    InMemoryRuleStore,
    confirm,
    make_raw,
    make_service,
    wait_for_terminal,
)


def _execute(service, items) -> tuple:
    handle = service.execute_import({"transactions": items})
    session = wait_for_terminal(service, handle.session_id)
    assert isinstance(session.result, ExecuteImportResult)
    return session, session.result


def test_all_items_are_persisted_then_mirrored() -> None:
    commits, mirror = InMemoryCommitStore(), FakeMirror()
    items = [confirm(make_raw(f"COLES {i}", row_no=i)) for i in range(3)]
    with make_service(commits=commits, mirror=mirror) as service:
        session, result = _execute(service, items)

    assert session.status == "completed"
    assert session.kind == "execute"
    assert session.processed_count == 3
    assert result.imported == 3
    assert result.failed == [] and result.skipped == []
    assert len(commits.rows) == 3
    assert sorted(commits.pages.values()) == ["page-1", "page-2", "page-3"]
    assert {t.checksum for t in mirror.transactions} == {i.checksum for i in items}


def test_one_failure_does_not_stop_the_batch() -> None:
    items = [confirm(make_raw(f"COLES {i}", row_no=i)) for i in range(5)]
    rejected = MirrorError(
        "Notion API error (400): Amount is not a number", code="validation_error"
    )
    mirror = FakeMirror(fail_on={"COLES 1": rejected})
    commits = InMemoryCommitStore(fail_on=["COLES 3"])
    with make_service(commits=commits, mirror=mirror) as service:
        session, result = _execute(service, items)

    assert session.status == "completed"
    assert result.imported == 3
    assert [(f.item.description, f.error) for f in result.failed] == [
        ("COLES 1", "Notion API error (400): Amount is not a number"),
        ("COLES 3", "database unavailable for COLES 3"),
    ]
    assert sorted(e.index for e in session.errors) == [1, 3]
    assert session.processed_count == 5


def test_mirror_failure_leaves_row_uncommitted() -> None:
    raw = make_raw("COLES 9")
    commits = InMemoryCommitStore()
    mirror = FakeMirror(fail_on={"COLES 9": MirrorError("timeout", code="timeout")})
    with make_service(commits=commits, mirror=mirror) as service:
        _execute(service, [confirm(raw)])

    assert raw.checksum not in commits.existing_checksums([raw.checksum])
    assert commits.pages == {}


def test_already_committed_items_are_skipped() -> None:
    done, fresh = make_raw("COLES 1", row_no=1), make_raw("COLES 2", row_no=2)
    commits = InMemoryCommitStore(committed=[done.checksum])
    mirror = FakeMirror()
    with make_service(commits=commits, mirror=mirror) as service:
        _, result = _execute(service, [confirm(done), confirm(fresh)])

    assert result.imported == 1
    assert [s.description for s in result.skipped] == ["COLES 1"]
    assert [t.description for t in mirror.transactions] == ["COLES 2"]


def test_empty_execute_completes() -> None:
    with make_service() as service:
        session, result = _execute(service, [])
    assert session.status == "completed"
    assert result.imported == 0


def test_purchase_without_entity_is_rejected() -> None:
    item = make_raw("COLES 1").model_dump() | {"transaction_type": "purchase"}
    with make_service() as service:
        with pytest.raises(ImportValidationError, match="entity"):
            service.execute_import({"transactions": [item]})


def test_transfer_needs_no_entity() -> None:
    item = confirm(
        make_raw("TRANSFER TO SAVINGS"),
        entity_id=None,
        entity_name=None,
        transaction_type="transfer",
    )
    mirror = FakeMirror()
    with make_service(mirror=mirror) as service:
        _, result = _execute(service, [item])
    assert result.imported == 1
    assert mirror.transactions[0].transaction_type == "transfer"


def test_execute_concurrency_is_bounded() -> None:
    mirror = FakeMirror(delay_sec=0.03)
    items = [confirm(make_raw(f"COLES {i}", row_no=i)) for i in range(9)]
    with make_service(mirror=mirror, execute_concurrency=3) as service:
        _, result = _execute(service, items)

    assert result.imported == 9
    assert 1 <= mirror.max_in_flight <= 3


# ---- Learning ------------------------------------------------------------------


def test_remembered_items_learn_correction_rules() -> None:
    rules = InMemoryRuleStore()
    keep = confirm(
        make_raw("BLUE BOTTLE 12", row_no=1),
        entity_id="ent-bb",
        entity_name="Blue Bottle",
        remember=True,
    )
    plain = confirm(make_raw("COLES 1", row_no=2))
    with make_service(rules=rules) as service:
        _execute(service, [keep, plain])

    (rule,) = rules.rules
    assert rule.description_pattern == "BLUE BOTTLE"
    assert (rule.entity_id, rule.entity_name) == ("ent-bb", "Blue Bottle")
    assert rule.confidence == pytest.approx(0.5)


def test_failed_items_do_not_learn() -> None:
    rules = InMemoryRuleStore()
    item = confirm(make_raw("BLUE BOTTLE 12"), remember=True)
    mirror = FakeMirror(fail_on={"BLUE BOTTLE 12": MirrorError("boom")})
    with make_service(rules=rules, mirror=mirror) as service:
        _execute(service, [item])
    assert rules.rules == []


def test_learning_failure_does_not_fail_the_item() -> None:
    class _BrokenLearning(InMemoryRuleStore):
        def learn(self, description, **kwargs):
            raise RuntimeError("rules table locked")

    item = confirm(make_raw("BLUE BOTTLE 12"), remember=True)
    with make_service(rules=_BrokenLearning()) as service:
        session, result = _execute(service, [item])

    assert result.imported == 1
    assert session.errors == []


def test_confirmations_feed_the_next_import() -> None:
    """Confirm the same merchant until its rule clears the confidence floor."""

    entities = InMemoryEntityDirectory({"Blue Bottle": "ent-bb"})
    rules, commits = InMemoryRuleStore(), InMemoryCommitStore()

    with make_service(entities=entities, rules=rules, commits=commits) as service:
        for n in range(3):
            raw = make_raw(f"BB CAFE {n}", row_no=n)
            _execute(
                service,
                [confirm(raw, entity_id="ent-bb", entity_name="Blue Bottle", remember=True)],
            )

        again = make_raw("BB CAFE 77", row_no=77)
        handle = service.process_import({"transactions": [again], "account": "Amex"})
        session = wait_for_terminal(service, handle.session_id)

    assert rules.rules[0].confidence == pytest.approx(0.7)
    result = session.result
    assert isinstance(result, ProcessImportResult)
    (item,) = result.matched
    assert item.entity.match_type == "correction"
    assert item.entity.entity_name == "Blue Bottle"


def test_committed_rows_are_skipped_on_reimport() -> None:
    raw = make_raw("COLES 1")
    commits = InMemoryCommitStore()
    entities = InMemoryEntityDirectory({"Coles": "ent-coles"})
    with make_service(entities=entities, commits=commits) as service:
        _execute(service, [confirm(raw, entity_id="ent-coles", entity_name="Coles")])
        handle = service.process_import({"transactions": [raw], "account": "Amex"})
        session = wait_for_terminal(service, handle.session_id)

    assert [s.checksum for s in session.result.skipped] == [raw.checksum]
