from __future__ import annotations

import time

import pytest

from statement_import.corrections import (
    MAX_REGEX_INPUT_LENGTH,
    MAX_REGEX_PATTERN_LENGTH,
    SqlCorrectionRuleStore,
    normalize_description,
    rule_matches,
)

from tests.helpers.db import seed_entities


@pytest.fixture
def store(sqlite_url: str) -> SqlCorrectionRuleStore:
    seed_entities(
        database_url=sqlite_url,
        entities=[("ent-wow", "Woolworths"), ("ent-coles", "Coles")],
    )
    return SqlCorrectionRuleStore(database_url=sqlite_url)


def test_normalize_description_drops_digits_and_extra_space() -> None:
    assert normalize_description("Woolworths  1234 Sydney") == "WOOLWORTHS SYDNEY"
    assert normalize_description(" 1234 ") == ""


@pytest.mark.parametrize(
    "pattern,match_type,text,expected",
    [
        ("WOOLWORTHS SYDNEY", "exact", "WOOLWORTHS SYDNEY", True),
        ("WOOLWORTHS", "exact", "WOOLWORTHS SYDNEY", False),
        ("WOOLWORTHS", "contains", "PAYPAL WOOLWORTHS SYDNEY", True),
        (r"^UBER\s+\*?EATS", "regex", "UBER *EATS SYDNEY", True),
        (r"^uber", "regex", "UBER TRIP", True),
        (r"^EATS", "regex", "UBER EATS", False),
        ("", "contains", "ANYTHING", False),
    ],
)
def test_rule_matches(pattern: str, match_type: str, text: str, expected: bool) -> None:
    assert rule_matches(pattern, match_type, text) is expected  # type: ignore[arg-type]


def test_invalid_regex_is_skipped() -> None:
    assert rule_matches("(unclosed", "regex", "UNCLOSED") is False


def test_overlong_regex_is_skipped() -> None:
    pattern = "A" * (MAX_REGEX_PATTERN_LENGTH + 1)
    assert rule_matches(pattern, "regex", pattern) is False


def test_regex_only_sees_capped_input() -> None:
    text = "X" * MAX_REGEX_INPUT_LENGTH + "TAIL"
    assert rule_matches("TAIL", "regex", text) is False
    assert rule_matches("TAIL", "contains", text) is True


def test_catastrophic_regex_gives_up_instead_of_hanging() -> None:
    started = time.monotonic()
    assert rule_matches("(A+)+B", "regex", "A" * 60) is False
    assert time.monotonic() - started < 2.0


def test_learn_creates_rule_at_initial_confidence(store: SqlCorrectionRuleStore) -> None:
    rule = store.learn("Woolworths 1234 Sydney", entity_id="ent-wow", entity_name="Woolworths")

    assert rule.description_pattern == "WOOLWORTHS SYDNEY"
    assert rule.match_type == "exact"
    assert rule.confidence == pytest.approx(0.5)
    assert rule.times_applied == 0


def test_relearning_strengthens_existing_rule(store: SqlCorrectionRuleStore) -> None:
    store.learn("WOOLWORTHS 1234", entity_id="ent-wow", entity_name="Woolworths")
    again = store.learn("WOOLWORTHS 5678", entity_id="ent-wow", entity_name="Woolworths")

    assert again.confidence == pytest.approx(0.6)
    assert again.times_applied == 1
    assert len(store.list_rules()) == 1


def test_relearning_without_details_keeps_stored_ones(store: SqlCorrectionRuleStore) -> None:
    store.learn(
        "UBER EATS 12",
        entity_id="ent-wow",
        entity_name="Woolworths",
        location="Sydney",
        online=True,
        transaction_type="purchase",
    )
    again = store.learn("UBER EATS 99", entity_id="ent-coles", entity_name="Coles")

    assert (again.entity_id, again.entity_name) == ("ent-coles", "Coles")
    assert (again.location, again.online) == ("Sydney", True)
    assert again.transaction_type == "purchase"


def test_confidence_is_capped_at_one(store: SqlCorrectionRuleStore) -> None:
    for _ in range(10):
        rule = store.learn("COLES 12", entity_id="ent-coles", entity_name="Coles")
    assert rule.confidence == pytest.approx(1.0)


def test_learn_rejects_empty_pattern(store: SqlCorrectionRuleStore) -> None:
    with pytest.raises(ValueError):
        store.learn("1234", entity_id="ent-wow", entity_name="Woolworths")


def test_weak_rules_are_not_returned(store: SqlCorrectionRuleStore) -> None:
    store.learn("WOOLWORTHS 1234", entity_id="ent-wow", entity_name="Woolworths")
    assert store.find_matching_rule("WOOLWORTHS 999") is None
    assert store.find_matching_rule("WOOLWORTHS 999", min_confidence=0.5) is not None


def test_rule_becomes_eligible_after_reconfirmation(store: SqlCorrectionRuleStore) -> None:
    for _ in range(3):
        store.learn("WOOLWORTHS 1234", entity_id="ent-wow", entity_name="Woolworths")

    rule = store.find_matching_rule("woolworths 42")
    assert rule is not None
    assert rule.entity_id == "ent-wow"
    assert rule.confidence == pytest.approx(0.7)


def test_exact_rule_beats_more_confident_contains_rule(store: SqlCorrectionRuleStore) -> None:
    for _ in range(6):
        store.learn("COLES", entity_id="ent-coles", entity_name="Coles", match_type="contains")
    for _ in range(3):
        store.learn("COLES EXPRESS", entity_id="ent-wow", entity_name="Woolworths")

    rule = store.find_matching_rule("COLES EXPRESS 99")
    assert rule is not None
    assert rule.match_type == "exact"
    assert rule.entity_name == "Woolworths"

    other = store.find_matching_rule("PAYPAL COLES ONLINE")
    assert other is not None
    assert other.match_type == "contains"


def test_regex_rule_matches_and_keeps_pattern_verbatim(store: SqlCorrectionRuleStore) -> None:
    for _ in range(5):
        rule = store.learn(
            r"^UBER\s+\*?TRIP",
            entity_id=None,
            entity_name=None,
            transaction_type="transfer",
            match_type="regex",
        )
    assert rule.description_pattern == r"^UBER\s+\*?TRIP"

    found = store.find_matching_rule("UBER *TRIP 1234 HELP.UBER.COM")
    assert found is not None
    assert found.transaction_type == "transfer"


def test_record_application_bumps_usage(store: SqlCorrectionRuleStore) -> None:
    for _ in range(3):
        rule = store.learn("COLES 1", entity_id="ent-coles", entity_name="Coles")

    store.record_application(rule.id)
    store.record_application(rule.id)

    bumped = store.find_matching_rule("COLES 2")
    assert bumped is not None
    assert bumped.times_applied == rule.times_applied + 2
    assert bumped.last_used_at is not None


def test_list_rules_orders_by_confidence(store: SqlCorrectionRuleStore) -> None:
    store.learn("ALDI", entity_id=None, entity_name="Aldi")
    for _ in range(3):
        store.learn("COLES", entity_id="ent-coles", entity_name="Coles")

    rules = store.list_rules()
    assert [r.description_pattern for r in rules] == ["COLES", "ALDI"]
    assert [r.description_pattern for r in store.list_rules(min_confidence=0.6)] == ["COLES"]


def test_runaway_regex_rule_does_not_block_later_rules(store: SqlCorrectionRuleStore) -> None:
    for _ in range(4):
        store.learn("(A+)+B", entity_id="ent-wow", entity_name="Woolworths", match_type="regex")
    for _ in range(3):
        store.learn("COLES", entity_id="ent-coles", entity_name="Coles", match_type="contains")

    rule = store.find_matching_rule("A" * 60 + " COLES")
    assert rule is not None
    assert (rule.match_type, rule.entity_id) == ("contains", "ent-coles")
