"""Tests for rule matching and its tie-break order."""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from approval_service.core.exceptions import NoMatchError, ValidationError
from approval_service.models.approval_rule import ApprovalRule
from approval_service.services import rule_store
from approval_service.services.rule_matcher import match_rule, rank_candidates
from tests.conftest import rule_payload


def _backdate(db, rule, minutes: int):
    rule.created_at = datetime(2026, 1, 1, tzinfo=timezone.utc) - timedelta(minutes=minutes)
    db.commit()
    return rule


def test_exact_department_beats_wildcard(db):
    """A Finance rule wins over an All Departments rule with the same band."""
    wildcard = rule_store.create_rule(db, rule_payload("quotation", min_amount=0, max_amount=100000))
    finance = rule_store.create_rule(db, rule_payload("quotation", department="Finance",
                                                      min_amount=0, max_amount=100000))
    # Make the wildcard rule the newest, so department is what decides.
    _backdate(db, finance, 10)
    _backdate(db, wildcard, 1)

    assert match_rule(db, "quotation", "Finance", 50000).id == finance.id
    assert match_rule(db, "quotation", "Operations", 50000).id == wildcard.id


def test_exact_department_beats_narrower_wildcard(db):
    narrow_wildcard = rule_store.create_rule(db, rule_payload("quotation", min_amount=0, max_amount=10))
    broad_finance = rule_store.create_rule(db, rule_payload("quotation", department="Finance"))

    assert match_rule(db, "quotation", "Finance", 5).id == broad_finance.id
    assert match_rule(db, "quotation", "Booking", 5).id == narrow_wildcard.id


def test_narrower_band_wins(db):
    wide = rule_store.create_rule(db, rule_payload("cash_advance", min_amount=0, max_amount=1000000))
    narrow = rule_store.create_rule(db, rule_payload("cash_advance", min_amount=1000, max_amount=20000))
    unbounded = rule_store.create_rule(db, rule_payload("cash_advance", min_amount=5000))
    _backdate(db, narrow, 30)

    assert match_rule(db, "cash_advance", "Operations", 10000).id == narrow.id
    assert match_rule(db, "cash_advance", "Operations", 500000).id == wide.id
    assert match_rule(db, "cash_advance", "Operations", 2000000).id == unbounded.id


def test_newest_wins_when_band_and_department_tie(db):
    older = rule_store.create_rule(db, rule_payload("soa"))
    newer = rule_store.create_rule(db, rule_payload("soa"))
    _backdate(db, older, 60)
    _backdate(db, newer, 5)

    assert match_rule(db, "soa", "Finance", 10).id == newer.id


def test_rank_candidates_falls_back_to_id(db):
    a = rule_store.create_rule(db, rule_payload("booking"))
    b = rule_store.create_rule(db, rule_payload("booking"))
    _backdate(db, a, 1)
    _backdate(db, b, 1)

    expected = max([a, b], key=lambda r: str(r.id))
    assert rank_candidates([a, b], "Booking")[0].id == expected.id
    assert rank_candidates([b, a], "Booking")[0].id == expected.id


def test_bounds_are_inclusive(db):
    rule = rule_store.create_rule(db, rule_payload("booking", min_amount=100, max_amount=200))

    assert match_rule(db, "booking", "Ops", 100).id == rule.id
    assert match_rule(db, "booking", "Ops", Decimal("200.00")).id == rule.id
    with pytest.raises(NoMatchError):
        match_rule(db, "booking", "Ops", Decimal("200.01"))
    with pytest.raises(NoMatchError):
        match_rule(db, "booking", "Ops", Decimal("99.99"))


def test_inactive_and_other_types_are_ignored(db):
    rule_store.create_rule(db, rule_payload("booking", active=False))
    rule_store.create_rule(db, rule_payload("quotation"))

    with pytest.raises(NoMatchError) as exc_info:
        match_rule(db, "booking", "Ops", 1)
    assert exc_info.value.code == "no_matching_rule"


def test_department_mismatch_is_not_a_candidate(db):
    rule_store.create_rule(db, rule_payload("soa", department="Finance"))
    with pytest.raises(NoMatchError):
        match_rule(db, "soa", "Customs", 1)


def test_match_is_deterministic(db):
    for band in ((0, 100), (0, 1000), (50, 500)):
        rule_store.create_rule(db, rule_payload("cost_analysis", min_amount=band[0], max_amount=band[1]))

    first = match_rule(db, "cost_analysis", "Ops", 75).id
    assert all(match_rule(db, "cost_analysis", "Ops", 75).id == first for _ in range(5))


def test_match_sees_rule_changes_immediately(db):
    rule = rule_store.create_rule(db, rule_payload("booking"))
    assert match_rule(db, "booking", "Ops", 1).id == rule.id

    rule_store.set_rule_active(db, rule.id, False)
    with pytest.raises(NoMatchError):
        match_rule(db, "booking", "Ops", 1)


@pytest.mark.parametrize(
    "transaction_type, amount, invariant",
    [
        ("invoice", 10, "transaction_type"),
        ("booking", -5, "amount_non_negative"),
        ("booking", "ten", "amount_non_negative"),
        ("booking", "100.004", "amount_precision"),
    ],
)
def test_match_rejects_invalid_input(db, transaction_type, amount, invariant):
    with pytest.raises(ValidationError) as exc_info:
        match_rule(db, transaction_type, "Ops", amount)
    assert exc_info.value.invariant == invariant


def test_rank_candidates_compares_creation_times_in_utc():
    # 09:00 at UTC+8 is 01:00 UTC, so the naive 05:00 UTC rule is newer.
    east = ApprovalRule(
        id=uuid.UUID(int=2), transaction_type="booking", department="Ops",
        min_amount=Decimal("0"), max_amount=Decimal("1000"),
        created_at=datetime(2026, 3, 1, 9, 0, tzinfo=timezone(timedelta(hours=8))),
    )
    naive_utc = ApprovalRule(
        id=uuid.UUID(int=1), transaction_type="booking", department="Ops",
        min_amount=Decimal("0"), max_amount=Decimal("1000"),
        created_at=datetime(2026, 3, 1, 5, 0),
    )

    assert rank_candidates([east, naive_utc], "Ops")[0] is naive_utc
    assert rank_candidates([naive_utc, east], "Ops")[0] is naive_utc
