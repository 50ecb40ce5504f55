from __future__ import annotations

from datetime import date, datetime

import pytest

from errors import ValidationError
from expiry import TIERS, assess, assess_until, classify_tier, recommend


def test_medical_window_day_fifty():
    a = assess("2024-01-01", 60, policy_type="medical", today=date(2024, 2, 20))
    assert a is not None
    assert a.expiryDate == date(2024, 3, 1)
    assert a.remainingDays == 10
    assert a.isUrgent is True
    assert a.isExpired is False
    # 10 is past the 7-day critical cut-off, so it lands in the 8-15 band.
    assert a.tier == "urgent"
    assert a.recommendations == recommend("medical", 10)
    assert 1 <= len(a.recommendations) <= 2


def test_missing_issue_date_returns_none():
    assert assess(None, 60) is None
    assert assess("", 90, policy_type="visa") is None
    assert assess_until(None) is None


def test_time_of_day_does_not_change_result():
    today = date(2024, 2, 20)
    a = assess(datetime(2024, 1, 1, 0, 1), 60, today=today)
    b = assess(datetime(2024, 1, 1, 23, 59), 60, today=today)
    assert a.remainingDays == b.remainingDays == 10


def test_boundaries():
    today = date(2024, 6, 1)
    expiring_today = assess(date(2024, 3, 3), 90, policy_type="visa", today=today)
    assert expiring_today.remainingDays == 0
    assert expiring_today.isUrgent is True
    assert expiring_today.isExpired is False
    assert expiring_today.tier == "critical"

    lapsed = assess(date(2024, 3, 2), 90, policy_type="visa", today=today)
    assert lapsed.remainingDays == -1
    assert lapsed.isExpired is True
    assert lapsed.isUrgent is False
    assert lapsed.tier == "expired"


@pytest.mark.parametrize(
    "days,tier",
    [(-30, "expired"), (-1, "expired"), (0, "critical"), (7, "critical"), (8, "urgent"), (15, "urgent"), (16, "advisory"), (30, "advisory"), (31, "normal"), (400, "normal")],
)
def test_tier_break_points(days, tier):
    assert classify_tier(days) == tier


def test_every_day_maps_to_exactly_one_tier_per_policy():
    for policy in ("medical", "visa", "passport"):
        seen = set()
        for d in range(-100, 200):
            tier = classify_tier(d)
            assert tier in TIERS
            seen.add(tier)
            recs = recommend(policy, d)
            assert 1 <= len(recs) <= 2
            assert recs == recommend(policy, d)
        assert seen == set(TIERS)


def test_policies_recommend_differently():
    assert recommend("medical", 5) != recommend("visa", 5)


def test_passport_assessed_from_expiry_date():
    a = assess_until("2024-07-01", today=date(2024, 6, 21))
    assert a.policyType == "passport"
    assert a.remainingDays == 10
    assert a.issueDate is None
    assert a.to_dict()["expiryDate"] == "2024-07-01"


def test_invalid_inputs():
    with pytest.raises(ValidationError):
        assess("2024-01-01", 0)
    with pytest.raises(ValidationError):
        assess("2024-01-01", "sixty")
    with pytest.raises(ValidationError):
        assess("2024-01-01", 60, policy_type="insurance")


def test_malformed_dates_are_rejected_not_treated_as_absent():
    with pytest.raises(ValidationError):
        assess("01/05/2024", 60, today=date(2024, 2, 20))
    with pytest.raises(ValidationError):
        assess_until("next spring", today=date(2024, 2, 20))
    assert assess("   ", 60) is None
