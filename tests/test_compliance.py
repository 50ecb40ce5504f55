from __future__ import annotations

from datetime import date

import pytest

from actions.candidates import create_candidate
from actions.compliance import get_compliance, list_expiring
from actions.pipeline import set_stage
from errors import ValidationError
from expiry import recommend


def _candidate(db, actor, name: str, stage: str, **fields) -> str:
    cid = create_candidate(db, fields={"fullName": name, **fields}, actor=actor)["candidateId"]
    if stage != "passport_received":
        set_stage(db, candidate_id=cid, target_stage=stage, actor=actor)
    return cid


def test_compliance_view_for_one_candidate(db, cfg, actor):
    cid = _candidate(
        db,
        actor,
        "Imran Shah",
        "visa_issued",
        medicalFitDate="2024-01-01",
        visaIssueDate="2024-02-01",
        passportExpiryDate="2029-05-01",
        passportIssueDate="2019-05-02",
    )
    out = get_compliance(db, cfg, cid, today=date(2024, 2, 20))
    by_policy = {p["policyType"]: p for p in out["policies"]}

    assert out["asOf"] == "2024-02-20"
    medical = by_policy["medical"]["assessment"]
    assert medical["remainingDays"] == 10
    assert medical["tier"] == "urgent"
    assert medical["recommendations"] == list(recommend("medical", 10))

    visa = by_policy["visa"]["assessment"]
    assert visa["expiryDate"] == "2024-05-01"
    assert visa["isUrgent"] is False
    assert by_policy["visa"]["appliesAtCurrentStage"] is True
    assert by_policy["passport"]["assessment"]["tier"] == "normal"


def test_missing_dates_give_null_assessments(db, cfg, actor):
    cid = _candidate(db, actor, "No Dates", "interview")
    out = get_compliance(db, cfg, cid, today=date(2024, 2, 20))
    assert [p["assessment"] for p in out["policies"]] == [None, None, None]
    assert {p["policyType"]: p["appliesAtCurrentStage"] for p in out["policies"]} == {
        "medical": False,
        "visa": False,
        "passport": True,
    }


def test_expiring_list_is_sorted_and_stage_aware(db, cfg, actor):
    today = date(2024, 3, 1)
    soon = _candidate(db, actor, "Five Days", "medical", medicalFitDate="2024-01-06")
    sooner = _candidate(db, actor, "One Day", "embassy", medicalFitDate="2024-01-02")
    _candidate(db, actor, "Too Early", "passport_received", medicalFitDate="2024-01-03")
    _candidate(db, actor, "Plenty Left", "medical", medicalFitDate="2024-02-20")

    out = list_expiring(db, cfg, within_days=15, policy_type="medical", today=today)

    assert [i["candidateId"] for i in out["items"]] == [sooner, soon]
    assert [i["remainingDays"] for i in out["items"]] == [1, 5]
    assert out["withinDays"] == 15


def test_expiring_list_includes_lapsed_and_rejects_bad_window(db, cfg, actor):
    lapsed = _candidate(db, actor, "Lapsed Visa", "manpower", visaIssueDate="2023-10-01")
    out = list_expiring(db, cfg, today=date(2024, 3, 1))
    assert [(i["candidateId"], i["policyType"], i["isExpired"]) for i in out["items"]] == [(lapsed, "visa", True)]

    with pytest.raises(ValidationError):
        list_expiring(db, cfg, within_days=-1)
    with pytest.raises(ValidationError):
        list_expiring(db, cfg, policy_type="insurance")
