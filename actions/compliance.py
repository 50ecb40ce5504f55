from __future__ import annotations

from datetime import date
from typing import Any, Optional

from sqlalchemy import or_, select

from actions.helpers import dependency_guard, find_candidate, require_str
from errors import ValidationError
from expiry import MEDICAL, PASSPORT, POLICY_TYPES, VISA, ExpiryAssessment, assess, assess_until, normalize_policy_type
from models import Candidate
from stages import policy_applies, stage_label
from utils import Actor, parse_date_maybe, today_in

MAX_WATCH_DAYS = 365


def _validity_days(cfg, policy_type: str) -> Optional[int]:
    if policy_type == MEDICAL:
        return int(cfg.MEDICAL_VALIDITY_DAYS)
    if policy_type == VISA:
        return int(cfg.VISA_VALIDITY_DAYS)
    return None


def _assess_candidate(cand: Candidate, policy_type: str, cfg, today: date) -> Optional[ExpiryAssessment]:
    if policy_type == MEDICAL:
        return assess(cand.medicalFitDate, _validity_days(cfg, MEDICAL), policy_type=MEDICAL, today=today)
    if policy_type == VISA:
        return assess(cand.visaIssueDate, _validity_days(cfg, VISA), policy_type=VISA, today=today)
    return assess_until(cand.passportExpiryDate, policy_type=PASSPORT, today=today)


def _policy_view(cand: Candidate, policy_type: str, cfg, today: date) -> dict[str, Any]:
    a = _assess_candidate(cand, policy_type, cfg, today)
    return {
        "policyType": policy_type,
        "appliesAtCurrentStage": policy_applies(policy_type, cand.currentStage),
        "assessment": a.to_dict() if a else None,
    }


def get_compliance(db, cfg, candidate_id: str, *, today: Optional[date] = None) -> dict[str, Any]:
    """Derived on every read from the candidate's dates; nothing here is stored."""
    day = today or today_in(cfg.APP_TIMEZONE)
    with dependency_guard(db, "get_compliance"):
        cand = find_candidate(db, candidate_id)
    policies = [_policy_view(cand, p, cfg, day) for p in POLICY_TYPES]
    return {
        "candidateId": cand.candidateId,
        "currentStage": cand.currentStage,
        "asOf": day.isoformat(),
        "policies": policies,
    }


def list_expiring(
    db,
    cfg,
    *,
    within_days: Optional[int] = None,
    policy_type: Optional[str] = None,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """
    Candidates whose validity has lapsed or ends within `within_days`, soonest first.
    Only policies that apply at the candidate's current stage are listed.
    """
    window = cfg.EXPIRY_WATCH_DAYS if within_days in (None, "") else within_days
    try:
        window = int(window)
    except (TypeError, ValueError):
        raise ValidationError("withinDays must be an integer")
    if window < 0 or window > MAX_WATCH_DAYS:
        raise ValidationError(f"withinDays must be between 0 and {MAX_WATCH_DAYS}")

    policies = (normalize_policy_type(policy_type),) if policy_type else POLICY_TYPES
    day = today or today_in(cfg.APP_TIMEZONE)

    date_cols = {
        MEDICAL: Candidate.medicalFitDate,
        VISA: Candidate.visaIssueDate,
        PASSPORT: Candidate.passportExpiryDate,
    }
    with dependency_guard(db, "list_expiring"):
        rows = (
            db.execute(select(Candidate).where(or_(*[date_cols[p] != "" for p in policies])))
            .scalars()
            .all()
        )

    items: list[dict[str, Any]] = []
    for cand in rows:
        for p in policies:
            if not policy_applies(p, cand.currentStage):
                continue
            a = _assess_candidate(cand, p, cfg, day)
            if a is None or a.remainingDays > window:
                continue
            items.append(
                {
                    "candidateId": cand.candidateId,
                    "fullName": cand.fullName or "",
                    "passportNumber": cand.passportNumber or "",
                    "currentStage": cand.currentStage,
                    "currentStageLabel": stage_label(cand.currentStage),
                    **a.to_dict(),
                }
            )

    items.sort(key=lambda x: (x["remainingDays"], x["candidateId"], x["policyType"]))
    return {"asOf": day.isoformat(), "withinDays": window, "items": items}


def expiry_assess(data, actor: Actor | None, db, cfg):
    data = data or {}
    p = normalize_policy_type(data.get("policyType") or MEDICAL)
    today = None
    if data.get("today"):
        today = parse_date_maybe(data.get("today"))
        if today is None:
            raise ValidationError("today must be YYYY-MM-DD")
    today = today or today_in(cfg.APP_TIMEZONE)

    if p == PASSPORT:
        a = assess_until(data.get("expiryDate"), policy_type=PASSPORT, today=today)
    else:
        days = data.get("validityDays")
        if days in (None, ""):
            days = _validity_days(cfg, p)
        a = assess(data.get("issueDate"), days, policy_type=p, today=today)
    return {"assessment": a.to_dict() if a else None}


def compliance_get(data, actor: Actor | None, db, cfg):
    return get_compliance(db, cfg, require_str(data, "candidateId"))


def expiring_list(data, actor: Actor | None, db, cfg):
    data = data or {}
    return list_expiring(
        db,
        cfg,
        within_days=data.get("withinDays"),
        policy_type=str(data.get("policyType") or "").strip() or None,
    )
