from __future__ import annotations

import re
from datetime import date
from typing import Any

from sqlalchemy import update

from actions.helpers import CANDIDATE_PROFILE_FIELDS, DATE_FIELDS
from errors import ValidationError
from models import Candidate
from utils import Actor, iso_utc_now

_YMD_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_SEX_VALUES = {"", "M", "F", "X"}

# Accepted on input for the few fields the intake form names differently.
_ALIASES = {
    "full_name": "fullName",
    "medical_fit_date": "medicalFitDate",
    "visa_issue_date": "visaIssueDate",
    "passport_issue_date": "passportIssueDate",
    "passport_expiry_date": "passportExpiryDate",
    "passport_number": "passportNumber",
}


def normalize_ymd(value: Any, *, field: str) -> str:
    s = str(value or "").strip()
    if not s:
        return ""
    if not _YMD_RE.fullmatch(s):
        raise ValidationError(f"{field} must be YYYY-MM-DD")
    try:
        date.fromisoformat(s)
    except ValueError:
        raise ValidationError(f"{field} is not a valid date")
    return s


def clean_profile_patch(patch: dict[str, Any]) -> dict[str, str]:
    """Known profile fields only, trimmed and validated. Unknown keys are ignored."""
    out: dict[str, str] = {}
    for raw_key, value in (patch or {}).items():
        key = _ALIASES.get(raw_key, raw_key)
        if key not in CANDIDATE_PROFILE_FIELDS or value is None:
            continue
        if key in DATE_FIELDS:
            out[key] = normalize_ymd(value, field=key)
            continue
        s = str(value).strip()
        if key == "passportNumber":
            s = s.upper().replace(" ", "")
        elif key == "sex":
            s = s.upper()[:1]
            if s not in _SEX_VALUES:
                raise ValidationError("sex must be M, F or X")
        elif key == "email" and s and not _EMAIL_RE.fullmatch(s):
            raise ValidationError("Invalid email")
        out[key] = s

    if "fullName" in out and not out["fullName"]:
        raise ValidationError("fullName cannot be empty")
    issue = out.get("passportIssueDate")
    expiry = out.get("passportExpiryDate")
    if issue and expiry and expiry <= issue:
        raise ValidationError("passportExpiryDate must be after passportIssueDate")
    return out


def new_candidate_row(candidate_id: str, fields: dict[str, str], *, stage: str, actor: Actor, now: str) -> Candidate:
    cand = Candidate(
        candidateId=candidate_id,
        currentStage=stage,
        version=1,
        createdAt=now,
        createdBy=actor.actorId,
        updatedAt=now,
        updatedBy=actor.actorId,
    )
    for f in CANDIDATE_PROFILE_FIELDS:
        setattr(cand, f, fields.get(f, ""))
    return cand


def write_profile(db, *, candidate_id: str, version: int, changes: dict[str, str], actor: Actor) -> bool:
    """Conditional on the version that was read; False means another write landed first."""
    res = db.execute(
        update(Candidate)
        .where(Candidate.candidateId == candidate_id, Candidate.version == version)
        .values(**changes, version=version + 1, updatedAt=iso_utc_now(), updatedBy=actor.actorId)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1
