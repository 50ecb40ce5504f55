from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError

from errors import AuthError, DependencyError, NotFoundError, ValidationError
from models import Candidate
from stages import stage_label
from utils import Actor

log = logging.getLogger("pipeline")

CANDIDATE_PROFILE_FIELDS = (
    "fullName",
    "givenName",
    "surname",
    "fatherName",
    "sex",
    "dateOfBirth",
    "placeOfBirth",
    "nationality",
    "passportNumber",
    "passportType",
    "passportIssueDate",
    "passportExpiryDate",
    "issuingAuthority",
    "personalNumber",
    "phone",
    "email",
    "destinationCountry",
    "employer",
    "jobTitle",
    "notes",
    "medicalFitDate",
    "visaIssueDate",
)

DATE_FIELDS = {"dateOfBirth", "passportIssueDate", "passportExpiryDate", "medicalFitDate", "visaIssueDate"}


def require_actor(actor: Optional[Actor]) -> Actor:
    if not actor or not str(actor.actorId or "").strip():
        raise AuthError("Actor identity required")
    return actor


def require_str(data: dict, key: str) -> str:
    v = str((data or {}).get(key) or "").strip()
    if not v:
        raise ValidationError(f"Missing {key}")
    return v


def parse_bool(value: Any, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    s = str(value if value is not None else "").strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    raise ValidationError(f"{field} must be true or false")


@contextmanager
def dependency_guard(db, what: str):
    """Roll back and surface persistence outages as DependencyError; no silent retries."""
    try:
        yield
    except (OperationalError, DBAPIError) as e:
        db.rollback()
        log.error("persistence failure during %s: %s", what, e)
        raise DependencyError(f"Persistence unavailable during {what}") from e


def find_candidate(db, candidate_id: str) -> Candidate:
    cid = str(candidate_id or "").strip()
    if not cid:
        raise ValidationError("Missing candidateId")
    cand = db.execute(select(Candidate).where(Candidate.candidateId == cid)).scalar_one_or_none()
    if not cand:
        raise NotFoundError("Candidate not found")
    return cand


def candidate_snapshot(cand: Candidate) -> dict[str, Any]:
    out: dict[str, Any] = {"candidateId": cand.candidateId}
    for f in CANDIDATE_PROFILE_FIELDS:
        out[f] = getattr(cand, f) or ""
    out.update(
        {
            "currentStage": cand.currentStage,
            "currentStageLabel": stage_label(cand.currentStage),
            "version": int(cand.version or 0),
            "createdAt": cand.createdAt or "",
            "createdBy": cand.createdBy or "",
            "updatedAt": cand.updatedAt or "",
            "updatedBy": cand.updatedBy or "",
        }
    )
    return out
