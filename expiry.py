from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Optional

from errors import ValidationError
from utils import parse_date_maybe

MEDICAL = "medical"
VISA = "visa"
PASSPORT = "passport"
POLICY_TYPES = (MEDICAL, VISA, PASSPORT)

DEFAULT_VALIDITY_DAYS = {MEDICAL: 60, VISA: 90}
URGENT_WITHIN_DAYS = 15

# Ordered most to least severe.
TIERS = ("expired", "critical", "urgent", "advisory", "normal")

_RECOMMENDATIONS: dict[str, dict[str, tuple[str, ...]]] = {
    MEDICAL: {
        "expired": (
            "Medical fitness has lapsed: book a repeat medical examination",
            "Hold embassy submission until a new fitness certificate is issued",
        ),
        "critical": (
            "Submit the medical certificate to the embassy immediately",
            "Prepare a repeat medical booking in case stamping slips",
        ),
        "urgent": (
            "Prioritise embassy submission before the medical lapses",
            "Confirm pending clearances will finish inside the medical window",
        ),
        "advisory": ("Track medical validity against the remaining pipeline stages",),
        "normal": ("No action required",),
    },
    VISA: {
        "expired": (
            "Visa has lapsed: ask the employer to re-issue the visa",
            "Cancel or rebook any reserved flight",
        ),
        "critical": (
            "Book the flight immediately",
            "Complete manpower clearance without delay",
        ),
        "urgent": (
            "Finalise manpower clearance",
            "Reserve flight seats",
        ),
        "advisory": ("Schedule manpower clearance and plan the flight",),
        "normal": ("No action required",),
    },
    PASSPORT: {
        "expired": (
            "Passport has expired: apply for renewal before any submission",
            "Inform the employer of the renewal timeline",
        ),
        "critical": (
            "Apply for urgent passport renewal",
            "Inform the employer of the renewal timeline",
        ),
        "urgent": ("Start passport renewal",),
        "advisory": ("Check passport validity meets destination entry requirements",),
        "normal": ("No action required",),
    },
}


@dataclass(frozen=True)
class ExpiryAssessment:
    policyType: str
    issueDate: Optional[date]
    validityDays: Optional[int]
    expiryDate: date
    remainingDays: int
    isExpired: bool
    isUrgent: bool
    tier: str
    recommendations: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "policyType": self.policyType,
            "issueDate": self.issueDate.isoformat() if self.issueDate else None,
            "validityDays": self.validityDays,
            "expiryDate": self.expiryDate.isoformat(),
            "remainingDays": self.remainingDays,
            "isExpired": self.isExpired,
            "isUrgent": self.isUrgent,
            "tier": self.tier,
            "recommendations": list(self.recommendations),
        }


def normalize_policy_type(policy_type: Any) -> str:
    p = str(policy_type or "").strip().lower()
    if p not in POLICY_TYPES:
        raise ValidationError(f"Unknown policy type: {policy_type}")
    return p


def classify_tier(remaining_days: int) -> str:
    d = int(remaining_days)
    if d < 0:
        return "expired"
    if d <= 7:
        return "critical"
    if d <= URGENT_WITHIN_DAYS:
        return "urgent"
    if d <= 30:
        return "advisory"
    return "normal"


def recommend(policy_type: str, remaining_days: int) -> tuple[str, ...]:
    return _RECOMMENDATIONS[normalize_policy_type(policy_type)][classify_tier(remaining_days)]


def _date_or_none(value: Any, *, field: str) -> Optional[date]:
    # Absent means "no assessment"; anything else must be a real date.
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    parsed = parse_date_maybe(value)
    if parsed is None:
        raise ValidationError(f"{field} must be YYYY-MM-DD")
    return parsed


def _build(policy_type: str, issue: Optional[date], validity_days: Optional[int], expiry: date, today: date) -> ExpiryAssessment:
    remaining = (expiry - today).days
    return ExpiryAssessment(
        policyType=policy_type,
        issueDate=issue,
        validityDays=validity_days,
        expiryDate=expiry,
        remainingDays=remaining,
        isExpired=remaining < 0,
        isUrgent=0 <= remaining <= URGENT_WITHIN_DAYS,
        tier=classify_tier(remaining),
        recommendations=recommend(policy_type, remaining),
    )


def assess(
    issue_date: Any,
    validity_days: int,
    *,
    policy_type: str = MEDICAL,
    today: Optional[date] = None,
) -> Optional[ExpiryAssessment]:
    """
    Validity window starting at `issue_date`. Returns None when there is no issue date;
    a malformed one is a ValidationError.

    Whole calendar days only: the time of day never shifts the result, so every call on
    the same `today` agrees.
    """
    p = normalize_policy_type(policy_type)
    issue = _date_or_none(issue_date, field="issueDate")
    if issue is None:
        return None
    try:
        days = int(validity_days)
    except (TypeError, ValueError):
        raise ValidationError("validityDays must be an integer")
    if days <= 0:
        raise ValidationError("validityDays must be positive")

    return _build(p, issue, days, issue + timedelta(days=days), today or date.today())


def assess_until(expiry_date: Any, *, policy_type: str = PASSPORT, today: Optional[date] = None) -> Optional[ExpiryAssessment]:
    """Same tiers for documents that carry their own expiry date (passports)."""
    p = normalize_policy_type(policy_type)
    expiry = _date_or_none(expiry_date, field="expiryDate")
    if expiry is None:
        return None
    return _build(p, None, None, expiry, today or date.today())
