from __future__ import annotations

import base64
import json
import re
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Optional

from cachetools import TTLCache
from dateutil import parser as dt_parser
from zoneinfo import ZoneInfo

ALLOWED_ERROR_CODES = {
    "BAD_REQUEST",
    "NO_NEXT_STAGE",
    "AUTH_INVALID",
    "NOT_FOUND",
    "CONFLICT",
    "RATE_LIMITED",
    "DEPENDENCY_UNAVAILABLE",
    "INTERNAL",
}

_CODE_MAP = {
    "BAD_JSON": "BAD_REQUEST",
    "VALIDATION": "BAD_REQUEST",
    "ACTION_NOT_IMPLEMENTED": "BAD_REQUEST",
    "AUTH_REQUIRED": "AUTH_INVALID",
    "CONCURRENT_MODIFICATION": "CONFLICT",
    "STORAGE_UNAVAILABLE": "DEPENDENCY_UNAVAILABLE",
    "DB_UNAVAILABLE": "DEPENDENCY_UNAVAILABLE",
    "UNKNOWN_ERROR": "INTERNAL",
}


def map_error_code(code: str) -> str:
    c = str(code or "").upper().strip()
    if c in ALLOWED_ERROR_CODES:
        return c
    return _CODE_MAP.get(c, "INTERNAL")


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: int = 400):
        super().__init__(message)
        self.code = map_error_code(code)
        self.message = str(message or "")
        self.http_status = http_status


def ok(data: Any, http_status: int = 200):
    return {"ok": True, "data": data}, http_status


def err(code: str, message: str, http_status: int = 400):
    return {"ok": False, "error": {"code": map_error_code(code), "message": str(message or "")}}, http_status


def iso_utc_now() -> str:
    dt = datetime.now(timezone.utc)
    dt = dt.replace(microsecond=(dt.microsecond // 1000) * 1000)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_date_maybe(value: Any) -> Optional[date]:
    """Calendar date from `date`, `datetime` or an ISO-ish string; None when absent or unparsable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value or "").strip()
    if not s:
        return None
    try:
        return dt_parser.isoparse(s).date()
    except Exception:
        return None


def today_in(tz_name: str) -> date:
    try:
        tz = ZoneInfo(tz_name)
    except Exception:
        tz = timezone.utc
    return datetime.now(tz).date()


def new_prefixed_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def new_sortable_id(prefix: str) -> str:
    # Sorts by creation time within a process; rows written in the same millisecond still order.
    return f"{prefix}-{time.time_ns():020d}-{uuid.uuid4().hex[:8]}"


def safe_json_string(value: Any, fallback: str = "") -> str:
    try:
        return json.dumps(value)
    except Exception:
        return fallback


def parse_json_body(raw_text: str) -> dict:
    try:
        obj = json.loads(raw_text or "{}")
    except Exception:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(obj, dict):
        raise ApiError("BAD_REQUEST", "JSON body must be an object")
    return obj


def mask_identifier(value: str) -> str:
    s = str(value or "").strip()
    if len(s) <= 3:
        return "*" * len(s)
    return "*" * (len(s) - 3) + s[-3:]


_MASKED_KEYS = {"passportNumber", "previousPassportNumber", "personalNumber"}
_REDACTED_KEYS = {"base64", "fileBase64", "phone", "email", "emergencyContactPhone"}


def redact_for_audit(obj: Any) -> Any:
    if not obj or not isinstance(obj, (dict, list)):
        return obj
    try:
        copy = json.loads(json.dumps(obj))
    except Exception:
        return obj

    def _walk(x: Any) -> Any:
        if isinstance(x, dict):
            for k in list(x.keys()):
                if k in _REDACTED_KEYS:
                    x[k] = "[REDACTED]"
                elif k in _MASKED_KEYS and isinstance(x[k], str):
                    x[k] = mask_identifier(x[k])
                else:
                    x[k] = _walk(x[k])
            return x
        if isinstance(x, list):
            return [_walk(v) for v in x]
        return x

    return _walk(copy)


_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1F\x7F]")
_WINDOWS_FORBIDDEN_RE = re.compile(r"[\\/:*?\"<>|]+")


def sanitize_filename(name: str) -> str:
    s = str(name or "").strip()
    s = _CONTROL_CHARS_RE.sub("", s)
    s = _WINDOWS_FORBIDDEN_RE.sub("_", s)
    s = re.sub(r"\s+", " ", s).strip()
    s = re.sub(r"_+", "_", s)
    if not s or s in {".", ".."}:
        s = "file"
    if len(s) > 120:
        s = s[:120]
    return s


def decode_base64_to_bytes(b64: str) -> bytes:
    try:
        return base64.b64decode(b64, validate=True)
    except Exception:
        raise ApiError("BAD_REQUEST", "Invalid base64")


@dataclass(frozen=True)
class Actor:
    actorId: str
    actorLabel: str


SYSTEM_ACTOR = Actor(actorId="SYSTEM", actorLabel="system")


class SimpleRateLimiter:
    def __init__(self):
        self._counts = TTLCache(maxsize=50_000, ttl=60)

    @staticmethod
    def _parse_limit_per_minute(limit: str) -> int:
        m = re.match(r"^\s*(\d+)\s+per\s+minute\s*$", str(limit or ""), re.IGNORECASE)
        if not m:
            return 300
        return int(m.group(1))

    def check(self, key: str, limit: str) -> None:
        max_per_minute = self._parse_limit_per_minute(limit)
        current = int(self._counts.get(key, 0)) + 1
        self._counts[key] = current
        if current > max_per_minute:
            raise ApiError("RATE_LIMITED", "Rate limit exceeded", http_status=429)


def now_monotonic() -> float:
    return time.monotonic()
