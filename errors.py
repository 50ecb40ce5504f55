from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from utils import ApiError


class ValidationError(ApiError):
    def __init__(self, message: str):
        super().__init__("BAD_REQUEST", message, http_status=400)


class NoNextStageError(ValidationError):
    def __init__(self, stage: str):
        super().__init__(f"Stage '{stage}' is the last stage; there is no next stage")
        self.code = "NO_NEXT_STAGE"
        self.stage = stage


class NotFoundError(ApiError):
    def __init__(self, message: str):
        super().__init__("NOT_FOUND", message, http_status=404)


class ConcurrentModificationError(ApiError):
    def __init__(self, message: str):
        super().__init__("CONFLICT", message, http_status=409)


class DependencyError(ApiError):
    def __init__(self, message: str):
        super().__init__("DEPENDENCY_UNAVAILABLE", message, http_status=503)


class AuthError(ApiError):
    def __init__(self, message: str):
        super().__init__("AUTH_INVALID", message, http_status=401)


@dataclass(frozen=True)
class AuditWriteFailure:
    """A best-effort audit entry that could not be written. Never raised to callers."""

    action: str
    entityName: str
    entityId: str
    actorId: str
    error: str
    at: str
    payload: dict[str, Any]
