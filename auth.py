from __future__ import annotations

import hmac
import re
from typing import Optional

from errors import AuthError
from utils import Actor

# Reads work without an actor; everything else is a mutation and must be attributable.
READ_ACTIONS = {
    "STAGE_CATALOG",
    "CANDIDATE_GET",
    "CANDIDATE_LIST",
    "PIPELINE_OVERVIEW",
    "CANDIDATE_STATE",
    "CANDIDATE_PROGRESS",
    "STAGE_HISTORY",
    "CHECKLIST_GET",
    "CHECKLIST_SUMMARY",
    "DOCUMENT_SIGNED_URL",
    "EXPIRY_ASSESS",
    "COMPLIANCE_GET",
    "EXPIRING_LIST",
}

_ACTOR_ID_RE = re.compile(r"^[A-Za-z0-9@._:+-]{1,128}$")


def is_read_action(action: str) -> bool:
    return str(action or "").upper().strip() in READ_ACTIONS


def resolve_actor(request, cfg) -> Optional[Actor]:
    """
    The identity gateway in front of this service puts the caller in X-Actor-Id / X-Actor-Label.
    When ACTOR_HEADER_SECRET is set the gateway must also prove itself with X-Actor-Secret.
    """
    actor_id = str(request.headers.get("X-Actor-Id") or "").strip()
    if not actor_id:
        return None

    expected = str(getattr(cfg, "ACTOR_HEADER_SECRET", "") or "")
    if expected:
        presented = str(request.headers.get("X-Actor-Secret") or "")
        if not hmac.compare_digest(expected, presented):
            raise AuthError("Actor headers not trusted")

    if not _ACTOR_ID_RE.fullmatch(actor_id):
        raise AuthError("Invalid actor id")

    label = str(request.headers.get("X-Actor-Label") or "").strip()[:200] or actor_id
    return Actor(actorId=actor_id, actorLabel=label)


def assert_actor_for(action: str, actor: Optional[Actor]) -> None:
    if is_read_action(action):
        return
    if actor is None:
        raise AuthError("Actor identity required")
