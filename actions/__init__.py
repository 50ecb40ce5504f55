from __future__ import annotations

from typing import Any, Callable

from actions.candidates import candidate_create, candidate_get, candidate_list, candidate_overview, candidate_update
from actions.checklist import (
    checklist_get,
    checklist_summary,
    document_attach,
    document_remove,
    document_signed_url,
    document_toggle,
    document_upload,
)
from actions.compliance import compliance_get, expiring_list, expiry_assess
from actions.pipeline import candidate_progress, candidate_state, stage_advance, stage_catalog, stage_history, stage_set
from errors import ValidationError

Handler = Callable[[dict, Any, Any, Any], Any]

ACTIONS: dict[str, Handler] = {
    "STAGE_CATALOG": stage_catalog,
    "CANDIDATE_CREATE": candidate_create,
    "CANDIDATE_GET": candidate_get,
    "CANDIDATE_UPDATE": candidate_update,
    "CANDIDATE_LIST": candidate_list,
    "PIPELINE_OVERVIEW": candidate_overview,
    "CANDIDATE_STATE": candidate_state,
    "CANDIDATE_PROGRESS": candidate_progress,
    "STAGE_ADVANCE": stage_advance,
    "STAGE_SET": stage_set,
    "STAGE_HISTORY": stage_history,
    "CHECKLIST_GET": checklist_get,
    "CHECKLIST_SUMMARY": checklist_summary,
    "DOCUMENT_TOGGLE": document_toggle,
    "DOCUMENT_ATTACH": document_attach,
    "DOCUMENT_UPLOAD": document_upload,
    "DOCUMENT_REMOVE": document_remove,
    "DOCUMENT_SIGNED_URL": document_signed_url,
    "EXPIRY_ASSESS": expiry_assess,
    "COMPLIANCE_GET": compliance_get,
    "EXPIRING_LIST": expiring_list,
}


def dispatch(action: str, data: dict, actor, db, cfg):
    action_u = str(action or "").upper().strip()
    handler = ACTIONS.get(action_u)
    if handler is None:
        raise ValidationError(f"Unknown action: {action_u or '(empty)'}")
    if not isinstance(data, dict):
        raise ValidationError("data must be an object")
    return handler(data, actor, db, cfg)
