from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, current_app, g, request

from actions import dispatch
from auth import assert_actor_for, resolve_actor
from db import SessionLocal
from errors import ValidationError
from utils import ApiError, ok, now_monotonic, parse_json_body

api_bp = Blueprint("api", __name__)

log = logging.getLogger("api")


def _run(action: str, data: dict[str, Any], http_status: int = 200):
    """One action, one session. Service functions commit their own work; anything left is rolled back."""
    cfg = current_app.config["CFG"]
    action_u = str(action or "").upper().strip()
    g.action = action_u

    actor = resolve_actor(request, cfg)
    g.actor_id = actor.actorId if actor else ""
    assert_actor_for(action_u, actor)

    db = SessionLocal()
    started = now_monotonic()
    try:
        out = dispatch(action_u, data, actor, db, cfg)
        return ok(out, http_status)
    except ApiError as e:
        db.rollback()
        log.info("request_id=%s action=%s code=%s message=%s", g.request_id, action_u, e.code, e.message)
        raise
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
        log.info(
            "request_id=%s action=%s actor=%s latency_ms=%s",
            getattr(g, "request_id", ""),
            action_u,
            g.actor_id or "-",
            int((now_monotonic() - started) * 1000),
        )


def _json_body() -> dict[str, Any]:
    raw = request.get_data(as_text=True)
    if not raw.strip():
        return {}
    return parse_json_body(raw)


@api_bp.post("/api")
def api_route():
    body = parse_json_body(request.get_data(as_text=True))
    action = str(body.get("action") or "").strip()
    if not action:
        raise ValidationError("Missing action")
    data = body.get("data")
    return _run(action, data if data is not None else {})


@api_bp.get("/api/v1/stages")
def rest_stages():
    return _run("STAGE_CATALOG", {})


@api_bp.get("/api/v1/pipeline/overview")
def rest_pipeline_overview():
    return _run("PIPELINE_OVERVIEW", {})


@api_bp.get("/api/v1/candidates")
def rest_candidates_list():
    return _run(
        "CANDIDATE_LIST",
        {
            "stage": request.args.get("stage", ""),
            "limit": request.args.get("limit", 100),
            "offset": request.args.get("offset", 0),
        },
    )


@api_bp.post("/api/v1/candidates")
def rest_candidate_create():
    return _run("CANDIDATE_CREATE", _json_body(), http_status=201)


@api_bp.get("/api/v1/candidates/<candidate_id>")
def rest_candidate_get(candidate_id: str):
    return _run("CANDIDATE_GET", {"candidateId": candidate_id})


@api_bp.patch("/api/v1/candidates/<candidate_id>")
def rest_candidate_update(candidate_id: str):
    body = _json_body()
    stage_notes = body.pop("stageNotes", "")
    return _run("CANDIDATE_UPDATE", {"candidateId": candidate_id, "patch": body, "stageNotes": stage_notes})


@api_bp.get("/api/v1/candidates/<candidate_id>/state")
def rest_candidate_state(candidate_id: str):
    return _run("CANDIDATE_STATE", {"candidateId": candidate_id})


@api_bp.get("/api/v1/candidates/<candidate_id>/progress")
def rest_candidate_progress(candidate_id: str):
    return _run("CANDIDATE_PROGRESS", {"candidateId": candidate_id})


@api_bp.get("/api/v1/candidates/<candidate_id>/history")
def rest_stage_history(candidate_id: str):
    return _run("STAGE_HISTORY", {"candidateId": candidate_id})


@api_bp.post("/api/v1/candidates/<candidate_id>/advance")
def rest_stage_advance(candidate_id: str):
    return _run("STAGE_ADVANCE", {**_json_body(), "candidateId": candidate_id})


@api_bp.put("/api/v1/candidates/<candidate_id>/stage")
def rest_stage_set(candidate_id: str):
    return _run("STAGE_SET", {**_json_body(), "candidateId": candidate_id})


@api_bp.get("/api/v1/candidates/<candidate_id>/checklist")
def rest_checklist_get(candidate_id: str):
    return _run("CHECKLIST_GET", {"candidateId": candidate_id, "stage": request.args.get("stage", "")})


@api_bp.get("/api/v1/candidates/<candidate_id>/checklist/summary")
def rest_checklist_summary(candidate_id: str):
    return _run("CHECKLIST_SUMMARY", {"candidateId": candidate_id, "stage": request.args.get("stage", "")})


@api_bp.put("/api/v1/candidates/<candidate_id>/documents/<stage_document_id>/completion")
def rest_document_toggle(candidate_id: str, stage_document_id: str):
    return _run("DOCUMENT_TOGGLE", {**_json_body(), "candidateId": candidate_id, "stageDocumentId": stage_document_id})


@api_bp.put("/api/v1/candidates/<candidate_id>/documents/<stage_document_id>/attachment")
def rest_document_attach(candidate_id: str, stage_document_id: str):
    return _run("DOCUMENT_ATTACH", {**_json_body(), "candidateId": candidate_id, "stageDocumentId": stage_document_id})


@api_bp.post("/api/v1/candidates/<candidate_id>/documents/<stage_document_id>/upload")
def rest_document_upload(candidate_id: str, stage_document_id: str):
    return _run(
        "DOCUMENT_UPLOAD",
        {**_json_body(), "candidateId": candidate_id, "stageDocumentId": stage_document_id},
        http_status=201,
    )


@api_bp.delete("/api/v1/candidate-documents/<candidate_document_id>/attachment")
def rest_document_remove(candidate_document_id: str):
    return _run(
        "DOCUMENT_REMOVE",
        {"candidateDocumentId": candidate_document_id, "fileRef": request.args.get("fileRef", "")},
    )


@api_bp.get("/api/v1/candidate-documents/<candidate_document_id>/signed-url")
def rest_document_signed_url(candidate_document_id: str):
    return _run(
        "DOCUMENT_SIGNED_URL",
        {"candidateDocumentId": candidate_document_id, "ttlSeconds": request.args.get("ttlSeconds")},
    )


@api_bp.get("/api/v1/candidates/<candidate_id>/compliance")
def rest_compliance_get(candidate_id: str):
    return _run("COMPLIANCE_GET", {"candidateId": candidate_id})


@api_bp.get("/api/v1/compliance/expiring")
def rest_expiring_list():
    return _run(
        "EXPIRING_LIST",
        {"withinDays": request.args.get("withinDays"), "policyType": request.args.get("policyType", "")},
    )


@api_bp.post("/api/v1/expiry/assess")
def rest_expiry_assess():
    return _run("EXPIRY_ASSESS", _json_body())
