from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from actions.audit import record_audit
from actions.helpers import dependency_guard, find_candidate, parse_bool, require_actor, require_str
from cache_layer import cache_get_or_load, stage_docs_key
from errors import ConcurrentModificationError, NotFoundError, ValidationError
from models import CandidateDocument, StageDocument
from services import storage
from stages import get_stage, stage_label
from utils import Actor, decode_base64_to_bytes, iso_utc_now, new_prefixed_id, sanitize_filename

log = logging.getLogger("checklist")

MAX_SIGNED_URL_TTL_SECONDS = 7 * 24 * 3600
_EXT_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


def _definition_dict(d: StageDocument) -> dict[str, Any]:
    return {
        "stageDocumentId": d.id,
        "stage": d.stage,
        "documentName": d.documentName,
        "description": d.description or "",
        "isRequired": bool(d.isRequired),
        "displayOrder": int(d.displayOrder or 0),
    }


def load_stage_definitions(db, stage: str) -> list[dict[str, Any]]:
    """Catalog rows for one stage, in display order. Cached per stage; the rows only change on seed."""
    key = get_stage(stage).key

    def _load() -> list[dict[str, Any]]:
        rows = (
            db.execute(
                select(StageDocument)
                .where(StageDocument.stage == key)
                .order_by(StageDocument.displayOrder.asc(), StageDocument.documentName.asc())
            )
            .scalars()
            .all()
        )
        return [_definition_dict(r) for r in rows]

    return [dict(d) for d in cache_get_or_load(stage_docs_key(key), _load)]


def _find_definition(db, stage_document_id: str, stage: str) -> StageDocument:
    # Callers pass the requested stage, or the candidate's current stage as getChecklist does.
    d = db.execute(select(StageDocument).where(StageDocument.id == stage_document_id)).scalar_one_or_none()
    if not d:
        raise ValidationError("Unknown stage document")
    if d.stage != get_stage(stage).key:
        raise ValidationError(f"Document '{d.documentName}' is not part of the {stage_label(stage)} checklist")
    return d


def _status_dict(row: Optional[CandidateDocument]) -> dict[str, Any]:
    if row is None:
        return {
            "candidateDocumentId": None,
            "isCompleted": False,
            "completedAt": None,
            "notes": "",
            "fileRef": None,
            "fileName": None,
            "updatedAt": None,
        }
    return {
        "candidateDocumentId": row.id,
        "isCompleted": bool(row.isCompleted),
        "completedAt": row.completedAt or None,
        "notes": row.notes or "",
        "fileRef": row.fileRef or None,
        "fileName": row.fileName or None,
        "updatedAt": row.updatedAt or None,
    }


def _status_row(db, candidate_id: str, stage_document_id: str) -> Optional[CandidateDocument]:
    return db.execute(
        select(CandidateDocument).where(
            CandidateDocument.candidateId == candidate_id,
            CandidateDocument.stageDocumentId == stage_document_id,
        )
    ).scalar_one_or_none()


def get_checklist(db, candidate_id: str, stage: Optional[str] = None) -> dict[str, Any]:
    with dependency_guard(db, "get_checklist"):
        cand = find_candidate(db, candidate_id)
        key = get_stage(stage or cand.currentStage).key
        defs = load_stage_definitions(db, key)
        ids = [d["stageDocumentId"] for d in defs]
        rows = []
        if ids:
            rows = (
                db.execute(
                    select(CandidateDocument).where(
                        CandidateDocument.candidateId == cand.candidateId,
                        CandidateDocument.stageDocumentId.in_(ids),
                    )
                )
                .scalars()
                .all()
            )

    by_doc = {r.stageDocumentId: r for r in rows}
    # Order comes from the catalog, never from the status rows.
    items = [{**d, **_status_dict(by_doc.get(d["stageDocumentId"]))} for d in defs]
    return {
        "candidateId": cand.candidateId,
        "stage": key,
        "stageLabel": stage_label(key),
        "items": items,
        "summary": summarize_checklist(items),
    }


def summarize_checklist(items: list[dict[str, Any]]) -> dict[str, Any]:
    required = [i for i in items if i.get("isRequired")]
    completed_required = [i for i in required if i.get("isCompleted")]
    return {
        "totalCount": len(items),
        "completedCount": sum(1 for i in items if i.get("isCompleted")),
        "requiredCount": len(required),
        "completedRequiredCount": len(completed_required),
        "allRequiredComplete": len(required) > 0 and len(completed_required) == len(required),
    }


def get_checklist_summary(db, candidate_id: str, stage: Optional[str] = None) -> dict[str, Any]:
    out = get_checklist(db, candidate_id, stage)
    return {"candidateId": out["candidateId"], "stage": out["stage"], **out["summary"]}


def _upsert_status(
    db,
    *,
    candidate_id: str,
    stage_document_id: str,
    actor: Actor,
    mutate: Callable[[CandidateDocument, str], None],
) -> tuple[Optional[dict[str, Any]], CandidateDocument]:
    """
    Create-if-absent, else update, keyed on (candidate, document). A concurrent insert of the same
    pair trips the unique constraint; the loser rolls back and updates the winner's row instead.
    """
    for attempt in range(2):
        now = iso_utc_now()
        try:
            row = _status_row(db, candidate_id, stage_document_id)
            old = _status_dict(row) if row is not None else None
            if row is None:
                row = CandidateDocument(
                    id=new_prefixed_id("CDOC"),
                    candidateId=candidate_id,
                    stageDocumentId=stage_document_id,
                    isCompleted=False,
                    completedAt=None,
                    notes="",
                    fileRef=None,
                    fileName=None,
                    createdAt=now,
                    updatedAt=now,
                    updatedBy=actor.actorId,
                )
                db.add(row)
                db.flush()
            mutate(row, now)
            row.updatedAt = now
            row.updatedBy = actor.actorId
            db.commit()
            return old, row
        except IntegrityError:
            db.rollback()
            if attempt:
                raise ConcurrentModificationError("Checklist item was modified concurrently; reload and try again")
            log.info("checklist insert raced candidate=%s doc=%s; retrying as update", candidate_id, stage_document_id)
    raise ConcurrentModificationError("Checklist item was modified concurrently; reload and try again")


def toggle_document(
    db,
    *,
    candidate_id: str,
    stage_document_id: str,
    completed: bool,
    actor: Actor,
    stage: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict[str, Any]:
    actor = require_actor(actor)
    with dependency_guard(db, "toggle_document"):
        cand = find_candidate(db, candidate_id)
        d = _find_definition(db, stage_document_id, stage or cand.currentStage)

        def mutate(row: CandidateDocument, now: str) -> None:
            row.isCompleted = bool(completed)
            row.completedAt = now if completed else None
            if notes is not None:
                row.notes = str(notes)

        old, row = _upsert_status(db, candidate_id=cand.candidateId, stage_document_id=d.id, actor=actor, mutate=mutate)

    new = _status_dict(row)
    record_audit(
        actor,
        "create" if old is None else "update",
        "candidate_document",
        row.id,
        old=old,
        new=new,
        description=f"{d.documentName} marked {'complete' if completed else 'incomplete'} for {cand.candidateId}",
    )
    return {**_definition_dict(d), **new}


def attach_document(
    db,
    *,
    candidate_id: str,
    stage_document_id: str,
    file_ref: str,
    actor: Actor,
    file_name: str = "",
    stage: Optional[str] = None,
) -> dict[str, Any]:
    """Sets the attachment only; completion is a separate signal and is left as it was."""
    actor = require_actor(actor)
    ref = storage.validate_file_ref(file_ref)
    with dependency_guard(db, "attach_document"):
        cand = find_candidate(db, candidate_id)
        d = _find_definition(db, stage_document_id, stage or cand.currentStage)

        def mutate(row: CandidateDocument, now: str) -> None:
            row.fileRef = ref
            row.fileName = sanitize_filename(file_name) if file_name else os.path.basename(ref)

        old, row = _upsert_status(db, candidate_id=cand.candidateId, stage_document_id=d.id, actor=actor, mutate=mutate)

    new = _status_dict(row)
    record_audit(
        actor,
        "create" if old is None else "update",
        "candidate_document",
        row.id,
        old=old,
        new=new,
        description=f"File attached to {d.documentName} for {cand.candidateId}",
    )
    return {**_definition_dict(d), **new}


def _storage_path(candidate_id: str, stage_document_id: str, file_name: str) -> str:
    ext = os.path.splitext(file_name)[1].lower()
    if not _EXT_RE.fullmatch(ext or ""):
        ext = ""
    return f"{candidate_id}/{stage_document_id}/{int(time.time() * 1000)}{ext}"


def upload_document(
    db,
    cfg,
    *,
    candidate_id: str,
    stage_document_id: str,
    file_base64: str,
    file_name: str,
    mime_type: str,
    actor: Actor,
    stage: Optional[str] = None,
) -> dict[str, Any]:
    actor = require_actor(actor)
    raw = decode_base64_to_bytes(str(file_base64 or "").strip())
    if not raw:
        raise ValidationError("Empty file")
    name = sanitize_filename(file_name)

    with dependency_guard(db, "upload_document"):
        cand = find_candidate(db, candidate_id)
        d = _find_definition(db, stage_document_id, stage or cand.currentStage)
        cid, sdid, doc_stage = cand.candidateId, d.id, d.stage
        # Release the read transaction before the (possibly slow) storage call.
        db.rollback()

    backend = storage.get_storage(cfg)
    ref = backend.put(raw, _storage_path(cid, sdid, name), mime_type)
    try:
        return attach_document(
            db,
            candidate_id=cid,
            stage_document_id=sdid,
            file_ref=ref,
            file_name=name,
            actor=actor,
            stage=doc_stage,
        )
    except Exception:
        try:
            backend.delete(ref)
        except Exception as cleanup_err:
            log.warning("orphaned upload ref=%s cleanup failed: %s", ref, cleanup_err)
        raise


def _find_status_by_id(db, candidate_document_id: str) -> CandidateDocument:
    row = db.execute(select(CandidateDocument).where(CandidateDocument.id == candidate_document_id)).scalar_one_or_none()
    if not row:
        raise NotFoundError("Checklist item not found")
    return row


def remove_document(db, cfg, *, candidate_document_id: str, actor: Actor, file_ref: Optional[str] = None) -> dict[str, Any]:
    """
    Delete the stored file first, then clear the reference. If storage fails the reference stays,
    so the row never points at nothing and no file is left unreferenced by a cleared row.
    """
    actor = require_actor(actor)
    with dependency_guard(db, "remove_document"):
        row = _find_status_by_id(db, candidate_document_id)
        current_ref = row.fileRef or ""
        old = _status_dict(row)
        db.rollback()

    if not current_ref:
        raise ValidationError("No file attached to this checklist item")
    if file_ref and str(file_ref).strip() != current_ref:
        raise ConcurrentModificationError("Attachment changed since it was read; reload and try again")

    storage.get_storage(cfg).delete(current_ref)

    with dependency_guard(db, "remove_document"):
        now = iso_utc_now()
        res = db.execute(
            update(CandidateDocument)
            .where(CandidateDocument.id == candidate_document_id, CandidateDocument.fileRef == current_ref)
            .values(fileRef=None, fileName=None, updatedAt=now, updatedBy=actor.actorId)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise ConcurrentModificationError("Attachment changed while it was being removed; reload and try again")
        db.commit()
        db.expire_all()
        row = _find_status_by_id(db, candidate_document_id)
        new = _status_dict(row)

    log.info("attachment removed item=%s ref=%s actor=%s", candidate_document_id, current_ref, actor.actorId)
    record_audit(
        actor,
        "delete",
        "candidate_document_file",
        candidate_document_id,
        old={"fileRef": old["fileRef"], "fileName": old["fileName"]},
        new=None,
        description=f"File removed from checklist item {candidate_document_id}",
    )
    return new


def get_signed_access_url(db, cfg, *, candidate_document_id: str, ttl_seconds: Optional[int] = None) -> dict[str, Any]:
    ttl = cfg.SIGNED_URL_TTL_SECONDS if ttl_seconds in (None, "") else ttl_seconds
    try:
        ttl = int(ttl)
    except (TypeError, ValueError):
        raise ValidationError("ttlSeconds must be an integer")
    if ttl <= 0 or ttl > MAX_SIGNED_URL_TTL_SECONDS:
        raise ValidationError(f"ttlSeconds must be between 1 and {MAX_SIGNED_URL_TTL_SECONDS}")

    with dependency_guard(db, "get_signed_access_url"):
        row = _find_status_by_id(db, candidate_document_id)
    if not row.fileRef:
        raise ValidationError("No file attached to this checklist item")

    url = storage.get_storage(cfg).get_signed_access_url(row.fileRef, ttl)
    return {"candidateDocumentId": row.id, "url": url, "expiresIn": ttl, "fileName": row.fileName or None}


def checklist_get(data, actor: Actor | None, db, cfg):
    return get_checklist(db, require_str(data, "candidateId"), str(data.get("stage") or "").strip() or None)


def checklist_summary(data, actor: Actor | None, db, cfg):
    return get_checklist_summary(db, require_str(data, "candidateId"), str(data.get("stage") or "").strip() or None)


def document_toggle(data, actor: Actor | None, db, cfg):
    if "completed" not in (data or {}):
        raise ValidationError("Missing completed")
    notes = data.get("notes")
    return toggle_document(
        db,
        candidate_id=require_str(data, "candidateId"),
        stage_document_id=require_str(data, "stageDocumentId"),
        completed=parse_bool(data.get("completed"), field="completed"),
        actor=actor,
        stage=str(data.get("stage") or "").strip() or None,
        notes=str(notes) if notes is not None else None,
    )


def document_attach(data, actor: Actor | None, db, cfg):
    return attach_document(
        db,
        candidate_id=require_str(data, "candidateId"),
        stage_document_id=require_str(data, "stageDocumentId"),
        file_ref=require_str(data, "fileRef"),
        file_name=str(data.get("fileName") or "").strip(),
        actor=actor,
        stage=str(data.get("stage") or "").strip() or None,
    )


def document_upload(data, actor: Actor | None, db, cfg):
    return upload_document(
        db,
        cfg,
        candidate_id=require_str(data, "candidateId"),
        stage_document_id=require_str(data, "stageDocumentId"),
        file_base64=require_str(data, "base64"),
        file_name=str(data.get("fileName") or "").strip() or "document",
        mime_type=str(data.get("mimeType") or "").strip(),
        actor=actor,
        stage=str(data.get("stage") or "").strip() or None,
    )


def document_remove(data, actor: Actor | None, db, cfg):
    return remove_document(
        db,
        cfg,
        candidate_document_id=require_str(data, "candidateDocumentId"),
        file_ref=str(data.get("fileRef") or "").strip() or None,
        actor=actor,
    )


def document_signed_url(data, actor: Actor | None, db, cfg):
    return get_signed_access_url(
        db,
        cfg,
        candidate_document_id=require_str(data, "candidateDocumentId"),
        ttl_seconds=data.get("ttlSeconds"),
    )
