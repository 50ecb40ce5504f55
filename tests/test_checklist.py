from __future__ import annotations

import base64
import os

import pytest
from sqlalchemy import func, select

from actions import checklist
from actions.candidates import create_candidate
from actions.pipeline import set_stage
from db import SessionLocal
from errors import ConcurrentModificationError, DependencyError, ValidationError
from models import CandidateDocument
from services import storage
from utils import iso_utc_now, new_prefixed_id


def _new(db, actor) -> str:
    return create_candidate(db, fields={"fullName": "Sana Iqbal"}, actor=actor)["candidateId"]


def _rows_for(candidate_id: str, stage_document_id: str) -> int:
    with SessionLocal() as s:
        return int(
            s.execute(
                select(func.count())
                .select_from(CandidateDocument)
                .where(CandidateDocument.candidateId == candidate_id, CandidateDocument.stageDocumentId == stage_document_id)
            ).scalar()
        )


def test_checklist_defaults_to_current_stage_in_display_order(db, actor):
    cid = _new(db, actor)
    out = checklist.get_checklist(db, cid)

    assert out["stage"] == "passport_received"
    orders = [i["displayOrder"] for i in out["items"]]
    assert orders == sorted(orders)
    assert out["items"][0]["documentName"] == "Original passport"
    assert all(i["isCompleted"] is False and i["completedAt"] is None for i in out["items"])
    assert all(i["candidateDocumentId"] is None and i["fileRef"] is None for i in out["items"])
    assert out["summary"]["completedCount"] == 0
    assert out["summary"]["allRequiredComplete"] is False


def test_order_ignores_status_row_creation_order(db, actor):
    cid = _new(db, actor)
    items = checklist.get_checklist(db, cid, "passport_received")["items"]
    for item in reversed(items):
        checklist.toggle_document(db, candidate_id=cid, stage_document_id=item["stageDocumentId"], completed=True, actor=actor)

    again = checklist.get_checklist(db, cid, "passport_received")["items"]
    assert [i["stageDocumentId"] for i in again] == [i["stageDocumentId"] for i in items]
    assert all(i["isCompleted"] for i in again)


def test_toggle_twice_is_idempotent(db, actor):
    cid = _new(db, actor)
    doc = checklist.get_checklist(db, cid)["items"][0]

    first = checklist.toggle_document(db, candidate_id=cid, stage_document_id=doc["stageDocumentId"], completed=True, actor=actor)
    second = checklist.toggle_document(db, candidate_id=cid, stage_document_id=doc["stageDocumentId"], completed=True, actor=actor)

    assert first["candidateDocumentId"] == second["candidateDocumentId"]
    assert second["isCompleted"] is True
    assert second["completedAt"] >= first["completedAt"]
    assert _rows_for(cid, doc["stageDocumentId"]) == 1


def test_toggle_off_keeps_attachment(db, actor):
    cid = _new(db, actor)
    sdid = checklist.get_checklist(db, cid)["items"][1]["stageDocumentId"]
    ref = f"{cid}/{sdid}/1700000000000.pdf"

    attached = checklist.attach_document(db, candidate_id=cid, stage_document_id=sdid, file_ref=ref, file_name="scan.pdf", actor=actor)
    assert attached["isCompleted"] is False
    assert attached["fileRef"] == ref

    checklist.toggle_document(db, candidate_id=cid, stage_document_id=sdid, completed=True, actor=actor)
    off = checklist.toggle_document(db, candidate_id=cid, stage_document_id=sdid, completed=False, actor=actor)

    assert off["isCompleted"] is False
    assert off["completedAt"] is None
    assert off["fileRef"] == ref
    assert off["fileName"] == "scan.pdf"


def test_toggle_rejects_documents_outside_the_stage(db, actor):
    cid = _new(db, actor)
    medical_doc = checklist.get_checklist(db, cid, "medical")["items"][0]

    with pytest.raises(ValidationError):
        checklist.toggle_document(
            db, candidate_id=cid, stage_document_id=medical_doc["stageDocumentId"], completed=True, actor=actor, stage="interview"
        )
    with pytest.raises(ValidationError):
        checklist.toggle_document(db, candidate_id=cid, stage_document_id="SDOC-nope", completed=True, actor=actor)


def test_summary_counts_required_items(db, actor):
    cid = _new(db, actor)
    set_stage(db, candidate_id=cid, target_stage="interview", actor=actor)
    items = checklist.get_checklist(db, cid)["items"]
    required = [i for i in items if i["isRequired"]]
    optional = [i for i in items if not i["isRequired"]]
    assert required and optional

    checklist.toggle_document(db, candidate_id=cid, stage_document_id=optional[0]["stageDocumentId"], completed=True, actor=actor)
    summary = checklist.get_checklist_summary(db, cid)
    assert summary["completedCount"] == 1
    assert summary["completedRequiredCount"] == 0
    assert summary["allRequiredComplete"] is False

    for item in required:
        checklist.toggle_document(db, candidate_id=cid, stage_document_id=item["stageDocumentId"], completed=True, actor=actor)
    summary = checklist.get_checklist_summary(db, cid)
    assert summary["requiredCount"] == len(required)
    assert summary["completedRequiredCount"] == len(required)
    assert summary["totalCount"] == len(items)
    assert summary["allRequiredComplete"] is True


def test_empty_checklist_is_never_complete():
    assert checklist.summarize_checklist([])["allRequiredComplete"] is False


def test_concurrent_first_toggle_does_not_duplicate_rows(db, actor, monkeypatch):
    cid = _new(db, actor)
    sdid = checklist.get_checklist(db, cid)["items"][0]["stageDocumentId"]
    real_status_row = checklist._status_row
    calls = {"n": 0}

    def racing_status_row(session, candidate_id, stage_document_id):
        calls["n"] += 1
        if calls["n"] == 1:
            # Another request creates the row between our lookup and our insert.
            with SessionLocal() as s2:
                now = iso_utc_now()
                s2.add(
                    CandidateDocument(
                        id=new_prefixed_id("CDOC"),
                        candidateId=candidate_id,
                        stageDocumentId=stage_document_id,
                        isCompleted=False,
                        notes="from the other desk",
                        createdAt=now,
                        updatedAt=now,
                        updatedBy="ops-2",
                    )
                )
                s2.commit()
            return None
        return real_status_row(session, candidate_id, stage_document_id)

    monkeypatch.setattr(checklist, "_status_row", racing_status_row)
    out = checklist.toggle_document(db, candidate_id=cid, stage_document_id=sdid, completed=True, actor=actor)

    assert out["isCompleted"] is True
    assert out["notes"] == "from the other desk"
    assert _rows_for(cid, sdid) == 1


def test_upload_stores_bytes_and_attaches(db, cfg, actor):
    cid = _new(db, actor)
    sdid = checklist.get_checklist(db, cid)["items"][1]["stageDocumentId"]
    payload = b"%PDF-1.4 passport scan"

    out = checklist.upload_document(
        db,
        cfg,
        candidate_id=cid,
        stage_document_id=sdid,
        file_base64=base64.b64encode(payload).decode("ascii"),
        file_name="Passport Scan.PDF",
        mime_type="application/pdf",
        actor=actor,
    )

    assert out["fileRef"].startswith(f"{cid}/{sdid}/")
    assert out["fileRef"].endswith(".pdf")
    assert out["fileName"] == "Passport Scan.PDF"
    assert out["isCompleted"] is False
    with open(storage.LocalFileStorage(cfg).path_for(out["fileRef"]), "rb") as f:
        assert f.read() == payload


def test_remove_deletes_file_then_clears_reference(db, cfg, actor):
    cid = _new(db, actor)
    sdid = checklist.get_checklist(db, cid)["items"][0]["stageDocumentId"]
    up = checklist.upload_document(
        db, cfg, candidate_id=cid, stage_document_id=sdid, file_base64=base64.b64encode(b"x").decode(), file_name="a.png", mime_type="image/png", actor=actor
    )
    path = storage.LocalFileStorage(cfg).path_for(up["fileRef"])
    assert os.path.exists(path)

    with pytest.raises(ConcurrentModificationError):
        checklist.remove_document(db, cfg, candidate_document_id=up["candidateDocumentId"], file_ref="someone/else/1.png", actor=actor)

    out = checklist.remove_document(db, cfg, candidate_document_id=up["candidateDocumentId"], file_ref=up["fileRef"], actor=actor)
    assert out["fileRef"] is None
    assert out["fileName"] is None
    assert not os.path.exists(path)

    with pytest.raises(ValidationError):
        checklist.remove_document(db, cfg, candidate_document_id=up["candidateDocumentId"], actor=actor)


def test_remove_keeps_reference_when_storage_fails(db, cfg, actor, monkeypatch):
    cid = _new(db, actor)
    sdid = checklist.get_checklist(db, cid)["items"][0]["stageDocumentId"]
    ref = f"{cid}/{sdid}/1700000000000.jpg"
    attached = checklist.attach_document(db, candidate_id=cid, stage_document_id=sdid, file_ref=ref, actor=actor)

    class FailingStorage:
        def delete(self, file_ref):
            raise DependencyError("storage unreachable")

    monkeypatch.setattr(storage, "get_storage", lambda _cfg: FailingStorage())

    with pytest.raises(DependencyError):
        checklist.remove_document(db, cfg, candidate_document_id=attached["candidateDocumentId"], actor=actor)

    item = checklist.get_checklist(db, cid)["items"][0]
    assert item["fileRef"] == ref


def test_signed_url_requires_attachment_and_valid_ttl(db, cfg, actor):
    cid = _new(db, actor)
    sdid = checklist.get_checklist(db, cid)["items"][0]["stageDocumentId"]
    toggled = checklist.toggle_document(db, candidate_id=cid, stage_document_id=sdid, completed=True, actor=actor)

    with pytest.raises(ValidationError):
        checklist.get_signed_access_url(db, cfg, candidate_document_id=toggled["candidateDocumentId"])

    checklist.attach_document(db, candidate_id=cid, stage_document_id=sdid, file_ref=f"{cid}/{sdid}/1.pdf", actor=actor)
    with pytest.raises(ValidationError):
        checklist.get_signed_access_url(db, cfg, candidate_document_id=toggled["candidateDocumentId"], ttl_seconds=0)

    out = checklist.get_signed_access_url(db, cfg, candidate_document_id=toggled["candidateDocumentId"], ttl_seconds=120)
    assert out["url"].startswith(f"/files/{cid}/{sdid}/1.pdf?")
    assert out["expiresIn"] == 120


def test_toggle_without_stage_checks_the_current_stage(db, actor):
    cid = _new(db, actor)
    medical_doc = checklist.get_checklist(db, cid, "medical")["items"][0]

    with pytest.raises(ValidationError):
        checklist.toggle_document(db, candidate_id=cid, stage_document_id=medical_doc["stageDocumentId"], completed=True, actor=actor)
    with pytest.raises(ValidationError):
        checklist.attach_document(
            db, candidate_id=cid, stage_document_id=medical_doc["stageDocumentId"], file_ref=f"{cid}/x/1.pdf", actor=actor
        )

    # Naming the stage explicitly still allows working ahead.
    out = checklist.toggle_document(
        db, candidate_id=cid, stage_document_id=medical_doc["stageDocumentId"], completed=True, actor=actor, stage="medical"
    )
    assert out["isCompleted"] is True
