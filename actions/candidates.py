from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import func, select

from actions.audit import record_audit
from actions.candidate_repo import clean_profile_patch, new_candidate_row, write_profile
from actions.helpers import candidate_snapshot, dependency_guard, find_candidate, require_actor, require_str
from actions.pipeline import get_candidate_state, set_stage
from errors import ConcurrentModificationError, ValidationError
from models import Candidate, StageHistory
from stages import INITIAL_STAGE, STAGES, get_stage, machine, progress_ratio
from utils import Actor, iso_utc_now, new_sortable_id

log = logging.getLogger("pipeline")

MAX_PAGE_SIZE = 500


def create_candidate(db, *, fields: dict[str, Any], actor: Actor) -> dict[str, Any]:
    actor = require_actor(actor)
    clean = clean_profile_patch(fields)
    if not clean.get("fullName"):
        raise ValidationError("Missing fullName")

    candidate_id = new_sortable_id("CAN")
    now = iso_utc_now()
    with dependency_guard(db, "create_candidate"):
        cand = new_candidate_row(candidate_id, clean, stage=INITIAL_STAGE, actor=actor, now=now)
        db.add(cand)
        # Intake counts as entering the first stage, so history is never empty.
        db.add(
            StageHistory(
                historyId=new_sortable_id("STH"),
                candidateId=candidate_id,
                stage=INITIAL_STAGE,
                fromStage="",
                completedAt=now,
                notes="Candidate created",
                actorId=actor.actorId,
                actorLabel=actor.actorLabel,
            )
        )
        db.commit()

    snap = candidate_snapshot(cand)
    log.info("candidate created id=%s actor=%s", candidate_id, actor.actorId)
    record_audit(actor, "create", "candidate", candidate_id, new=snap, description=f"Candidate {clean['fullName']} created")
    return snap


def get_candidate(db, candidate_id: str) -> dict[str, Any]:
    with dependency_guard(db, "get_candidate"):
        cand = find_candidate(db, candidate_id)
        snap = candidate_snapshot(cand)
    state = get_candidate_state(db, cand.candidateId)
    snap.update(
        {
            "progress": state["progress"],
            "stageIndex": state["stageIndex"],
            "nextStage": state["nextStage"],
            "nextStageLabel": state["nextStageLabel"],
            "isTerminal": state["isTerminal"],
        }
    )
    return snap


def update_candidate(
    db,
    *,
    candidate_id: str,
    patch: dict[str, Any],
    actor: Actor,
    stage_notes: str = "",
) -> dict[str, Any]:
    """
    Profile edit. A `currentStage` in the patch goes through `set_stage`, and the profile columns
    are written in that same conditional update, so a rejected move leaves the profile untouched.
    """
    actor = require_actor(actor)
    patch = dict(patch or {})
    target_stage = patch.pop("currentStage", None)
    target_stage = patch.pop("current_stage", None) or target_stage
    target = get_stage(target_stage).key if target_stage else None
    changes = clean_profile_patch(patch)

    with dependency_guard(db, "update_candidate"):
        cand = find_candidate(db, candidate_id)
        candidate_id = cand.candidateId
        old_snap = candidate_snapshot(cand)
        current = str(cand.currentStage)
        db.rollback()

    # Plan the move before writing anything; a refused regression raises here.
    if target and machine.assign(current, target, reason=stage_notes) is None:
        target = None

    if target:
        set_stage(
            db,
            candidate_id=candidate_id,
            target_stage=target,
            actor=actor,
            notes=stage_notes,
            expected_stage=current,
            profile_changes=changes or None,
        )
    elif changes:
        with dependency_guard(db, "update_candidate"):
            for attempt in range(2):
                db.expire_all()
                cand = find_candidate(db, candidate_id)
                old_snap = candidate_snapshot(cand)
                if write_profile(db, candidate_id=candidate_id, version=int(cand.version or 0), changes=changes, actor=actor):
                    db.commit()
                    break
                db.rollback()
                log.info("profile write conflict candidate=%s attempt=%s", candidate_id, attempt + 1)
            else:
                raise ConcurrentModificationError("Candidate was modified concurrently; reload and try again")

    if changes:
        record_audit(
            actor,
            "update",
            "candidate",
            candidate_id,
            old={k: old_snap.get(k) for k in changes},
            new=dict(changes),
            description=f"Profile updated: {', '.join(sorted(changes))}",
        )

    db.expire_all()
    return get_candidate(db, candidate_id)


def list_candidates(db, *, stage: Optional[str] = None, limit: int = 100, offset: int = 0) -> dict[str, Any]:
    try:
        limit = max(1, min(MAX_PAGE_SIZE, int(limit)))
        offset = max(0, int(offset))
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers")

    q = select(Candidate)
    count_q = select(func.count()).select_from(Candidate)
    key = None
    if stage:
        key = get_stage(stage).key
        q = q.where(Candidate.currentStage == key)
        count_q = count_q.where(Candidate.currentStage == key)

    with dependency_guard(db, "list_candidates"):
        total = int(db.execute(count_q).scalar() or 0)
        rows = (
            db.execute(q.order_by(Candidate.createdAt.desc(), Candidate.candidateId.desc()).limit(limit).offset(offset))
            .scalars()
            .all()
        )

    items = []
    for c in rows:
        snap = candidate_snapshot(c)
        snap["progress"] = progress_ratio(c.currentStage)
        items.append(snap)
    return {"items": items, "total": total, "stage": key, "limit": limit, "offset": offset}


def pipeline_overview(db) -> dict[str, Any]:
    with dependency_guard(db, "pipeline_overview"):
        rows = db.execute(select(Candidate.currentStage, func.count()).group_by(Candidate.currentStage)).all()
    counts = {str(stage): int(n) for stage, n in rows}
    stages = [{**s.to_dict(), "count": counts.get(s.key, 0)} for s in STAGES]
    return {"stages": stages, "total": sum(counts.values())}


def candidate_create(data, actor: Actor | None, db, cfg):
    return create_candidate(db, fields=data or {}, actor=actor)


def candidate_get(data, actor: Actor | None, db, cfg):
    return get_candidate(db, require_str(data, "candidateId"))


def candidate_update(data, actor: Actor | None, db, cfg):
    patch = (data or {}).get("patch")
    if not isinstance(patch, dict):
        raise ValidationError("patch must be an object")
    return update_candidate(
        db,
        candidate_id=require_str(data, "candidateId"),
        patch=patch,
        actor=actor,
        stage_notes=str(data.get("stageNotes") or "").strip(),
    )


def candidate_list(data, actor: Actor | None, db, cfg):
    data = data or {}
    return list_candidates(
        db,
        stage=str(data.get("stage") or "").strip() or None,
        limit=data.get("limit", 100),
        offset=data.get("offset", 0),
    )


def candidate_overview(data, actor: Actor | None, db, cfg):
    return pipeline_overview(db)
