from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import select, update

from actions.audit import record_audit
from actions.helpers import dependency_guard, find_candidate, require_actor, require_str
from errors import ConcurrentModificationError, NotFoundError
from models import Candidate, StageHistory
from stages import STAGES, Transition, get_stage, get_stage_catalog, machine, next_stage, progress_ratio, stage_label
from utils import Actor, iso_utc_now, new_sortable_id

log = logging.getLogger("pipeline")

# One automatic retry when only the row version moved; a moved stage is never retried.
MAX_ATTEMPTS = 2


def _read_state(db, candidate_id: str) -> tuple[str, int]:
    row = db.execute(
        select(Candidate.currentStage, Candidate.version).where(Candidate.candidateId == candidate_id)
    ).one_or_none()
    if row is None:
        raise NotFoundError("Candidate not found")
    return str(row[0]), int(row[1] or 0)


def _history_dict(h: StageHistory) -> dict[str, Any]:
    return {
        "historyId": h.historyId,
        "candidateId": h.candidateId,
        "stage": h.stage,
        "stageLabel": stage_label(h.stage),
        "fromStage": h.fromStage or "",
        "completedAt": h.completedAt,
        "notes": h.notes or "",
        "actorId": h.actorId or "",
        "actorLabel": h.actorLabel or "",
    }


def _try_transition(
    db,
    candidate_id: str,
    transition: Transition,
    version: int,
    actor: Actor,
    notes: str,
    profile_changes: Optional[dict[str, str]] = None,
) -> Optional[StageHistory]:
    """
    Conditional write: succeeds only if the row still holds the stage and version that were read.
    Stage update, any profile columns riding along, and the history row commit together;
    returns None on a lost race.
    """
    now = iso_utc_now()
    res = db.execute(
        update(Candidate)
        .where(
            Candidate.candidateId == candidate_id,
            Candidate.currentStage == transition.fromStage,
            Candidate.version == version,
        )
        .values(
            **(profile_changes or {}),
            currentStage=transition.toStage,
            version=version + 1,
            updatedAt=now,
            updatedBy=actor.actorId,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        return None

    entry = StageHistory(
        historyId=new_sortable_id("STH"),
        candidateId=candidate_id,
        stage=transition.toStage,
        fromStage=transition.fromStage,
        completedAt=now,
        notes=str(notes or ""),
        actorId=actor.actorId,
        actorLabel=actor.actorLabel,
    )
    db.add(entry)
    db.commit()
    return entry


def _apply(
    db,
    candidate_id: str,
    actor: Actor,
    plan,
    *,
    notes: str,
    expected_stage: Optional[str],
    what: str,
    profile_changes: Optional[dict[str, str]] = None,
) -> dict[str, Any]:
    """
    Read, plan, conditionally write. `plan(current_stage)` returns a Transition or None (no-op).

    A conflict where the stage is unchanged (some other write bumped the version) is retried once.
    If the stage itself moved, the caller gets ConcurrentModificationError instead of a second step.
    """
    expected = get_stage(expected_stage).key if expected_stage else None

    with dependency_guard(db, what):
        original_stage: Optional[str] = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            current, version = _read_state(db, candidate_id)
            if original_stage is None:
                original_stage = current
                if expected and current != expected:
                    raise ConcurrentModificationError(
                        f"Candidate is at '{current}', expected '{expected}'; reload and try again"
                    )
            elif current != original_stage:
                raise ConcurrentModificationError("Candidate stage changed concurrently; reload and try again")

            transition = plan(current)
            if transition is None:
                db.rollback()
                if profile_changes:
                    # Profile edits only land together with the move they were sent with.
                    raise ConcurrentModificationError("Candidate stage changed concurrently; reload and try again")
                return _state_payload(db, candidate_id, changed=False)

            entry = _try_transition(db, candidate_id, transition, version, actor, notes, profile_changes)
            if entry is not None:
                break
            log.info("stage write conflict candidate=%s attempt=%s op=%s", candidate_id, attempt, what)
        else:
            raise ConcurrentModificationError("Candidate was modified concurrently; reload and try again")

    log.info(
        "stage %s candidate=%s %s->%s kind=%s actor=%s",
        what,
        candidate_id,
        transition.fromStage,
        transition.toStage,
        transition.kind,
        actor.actorId,
    )
    record_audit(
        actor,
        "update",
        "candidate",
        candidate_id,
        old={"currentStage": transition.fromStage},
        new={"currentStage": transition.toStage, "notes": str(notes or "")},
        description=f"Stage {transition.kind.lower()}: {stage_label(transition.fromStage)} -> {stage_label(transition.toStage)}",
    )

    out = _state_payload(db, candidate_id, changed=True)
    out["transition"] = {"fromStage": transition.fromStage, "toStage": transition.toStage, "kind": transition.kind}
    out["historyEntry"] = _history_dict(entry)
    return out


def _state_payload(db, candidate_id: str, *, changed: bool) -> dict[str, Any]:
    current, version = _read_state(db, candidate_id)
    nxt = next_stage(current)
    return {
        "candidateId": candidate_id,
        "currentStage": current,
        "currentStageLabel": stage_label(current),
        "stageIndex": get_stage(current).index,
        "totalStages": len(STAGES),
        "progress": progress_ratio(current),
        "nextStage": nxt,
        "nextStageLabel": stage_label(nxt) if nxt else None,
        "isTerminal": nxt is None,
        "version": version,
        "changed": changed,
    }


def advance_candidate(db, *, candidate_id: str, actor: Actor, expected_stage: Optional[str] = None, notes: str = "") -> dict[str, Any]:
    actor = require_actor(actor)
    return _apply(db, candidate_id, actor, machine.advance, notes=notes, expected_stage=expected_stage, what="advance")


def set_stage(
    db,
    *,
    candidate_id: str,
    target_stage: str,
    actor: Actor,
    notes: str = "",
    expected_stage: Optional[str] = None,
    profile_changes: Optional[dict[str, str]] = None,
) -> dict[str, Any]:
    actor = require_actor(actor)
    target = get_stage(target_stage).key

    def plan(current: str) -> Optional[Transition]:
        return machine.assign(current, target, reason=notes)

    return _apply(
        db,
        candidate_id,
        actor,
        plan,
        notes=notes,
        expected_stage=expected_stage,
        what="set_stage",
        profile_changes=profile_changes,
    )


def get_candidate_state(db, candidate_id: str) -> dict[str, Any]:
    with dependency_guard(db, "get_candidate_state"):
        find_candidate(db, candidate_id)
        return _state_payload(db, candidate_id, changed=False)


def get_progress(db, candidate_id: str) -> float:
    with dependency_guard(db, "get_progress"):
        current, _version = _read_state(db, candidate_id)
    return progress_ratio(current)


def get_stage_history(db, candidate_id: str) -> list[dict[str, Any]]:
    with dependency_guard(db, "get_stage_history"):
        find_candidate(db, candidate_id)
        rows = (
            db.execute(
                select(StageHistory)
                .where(StageHistory.candidateId == candidate_id)
                .order_by(StageHistory.completedAt.asc(), StageHistory.historyId.asc())
            )
            .scalars()
            .all()
        )
    return [_history_dict(h) for h in rows]


def stage_catalog(data, actor: Actor | None, db, cfg):
    return {"items": get_stage_catalog()}


def candidate_state(data, actor: Actor | None, db, cfg):
    return get_candidate_state(db, require_str(data, "candidateId"))


def candidate_progress(data, actor: Actor | None, db, cfg):
    cid = require_str(data, "candidateId")
    return {"candidateId": cid, "progress": get_progress(db, cid)}


def stage_history(data, actor: Actor | None, db, cfg):
    cid = require_str(data, "candidateId")
    return {"candidateId": cid, "items": get_stage_history(db, cid)}


def stage_advance(data, actor: Actor | None, db, cfg):
    return advance_candidate(
        db,
        candidate_id=require_str(data, "candidateId"),
        actor=actor,
        expected_stage=str(data.get("expectedStage") or "").strip() or None,
        notes=str(data.get("notes") or "").strip(),
    )


def stage_set(data, actor: Actor | None, db, cfg):
    return set_stage(
        db,
        candidate_id=require_str(data, "candidateId"),
        target_stage=require_str(data, "stage"),
        actor=actor,
        notes=str(data.get("notes") or "").strip(),
        expected_stage=str(data.get("expectedStage") or "").strip() or None,
    )
