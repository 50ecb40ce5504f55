from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from errors import NoNextStageError, ValidationError


@dataclass(frozen=True)
class StageDef:
    key: str
    label: str
    shortLabel: str
    color: str
    index: int

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "shortLabel": self.shortLabel,
            "color": self.color,
            "index": self.index,
        }


_STAGE_ROWS = (
    ("passport_received", "Passport Received", "Passport", "stage-passport"),
    ("interview", "Interview", "Interview", "stage-interview"),
    ("medical", "Medical", "Medical", "stage-medical"),
    ("police_clearance", "Police Clearance", "Police", "stage-police"),
    ("mofa", "MOFA", "MOFA", "stage-mofa"),
    ("taseer", "Taseer", "Taseer", "stage-taseer"),
    ("takamul", "Takamul", "Takamul", "stage-takamul"),
    ("training", "Training", "Training", "stage-training"),
    ("fingerprint", "Fingerprint", "Fingerprint", "stage-fingerprint"),
    ("embassy", "Embassy", "Embassy", "stage-embassy"),
    ("visa_issued", "Visa Issued", "Visa", "stage-visa"),
    ("manpower", "Manpower", "Manpower", "stage-manpower"),
    ("flight", "Flight", "Flight", "stage-flight"),
)

# Pipeline order is positional, never alphabetical.
STAGES: tuple[StageDef, ...] = tuple(
    StageDef(key=k, label=label, shortLabel=short, color=color, index=i)
    for i, (k, label, short, color) in enumerate(_STAGE_ROWS)
)
STAGE_MAP: dict[str, StageDef] = {s.key: s for s in STAGES}
STAGE_KEYS: tuple[str, ...] = tuple(s.key for s in STAGES)

INITIAL_STAGE = STAGES[0].key
TERMINAL_STAGE = STAGES[-1].key

# First stage at which each validity policy starts to matter.
POLICY_START_STAGE = {
    "medical": "medical",
    "visa": "visa_issued",
    "passport": INITIAL_STAGE,
}


def normalize_stage_key(stage) -> str:
    return str(stage or "").strip().lower()


def get_stage(stage) -> StageDef:
    key = normalize_stage_key(stage)
    found = STAGE_MAP.get(key)
    if found is None:
        raise ValidationError(f"Unknown stage: {stage}")
    return found


def stage_index(stage) -> int:
    return get_stage(stage).index


def stage_label(stage) -> str:
    key = normalize_stage_key(stage)
    found = STAGE_MAP.get(key)
    return found.label if found else key


def next_stage(stage) -> Optional[str]:
    i = stage_index(stage)
    if i < len(STAGES) - 1:
        return STAGES[i + 1].key
    return None


def previous_stage(stage) -> Optional[str]:
    i = stage_index(stage)
    if i > 0:
        return STAGES[i - 1].key
    return None


def is_terminal(stage) -> bool:
    return stage_index(stage) == len(STAGES) - 1


def progress_ratio(stage) -> float:
    return (stage_index(stage) + 1) / len(STAGES)


def policy_applies(policy_type: str, stage) -> bool:
    start = POLICY_START_STAGE.get(str(policy_type or "").strip().lower())
    if start is None:
        return False
    return stage_index(stage) >= stage_index(start)


def get_stage_catalog() -> list[dict]:
    return [s.to_dict() for s in STAGES]


@dataclass(frozen=True)
class Transition:
    fromStage: str
    toStage: str
    kind: str  # ADVANCE | FORWARD_JUMP | REGRESSION

    @property
    def is_regression(self) -> bool:
        return self.kind == "REGRESSION"


class StageMachine:
    """
    Transition rules for the candidate pipeline.

    `advance` is the single-step forward move used by normal pipeline work. `assign` is the
    administrative override: any target stage is reachable, but moving backwards has to carry
    a reason so the history entry explains the regression.
    """

    initial = INITIAL_STAGE
    terminal = TERMINAL_STAGE

    def advance(self, current: str) -> Transition:
        cur = get_stage(current).key
        nxt = next_stage(cur)
        if nxt is None:
            raise NoNextStageError(cur)
        return Transition(fromStage=cur, toStage=nxt, kind="ADVANCE")

    def assign(self, current: str, target: str, *, reason: str = "") -> Optional[Transition]:
        cur = get_stage(current)
        tgt = get_stage(target)
        if cur.key == tgt.key:
            return None
        if tgt.index < cur.index:
            if not str(reason or "").strip():
                raise ValidationError(
                    f"Moving back from '{cur.key}' to '{tgt.key}' requires a reason in notes"
                )
            return Transition(fromStage=cur.key, toStage=tgt.key, kind="REGRESSION")
        kind = "ADVANCE" if tgt.index == cur.index + 1 else "FORWARD_JUMP"
        return Transition(fromStage=cur.key, toStage=tgt.key, kind=kind)


machine = StageMachine()
