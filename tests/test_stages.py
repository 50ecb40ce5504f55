from __future__ import annotations

import pytest

from errors import NoNextStageError, ValidationError
from stages import (
    INITIAL_STAGE,
    STAGE_KEYS,
    STAGES,
    TERMINAL_STAGE,
    get_stage,
    get_stage_catalog,
    is_terminal,
    machine,
    next_stage,
    policy_applies,
    previous_stage,
    progress_ratio,
    stage_index,
)


def test_catalog_is_positional_and_complete():
    assert len(STAGES) == 13
    assert STAGE_KEYS[0] == "passport_received"
    assert STAGE_KEYS[2] == "medical"
    assert STAGE_KEYS[-1] == "flight"
    assert [s.index for s in STAGES] == list(range(13))
    assert list(STAGE_KEYS) != sorted(STAGE_KEYS)

    catalog = get_stage_catalog()
    assert catalog[0] == {
        "key": "passport_received",
        "label": "Passport Received",
        "shortLabel": "Passport",
        "color": "stage-passport",
        "index": 0,
    }


def test_neighbours_and_terminal():
    assert next_stage(INITIAL_STAGE) == "interview"
    assert previous_stage(INITIAL_STAGE) is None
    assert next_stage(TERMINAL_STAGE) is None
    assert previous_stage("flight") == "manpower"
    assert is_terminal("flight")
    assert not is_terminal("visa_issued")


def test_lookup_is_case_insensitive_and_rejects_unknown():
    assert get_stage(" Medical ").key == "medical"
    assert stage_index("MOFA") == 4
    with pytest.raises(ValidationError):
        get_stage("boarding")
    with pytest.raises(ValidationError):
        next_stage("")


def test_progress_ratio():
    assert progress_ratio(INITIAL_STAGE) == pytest.approx(1 / 13)
    assert progress_ratio(TERMINAL_STAGE) == 1.0


def test_advance_is_single_step_and_stops_at_terminal():
    t = machine.advance("medical")
    assert (t.fromStage, t.toStage, t.kind) == ("medical", "police_clearance", "ADVANCE")

    with pytest.raises(NoNextStageError) as exc:
        machine.advance("flight")
    assert exc.value.code == "NO_NEXT_STAGE"
    assert exc.value.http_status == 400


def test_assign_kinds():
    assert machine.assign("interview", "interview") is None
    assert machine.assign("interview", "medical").kind == "ADVANCE"
    assert machine.assign("interview", "embassy").kind == "FORWARD_JUMP"

    with pytest.raises(ValidationError):
        machine.assign("embassy", "medical")
    with pytest.raises(ValidationError):
        machine.assign("embassy", "medical", reason="   ")

    back = machine.assign("embassy", "medical", reason="Medical certificate rejected by embassy")
    assert back.kind == "REGRESSION"
    assert back.is_regression


@pytest.mark.parametrize(
    "policy,stage,expected",
    [
        ("medical", "interview", False),
        ("medical", "medical", True),
        ("medical", "flight", True),
        ("visa", "embassy", False),
        ("visa", "visa_issued", True),
        ("passport", "passport_received", True),
        ("unknown", "flight", False),
    ],
)
def test_policy_applicability(policy, stage, expected):
    assert policy_applies(policy, stage) is expected
