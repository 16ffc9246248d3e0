import pytest

from sparcflow.state.models import PHASES, WorkflowState
from sparcflow.transitions import (
    NEXT_PHASE,
    TransitionTable,
    initial_phase,
    is_complete,
    phases_for_mode,
)


def _state(mode: str, phase: str, progress: int = 0) -> WorkflowState:
    return WorkflowState(
        issue_id="t1",
        current_mode=mode,
        current_phase=phase,
        issue_title="",
        issue_description="",
        user_input="",
        progress=progress,
    )


def test_every_phase_has_a_successor() -> None:
    table = TransitionTable()

    for phase in PHASES:
        assert table.next(phase) in PHASES
    assert set(table.phases()) == set(PHASES)


def test_nine_steps_from_specification_return_to_specification() -> None:
    table = TransitionTable()
    phase = "specification"
    visited = []
    for _ in range(9):
        phase = table.next(phase)
        visited.append(phase)

    assert phase == "specification"
    assert len(set(visited)) == 9


def test_next_phase_table_is_read_only() -> None:
    with pytest.raises(TypeError):
        NEXT_PHASE["specification"] = "completion"  # type: ignore[index]


@pytest.mark.parametrize(
    ("mode", "phase"),
    [("design", "specification"), ("build", "implementation"), ("debug", "analysis")],
)
def test_initial_phase_per_mode(mode: str, phase: str) -> None:
    assert initial_phase(mode) == phase
    assert phases_for_mode(mode)[0] == phase


def test_advance_enters_build_and_debug_modes() -> None:
    table = TransitionTable()
    state = _state("design", "completion")

    table.advance(state)
    assert (state.current_mode, state.current_phase) == ("build", "implementation")

    state.current_phase = "testing"
    table.advance(state)
    assert (state.current_mode, state.current_phase) == ("debug", "analysis")

    state.current_phase = "fix_generation"
    table.advance(state)
    assert (state.current_mode, state.current_phase) == ("design", "specification")
    assert [t.condition for t in state.metadata.transitions] == ["automatic"] * 3


def test_advance_keeps_mode_inside_a_mode() -> None:
    state = _state("design", "specification")

    transition = TransitionTable().advance(state)

    assert transition is not None
    assert transition.from_phase == "specification"
    assert transition.to_phase == "pseudocode"
    assert state.current_mode == "design"
    assert state.metadata.transitions == [transition]


def test_advance_without_successor_leaves_state_untouched() -> None:
    table = TransitionTable(successors={"specification": "pseudocode"})
    state = _state("design", "pseudocode")

    assert table.advance(state) is None
    assert state.current_phase == "pseudocode"
    assert state.metadata.transitions == []


@pytest.mark.parametrize(
    ("mode", "phase", "progress", "expected"),
    [
        ("design", "specification", 100, True),
        ("design", "completion", 0, True),
        ("build", "testing", 80, True),
        ("debug", "fix_generation", 100, True),
        ("debug", "fix_generation", 0, True),
        ("design", "refinement", 80, False),
        ("build", "implementation", 40, False),
        ("debug", "analysis", 50, False),
        ("build", "completion", 0, False),
    ],
)
def test_completion_predicate(mode: str, phase: str, progress: int, expected: bool) -> None:
    assert is_complete(_state(mode, phase, progress)) is expected


def test_debug_fix_generation_completes_before_looping_back() -> None:
    state = _state("debug", "fix_generation", 100)

    assert is_complete(state)
    assert TransitionTable().next(state.current_phase) == "specification"
