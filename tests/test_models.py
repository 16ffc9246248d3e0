from datetime import UTC, datetime

import pytest

from sparcflow.state.models import (
    Decision,
    ErrorRecord,
    Transition,
    WorkflowState,
    parse_datetime,
)


def _state() -> WorkflowState:
    return WorkflowState(
        issue_id="issue-1",
        current_mode="design",
        current_phase="pseudocode",
        issue_title="Login",
        issue_description="Add login",
        user_input="Add login",
    )


def test_state_dict_uses_camel_case_keys() -> None:
    state = _state()
    state.add_artifact("requirements", "# Requirements")
    state.metadata.transitions.append(Transition(from_phase="specification", to_phase="pseudocode"))

    payload = state.to_dict()

    assert payload["issueId"] == "issue-1"
    assert payload["currentPhase"] == "pseudocode"
    assert payload["aiContext"]["currentAgent"] == "orchestration-agent"
    transition = payload["metadata"]["transitions"][0]
    assert transition["from"] == "specification"
    assert transition["to"] == "pseudocode"
    assert transition["condition"] == "automatic"
    assert isinstance(payload["createdAt"], str)


def test_state_roundtrip_restores_nested_records() -> None:
    state = _state()
    state.set_progress(40)
    state.record_action("design-agent", "generate_pseudocode", "req", "pseudo")
    state.record_tool_call("template.generate", {"phase": "pseudocode"}, {"characters": 6})
    state.ai_context.decisions.append(Decision(decision="pseudocode", reasoning="next", confidence=0.85))
    state.metadata.errors.append(ErrorRecord(phase="pseudocode", error_type="RuntimeError", message="x"))
    state.metadata.performance.node_execution_times["pseudocode"] = 12.5
    state.metadata.performance.tool_usage_counts["template.generate"] = 1
    state.metadata.performance.error_rates["pseudocode"] = 0.5

    restored = WorkflowState.from_dict(state.to_dict())

    assert restored.progress == 40
    assert restored.created_at == state.created_at
    assert restored.updated_at == state.updated_at
    assert restored.ai_context.agent_history[0].action == "generate_pseudocode"
    assert restored.ai_context.tool_calls[0].tool_name == "template.generate"
    assert restored.ai_context.decisions[0].confidence == 0.85
    assert restored.metadata.errors[0].error_type == "RuntimeError"
    assert restored.metadata.performance.node_execution_times == {"pseudocode": 12.5}
    assert restored.metadata.performance.tool_usage_counts == {"template.generate": 1}
    assert restored.metadata.performance.error_rates == {"pseudocode": 0.5}


def test_counter_maps_accept_entry_pairs() -> None:
    payload = _state().to_dict()
    payload["metadata"]["performance"]["toolUsageCounts"] = [["template.generate", 3]]
    payload["metadata"]["performance"]["nodeExecutionTimes"] = [["specification", 7]]

    restored = WorkflowState.from_dict(payload)

    assert restored.metadata.performance.tool_usage_counts == {"template.generate": 3}
    assert restored.metadata.performance.node_execution_times == {"specification": 7.0}


def test_set_progress_clamps_to_percent_range() -> None:
    state = _state()

    state.set_progress(140)
    assert state.progress == 100
    state.set_progress(-5)
    assert state.progress == 0


def test_present_artifacts_skips_empty_values() -> None:
    state = _state()
    state.add_artifact("requirements", "reqs")
    state.add_artifact("pseudocode", "")
    state.add_artifact("architecture", None)

    assert state.present_artifacts() == ["requirements"]


def test_parse_datetime_accepts_zulu_and_naive_values() -> None:
    assert parse_datetime("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, tzinfo=UTC)
    assert parse_datetime("2024-05-01T10:00:00").tzinfo is UTC
    with pytest.raises(ValueError):
        parse_datetime("")
