import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest

from sparcflow.backends.base import AgentBackend, BackendExecutionError
from sparcflow.errors import NodeExecutionError
from sparcflow.phases import (
    ArchitectureNode,
    CompletionNode,
    ImplementationNode,
    SpecificationNode,
    build_phase_nodes,
)
from sparcflow.state.models import PHASES, WorkflowState


class RecordingBackend(AgentBackend):
    name = "recording"

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        self.calls.append(
            {"system_prompt": system_prompt, "user_prompt": user_prompt, "context": context}
        )
        yield f"# {context['phase']}\n"
        yield "body\n"


class BrokenBackend(AgentBackend):
    name = "broken"

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        _ = system_prompt, user_prompt, context
        raise BackendExecutionError("upstream down", backend=self.name)
        yield ""  # pragma: no cover


def _state(phase: str = "specification") -> WorkflowState:
    return WorkflowState(
        issue_id="t1",
        current_mode="design",
        current_phase=phase,
        issue_title="Login",
        issue_description="Add login with OAuth",
        user_input="Add login",
    )


def test_build_phase_nodes_covers_every_phase() -> None:
    nodes = build_phase_nodes(RecordingBackend(), model="gpt-4o-mini")

    assert set(nodes) == set(PHASES)
    assert all(node.model == "gpt-4o-mini" for node in nodes.values())


def test_specification_node_writes_requirements() -> None:
    backend = RecordingBackend()
    state = _state()

    result = asyncio.run(SpecificationNode(backend).execute(state))

    assert result.artifacts["requirements"] == "# specification\nbody"
    assert result.progress == 20
    action = result.ai_context.agent_history[-1]
    assert action.agent_id == "design-agent"
    assert action.action == "generate_requirements"
    assert action.input == "Add login with OAuth"
    call = result.ai_context.tool_calls[-1]
    assert call.tool_name == "recording.generate"
    assert call.parameters == {"phase": "specification", "artifact": "requirements"}
    assert call.success is True


def test_prompt_includes_existing_artifact_previews() -> None:
    backend = RecordingBackend()
    state = _state("architecture")
    state.add_artifact("pseudocode", "x" * 500)

    asyncio.run(ArchitectureNode(backend, model="gpt-4o-mini").execute(state))

    call = backend.calls[0]
    assert 'User Request: "Add login"' in call["user_prompt"]
    assert f"- pseudocode: {'x' * 200}..." in call["user_prompt"]
    assert "x" * 201 not in call["user_prompt"]
    assert "ARCHITECTURE phase" in call["system_prompt"]
    assert call["context"]["model"] == "gpt-4o-mini"
    assert call["context"]["artifacts"] == ["pseudocode"]
    assert state.ai_context.agent_history[-1].input == "x" * 500


def test_completion_node_reaches_full_progress() -> None:
    state = _state("completion")

    asyncio.run(CompletionNode(RecordingBackend()).execute(state))

    assert state.progress == 100
    assert state.artifacts["notes"].startswith("# completion")


def test_backend_failure_is_recorded_and_reraised() -> None:
    state = _state()

    with pytest.raises(BackendExecutionError):
        asyncio.run(SpecificationNode(BrokenBackend()).execute(state))

    assert state.ai_context.tool_calls[-1].success is False
    assert state.ai_context.tool_calls[-1].result == "upstream down"
    assert "requirements" not in state.artifacts
    assert state.progress == 0


def test_node_refuses_a_state_in_another_mode() -> None:
    backend = RecordingBackend()
    state = _state("implementation")

    with pytest.raises(NodeExecutionError, match="build mode"):
        asyncio.run(ImplementationNode(backend).execute(state))

    assert backend.calls == []
    assert state.ai_context.agent_history == []
