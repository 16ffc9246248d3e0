from __future__ import annotations

from typing import Any

import structlog

from sparcflow.backends.base import AgentBackend
from sparcflow.errors import NodeExecutionError
from sparcflow.state.models import WorkflowState

log = structlog.get_logger(__name__)

BASE_PROMPT = """
You are an expert software development assistant working within the SPARC
workflow (Specification, Pseudocode, Architecture, Refinement, Completion).
Give accurate, specific answers for the user's actual request, respecting the
language, framework and constraints it mentions.
""".strip()

ARTIFACT_PREVIEW_CHARS = 200


class PhaseNode:
    phase: str = ""
    mode: str = ""
    artifact_key: str = ""
    progress: int = 0
    agent_id: str = "orchestration-agent"
    action: str = ""
    source_artifacts: tuple[str, ...] = ()
    instructions: str = "Produce the artifact for the current phase."

    def __init__(self, backend: AgentBackend, *, model: str | None = None) -> None:
        self.backend = backend
        self.model = model
        self.system_prompt = f"{BASE_PROMPT}\n\n{self.instructions.strip()}"

    def build_prompt(self, state: WorkflowState) -> str:
        lines = [
            f'User Request: "{state.user_input}"',
            "",
            f"Current Mode: {state.current_mode}",
            f"Current Phase: {self.phase}",
            "",
        ]
        if state.issue_title:
            lines.append(f"Issue Title: {state.issue_title}")
        if state.issue_description:
            lines.extend([f"Issue Description: {state.issue_description}", ""])
        present = [(key, value) for key, value in state.artifacts.items() if value]
        if present:
            lines.append("Existing Artifacts:")
            for key, value in present:
                lines.append(f"- {key}: {value[:ARTIFACT_PREVIEW_CHARS]}...")
            lines.append("")
        return "\n".join(lines).strip()

    def build_context(self, state: WorkflowState) -> dict[str, Any]:
        context: dict[str, Any] = {
            "issue_id": state.issue_id,
            "mode": state.current_mode,
            "phase": self.phase,
            "issue_title": state.issue_title,
            "issue_description": state.issue_description,
            "user_input": state.user_input,
            "artifacts": state.present_artifacts(),
            "agent": state.ai_context.current_agent,
        }
        if self.model:
            context["model"] = self.model
        return context

    def source_text(self, state: WorkflowState) -> str:
        for key in self.source_artifacts:
            content = state.artifacts.get(key)
            if content:
                return content
        return state.issue_description

    async def generate(self, state: WorkflowState) -> str:
        prompt = self.build_prompt(state)
        context = self.build_context(state)
        tool_name = f"{self.backend.name}.generate"
        parameters = {"phase": self.phase, "artifact": self.artifact_key}
        chunks: list[str] = []
        try:
            async for chunk in self.backend.execute(self.system_prompt, prompt, context):
                chunks.append(chunk)
        except Exception as exc:
            state.record_tool_call(tool_name, parameters, str(exc), success=False)
            raise
        content = "".join(chunks).strip()
        state.record_tool_call(tool_name, parameters, {"characters": len(content)})
        return content

    async def execute(self, state: WorkflowState) -> WorkflowState:
        if self.mode and state.current_mode != self.mode:
            raise NodeExecutionError(
                f"Phase '{self.phase}' belongs to {self.mode} mode, not {state.current_mode}",
                phase=self.phase,
            )
        log.info("phase_started", issue_id=state.issue_id, phase=self.phase)
        source = self.source_text(state)
        content = await self.generate(state)
        state.add_artifact(self.artifact_key, content)
        state.set_progress(self.progress)
        state.record_action(self.agent_id, self.action, source, content)
        log.info(
            "phase_completed",
            issue_id=state.issue_id,
            phase=self.phase,
            artifact=self.artifact_key,
            characters=len(content),
        )
        return state
