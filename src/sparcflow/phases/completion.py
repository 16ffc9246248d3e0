from __future__ import annotations

from sparcflow.phases.base import PhaseNode


class CompletionNode(PhaseNode):
    phase = "completion"
    mode = "design"
    artifact_key = "notes"
    progress = 100
    agent_id = "design-agent"
    action = "complete_design"
    source_artifacts = ("guidelines", "architecture")
    instructions = """
You are in DESIGN mode, COMPLETION phase.
Summarise the design artifacts, key decisions, risks and the next steps for
the build phase.
""".strip()
