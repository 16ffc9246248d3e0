from __future__ import annotations

from sparcflow.phases.base import PhaseNode


class ArchitectureNode(PhaseNode):
    phase = "architecture"
    mode = "design"
    artifact_key = "architecture"
    progress = 60
    agent_id = "design-agent"
    action = "generate_architecture"
    source_artifacts = ("pseudocode",)
    instructions = """
You are in DESIGN mode, ARCHITECTURE phase.
Describe the components, their interfaces, the data flow between them and the
technology choices.
""".strip()
