from __future__ import annotations

from sparcflow.phases.base import PhaseNode


class ImplementationNode(PhaseNode):
    phase = "implementation"
    mode = "build"
    artifact_key = "implementation"
    progress = 40
    agent_id = "build-agent"
    action = "generate_implementation"
    source_artifacts = ("architecture",)
    instructions = """
You are in BUILD mode, IMPLEMENTATION phase.
Write the implementation for the request following the architecture and
guidelines, listing each file you would create.
""".strip()
