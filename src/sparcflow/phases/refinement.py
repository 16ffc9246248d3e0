from __future__ import annotations

from sparcflow.phases.base import PhaseNode


class RefinementNode(PhaseNode):
    phase = "refinement"
    mode = "design"
    artifact_key = "guidelines"
    progress = 80
    agent_id = "design-agent"
    action = "refine_requirements"
    source_artifacts = ("requirements",)
    instructions = """
You are in DESIGN mode, REFINEMENT phase.
Reconcile the requirements with the architecture and write development
guidelines and coding standards for the build.
""".strip()
