from __future__ import annotations

from sparcflow.phases.base import PhaseNode


class PseudocodeNode(PhaseNode):
    phase = "pseudocode"
    mode = "design"
    artifact_key = "pseudocode"
    progress = 40
    agent_id = "design-agent"
    action = "generate_pseudocode"
    source_artifacts = ("requirements",)
    instructions = """
You are in DESIGN mode, PSEUDOCODE phase.
Turn the requirements into step-by-step pseudocode in the style of the
language the user mentioned.
""".strip()
