from __future__ import annotations

from sparcflow.phases.base import PhaseNode


class FixGenerationNode(PhaseNode):
    phase = "fix_generation"
    mode = "debug"
    artifact_key = "notes"
    progress = 100
    agent_id = "debug-agent"
    action = "generate_fixes"
    source_artifacts = ("notes",)
    instructions = """
You are in DEBUG mode, FIX GENERATION phase.
Propose concrete fixes for each finding in the analysis notes.
""".strip()
