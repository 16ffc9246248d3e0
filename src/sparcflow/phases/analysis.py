from __future__ import annotations

from sparcflow.phases.base import PhaseNode


class AnalysisNode(PhaseNode):
    phase = "analysis"
    mode = "debug"
    artifact_key = "notes"
    progress = 50
    agent_id = "debug-agent"
    action = "analyze_code"
    source_artifacts = ("implementation",)
    instructions = """
You are in DEBUG mode, ANALYSIS phase.
Analyse the implementation for defects, missing error handling and risky
code, ranking findings by severity.
""".strip()
