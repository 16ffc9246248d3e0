from __future__ import annotations

from sparcflow.phases.base import PhaseNode


class TestingNode(PhaseNode):
    phase = "testing"
    mode = "build"
    artifact_key = "tests"
    progress = 80
    agent_id = "build-agent"
    action = "generate_tests"
    source_artifacts = ("implementation",)
    instructions = """
You are in BUILD mode, TESTING phase.
Write unit and integration tests for the implementation covering the happy
path, edge cases and failures.
""".strip()
