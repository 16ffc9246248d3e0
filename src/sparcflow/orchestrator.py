from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import structlog

from sparcflow.state.models import DEFAULT_AGENT, Decision, WorkflowState

log = structlog.get_logger(__name__)

PRIMARY_AGENTS: dict[str, str] = {
    "specification": "design-agent",
    "pseudocode": "design-agent",
    "architecture": "design-agent",
    "refinement": "design-agent",
    "completion": "design-agent",
    "implementation": "build-agent",
    "testing": "build-agent",
    "documentation": "build-agent",
    "analysis": "debug-agent",
    "fix_generation": "debug-agent",
}

SUPPORTING_AGENTS: dict[str, list[str]] = {
    "implementation": [DEFAULT_AGENT, "debug-agent"],
    "testing": [DEFAULT_AGENT, "debug-agent"],
    "analysis": [DEFAULT_AGENT, "build-agent"],
    "fix_generation": [DEFAULT_AGENT, "build-agent"],
}

AGENT_CAPABILITIES: dict[str, list[str]] = {
    "design-agent": [
        "requirements_analysis",
        "architecture_design",
        "specification_generation",
        "pseudocode_creation",
    ],
    "build-agent": [
        "code_generation",
        "test_creation",
        "documentation_generation",
        "implementation",
    ],
    "debug-agent": [
        "code_analysis",
        "issue_detection",
        "fix_generation",
        "performance_optimization",
    ],
    DEFAULT_AGENT: [
        "workflow_coordination",
        "state_management",
        "decision_making",
        "agent_coordination",
    ],
}

INTENT_KEYWORDS: dict[str, str] = {
    "create": "creation",
    "build": "creation",
    "implement": "creation",
    "fix": "debugging",
    "debug": "debugging",
    "test": "testing",
    "verify": "testing",
    "document": "documentation",
    "explain": "documentation",
}
URGENT_KEYWORDS = ("urgent", "asap", "immediately", "critical", "priority")
TECHNICAL_TERMS = re.compile(r"(api|database|algorithm|architecture|framework)", re.IGNORECASE)


@dataclass(slots=True)
class WorkflowDecision:
    next_node: str
    reasoning: str
    confidence: float
    alternatives: list[str] = field(default_factory=list)
    estimated_time_ms: int = 0


@dataclass(slots=True)
class AgentCoordination:
    primary_agent: str
    supporting_agents: list[str]
    strategy: str
    dependencies: list[str]


@dataclass(slots=True)
class OrchestrationResult:
    """What one ``decide`` call hands back to the engine."""

    state: WorkflowState
    decision: Decision | None = None
    metrics: dict[str, float] = field(default_factory=dict)


class Orchestrator(ABC):
    name: str = "orchestrator"

    @abstractmethod
    async def decide(self, state: WorkflowState, description: str) -> OrchestrationResult:
        """Annotate ``state`` before the current phase runs.

        Implementations may set ``ai_context.current_agent`` and append to
        ``ai_context.decisions``; they must leave the phase and mode alone.
        """


class PassThroughOrchestrator(Orchestrator):
    name = "pass-through"

    async def decide(self, state: WorkflowState, description: str) -> OrchestrationResult:
        _ = description
        return OrchestrationResult(state=state)


def classify_input(text: str) -> str:
    lower = text.lower()
    if "create" in lower or "build" in lower:
        return "creation"
    if "fix" in lower or "debug" in lower:
        return "debugging"
    if "test" in lower or "verify" in lower:
        return "testing"
    if "document" in lower or "explain" in lower:
        return "documentation"
    return "general"


def extract_intent(text: str) -> str:
    for word in text.lower().split():
        intent = INTENT_KEYWORDS.get(word)
        if intent:
            return intent
    return "general"


def assess_complexity(text: str) -> str:
    word_count = len(text.split())
    if word_count > 50 or TECHNICAL_TERMS.search(text):
        return "high"
    if word_count > 20:
        return "medium"
    return "low"


def assess_urgency(text: str) -> str:
    lower = text.lower()
    return "high" if any(keyword in lower for keyword in URGENT_KEYWORDS) else "medium"


def classify_issue_type(description: str) -> str:
    if re.search(r"bug|error|issue|problem", description, re.IGNORECASE):
        return "bug"
    if re.search(r"feature|enhancement|improvement", description, re.IGNORECASE):
        return "feature"
    if re.search(r"documentation|doc|guide", description, re.IGNORECASE):
        return "documentation"
    return "general"


def identify_dependencies(artifacts: dict[str, str | None]) -> list[str]:
    dependencies: list[str] = []
    if artifacts.get("requirements") and not artifacts.get("pseudocode"):
        dependencies.append("pseudocode")
    if artifacts.get("pseudocode") and not artifacts.get("architecture"):
        dependencies.append("architecture")
    if artifacts.get("architecture") and not artifacts.get("implementation"):
        dependencies.append("implementation")
    return dependencies


def identify_risks(state: WorkflowState) -> list[str]:
    risks: list[str] = []
    if state.progress < 20 and state.current_mode == "design":
        risks.append("insufficient_requirements")
    if len(state.ai_context.agent_history) > 10:
        risks.append("workflow_complexity")
    if state.metadata.errors:
        risks.append("existing_errors")
    return risks


def _level(value: int, *, high: int, medium: int) -> str:
    if value > high:
        return "high"
    if value > medium:
        return "medium"
    return "low"


def assess_quality(artifacts: dict[str, str | None]) -> str:
    contents = [content for content in artifacts.values() if content]
    if not contents:
        return "low"
    average_length = sum(len(content) for content in contents) / len(contents)
    if len(contents) > 3 and average_length > 1000:
        return "high"
    if len(contents) > 2 and average_length > 500:
        return "medium"
    return "low"


class RuleBasedOrchestrator(Orchestrator):
    """Heuristic policy that picks the agent for the upcoming phase."""

    name = "rule-based"

    def analyze(self, state: WorkflowState, description: str) -> dict[str, Any]:
        artifacts = state.present_artifacts()
        return {
            "current_state": {
                "mode": state.current_mode,
                "phase": state.current_phase,
                "progress": state.progress,
                "artifacts": artifacts,
            },
            "user_input": {
                "type": classify_input(description),
                "intent": extract_intent(description),
                "complexity": assess_complexity(description),
                "urgency": assess_urgency(description),
            },
            "workflow_context": {
                "issue_type": classify_issue_type(state.issue_description),
                "technical_complexity": _level(len(artifacts), high=4, medium=2),
                "dependencies": identify_dependencies(state.artifacts),
                "risks": identify_risks(state),
            },
            "performance": {
                "resource_usage": _level(
                    max(
                        len(state.ai_context.agent_history) // 2,
                        len(state.ai_context.tool_calls),
                    ),
                    high=10,
                    medium=5,
                ),
                "quality": assess_quality(state.artifacts),
            },
        }

    def recommend(self, analysis: dict[str, Any]) -> WorkflowDecision:
        current = analysis["current_state"]
        mode = current["mode"]
        phase = current["phase"]
        artifacts = set(current["artifacts"])
        if mode == "design":
            return self._recommend_design(phase, artifacts)
        if mode == "build":
            return self._recommend_build(phase, artifacts)
        if mode == "debug":
            return self._recommend_debug(phase, artifacts)
        return WorkflowDecision(
            next_node="specification",
            reasoning="Starting with specification phase for new workflow",
            confidence=0.8,
            alternatives=["pseudocode", "architecture"],
            estimated_time_ms=300_000,
        )

    @staticmethod
    def _recommend_design(phase: str, artifacts: set[str]) -> WorkflowDecision:
        steps = [
            ("specification", "requirements", "Requirements specification needed to start design process", 0.9, 300_000),
            ("pseudocode", "pseudocode", "Pseudocode needed to define implementation approach", 0.85, 240_000),
            ("architecture", "architecture", "System architecture needed to define technical structure", 0.9, 360_000),
            ("refinement", "guidelines", "Requirements refinement needed based on architecture", 0.8, 180_000),
        ]
        for index, (node, artifact, reasoning, confidence, estimate) in enumerate(steps):
            if phase == node or artifact not in artifacts:
                following = steps[index + 1][0] if index + 1 < len(steps) else "completion"
                return WorkflowDecision(node, reasoning, confidence, [following], estimate)
        return WorkflowDecision(
            "completion",
            "Design phase ready for completion",
            0.95,
            ["implementation"],
            120_000,
        )

    @staticmethod
    def _recommend_build(phase: str, artifacts: set[str]) -> WorkflowDecision:
        if phase == "implementation" or "implementation" not in artifacts:
            return WorkflowDecision(
                "implementation",
                "Code implementation needed to build the solution",
                0.9,
                ["testing"],
                600_000,
            )
        if phase == "testing" or "tests" not in artifacts:
            return WorkflowDecision(
                "testing",
                "Test suite needed to ensure code quality",
                0.85,
                ["documentation"],
                300_000,
            )
        return WorkflowDecision(
            "documentation",
            "Documentation needed to complete build phase",
            0.8,
            ["analysis"],
            240_000,
        )

    @staticmethod
    def _recommend_debug(phase: str, artifacts: set[str]) -> WorkflowDecision:
        if phase == "analysis" or "notes" not in artifacts:
            return WorkflowDecision(
                "analysis",
                "Code analysis needed to identify issues",
                0.9,
                ["fix_generation"],
                300_000,
            )
        return WorkflowDecision(
            "fix_generation",
            "Fix generation needed to resolve identified issues",
            0.85,
            ["specification"],
            240_000,
        )

    @staticmethod
    def coordinate(decision: WorkflowDecision, state: WorkflowState) -> AgentCoordination:
        if decision.confidence > 0.8:
            strategy = "sequential"
        elif decision.confidence > 0.6:
            strategy = "conditional"
        else:
            strategy = "parallel"
        return AgentCoordination(
            primary_agent=PRIMARY_AGENTS.get(decision.next_node, DEFAULT_AGENT),
            supporting_agents=list(SUPPORTING_AGENTS.get(decision.next_node, [DEFAULT_AGENT])),
            strategy=strategy,
            dependencies=identify_dependencies(state.artifacts),
        )

    async def decide(self, state: WorkflowState, description: str) -> OrchestrationResult:
        started = time.perf_counter()
        analysis = self.analyze(state, description)
        decision = self.recommend(analysis)
        coordination = self.coordinate(decision, state)

        state.ai_context.current_agent = coordination.primary_agent
        record = Decision(
            decision=decision.next_node,
            reasoning=decision.reasoning,
            confidence=decision.confidence,
            context={
                "phase": state.current_phase,
                "mode": state.current_mode,
                "alternatives": decision.alternatives,
                "estimated_time_ms": decision.estimated_time_ms,
                "primary_agent": coordination.primary_agent,
                "supporting_agents": coordination.supporting_agents,
                "capabilities": list(AGENT_CAPABILITIES.get(coordination.primary_agent, [])),
                "strategy": coordination.strategy,
                "dependencies": coordination.dependencies,
                "user_input": analysis["user_input"],
                "workflow_context": analysis["workflow_context"],
            },
        )
        state.ai_context.decisions.append(record)
        state.touch()

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        log.info(
            "orchestration_decided",
            issue_id=state.issue_id,
            phase=state.current_phase,
            recommended=decision.next_node,
            agent=coordination.primary_agent,
            confidence=decision.confidence,
        )
        return OrchestrationResult(
            state=state,
            decision=record,
            metrics={
                "decision_time_ms": elapsed_ms,
                "decision_confidence": decision.confidence,
                "workflow_progress": float(state.progress),
            },
        )
