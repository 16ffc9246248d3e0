from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal
from uuid import uuid4

Mode = Literal["design", "build", "debug"]
MODES: tuple[str, ...] = ("design", "build", "debug")
PHASES: tuple[str, ...] = (
    "specification",
    "pseudocode",
    "architecture",
    "refinement",
    "completion",
    "implementation",
    "testing",
    "analysis",
    "fix_generation",
)
DEFAULT_AGENT = "orchestration-agent"


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_record_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


def to_iso(value: datetime) -> str:
    return value.isoformat()


def parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Not a timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _counter_map(raw: Any, cast: Callable[[Any], Any]) -> dict[str, Any]:
    # object form from save(), or a list of [key, value] pairs
    if raw is None:
        return {}
    items: Iterable[Any]
    if isinstance(raw, dict):
        items = raw.items()
    elif isinstance(raw, list):
        items = (item for item in raw if isinstance(item, (list, tuple)) and len(item) == 2)
    else:
        raise ValueError(f"Counter map must be an object, got {type(raw).__name__}")
    return {str(key): cast(value) for key, value in items}


@dataclass(slots=True)
class WorkflowInput:
    issue_id: str
    mode: Mode
    user_input: str
    issue_title: str
    issue_description: str


@dataclass(slots=True)
class AgentAction:
    agent_id: str
    action: str
    input: str
    output: str
    success: bool = True
    id: str = field(default_factory=lambda: new_record_id("action"))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agentId": self.agent_id,
            "action": self.action,
            "input": self.input,
            "output": self.output,
            "timestamp": to_iso(self.timestamp),
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AgentAction:
        return cls(
            id=str(payload.get("id") or new_record_id("action")),
            agent_id=str(payload.get("agentId", "")),
            action=str(payload.get("action", "")),
            input=str(payload.get("input", "")),
            output=str(payload.get("output", "")),
            timestamp=parse_datetime(payload["timestamp"]),
            success=bool(payload.get("success", False)),
        )


@dataclass(slots=True)
class ToolCall:
    tool_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    success: bool = True
    id: str = field(default_factory=lambda: new_record_id("tool"))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "toolName": self.tool_name,
            "parameters": self.parameters,
            "result": self.result,
            "timestamp": to_iso(self.timestamp),
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ToolCall:
        parameters = payload.get("parameters")
        return cls(
            id=str(payload.get("id") or new_record_id("tool")),
            tool_name=str(payload.get("toolName", "")),
            parameters=parameters if isinstance(parameters, dict) else {},
            result=payload.get("result"),
            timestamp=parse_datetime(payload["timestamp"]),
            success=bool(payload.get("success", False)),
        )


@dataclass(slots=True)
class Decision:
    decision: str
    reasoning: str
    confidence: float
    context: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_record_id("decision"))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "decision": self.decision,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "timestamp": to_iso(self.timestamp),
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Decision:
        context = payload.get("context")
        return cls(
            id=str(payload.get("id") or new_record_id("decision")),
            decision=str(payload.get("decision", "")),
            reasoning=str(payload.get("reasoning", "")),
            confidence=float(payload.get("confidence", 0.0)),
            timestamp=parse_datetime(payload["timestamp"]),
            context=context if isinstance(context, dict) else {},
        )


@dataclass(slots=True)
class Transition:
    from_phase: str
    to_phase: str
    condition: str = "automatic"
    success: bool = True
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_phase,
            "to": self.to_phase,
            "condition": self.condition,
            "timestamp": to_iso(self.timestamp),
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Transition:
        return cls(
            from_phase=str(payload.get("from", "")),
            to_phase=str(payload.get("to", "")),
            condition=str(payload.get("condition", "automatic")),
            timestamp=parse_datetime(payload["timestamp"]),
            success=bool(payload.get("success", False)),
        )


@dataclass(slots=True)
class ErrorRecord:
    phase: str
    error_type: str
    message: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "errorType": self.error_type,
            "message": self.message,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ErrorRecord:
        return cls(
            phase=str(payload.get("phase", "")),
            error_type=str(payload.get("errorType", "Error")),
            message=str(payload.get("message", "")),
            timestamp=parse_datetime(payload["timestamp"]),
        )


@dataclass(slots=True)
class PerformanceMetrics:
    execution_time: float = 0.0
    node_execution_times: dict[str, float] = field(default_factory=dict)
    tool_usage_counts: dict[str, int] = field(default_factory=dict)
    error_rates: dict[str, float] = field(default_factory=dict)
    success_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "executionTime": self.execution_time,
            "nodeExecutionTimes": dict(self.node_execution_times),
            "toolUsageCounts": dict(self.tool_usage_counts),
            "errorRates": dict(self.error_rates),
            "successRate": self.success_rate,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PerformanceMetrics:
        return cls(
            execution_time=float(payload.get("executionTime", 0.0)),
            node_execution_times=_counter_map(payload.get("nodeExecutionTimes"), float),
            tool_usage_counts=_counter_map(payload.get("toolUsageCounts"), int),
            error_rates=_counter_map(payload.get("errorRates"), float),
            success_rate=float(payload.get("successRate", 0.0)),
        )


@dataclass(slots=True)
class AIContext:
    current_agent: str = DEFAULT_AGENT
    agent_history: list[AgentAction] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    confidence: float | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "currentAgent": self.current_agent,
            "agentHistory": [item.to_dict() for item in self.agent_history],
            "toolCalls": [item.to_dict() for item in self.tool_calls],
            "decisions": [item.to_dict() for item in self.decisions],
        }
        if self.confidence is not None:
            payload["confidence"] = self.confidence
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AIContext:
        confidence = payload.get("confidence")
        return cls(
            current_agent=str(payload.get("currentAgent") or DEFAULT_AGENT),
            agent_history=[
                AgentAction.from_dict(item)
                for item in payload.get("agentHistory", [])
                if isinstance(item, dict)
            ],
            tool_calls=[
                ToolCall.from_dict(item)
                for item in payload.get("toolCalls", [])
                if isinstance(item, dict)
            ],
            decisions=[
                Decision.from_dict(item)
                for item in payload.get("decisions", [])
                if isinstance(item, dict)
            ],
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
        )


@dataclass(slots=True)
class Memory:
    chat_history: list[dict[str, Any]] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    retrieved_context: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "chatHistory": list(self.chat_history),
            "context": dict(self.context),
            "retrievedContext": list(self.retrieved_context),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Memory:
        chat_history = payload.get("chatHistory")
        context = payload.get("context")
        retrieved = payload.get("retrievedContext")
        return cls(
            chat_history=chat_history if isinstance(chat_history, list) else [],
            context=context if isinstance(context, dict) else {},
            retrieved_context=retrieved if isinstance(retrieved, list) else [],
        )


@dataclass(slots=True)
class Metadata:
    transitions: list[Transition] = field(default_factory=list)
    errors: list[ErrorRecord] = field(default_factory=list)
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "transitions": [item.to_dict() for item in self.transitions],
            "errors": [item.to_dict() for item in self.errors],
            "performance": self.performance.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Metadata:
        performance = payload.get("performance")
        return cls(
            transitions=[
                Transition.from_dict(item)
                for item in payload.get("transitions", [])
                if isinstance(item, dict)
            ],
            errors=[
                ErrorRecord.from_dict(item)
                for item in payload.get("errors", [])
                if isinstance(item, dict)
            ],
            performance=PerformanceMetrics.from_dict(
                performance if isinstance(performance, dict) else {}
            ),
        )


@dataclass(slots=True)
class WorkflowState:
    issue_id: str
    current_mode: str
    current_phase: str
    issue_title: str
    issue_description: str
    user_input: str
    progress: int = 0
    artifacts: dict[str, str | None] = field(default_factory=dict)
    ai_context: AIContext = field(default_factory=AIContext)
    memory: Memory = field(default_factory=Memory)
    metadata: Metadata = field(default_factory=Metadata)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def touch(self) -> None:
        self.updated_at = utcnow()

    def add_artifact(self, key: str, content: str | None) -> None:
        self.artifacts[key] = content
        self.touch()

    def set_progress(self, progress: int) -> None:
        self.progress = max(0, min(100, int(progress)))
        self.touch()

    def record_action(
        self,
        agent_id: str,
        action: str,
        input_text: str,
        output_text: str,
        *,
        success: bool = True,
    ) -> AgentAction:
        entry = AgentAction(
            agent_id=agent_id,
            action=action,
            input=input_text,
            output=output_text,
            success=success,
        )
        self.ai_context.agent_history.append(entry)
        self.touch()
        return entry

    def record_tool_call(
        self,
        tool_name: str,
        parameters: dict[str, Any],
        result: Any,
        *,
        success: bool = True,
    ) -> ToolCall:
        call = ToolCall(
            tool_name=tool_name,
            parameters=parameters,
            result=result,
            success=success,
        )
        self.ai_context.tool_calls.append(call)
        self.touch()
        return call

    def present_artifacts(self) -> list[str]:
        return [key for key, content in self.artifacts.items() if content]

    def to_dict(self) -> dict[str, Any]:
        return {
            "issueId": self.issue_id,
            "currentMode": self.current_mode,
            "currentPhase": self.current_phase,
            "progress": self.progress,
            "issueTitle": self.issue_title,
            "issueDescription": self.issue_description,
            "userInput": self.user_input,
            "artifacts": dict(self.artifacts),
            "aiContext": self.ai_context.to_dict(),
            "memory": self.memory.to_dict(),
            "metadata": self.metadata.to_dict(),
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> WorkflowState:
        artifacts = payload.get("artifacts")
        ai_context = payload.get("aiContext")
        memory = payload.get("memory")
        metadata = payload.get("metadata")
        return cls(
            issue_id=str(payload["issueId"]),
            current_mode=str(payload["currentMode"]),
            current_phase=str(payload["currentPhase"]),
            progress=int(payload.get("progress", 0)),
            issue_title=str(payload.get("issueTitle", "")),
            issue_description=str(payload.get("issueDescription", "")),
            user_input=str(payload.get("userInput", "")),
            artifacts=(
                {str(key): value for key, value in artifacts.items()}
                if isinstance(artifacts, dict)
                else {}
            ),
            ai_context=AIContext.from_dict(ai_context if isinstance(ai_context, dict) else {}),
            memory=Memory.from_dict(memory if isinstance(memory, dict) else {}),
            metadata=Metadata.from_dict(metadata if isinstance(metadata, dict) else {}),
            created_at=parse_datetime(payload["createdAt"]),
            updated_at=parse_datetime(payload["updatedAt"]),
        )
