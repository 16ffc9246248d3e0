from sparcflow.state.models import (
    AgentAction,
    AIContext,
    Decision,
    ErrorRecord,
    Memory,
    Metadata,
    PerformanceMetrics,
    ToolCall,
    Transition,
    WorkflowInput,
    WorkflowState,
)
from sparcflow.state.store import WorkflowStore

__all__ = [
    "AIContext",
    "AgentAction",
    "Decision",
    "ErrorRecord",
    "Memory",
    "Metadata",
    "PerformanceMetrics",
    "ToolCall",
    "Transition",
    "WorkflowInput",
    "WorkflowState",
    "WorkflowStore",
]
