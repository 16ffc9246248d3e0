from sparcflow.backends.base import (
    AgentBackend,
    BackendExecutionError,
    BackendTimeoutError,
)
from sparcflow.backends.openai_sdk import OpenAIBackend
from sparcflow.backends.resilient import ResilientBackend, RetryPolicy
from sparcflow.backends.template import TemplateBackend

__all__ = [
    "AgentBackend",
    "BackendExecutionError",
    "BackendTimeoutError",
    "OpenAIBackend",
    "ResilientBackend",
    "RetryPolicy",
    "TemplateBackend",
]
