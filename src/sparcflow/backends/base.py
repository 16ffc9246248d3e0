from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any


class BackendExecutionError(RuntimeError):
    """Raised when a text backend request fails."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.retriable = retriable


class BackendTimeoutError(BackendExecutionError):
    """Raised when a backend request exceeds the configured timeout."""


class AgentBackend(ABC):
    name: str = "backend"

    @abstractmethod
    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        """Generate text for a phase and stream it in chunks."""
