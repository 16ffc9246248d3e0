from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from sparcflow.backends.base import AgentBackend, BackendExecutionError, BackendTimeoutError

log = structlog.get_logger(__name__)

BackendEventHook = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class RetryPolicy:
    max_retries: int = 1
    backoff_seconds: float = 0.5
    timeout_seconds: float = 90.0
    max_backoff_seconds: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Exponential delay before retry number ``attempt`` (1-based)."""
        return min(self.max_backoff_seconds, self.backoff_seconds * (2 ** (attempt - 1)))


class ResilientBackend(AgentBackend):
    """Runs a phase generation against the primary backend, then the fallback.

    Each backend gets ``max_retries`` extra attempts under the policy timeout.
    Events are tagged with the issue and phase from the node context so the
    store's metrics file can tell which phase needed a retry or failover.
    """

    name = "resilient"

    def __init__(
        self,
        primary_name: str,
        primary_backend: AgentBackend,
        fallback_name: str,
        fallback_backend: AgentBackend,
        retry_policy: RetryPolicy,
        event_hook: BackendEventHook | None = None,
    ) -> None:
        self.primary_name = primary_name
        self.primary_backend = primary_backend
        self.fallback_name = fallback_name
        self.fallback_backend = fallback_backend
        self.retry_policy = retry_policy
        self.event_hook = event_hook

    def candidates(self) -> list[tuple[str, AgentBackend]]:
        chain = [(self.primary_name, self.primary_backend)]
        if self.fallback_name != self.primary_name:
            chain.append((self.fallback_name, self.fallback_backend))
        return chain

    def _emit(self, event: str, context: dict[str, Any], **fields: Any) -> None:
        payload: dict[str, Any] = {"event": event}
        for key in ("issue_id", "phase"):
            if context.get(key):
                payload[key] = context[key]
        payload.update(fields)
        log.debug(event, **{k: v for k, v in payload.items() if k != "event"})
        if self.event_hook:
            self.event_hook(payload)

    async def _generate_once(
        self,
        backend: AgentBackend,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> list[str]:
        async def _drain() -> list[str]:
            return [chunk async for chunk in backend.execute(system_prompt, user_prompt, context)]

        timeout = self.retry_policy.timeout_seconds
        try:
            return await asyncio.wait_for(_drain(), timeout=timeout)
        except TimeoutError as exc:
            raise BackendTimeoutError(
                f"Backend request timed out after {timeout:.1f}s",
                backend=backend.name,
                retriable=True,
            ) from exc

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> list[str]:
        failures: list[str] = []
        previous: str | None = None
        for backend_name, backend in self.candidates():
            if previous is not None:
                self._emit("backend_failover_start", context, backend=backend_name, from_backend=previous)
            previous = backend_name

            for attempt in range(self.retry_policy.max_retries + 1):
                if attempt:
                    delay = self.retry_policy.delay_for(attempt)
                    self._emit(
                        "backend_retry",
                        context,
                        backend=backend_name,
                        attempt=attempt,
                        delay_seconds=delay,
                    )
                    await asyncio.sleep(delay)
                try:
                    chunks = await self._generate_once(backend, system_prompt, user_prompt, context)
                except BackendExecutionError as exc:
                    failures.append(f"{backend_name}[{attempt}]: {exc}")
                    self._emit(
                        "backend_attempt_failed",
                        context,
                        backend=backend_name,
                        attempt=attempt,
                        error=str(exc),
                        retriable=exc.retriable,
                    )
                    if exc.retriable:
                        continue
                    break
                if backend_name != self.primary_name:
                    self._emit("backend_fallback_success", context, backend=backend_name, attempt=attempt)
                return chunks

        raise BackendExecutionError(
            "All backend attempts failed. " + "; ".join(failures[-6:]),
            backend=self.name,
            retriable=False,
        )

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        for chunk in await self.generate(system_prompt, user_prompt, context):
            yield chunk
