from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import structlog
from openai import OpenAI, OpenAIError

from sparcflow.backends.base import AgentBackend, BackendExecutionError
from sparcflow.backends.template import TemplateBackend

log = structlog.get_logger(__name__)


class OpenAIBackend(AgentBackend):
    """Chat-completions backend; renders templates when no client can be built."""

    name = "openai"

    def __init__(
        self,
        *,
        model: str = "gpt-4o",
        temperature: float = 0.0,
        max_tokens: int = 2000,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.offline_fallback = TemplateBackend()
        self._client: Any | None = client
        if self._client is None:
            try:
                self._client = OpenAI()
            except OpenAIError as exc:
                log.warning("openai_client_unavailable", error=str(exc))
                self._client = None

    @property
    def available(self) -> bool:
        return self._client is not None

    @staticmethod
    def _build_user_input(user_prompt: str, context: dict[str, Any]) -> str:
        extra = {key: value for key, value in context.items() if key != "model"}
        if not extra:
            return user_prompt
        return (
            f"{user_prompt}\n\nContext JSON:\n"
            f"{json.dumps(extra, ensure_ascii=False, indent=2, default=str)}"
        )

    @staticmethod
    def _extract_text(payload: Any) -> str:
        choices = getattr(payload, "choices", None)
        if choices is None and isinstance(payload, dict):
            choices = payload.get("choices")
        if not choices:
            return ""
        first = choices[0]
        message = getattr(first, "message", None)
        if message is None and isinstance(first, dict):
            message = first.get("message")
        content = getattr(message, "content", None)
        if content is None and isinstance(message, dict):
            content = message.get("content")
        return content if isinstance(content, str) else ""

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        if self._client is None:
            async for chunk in self.offline_fallback.execute(system_prompt, user_prompt, context):
                yield chunk
            return

        requested_model = context.get("model")
        model_name = (
            requested_model.strip()
            if isinstance(requested_model, str) and requested_model.strip()
            else self.model
        )
        prompt = self._build_user_input(user_prompt, context)

        def _request() -> Any:
            return self._client.chat.completions.create(
                model=model_name,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )

        try:
            payload = await asyncio.to_thread(_request)
        except OpenAIError as exc:
            raise BackendExecutionError(
                f"OpenAI request failed: {exc}",
                backend=self.name,
                retriable=True,
            ) from exc

        content = self._extract_text(payload).strip()
        if not content:
            raise BackendExecutionError(
                "OpenAI returned an empty completion.",
                backend=self.name,
                retriable=True,
            )
        yield content
