"""
Model backend for the agent loop.

Wraps LiteLLM's async completion API so the loop only sees a small,
provider-neutral surface:

    backend = LiteLLMBackend(emitter=agent)
    response = await backend.call(history, tools, system, model)
    response.text, response.tool_calls

History entries and tool results use the OpenAI chat format, which LiteLLM
translates for every other provider.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import litellm

from llm_config import LLMConfig, get_llm_config

logger = logging.getLogger(__name__)

litellm.suppress_debug_info = True


@dataclass
class ToolCall:
    """A model-requested tool invocation. ``arguments`` is the raw JSON text."""

    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ModelResponse:
    text: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)

    def to_message(self) -> dict:
        """Assistant message for the conversation history."""
        message: dict[str, Any] = {"role": "assistant", "content": self.text}
        if self.tool_calls:
            message["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return message


class ModelBackend(Protocol):
    """Anything the agent loop can ask for a completion."""

    async def call(
        self,
        history: list[dict],
        tools: list[dict],
        system: str,
        model: str,
    ) -> ModelResponse:
        ...


def _is_transient_error(exc: Exception) -> bool:
    """Check if an exception is a transient LLM API error worth retrying.

    Covers 503 Service Unavailable, 429 Rate Limit, and connection-level
    failures that are likely to resolve on their own.
    """
    exc_type = type(exc).__name__
    if any(marker in exc_type for marker in ("ServiceUnavailable", "RateLimit", "Timeout", "ConnectionError")):
        return True

    exc_str = str(exc).lower()
    return any(
        marker in exc_str
        for marker in ("503", "service unavailable", "429", "rate limit", "connection reset")
    )


def tool_schema_to_openai(schema: dict) -> dict:
    """Convert a ``{name, description, parameters}`` descriptor to OpenAI function format."""
    return {
        "type": "function",
        "function": {
            "name": schema["name"],
            "description": schema.get("description", ""),
            "parameters": schema.get("parameters") or {"type": "object", "properties": {}},
        },
    }


class LiteLLMBackend:
    """
    Model backend backed by ``litellm.acompletion``.

    Emits ``llm_call_end`` on the optional emitter after every successful call.
    Transient provider errors are retried with exponential backoff; anything
    else propagates to the caller.
    """

    def __init__(
        self,
        llm_config: LLMConfig | None = None,
        emitter=None,
        max_retries: int = 2,
        retry_delay: float = 1.0,
    ):
        self.llm_config = llm_config or get_llm_config()
        self.emitter = emitter
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def call(
        self,
        history: list[dict],
        tools: list[dict],
        system: str,
        model: str,
    ) -> ModelResponse:
        model_config = self.llm_config.model_for_id(model)

        call_kwargs = {
            "model": model,
            "messages": [{"role": "system", "content": system}] + history,
            "max_tokens": model_config.max_tokens,
            "temperature": model_config.temperature,
        }
        if tools:
            call_kwargs["tools"] = [tool_schema_to_openai(t) for t in tools]

        start_time = time.time()
        attempt = 0
        while True:
            try:
                response = await litellm.acompletion(**call_kwargs)
                break
            except Exception as e:
                if attempt >= self.max_retries or not _is_transient_error(e):
                    raise
                delay = self.retry_delay * (2 ** attempt)
                logger.warning("Transient LLM error (%s), retrying in %.1fs", e, delay)
                attempt += 1
                await asyncio.sleep(delay)

        duration_ms = int((time.time() - start_time) * 1000)
        parsed = self._parse_response(response)

        if self.emitter is not None:
            usage = getattr(response, "usage", None)
            self.emitter.emit("llm_call_end", {
                "model": model,
                "input_tokens": getattr(usage, "prompt_tokens", 0) or 0,
                "output_tokens": getattr(usage, "completion_tokens", 0) or 0,
                "duration_ms": duration_ms,
                "tool_calls": len(parsed.tool_calls),
            })

        return parsed

    @staticmethod
    def _parse_response(response: Any) -> ModelResponse:
        message = response.choices[0].message
        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "{}",
            )
            for tc in (getattr(message, "tool_calls", None) or [])
        ]
        return ModelResponse(text=message.content, tool_calls=tool_calls)
