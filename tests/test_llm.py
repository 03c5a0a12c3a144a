"""
Unit tests for llm.py

Tests cover:
- ToolCall / ModelResponse conversion to history messages
- Tool schema conversion to the OpenAI function format
- Transient error detection
- LiteLLMBackend request building, response parsing, retries and events
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from llm import LiteLLMBackend, ModelResponse, ToolCall, _is_transient_error, tool_schema_to_openai
from utils.events import EventEmitter


def _completion(content=None, tool_calls=None, prompt_tokens=10, completion_tokens=5):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def _tool_call(id_, name, arguments):
    return SimpleNamespace(id=id_, function=SimpleNamespace(name=name, arguments=arguments))


class RateLimitError(Exception):
    pass


class TestMessages:
    """Test ModelResponse.to_message()."""

    def test_text_only(self):
        assert ModelResponse(text="hi").to_message() == {"role": "assistant", "content": "hi"}

    def test_with_tool_calls(self):
        message = ModelResponse(tool_calls=[ToolCall(id="c1", name="web_search", arguments='{"query": "x"}')]).to_message()
        assert message == {
            "role": "assistant",
            "content": None,
            "tool_calls": [{
                "id": "c1",
                "type": "function",
                "function": {"name": "web_search", "arguments": '{"query": "x"}'},
            }],
        }


class TestToolSchemaToOpenAI:
    """Test tool_schema_to_openai()."""

    def test_conversion(self):
        schema = {"name": "t", "description": "d", "parameters": {"type": "object", "properties": {"a": {"type": "string"}}}}
        assert tool_schema_to_openai(schema) == {
            "type": "function",
            "function": {"name": "t", "description": "d", "parameters": schema["parameters"]},
        }

    def test_missing_parameters(self):
        converted = tool_schema_to_openai({"name": "t"})
        assert converted["function"]["parameters"] == {"type": "object", "properties": {}}
        assert converted["function"]["description"] == ""


class TestTransientErrors:
    """Test _is_transient_error()."""

    def test_by_type_name(self):
        assert _is_transient_error(RateLimitError("slow down"))

    @pytest.mark.parametrize("message", ["HTTP 503", "Service Unavailable", "error 429", "Connection reset by peer"])
    def test_by_message(self, message):
        assert _is_transient_error(Exception(message))

    def test_permanent(self):
        assert not _is_transient_error(ValueError("invalid api key"))


class TestLiteLLMBackend:
    """Test LiteLLMBackend.call()."""

    @pytest.fixture
    def backend(self, llm_config):
        return LiteLLMBackend(llm_config, retry_delay=0)

    @pytest.mark.asyncio
    async def test_request_shape(self, backend):
        tools = [{"name": "web_search", "description": "Search", "parameters": {"type": "object", "properties": {}}}]
        history = [{"role": "user", "content": "hi"}]
        with patch("llm.litellm.acompletion", new=AsyncMock(return_value=_completion("hello"))) as completion:
            response = await backend.call(history, tools, "SYSTEM", "test/coding")

        assert response == ModelResponse(text="hello")
        kwargs = completion.await_args.kwargs
        assert kwargs["model"] == "test/coding"
        assert kwargs["messages"] == [{"role": "system", "content": "SYSTEM"}, {"role": "user", "content": "hi"}]
        assert kwargs["max_tokens"] == 4096
        assert kwargs["tools"][0]["function"]["name"] == "web_search"

    @pytest.mark.asyncio
    async def test_no_tools_key_without_tools(self, backend):
        with patch("llm.litellm.acompletion", new=AsyncMock(return_value=_completion("x"))) as completion:
            await backend.call([], [], "S", "test/standard")
        assert "tools" not in completion.await_args.kwargs

    @pytest.mark.asyncio
    async def test_parses_tool_calls(self, backend):
        raw = _completion(tool_calls=[_tool_call("c1", "read_file", '{"path": "a"}'), _tool_call("c2", "get_current_time", None)])
        with patch("llm.litellm.acompletion", new=AsyncMock(return_value=raw)):
            response = await backend.call([], [], "S", "test/standard")

        assert response.text is None
        assert response.tool_calls == [
            ToolCall(id="c1", name="read_file", arguments='{"path": "a"}'),
            ToolCall(id="c2", name="get_current_time", arguments="{}"),
        ]

    @pytest.mark.asyncio
    async def test_retries_transient(self, backend):
        completion = AsyncMock(side_effect=[RateLimitError("429"), _completion("ok")])
        with patch("llm.litellm.acompletion", new=completion):
            response = await backend.call([], [], "S", "test/standard")
        assert response.text == "ok"
        assert completion.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, backend):
        completion = AsyncMock(side_effect=RateLimitError("429"))
        with patch("llm.litellm.acompletion", new=completion):
            with pytest.raises(RateLimitError):
                await backend.call([], [], "S", "test/standard")
        assert completion.await_count == 3

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, backend):
        completion = AsyncMock(side_effect=ValueError("bad request"))
        with patch("llm.litellm.acompletion", new=completion):
            with pytest.raises(ValueError):
                await backend.call([], [], "S", "test/standard")
        assert completion.await_count == 1

    @pytest.mark.asyncio
    async def test_emits_llm_call_end(self, llm_config):
        emitter = EventEmitter()
        events = []
        emitter.on("llm_call_end", events.append)
        backend = LiteLLMBackend(llm_config, emitter=emitter)

        with patch("llm.litellm.acompletion", new=AsyncMock(return_value=_completion("x", prompt_tokens=7, completion_tokens=3))):
            await backend.call([], [], "S", "test/vision")

        assert events[0]["model"] == "test/vision"
        assert events[0]["input_tokens"] == 7
        assert events[0]["output_tokens"] == 3
        assert events[0]["tool_calls"] == 0
