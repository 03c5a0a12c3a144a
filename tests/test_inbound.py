"""
Unit tests for listeners/inbound.py

Tests cover:
- Authorization and empty messages
- /start, /clear, /context and unknown commands
- Approval interception while a request is pending (typed and voice)
- Answering an approval while the turn that asked for it is still running
- Turn failures mapped to a generic reply
"""

import asyncio
import json

import pytest

from conftest import text_response, tool_response
from listeners.inbound import (
    APPROVAL_REMINDER,
    GENERIC_ERROR_REPLY,
    NO_PENDING_APPROVAL,
    InboundHandler,
)


@pytest.fixture
def handler(agent):
    return InboundHandler(agent, channel="test")


async def _wait_for_pending(agent, user_id):
    for _ in range(200):
        if agent.approvals.has_pending(user_id):
            return
        await asyncio.sleep(0.005)
    raise AssertionError("approval was never requested")


class TestAccess:
    """Test who gets an answer."""

    @pytest.mark.asyncio
    async def test_unauthorized_ignored(self, handler, stub_backend):
        assert await handler.handle_text("999", "hello") is None
        assert stub_backend.calls == []

    @pytest.mark.asyncio
    async def test_empty_ignored(self, handler):
        assert await handler.handle_text("111", "   ") is None
        assert await handler.handle_text("111", None) is None

    @pytest.mark.asyncio
    async def test_regular_message_runs_turn(self, handler, stub_backend):
        stub_backend.responses = [text_response("Hi there")]
        assert await handler.handle_text(111, "hello") == "Hi there"
        assert handler.agent.sessions.history("111")[0] == {"role": "user", "content": "hello"}


class TestCommands:
    """Test slash commands."""

    @pytest.mark.asyncio
    async def test_start(self, handler):
        assert await handler.handle_text("111", "/start") == "Hello! I'm Claw. How can I help you?"

    @pytest.mark.asyncio
    async def test_clear(self, handler):
        await handler.handle_text("111", "hello")
        assert await handler.handle_text("111", "/clear") == "🗑️ Conversation history cleared."
        assert handler.agent.sessions.history("111") == []

    @pytest.mark.asyncio
    async def test_context_empty(self, handler):
        assert await handler.handle_text("111", "/context") == "📊 No messages in the current conversation."

    @pytest.mark.asyncio
    async def test_context_lists_recent(self, handler, stub_backend):
        stub_backend.responses = [
            tool_response(("get_current_time", "{}")),
            text_response("It is noon"),
        ]
        await handler.handle_text("111", "what time is it?")

        reply = await handler.handle_text("111", "/context")

        assert reply.startswith("📊 4 messages")
        assert "- assistant: (calls get_current_time)" in reply
        assert "- assistant: It is noon" in reply

    @pytest.mark.asyncio
    async def test_unknown(self, handler):
        assert await handler.handle_text("111", "/dance now") == "Unknown command: /dance"

    @pytest.mark.asyncio
    async def test_yes_without_pending(self, handler, stub_backend):
        assert await handler.handle_text("111", "/yes") == NO_PENDING_APPROVAL
        assert stub_backend.calls == []


class TestApprovalInterception:
    """Test replies while an approval is pending."""

    @staticmethod
    async def _request(agent):
        task = asyncio.create_task(agent.approvals.request_approval("111", "npm install"))
        await asyncio.sleep(0)
        return task

    @staticmethod
    async def _settle(agent, task):
        if not task.done():
            agent.approvals.resolve("111", False)
        return await task

    @pytest.mark.asyncio
    async def test_yes_resolves(self, handler):
        pending = await self._request(handler.agent)
        assert await handler.handle_text("111", "ja") == "✅ Approved."
        assert await pending is True

    @pytest.mark.asyncio
    async def test_no_resolves(self, handler):
        pending = await self._request(handler.agent)
        assert await handler.handle_text("111", "/no") == "❌ Denied."
        assert await pending is False

    @pytest.mark.asyncio
    async def test_other_text_gets_reminder(self, handler, stub_backend):
        pending = await self._request(handler.agent)
        assert await handler.handle_text("111", "what about lunch?") == APPROVAL_REMINDER
        assert handler.agent.approvals.has_pending("111")
        assert stub_backend.calls == []
        await self._settle(handler.agent, pending)

    @pytest.mark.asyncio
    async def test_voice_punctuation_stripped(self, handler):
        pending = await self._request(handler.agent)
        assert await handler.handle_transcript("111", "Ja.") == "✅ Approved."
        assert await pending is True

    @pytest.mark.asyncio
    async def test_typed_punctuation_not_stripped(self, handler):
        pending = await self._request(handler.agent)
        assert await handler.handle_text("111", "Ja.") == APPROVAL_REMINDER
        await self._settle(handler.agent, pending)

    @pytest.mark.asyncio
    async def test_other_user_not_intercepted(self, handler, stub_backend):
        pending = await self._request(handler.agent)
        stub_backend.responses = [text_response("Hello 222")]
        assert await handler.handle_text("222", "hi") == "Hello 222"
        assert handler.agent.approvals.has_pending("111")
        await self._settle(handler.agent, pending)


class TestApprovalDuringTurn:
    """The approval reply must get through while the turn waits on it."""

    @pytest.mark.asyncio
    async def test_mid_turn_yes(self, handler, stub_backend, sender):
        stub_backend.responses = [
            tool_response(("execute_terminal", json.dumps({"command": "echo from-claw"}))),
            text_response("Ran it"),
        ]

        turn = asyncio.create_task(handler.handle_text("111", "please echo something"))
        await _wait_for_pending(handler.agent, "111")

        assert await handler.handle_text("111", "/yes") == "✅ Approved."
        assert await turn == "Ran it"

        tool_message = handler.agent.sessions.history("111")[2]
        assert "from-claw" in json.loads(tool_message["content"])["stdout"]
        assert "Terminal Execution Request" in sender.messages[0][1]

    @pytest.mark.asyncio
    async def test_clear_while_waiting_keeps_turn_consistent(self, handler, stub_backend):
        stub_backend.responses = [
            tool_response(("execute_terminal", json.dumps({"command": "echo from-claw"}))),
            text_response("Ran it"),
            text_response("Fresh start"),
        ]

        turn = asyncio.create_task(handler.handle_text("111", "please echo something"))
        await _wait_for_pending(handler.agent, "111")

        assert await handler.handle_text("111", "/clear") == "🗑️ Conversation history cleared."
        assert await handler.handle_text("111", "/yes") == "✅ Approved."
        assert await turn == "Ran it"

        roles = [m["role"] for m in stub_backend.calls[1]["history"]]
        assert roles == ["user", "assistant", "tool"]
        assert handler.agent.sessions.history("111") == []

        assert await handler.handle_text("111", "hello again") == "Fresh start"
        assert [m["role"] for m in stub_backend.calls[2]["history"]] == ["user"]


class TestErrors:
    """Test failure replies."""

    @pytest.mark.asyncio
    async def test_model_error_generic_reply(self, handler, stub_backend):
        stub_backend.responses = [RuntimeError("provider down")]
        assert await handler.handle_text("111", "hello") == GENERIC_ERROR_REPLY
        assert handler.agent.sessions.history("111") == []

    @pytest.mark.asyncio
    async def test_unexpected_error_generic_reply(self, handler, monkeypatch):
        async def broken(message, context):
            raise KeyError("oops")

        monkeypatch.setattr(handler.agent, "handle", broken)
        assert await handler.handle_text("111", "hello") == GENERIC_ERROR_REPLY
