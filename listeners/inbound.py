"""
Inbound message handling shared by every chat-style channel.

A message from a user goes through these steps, in order:

1. Unknown user ids are ignored.
2. Commands: /start, /clear, /context, /yes, /no.
3. While an approval is pending for the user, a yes/no reply resolves it and
   anything else gets a reminder. This path never waits for the session
   lock: the turn holding it is the one waiting for the answer.
4. Everything else becomes an agent turn.
"""

import logging

from agent import TRIGGER_CHAT, TRIGGER_VOICE, AgentError
from approval import parse_approval_reply

logger = logging.getLogger(__name__)

GENERIC_ERROR_REPLY = "Something went wrong. Please try again."
APPROVAL_REMINDER = "⏳ There is a pending approval request. Please reply with /yes or /no first."
NO_PENDING_APPROVAL = "There is no pending approval request."

CONTEXT_PREVIEW_MESSAGES = 4


def _preview(message: dict, width: int = 60) -> str:
    content = message.get("content") or ""
    if not content and message.get("tool_calls"):
        names = ", ".join(c["function"]["name"] for c in message["tool_calls"])
        content = f"(calls {names})"
    content = " ".join(str(content).split())
    return content if len(content) <= width else content[:width - 3] + "..."


class InboundHandler:
    """Turns raw text from one channel into a reply for the same user."""

    def __init__(self, agent, channel: str):
        self.agent = agent
        self.channel = channel

    async def handle_text(self, user_id: str, text: str) -> str | None:
        """Reply to a typed message. Returns None when nothing should be sent."""
        return await self._handle(str(user_id), text, TRIGGER_CHAT)

    async def handle_transcript(self, user_id: str, transcript: str) -> str | None:
        """Reply to a transcribed voice message.

        Transcribers add punctuation ("Ja."), so approval words are matched
        with trailing punctuation stripped.
        """
        return await self._handle(str(user_id), transcript, TRIGGER_VOICE)

    async def _handle(self, user_id: str, text: str, trigger: str) -> str | None:
        if not self.agent.is_allowed(user_id):
            logger.warning("Ignoring message from unauthorized user %s on %s", user_id, self.channel)
            return None

        text = (text or "").strip()
        if not text:
            return None

        command = text.split()[0].lower() if text.startswith("/") else None
        if command is not None and command not in ("/yes", "/no"):
            return self._handle_command(user_id, command)

        approvals = self.agent.approvals
        if approvals.has_pending(user_id):
            decision = parse_approval_reply(text, strip_punctuation=trigger == TRIGGER_VOICE)
            if decision is None:
                return APPROVAL_REMINDER
            approvals.resolve(user_id, decision)
            logger.info("User %s %s the pending request", user_id, "approved" if decision else "denied")
            return "✅ Approved." if decision else "❌ Denied."
        if command is not None:
            return NO_PENDING_APPROVAL

        context = self.agent.make_context(user_id, trigger=trigger, channel=self.channel)
        try:
            return await self.agent.handle(text, context)
        except AgentError as e:
            logger.error("Turn failed for user %s: %s", user_id, e)
            return GENERIC_ERROR_REPLY
        except Exception as e:
            logger.exception("Unexpected error handling message from %s: %s", user_id, e)
            return GENERIC_ERROR_REPLY

    def _handle_command(self, user_id: str, command: str) -> str:
        if command == "/start":
            return f"Hello! I'm {self.agent.name}. How can I help you?"
        if command == "/clear":
            self.agent.sessions.clear(user_id)
            return "🗑️ Conversation history cleared."
        if command == "/context":
            return self._describe_context(user_id)
        return f"Unknown command: {command}"

    def _describe_context(self, user_id: str) -> str:
        session = self.agent.sessions.peek(user_id)
        history = session.history if session else []
        if not history:
            return "📊 No messages in the current conversation."
        lines = [f"📊 {len(history)} messages in the current conversation."]
        lines.append("Last messages:")
        for message in history[-CONTEXT_PREVIEW_MESSAGES:]:
            lines.append(f"- {message['role']}: {_preview(message)}")
        return "\n".join(lines)
