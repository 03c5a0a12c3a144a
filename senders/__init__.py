"""
Senders - Output channels for the agent.

A sender delivers agent-initiated messages: approval requests, Review
notifications, scheduled-task results, notepad replies. Each implements:
- name: str - Channel identifier
- capabilities: list[str] - What this sender supports ("text", "photo")
- send(to, content, **kwargs) - Send a message
- send_photo(to, data, caption) - Send an image

Usage:
    from senders.cli import CLISender
    agent.register_sender("cli", CLISender())
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Sender(Protocol):
    """Protocol for channel senders.

    Implement this to add a new output channel.
    """

    name: str
    capabilities: list[str]

    async def send(self, to: str, content: str, **kwargs) -> dict:
        """Send a message.

        Args:
            to: Recipient user id
            content: Message text
            **kwargs: Channel-specific options

        Returns:
            {"sent": True, ...} on success
            {"error": "..."} on failure
        """
        ...

    async def send_photo(self, to: str, data: bytes, caption: str | None = None) -> dict:
        """Send an image with an optional caption. Same return shape as send()."""
        ...
