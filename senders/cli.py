"""
CLI Sender - Output to terminal with styled formatting.

Used for CLI replies and for anything the agent sends on its own
(approval requests, notifications, scheduled-task results).
"""

from utils.console import console


class CLISender:
    """Sender that prints to the terminal."""

    name = "cli"
    capabilities = ["text"]

    def __init__(self, prefix: str = "Claw"):
        self.prefix = prefix

    async def send(self, to: str, content: str, **kwargs) -> dict:
        """Print ``content``. ``to`` is ignored; the terminal has one reader."""
        console.agent(content, prefix=self.prefix)
        return {"sent": True, "channel": "cli"}

    async def send_photo(self, to: str, data: bytes, caption: str | None = None) -> dict:
        console.agent(f"[image, {len(data)} bytes] {caption or ''}".rstrip(), prefix=self.prefix)
        return {"sent": True, "channel": "cli"}
