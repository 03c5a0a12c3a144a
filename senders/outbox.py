"""
Outbox Sender - Per-user message queue for HTTP clients.

HTTP clients get their turn's reply in the response body, but messages the
agent sends mid-turn or on its own (approval requests, notifications,
scheduled results) have nowhere to go. They are queued here and fetched with
``GET /messages/{user_id}``.
"""

import base64
from collections import defaultdict, deque
from datetime import datetime

MAX_QUEUED = 100


class OutboxSender:
    """Keeps the latest ``max_queued`` messages per user until they are drained."""

    name = "api"
    capabilities = ["text", "photo"]

    def __init__(self, max_queued: int = MAX_QUEUED):
        self._queues: dict[str, deque] = defaultdict(lambda: deque(maxlen=max_queued))

    async def send(self, to: str, content: str, **kwargs) -> dict:
        self._queues[str(to)].append({
            "type": "text",
            "content": content,
            "created_at": datetime.now().isoformat(),
        })
        return {"sent": True, "channel": self.name}

    async def send_photo(self, to: str, data: bytes, caption: str | None = None) -> dict:
        self._queues[str(to)].append({
            "type": "photo",
            "content": caption or "",
            "data": base64.b64encode(data).decode("ascii"),
            "created_at": datetime.now().isoformat(),
        })
        return {"sent": True, "channel": self.name}

    def pending(self, user_id: str) -> int:
        return len(self._queues.get(str(user_id), ()))

    def drain(self, user_id: str) -> list[dict]:
        """Return and remove every queued message for ``user_id``, oldest first."""
        queue = self._queues.pop(str(user_id), None)
        return list(queue) if queue else []
