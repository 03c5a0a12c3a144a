"""
Per-user sessions and agent status.

Every trigger source (chat, voice, notepad poller, cron) runs its turn
through ``SessionManager.run``. Turns for the same user wait for each other
on the session's lock, in arrival order, so two sources can never interleave
messages in one history. Turns for different users run concurrently.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

STATUS_OFFLINE = "offline"
STATUS_ONLINE = "online"
STATUS_WORKING = "working"


@dataclass
class Session:
    """Conversation state for one user. Lives in memory until /clear or restart."""

    user_id: str
    history: list[dict] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    turns: int = 0

    @property
    def busy(self) -> bool:
        return self.lock.locked()

    def clear(self):
        # A running turn keeps appending to the old list
        self.history = []


class AgentState:
    """
    Agent status with one entry per user.

    ``status`` is ``working`` while any user has a turn in flight, so a turn
    finishing for one user never hides another user's running turn.
    """

    def __init__(self):
        self.started = False
        self._working: dict[str, str] = {}

    @property
    def status(self) -> str:
        if not self.started:
            return STATUS_OFFLINE
        return STATUS_WORKING if self._working else STATUS_ONLINE

    @property
    def current_task(self) -> str | None:
        """Most recently started task still in flight."""
        if not self._working:
            return None
        return next(reversed(self._working.values()))

    def user_status(self, user_id: str) -> str:
        if not self.started:
            return STATUS_OFFLINE
        return STATUS_WORKING if str(user_id) in self._working else STATUS_ONLINE

    def set_working(self, user_id: str, task: str):
        self._working.pop(str(user_id), None)
        self._working[str(user_id)] = task

    def set_online(self, user_id: str):
        self._working.pop(str(user_id), None)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "current_task": self.current_task,
            "working_users": list(self._working),
        }


class SessionManager:
    """Owns all sessions and serializes turns per user."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def get(self, user_id: str) -> Session:
        """Session for ``user_id``, created on first access."""
        user_id = str(user_id)
        session = self._sessions.get(user_id)
        if session is None:
            session = Session(user_id=user_id)
            self._sessions[user_id] = session
        return session

    def peek(self, user_id: str) -> Session | None:
        return self._sessions.get(str(user_id))

    def history(self, user_id: str) -> list[dict]:
        return self.get(user_id).history

    def clear(self, user_id: str) -> bool:
        """Reset a user's history. Returns False if the user had no session."""
        session = self._sessions.get(str(user_id))
        if session is None:
            return False
        session.clear()
        return True

    def user_ids(self) -> list[str]:
        return list(self._sessions)

    async def run(self, user_id: str, turn: Callable[[Session], Awaitable[str]]) -> str:
        """Run ``turn(session)`` once every earlier turn for this user has finished."""
        session = self.get(user_id)
        if session.busy:
            logger.info("User %s already has a turn running, queueing", session.user_id)
        async with session.lock:
            session.turns += 1
            return await turn(session)
