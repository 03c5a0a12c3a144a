"""
Approval gate for risky tool actions.

A tool that needs the user's go-ahead suspends on ``request_approval``. The
user's next yes/no reply, arriving through any channel, resolves it via
``resolve``. Each user has at most one pending request, held as a single-slot
future:

    approved = await gate.request_approval(user_id, "Run `npm install`?")

    # elsewhere, when the user answers
    gate.resolve(user_id, True)

The future can only be completed once, so a late or duplicate reply is a
no-op. A timeout counts as a denial.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300  # 5 minutes

YES_WORDS = frozenset(["/yes", "yes", "y", "ja", "j", "ok", "mach", "do it", "bestätigen", "passt"])
NO_WORDS = frozenset(["/no", "no", "n", "nein", "stop", "abort", "abbrechen"])

_PUNCTUATION_RE = re.compile(r"[.!?]")


class ApprovalPendingError(Exception):
    """Raised when a user already has an approval request outstanding."""
    pass


@dataclass
class PendingApproval:
    user_id: str
    description: str
    future: asyncio.Future
    deadline: float
    created_at: float = field(default_factory=time.time)

    @property
    def seconds_left(self) -> float:
        return max(0.0, self.deadline - time.time())


def parse_approval_reply(text: str, strip_punctuation: bool = False) -> bool | None:
    """Map a reply to True (approve), False (deny) or None (not an answer).

    Voice transcripts carry punctuation ("Ja."), so callers pass
    ``strip_punctuation=True`` for them.
    """
    normalized = text.strip().lower()
    if strip_punctuation:
        normalized = _PUNCTUATION_RE.sub("", normalized).strip()
    if normalized in YES_WORDS:
        return True
    if normalized in NO_WORDS:
        return False
    return None


class ApprovalGate:
    """Per-user single-slot rendezvous between a waiting tool and the user's reply."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout
        self._pending: dict[str, PendingApproval] = {}

    def has_pending(self, user_id: str) -> bool:
        entry = self._pending.get(str(user_id))
        return entry is not None and not entry.future.done()

    def pending_users(self) -> list[str]:
        return [u for u, entry in self._pending.items() if not entry.future.done()]

    def get_pending(self, user_id: str) -> PendingApproval | None:
        entry = self._pending.get(str(user_id))
        if entry is None or entry.future.done():
            return None
        return entry

    async def request_approval(
        self,
        user_id: str,
        description: str,
        timeout: float | None = None,
        notify: Callable[[str], Awaitable[None]] | None = None,
    ) -> bool:
        """Wait for the user to approve or deny ``description``.

        The slot is registered before ``notify`` is awaited, so a reply that
        arrives while the prompt is still being delivered is not lost.

        Returns:
            True if approved; False if denied or the deadline passed.

        Raises:
            ApprovalPendingError: If the user already has a pending request.
        """
        user_id = str(user_id)
        if self.has_pending(user_id):
            raise ApprovalPendingError(
                f"User {user_id} already has a pending approval: {self._pending[user_id].description}"
            )

        timeout = self.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        entry = PendingApproval(
            user_id=user_id,
            description=description,
            future=loop.create_future(),
            deadline=time.time() + timeout,
        )
        self._pending[user_id] = entry
        logger.info("Approval requested for user %s: %s", user_id, description)

        try:
            if notify is not None:
                await notify(description)
            return await asyncio.wait_for(asyncio.shield(entry.future), timeout=entry.seconds_left)
        except asyncio.TimeoutError:
            logger.info("Approval for user %s timed out, treating as denied", user_id)
            return False
        finally:
            if not entry.future.done():
                entry.future.cancel()
            if self._pending.get(user_id) is entry:
                del self._pending[user_id]

    def resolve(self, user_id: str, approved: bool) -> bool:
        """Resolve the user's pending request.

        Returns:
            True if a pending request was resolved; False if there was nothing
            to resolve (never requested, already resolved, or timed out).
        """
        user_id = str(user_id)
        entry = self._pending.pop(user_id, None)
        if entry is None or entry.future.done() or entry.seconds_left <= 0:
            return False
        entry.future.set_result(bool(approved))
        logger.info("Approval for user %s resolved: %s", user_id, "approved" if approved else "denied")
        return True

    def cancel_all(self):
        """Deny every pending request (shutdown)."""
        for user_id in list(self._pending):
            self.resolve(user_id, False)
