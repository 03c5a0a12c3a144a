"""
Data models for long-term memory and the task board.
"""

from dataclasses import dataclass, field
from datetime import datetime

# Board statuses, in workflow order
STATUS_PLANNED = "Geplant"
STATUS_IN_PROGRESS = "In Bearbeitung"
STATUS_REVIEW = "Review"
STATUS_DONE = "Fertig"
TASK_STATUSES = (STATUS_PLANNED, STATUS_IN_PROGRESS, STATUS_REVIEW, STATUS_DONE)
OPEN_STATUSES = (STATUS_PLANNED, STATUS_IN_PROGRESS)

PRIORITY_HIGH = "Hoch"
PRIORITY_MEDIUM = "Mittel"
PRIORITY_LOW = "Niedrig"
TASK_PRIORITIES = (PRIORITY_HIGH, PRIORITY_MEDIUM, PRIORITY_LOW)


def _now() -> str:
    return datetime.now().isoformat()


@dataclass(frozen=True)
class EpisodicMemoryEntry:
    """A stored summary of a past turn. Never modified after it is written."""

    id: str
    user_id: str
    summary: str
    vector: list[float]
    created_at: str = field(default_factory=_now)


@dataclass
class ScoredEpisode:
    entry: EpisodicMemoryEntry
    score: float

    @property
    def summary(self) -> str:
        return self.entry.summary


@dataclass
class BoardTask:
    """A task on the dashboard board."""

    id: str
    title: str
    description: str = ""
    status: str = STATUS_PLANNED
    priority: str = PRIORITY_MEDIUM
    scheduled_at: str | None = None
    created_at: str = field(default_factory=_now)

    def is_due(self, now: datetime | None = None) -> bool:
        if not self.scheduled_at:
            return False
        try:
            due = datetime.fromisoformat(self.scheduled_at)
        except ValueError:
            return False
        now = now or datetime.now(due.tzinfo)
        return due <= now

    def format(self) -> str:
        return (
            f"ID: {self.id} | Status: {self.status} | Prio: {self.priority} | "
            f"Fällig: {self.scheduled_at or 'Kein Datum'}\n"
            f"Titel: {self.title}\n"
            f"Beschreibung: {self.description or 'Keine'}"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "scheduled_at": self.scheduled_at,
            "created_at": self.created_at,
        }
