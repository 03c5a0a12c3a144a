"""
Dashboard tools: the shared notepad and the Kanban task board.

The notepad is a small JSON file ``{"text": ..., "ts": ...}`` that both the
user (through the dashboard) and the agent write to. Every write stamps a
fresh timestamp; the notepad poller watches that timestamp to detect new
directives.
"""

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path

from memory.models import STATUS_REVIEW, TASK_PRIORITIES, TASK_STATUSES
from tools import tool, tool_error

logger = logging.getLogger(__name__)

EMPTY_NOTEPAD = "Notepad is empty."


class Notepad:
    def __init__(self, path: str = "~/.claw/notepad.json"):
        self.path = Path(path).expanduser()

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def read(self) -> str:
        return self._load().get("text") or EMPTY_NOTEPAD

    def timestamp(self) -> str | None:
        return self._load().get("ts")

    def snapshot(self) -> tuple[str, str | None]:
        """(text, ts) from a single read, text empty when unset."""
        data = self._load()
        return data.get("text") or "", data.get("ts")

    def write(self, text: str) -> str:
        """Replace the notepad text and return the new timestamp."""
        ts = datetime.now().astimezone().isoformat()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Atomic write: temp file then rename, so the poller never sees half a file
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"text": text, "ts": ts}, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise
        return ts


@tool
def read_notepad(ctx=None) -> str:
    """Read the current content of the dashboard notepad (manual instructions from the user)."""
    return ctx.agent.notepad.read()


@tool
def write_notepad(text: str, ctx=None) -> dict:
    """Replace the dashboard notepad content, e.g. with a status report.

    Args:
        text: The new notepad text.
    """
    ts = ctx.agent.notepad.write(text)
    return {"updated": True, "ts": ts}


@tool
def get_board_tasks(ctx=None) -> str:
    """List all open tasks on the Kanban board ('Geplant' and 'In Bearbeitung'),
    most urgent first: overdue tasks, then by due date, then by priority."""
    return ctx.agent.store.get_board_tasks()


@tool
async def update_task_status(task_id: str, status: str, message: str = None, ctx=None) -> dict:
    """Move a task on the Kanban board, e.g. to 'In Bearbeitung' or 'Review'.
    Moving a task to 'Review' notifies the user automatically.

    Args:
        task_id: The task ID.
        status: The new status: Geplant, In Bearbeitung, Review or Fertig.
        message: Short note for the user, only used when moving to Review.
    """
    if status not in TASK_STATUSES:
        return tool_error(f"Invalid status '{status}'", fix=f"Use one of: {', '.join(TASK_STATUSES)}")

    agent = ctx.agent
    task = await asyncio.to_thread(agent.store.update_task_status, task_id, status)
    if task is None:
        return tool_error(f"Task ID {task_id} not found", fix="Call get_board_tasks to see valid IDs.")

    result = {"updated": True, "task_id": task.id, "status": task.status}
    if status == STATUS_REVIEW:
        note = message or "Die Aufgabe ist fertig zur Überprüfung!"
        delivered = await agent.notify_owners(f"🚀 Task Review Ready:\n{task.title}\n\n{agent.name}: {note}")
        result["notified"] = delivered
    return result


@tool
def create_board_task(
    title: str,
    description: str = "",
    priority: str = "Mittel",
    scheduled_at: str = None,
    ctx=None,
) -> dict:
    """Create a new task on the Kanban board, in the 'Geplant' column. Use this when the
    user asks to add something to their to-do list or to create a task.

    Args:
        title: Short, precise task title.
        description: Task details.
        priority: Hoch, Mittel or Niedrig. Defaults to Mittel.
        scheduled_at: Optional due date in ISO 8601 format (YYYY-MM-DDTHH:MM).
    """
    if not title.strip():
        return tool_error("Task title must not be empty")
    if priority not in TASK_PRIORITIES:
        return tool_error(f"Invalid priority '{priority}'", fix=f"Use one of: {', '.join(TASK_PRIORITIES)}")
    if scheduled_at:
        try:
            datetime.fromisoformat(scheduled_at)
        except ValueError:
            return tool_error(f"Invalid due date '{scheduled_at}'", fix="Use ISO 8601, e.g. 2025-01-31T09:00")

    task = ctx.agent.store.create_task(title.strip(), description, priority, scheduled_at or None)
    return {"created": True, "task": task.to_dict()}
