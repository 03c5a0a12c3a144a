"""
Memory store - database operations for facts, episodes and the task board.

Uses SQLite. Episode vectors are kept as JSON text; similarity ranking happens
in Python (see memory/episodic.py).
"""

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from .models import (
    OPEN_STATUSES,
    PRIORITY_MEDIUM,
    STATUS_PLANNED,
    TASK_PRIORITIES,
    TASK_STATUSES,
    BoardTask,
    EpisodicMemoryEntry,
)

NO_FACTS = "No core facts known yet."


def generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid4())


def now_iso() -> str:
    """Get current time as ISO string."""
    return datetime.now().isoformat()


class MemoryStore:
    """
    SQLite-based storage for core facts, episodic memories and board tasks.

    All methods are synchronous; async callers wrap them in ``asyncio.to_thread``.
    A single connection is shared across threads and guarded by a lock.
    """

    def __init__(self, db_path: str = "~/.claw/claw.db"):
        if db_path == ":memory:":
            self.db_path = db_path
        else:
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def conn(self) -> sqlite3.Connection:
        """Get database connection (lazy initialization)."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._create_tables()
        return self._conn

    def _create_tables(self):
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS core_facts (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS episodic_memories (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                summary TEXT NOT NULL,
                vector TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                status TEXT NOT NULL DEFAULT 'Geplant',
                priority TEXT NOT NULL DEFAULT 'Mittel',
                scheduled_at TEXT,
                created_at TEXT NOT NULL
            )
        """
        )
        self._conn.commit()

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # ═══════════════════════════════════════════════════════════
    # CORE FACTS
    # ═══════════════════════════════════════════════════════════

    def get_facts(self) -> str:
        """All facts as ``- key: value`` lines, ordered by key."""
        with self._lock:
            rows = self.conn.execute("SELECT key, value FROM core_facts ORDER BY key").fetchall()
        if not rows:
            return NO_FACTS
        return "\n".join(f"- {row['key']}: {row['value']}" for row in rows)

    def save_fact(self, key: str, value: str):
        """Insert or replace the fact stored under ``key``."""
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO core_facts (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
                (key, value),
            )
            self.conn.commit()

    def delete_fact(self, key: str) -> bool:
        """Delete a fact. Returns False if it did not exist."""
        with self._lock:
            cur = self.conn.execute("DELETE FROM core_facts WHERE key = ?", (key,))
            self.conn.commit()
            return cur.rowcount > 0

    # ═══════════════════════════════════════════════════════════
    # EPISODIC MEMORIES
    # ═══════════════════════════════════════════════════════════

    def save_episode(self, user_id: str, summary: str, vector: list[float]) -> EpisodicMemoryEntry:
        entry = EpisodicMemoryEntry(
            id=generate_id(),
            user_id=str(user_id),
            summary=summary,
            vector=list(vector),
            created_at=now_iso(),
        )
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO episodic_memories (id, user_id, summary, vector, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (entry.id, entry.user_id, entry.summary, json.dumps(entry.vector), entry.created_at),
            )
            self.conn.commit()
        return entry

    def all_episodes(self) -> list[EpisodicMemoryEntry]:
        """Every stored episode, across all users, oldest first."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT id, user_id, summary, vector, created_at FROM episodic_memories ORDER BY created_at"
            ).fetchall()
        return [
            EpisodicMemoryEntry(
                id=row["id"],
                user_id=row["user_id"],
                summary=row["summary"],
                vector=json.loads(row["vector"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def count_episodes(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM episodic_memories").fetchone()[0]

    # ═══════════════════════════════════════════════════════════
    # TASK BOARD
    # ═══════════════════════════════════════════════════════════

    def create_task(
        self,
        title: str,
        description: str = "",
        priority: str | None = None,
        scheduled_at: str | None = None,
    ) -> BoardTask:
        """Create a board task in the planned column.

        Raises:
            ValueError: If the priority is not one of TASK_PRIORITIES.
        """
        priority = priority or PRIORITY_MEDIUM
        if priority not in TASK_PRIORITIES:
            raise ValueError(f"Invalid priority '{priority}'. Use one of: {', '.join(TASK_PRIORITIES)}")

        task = BoardTask(
            id=generate_id(),
            title=title,
            description=description or "",
            status=STATUS_PLANNED,
            priority=priority,
            scheduled_at=scheduled_at,
            created_at=now_iso(),
        )
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO tasks (id, title, description, status, priority, scheduled_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    task.id,
                    task.title,
                    task.description,
                    task.status,
                    task.priority,
                    task.scheduled_at,
                    task.created_at,
                ),
            )
            self.conn.commit()
        return task

    def get_task(self, task_id: str) -> BoardTask | None:
        with self._lock:
            row = self.conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def list_tasks(self, statuses: tuple[str, ...] | None = None) -> list[BoardTask]:
        query = "SELECT * FROM tasks"
        params: tuple = ()
        if statuses:
            query += f" WHERE status IN ({','.join('?' * len(statuses))})"
            params = tuple(statuses)
        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def update_task_status(self, task_id: str, status: str) -> BoardTask | None:
        """Move a task to ``status``. Returns None if the task does not exist.

        Raises:
            ValueError: If the status is not one of TASK_STATUSES.
        """
        if status not in TASK_STATUSES:
            raise ValueError(f"Invalid status '{status}'. Use one of: {', '.join(TASK_STATUSES)}")
        with self._lock:
            cur = self.conn.execute("UPDATE tasks SET status = ? WHERE id = ?", (status, task_id))
            self.conn.commit()
            if cur.rowcount == 0:
                return None
        return self.get_task(task_id)

    def open_tasks_ranked(self, now: datetime | None = None) -> list[BoardTask]:
        """Open tasks: due ones first, then by due date (undated last), then priority."""
        priority_rank = {p: i for i, p in enumerate(TASK_PRIORITIES)}

        def sort_key(task: BoardTask):
            return (
                0 if task.is_due(now) else 1,
                task.scheduled_at is None,
                task.scheduled_at or "",
                priority_rank.get(task.priority, len(TASK_PRIORITIES)),
            )

        return sorted(self.list_tasks(OPEN_STATUSES), key=sort_key)

    def get_board_tasks(self, now: datetime | None = None) -> str:
        tasks = self.open_tasks_ranked(now)
        if not tasks:
            return "Keine offenen Aufgaben auf dem Board."
        return "\n\n".join(task.format() for task in tasks)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> BoardTask:
        return BoardTask(
            id=row["id"],
            title=row["title"],
            description=row["description"] or "",
            status=row["status"],
            priority=row["priority"],
            scheduled_at=row["scheduled_at"],
            created_at=row["created_at"],
        )
