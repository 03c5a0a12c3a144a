"""
Scheduler for cron callbacks into the agent.

Three kinds of schedule:
- "at": one run at a timestamp
- "every": fixed interval ("30s", "5m", "2h", "1d")
- "cron": 5-field cron expression, evaluated in the task's timezone

Tasks persist as JSON under the scheduler store directory and each run is
appended to ``runs/<task_id>.jsonl``. When a task fires, the executor runs
an agent turn for the task's user (trigger "cron"); the reply goes back to
that user.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable, Literal
from zoneinfo import ZoneInfo

from croniter import croniter

logger = logging.getLogger(__name__)

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
MAX_RUN_HISTORY = 1000


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_interval(interval: str) -> int:
    """"5m" -> 300. Raises ValueError for anything else."""
    interval = interval.strip().lower()
    unit = interval[-1:]
    if unit not in _UNIT_SECONDS or not interval[:-1].isdigit():
        raise ValueError(f"Invalid interval '{interval}', expected e.g. 30s, 5m, 2h, 1d")
    seconds = int(interval[:-1]) * _UNIT_SECONDS[unit]
    if seconds <= 0:
        raise ValueError("Interval must be positive")
    return seconds


# =============================================================================
# Data Models
# =============================================================================

@dataclass
class Schedule:
    """
    When a task runs.

        Schedule(kind="at", at="2025-01-15T09:00:00", tz="Europe/Berlin")
        Schedule(kind="every", every="5m")
        Schedule(kind="cron", cron="0 9 * * 1-5", tz="Europe/Berlin")
    """
    kind: Literal["at", "every", "cron"]
    at: str | None = None
    every: str | None = None
    cron: str | None = None
    tz: str | None = None
    anchor: str | None = None

    def __post_init__(self):
        if self.kind == "at":
            if not self.at:
                raise ValueError("Schedule kind='at' requires 'at' timestamp")
            _parse_iso(self.at)
        elif self.kind == "every":
            if not self.every:
                raise ValueError("Schedule kind='every' requires 'every' interval")
            parse_interval(self.every)
        elif self.kind == "cron":
            if not self.cron or not croniter.is_valid(self.cron):
                raise ValueError(f"Invalid cron expression '{self.cron}'")
        else:
            raise ValueError(f"Unknown schedule kind '{self.kind}'")
        if self.tz:
            ZoneInfo(self.tz)

    @property
    def tzinfo(self):
        return ZoneInfo(self.tz) if self.tz else timezone.utc

    def next_run(self, after: datetime = None) -> datetime | None:
        """Next run strictly after ``after`` (default now), in UTC. None if never again."""
        after = after or datetime.now(timezone.utc)
        if after.tzinfo is None:
            after = after.replace(tzinfo=timezone.utc)

        if self.kind == "at":
            target = _parse_iso(self.at)
            if target.tzinfo is None:
                target = target.replace(tzinfo=self.tzinfo)
            return target.astimezone(timezone.utc) if target > after else None

        if self.kind == "every":
            step = parse_interval(self.every)
            anchor = self._anchor()
            if after < anchor:
                return anchor
            periods = int((after - anchor).total_seconds() // step) + 1
            return anchor + timedelta(seconds=periods * step)

        local_after = after.astimezone(self.tzinfo)
        return croniter(self.cron, local_after).get_next(datetime).astimezone(timezone.utc)

    def _anchor(self) -> datetime:
        if self.anchor:
            anchor = _parse_iso(self.anchor)
            return anchor if anchor.tzinfo else anchor.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    def human_readable(self) -> str:
        if self.kind == "at":
            return f"once at {self.at}"
        if self.kind == "every":
            return f"every {self.every}"
        tz_str = f" ({self.tz})" if self.tz else ""
        return f"cron: {self.cron}{tz_str}"


@dataclass
class ScheduledTask:
    """A scheduled agent callback for one user."""
    id: str
    description: str
    schedule: Schedule
    user_id: str = ""
    enabled: bool = True

    next_run_at: str | None = None
    last_run_at: str | None = None
    last_status: str | None = None  # ok, error
    last_error: str | None = None
    last_duration_ms: int | None = None
    run_count: int = 0

    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()
        if not self.next_run_at:
            self.refresh_next_run()

    def refresh_next_run(self):
        next_time = self.schedule.next_run() if self.enabled else None
        self.next_run_at = next_time.isoformat() if next_time else None

    def is_due(self, now: datetime) -> bool:
        if not self.enabled or not self.next_run_at:
            return False
        try:
            return _parse_iso(self.next_run_at) <= now
        except ValueError:
            return False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ScheduledTask":
        data = dict(data)
        schedule = Schedule(**data.pop("schedule"))
        return cls(schedule=schedule, **data)


@dataclass
class RunRecord:
    """One execution of a scheduled task."""
    task_id: str
    started_at: str
    completed_at: str | None = None
    status: str = "running"  # running, ok, error
    result: str | None = None
    error: str | None = None
    duration_ms: int | None = None


# =============================================================================
# Persistence
# =============================================================================

class SchedulerStore:
    """
    JSON persistence with atomic writes.

    Layout under ``base_dir``:
    - tasks.json: all tasks keyed by id
    - runs/<task_id>.jsonl: run history, newest last
    """

    def __init__(self, base_dir: str = None):
        self.base_dir = Path(os.path.expanduser(base_dir or "~/.claw/scheduler"))
        self.tasks_file = self.base_dir / "tasks.json"
        self.runs_dir = self.base_dir / "runs"
        self.runs_dir.mkdir(parents=True, exist_ok=True)

    def load_tasks(self) -> dict[str, ScheduledTask]:
        if not self.tasks_file.exists():
            return {}
        try:
            with open(self.tasks_file, encoding="utf-8") as f:
                data = json.load(f)
            return {task_id: ScheduledTask.from_dict(raw) for task_id, raw in data.items()}
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            backup = self.tasks_file.with_suffix(".json.bak")
            logger.error("Scheduler store unreadable (%s), moved to %s", e, backup)
            self.tasks_file.replace(backup)
            return {}

    def save_tasks(self, tasks: dict[str, ScheduledTask]):
        data = {task_id: task.to_dict() for task_id, task in tasks.items()}
        temp_file = self.tasks_file.with_suffix(".json.tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        temp_file.replace(self.tasks_file)

    def append_run(self, record: RunRecord):
        run_file = self.runs_dir / f"{record.task_id}.jsonl"
        with open(run_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(record)) + "\n")
        self._prune_runs(run_file)

    def get_runs(self, task_id: str, limit: int = 20) -> list[RunRecord]:
        run_file = self.runs_dir / f"{task_id}.jsonl"
        if not run_file.exists():
            return []
        runs = []
        with open(run_file, encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    runs.append(RunRecord(**json.loads(line)))
                except (json.JSONDecodeError, TypeError):
                    continue
        return runs[-limit:]

    def _prune_runs(self, run_file: Path):
        with open(run_file, encoding="utf-8") as f:
            lines = f.readlines()
        if len(lines) > MAX_RUN_HISTORY:
            with open(run_file, "w", encoding="utf-8") as f:
                f.writelines(lines[-MAX_RUN_HISTORY:])


# =============================================================================
# Scheduler Engine
# =============================================================================

Executor = Callable[[ScheduledTask], Awaitable[str]]


class Scheduler:
    """
    Single timer loop that sleeps until the earliest due task.

        scheduler = Scheduler(executor=run_task, store=SchedulerStore(path))
        scheduler.add(create_task("standup", "Summarize the board", "0 9 * * 1-5", user_id="42"))
        await scheduler.start()
    """

    def __init__(self, executor: Executor = None, store: SchedulerStore = None, idle_interval: float = 60):
        self.executor = executor
        self.store = store or SchedulerStore()
        self.idle_interval = idle_interval
        self.tasks: dict[str, ScheduledTask] = self.store.load_tasks()
        self._running = False
        self._timer_task: asyncio.Task | None = None
        self._running_tasks: set[str] = set()
        self._background: set[asyncio.Task] = set()
        self._wake = asyncio.Event()

    # -------------------------------------------------------------------------
    # Task Management API
    # -------------------------------------------------------------------------

    def add(self, task: ScheduledTask) -> ScheduledTask:
        """Add or replace a task."""
        self.tasks[task.id] = task
        self._persist()
        return task

    def update(self, task_id: str, **updates) -> ScheduledTask | None:
        task = self.tasks.get(task_id)
        if not task:
            return None
        for key, value in updates.items():
            if hasattr(task, key):
                setattr(task, key, value)
        if "schedule" in updates or "enabled" in updates:
            task.refresh_next_run()
        self._persist()
        return task

    def remove(self, task_id: str) -> bool:
        if self.tasks.pop(task_id, None) is None:
            return False
        self._persist()
        return True

    def get(self, task_id: str) -> ScheduledTask | None:
        return self.tasks.get(task_id)

    def list(self, include_disabled: bool = False, user_id: str | None = None) -> list[ScheduledTask]:
        tasks = [
            t for t in self.tasks.values()
            if (include_disabled or t.enabled) and (user_id is None or t.user_id == str(user_id))
        ]
        return sorted(tasks, key=lambda t: t.next_run_at or "")

    def get_runs(self, task_id: str, limit: int = 20) -> list[RunRecord]:
        return self.store.get_runs(task_id, limit)

    async def run_now(self, task_id: str) -> dict:
        """Run a task immediately, regardless of its schedule, and wait for it."""
        task, refusal = self._runnable(task_id)
        if refusal:
            return refusal
        return await self._spawn(task)

    def trigger(self, task_id: str) -> dict:
        """Start a task immediately in the background."""
        task, refusal = self._runnable(task_id)
        if refusal:
            return refusal
        self._spawn(task)
        return {"status": "started", "task_id": task_id}

    def _runnable(self, task_id: str) -> tuple[ScheduledTask | None, dict | None]:
        task = self.tasks.get(task_id)
        if not task:
            return None, {"error": f"Task {task_id} not found"}
        if task_id in self._running_tasks:
            return None, {"status": "skipped", "reason": "already running"}
        return task, None

    def _spawn(self, task: ScheduledTask) -> asyncio.Task:
        # Mark before spawning so the loop cannot start it twice
        self._running_tasks.add(task.id)
        bg = asyncio.create_task(self._execute_task(task))
        self._background.add(bg)
        bg.add_done_callback(self._background.discard)
        return bg

    def _persist(self):
        self.store.save_tasks(self.tasks)
        self._wake.set()

    # -------------------------------------------------------------------------
    # Scheduler Loop
    # -------------------------------------------------------------------------

    async def start(self):
        if self._running:
            return
        self._running = True
        self._timer_task = asyncio.create_task(self._run_loop())

    async def stop(self):
        self._running = False
        if self._timer_task:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

    async def _run_loop(self):
        while self._running:
            try:
                next_wake = self._next_wake_time()
                if next_wake is None:
                    timeout = self.idle_interval
                else:
                    timeout = min(max(0.0, (next_wake - datetime.now(timezone.utc)).total_seconds()), 86400)

                self._wake.clear()
                if timeout > 0:
                    try:
                        # Woken early when tasks are added or changed
                        await asyncio.wait_for(self._wake.wait(), timeout=timeout)
                        continue
                    except asyncio.TimeoutError:
                        pass
                else:
                    await asyncio.sleep(0)

                self._run_due_tasks()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Scheduler error: %s", e)
                await asyncio.sleep(self.idle_interval)

    def _next_wake_time(self) -> datetime | None:
        next_times = []
        for task in self.tasks.values():
            if task.enabled and task.next_run_at:
                try:
                    next_times.append(_parse_iso(task.next_run_at))
                except ValueError:
                    continue
        return min(next_times) if next_times else None

    def _run_due_tasks(self):
        now = datetime.now(timezone.utc)
        for task in list(self.tasks.values()):
            if not task.is_due(now) or task.id in self._running_tasks:
                continue
            self._spawn(task)

    async def _execute_task(self, task: ScheduledTask) -> dict:
        started_at = datetime.now(timezone.utc)
        record = RunRecord(task_id=task.id, started_at=started_at.isoformat())
        logger.info("Running scheduled task %s: %s", task.id, task.description)

        try:
            if self.executor:
                result = await self.executor(task)
            else:
                result = f"No executor configured. Task: {task.description}"
            record.status = task.last_status = "ok"
            record.result = str(result)[:500]
            task.last_error = None
            outcome = {"status": "ok", "result": result}
        except Exception as e:
            logger.error("Scheduled task %s failed: %s", task.id, e)
            record.status = task.last_status = "error"
            record.error = task.last_error = str(e)
            outcome = {"status": "error", "error": str(e)}
        finally:
            completed_at = datetime.now(timezone.utc)
            duration_ms = int((completed_at - started_at).total_seconds() * 1000)
            record.completed_at = task.last_run_at = completed_at.isoformat()
            record.duration_ms = task.last_duration_ms = duration_ms
            task.run_count += 1

            task.refresh_next_run()
            if task.schedule.kind == "at" and task.next_run_at is None:
                task.enabled = False

            await asyncio.to_thread(self.store.save_tasks, self.tasks)
            await asyncio.to_thread(self.store.append_run, record)
            self._running_tasks.discard(task.id)

        return outcome


# =============================================================================
# Helper Functions
# =============================================================================

def parse_schedule(spec: str | dict, tz: str | None = None) -> Schedule:
    """
    Parse a schedule specification.

    Accepts a dict of Schedule fields, or one of:
        "in 5m"             one run, relative
        "at 2025-01-15T09:00"
        "every 2h"
        "daily at 9:00", "weekdays at 9am"
        "hourly", "daily"
        "0 9 * * *"         raw cron

    Raises:
        ValueError: If the specification cannot be parsed.
    """
    if isinstance(spec, dict):
        data = dict(spec)
        data.setdefault("tz", tz)
        return Schedule(**data)

    text = spec.strip()
    lowered = text.lower()

    if lowered.startswith("in "):
        seconds = parse_interval(lowered[3:])
        run_at = datetime.now(timezone.utc) + timedelta(seconds=seconds)
        return Schedule(kind="at", at=run_at.isoformat())
    if lowered.startswith("at "):
        return Schedule(kind="at", at=text[3:].strip(), tz=tz)
    if lowered.startswith("every "):
        return Schedule(kind="every", every=lowered[6:].strip())
    if lowered.startswith("daily at "):
        hour, minute = _parse_time(lowered[9:])
        return Schedule(kind="cron", cron=f"{minute} {hour} * * *", tz=tz)
    if lowered.startswith("weekdays at "):
        hour, minute = _parse_time(lowered[12:])
        return Schedule(kind="cron", cron=f"{minute} {hour} * * 1-5", tz=tz)
    if lowered == "hourly":
        return Schedule(kind="cron", cron="0 * * * *", tz=tz)
    if lowered == "daily":
        return Schedule(kind="cron", cron="0 0 * * *", tz=tz)
    return Schedule(kind="cron", cron=text, tz=tz)


def _parse_time(time_str: str) -> tuple[int, int]:
    """"9:00", "9am", "2:30pm" -> (hour, minute)."""
    time_str = time_str.lower().strip()
    is_pm = time_str.endswith("pm")
    is_am = time_str.endswith("am")
    time_str = time_str.removesuffix("am").removesuffix("pm").strip()

    if ":" in time_str:
        hour_part, minute_part = time_str.split(":", 1)
        hour, minute = int(hour_part), int(minute_part)
    else:
        hour, minute = int(time_str), 0

    if is_pm and hour < 12:
        hour += 12
    elif is_am and hour == 12:
        hour = 0
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid time '{time_str}'")
    return hour, minute


def create_task(
    task_id: str | None,
    description: str,
    schedule: str | dict | Schedule,
    user_id: str = "",
    tz: str | None = None,
) -> ScheduledTask:
    """
    Build a ScheduledTask.

        create_task("standup", "Summarize my board", "weekdays at 9:00", user_id="42")
        create_task(None, "Check the build", "every 30m")
    """
    if not isinstance(schedule, Schedule):
        schedule = parse_schedule(schedule, tz=tz)
    return ScheduledTask(
        id=task_id or uuid.uuid4().hex[:8],
        description=description,
        schedule=schedule,
        user_id=str(user_id),
    )
