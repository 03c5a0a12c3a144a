"""
Scheduler tools. A scheduled task calls back into the agent for the user who
created it; the reply is delivered to that user.
"""

from scheduler import create_task
from tools import tool, tool_error


@tool
async def schedule_task(task_id: str, expression: str, description: str, ctx=None) -> dict:
    """Schedule a recurring or one-time task. When it fires, you will be asked to carry out
    the description and your answer is sent to the user.

    Args:
        task_id: Unique ID for this task. Reusing an ID replaces the existing task.
        expression: Cron expression ('0 9 * * *' = every day at 9:00) or a shortcut such as 'every 2h', 'in 30m', 'daily at 9:00', 'weekdays at 8am'.
        description: What to do when the task fires.
    """
    agent = ctx.agent
    tz = agent.config.get("owner", {}).get("timezone")
    try:
        task = create_task(task_id, description, expression, user_id=ctx.user_id, tz=tz)
    except (ValueError, KeyError) as e:
        return tool_error(f"Invalid schedule '{expression}': {e}", fix="Use a 5-field cron expression like '0 9 * * *'.")

    replaced = agent.scheduler.get(task.id) is not None
    agent.scheduler.add(task)
    return {
        "scheduled": True,
        "replaced": replaced,
        "task_id": task.id,
        "schedule": task.schedule.human_readable(),
        "next_run_at": task.next_run_at,
    }


@tool
def list_scheduled_tasks(ctx=None) -> dict:
    """List all scheduled tasks, including paused ones."""
    tasks = ctx.agent.scheduler.list(include_disabled=True)
    return {
        "count": len(tasks),
        "tasks": [
            {
                "task_id": t.id,
                "schedule": t.schedule.human_readable(),
                "description": t.description,
                "enabled": t.enabled,
                "next_run_at": t.next_run_at,
                "last_status": t.last_status,
            }
            for t in tasks
        ],
    }


@tool
async def delete_scheduled_task(task_id: str, ctx=None) -> dict:
    """Delete a scheduled task by its ID.

    Args:
        task_id: The ID of the task to delete.
    """
    if not ctx.agent.scheduler.remove(task_id):
        return tool_error(f"Task '{task_id}' not found", fix="Call list_scheduled_tasks to see valid IDs.")
    return {"deleted": True, "task_id": task_id}


@tool
async def pause_scheduled_task(task_id: str, paused: bool = True, ctx=None) -> dict:
    """Pause or resume a scheduled task without deleting it.

    Args:
        task_id: The ID of the task.
        paused: True to pause, False to resume.
    """
    task = ctx.agent.scheduler.update(task_id, enabled=not paused)
    if task is None:
        return tool_error(f"Task '{task_id}' not found", fix="Call list_scheduled_tasks to see valid IDs.")
    return {"task_id": task.id, "enabled": task.enabled, "next_run_at": task.next_run_at}


@tool
async def run_scheduled_task_now(task_id: str, ctx=None) -> dict:
    """Run a scheduled task right away, outside its schedule. The result is sent to the
    task's user when it finishes.

    Args:
        task_id: The ID of the task to run.
    """
    result = ctx.agent.scheduler.trigger(task_id)
    if "error" in result:
        return tool_error(result["error"], fix="Call list_scheduled_tasks to see valid IDs.")
    return result


@tool
def scheduled_task_runs(task_id: str, limit: int = 5, ctx=None) -> dict:
    """Show the most recent runs of a scheduled task.

    Args:
        task_id: The ID of the task.
        limit: How many runs to show, newest last.
    """
    scheduler = ctx.agent.scheduler
    if scheduler.get(task_id) is None:
        return tool_error(f"Task '{task_id}' not found", fix="Call list_scheduled_tasks to see valid IDs.")
    runs = scheduler.get_runs(task_id, limit=max(1, limit))
    return {
        "task_id": task_id,
        "runs": [
            {
                "started_at": r.started_at,
                "status": r.status,
                "duration_ms": r.duration_ms,
                "result": r.result,
                "error": r.error,
            }
            for r in runs
        ],
    }
