"""
Clock tool.
"""

from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tools import tool


def _timezone(ctx) -> ZoneInfo | None:
    name = None
    if ctx is not None and getattr(ctx, "agent", None) is not None:
        name = ctx.agent.config.get("owner", {}).get("timezone")
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        return None


@tool
def get_current_time(ctx=None) -> dict:
    """Returns the current local date and time. Use this whenever the user asks about
    the time, date, day of the week, or anything time-related."""
    tz = _timezone(ctx)
    now = datetime.now(tz).astimezone(tz)
    return {
        "iso": now.isoformat(),
        "local": now.strftime("%A, %d. %B %Y %H:%M:%S %Z").strip(),
        "weekday": now.strftime("%A"),
        "timezone": str(now.tzinfo),
    }
