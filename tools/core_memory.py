"""
Core memory tools: permanent facts about the user and the agent's persona.
"""

import re
from pathlib import Path

from tools import tool, tool_error

_KEY_RE = re.compile(r"^[a-z0-9_]+$")


@tool
def core_memory_save(key: str, value: str, ctx=None) -> dict:
    """Save a permanent, explicit core fact about the user. Use this for preferences,
    identity, rules, or important context that must always be available.
    Do not use this for conversational history.

    Args:
        key: A short, descriptive snake_case key (e.g. 'user_name', 'favorite_language').
        value: The explicit fact to store.
    """
    key = key.strip().lower().replace(" ", "_")
    if not _KEY_RE.match(key):
        return tool_error(f"Invalid key '{key}'", fix="Use lowercase letters, digits and underscores only.")
    ctx.agent.store.save_fact(key, value)
    return {"saved": True, "key": key, "value": value}


@tool
def core_memory_delete(key: str, ctx=None) -> dict:
    """Delete a core fact that is no longer accurate.

    Args:
        key: The snake_case key to delete.
    """
    if not ctx.agent.store.delete_fact(key):
        return tool_error(f"No core fact stored under '{key}'")
    return {"deleted": True, "key": key}


@tool
def update_soul(content: str, ctx=None) -> dict:
    """Rewrite the soul.md file completely to change your core personality, tone and
    formatting behavior. Use this only when the user explicitly asks to change how you
    behave, or at the end of a personality onboarding.

    Args:
        content: The full markdown content of the new soul.md.
    """
    if not content.strip():
        return tool_error("Refusing to write an empty soul.md")
    path = Path(ctx.agent.soul_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return {"updated": True, "path": str(path), "note": "The new personality is active from the next turn."}
