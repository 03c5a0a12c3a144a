"""
Configuration loader for Claw.

Loads configuration from YAML file with environment variable substitution.
"""

import os
import re
from pathlib import Path

import yaml


def load_config(config_path: str = None) -> dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to config.yaml in current dir.

    Returns:
        Configuration dict with env vars substituted.
    """
    if config_path is None:
        config_path = os.environ.get("CLAW_CONFIG", "config.yaml")

    path = Path(config_path)
    if not path.exists():
        return _default_config()

    with open(path, encoding="utf-8") as f:
        content = f.read()

    # Substitute environment variables: ${VAR_NAME} or ${VAR_NAME:default}
    content = _substitute_env_vars(content)

    config = yaml.safe_load(content) or {}

    return _merge_with_defaults(config)


def _substitute_env_vars(content: str) -> str:
    """Replace ${VAR} and ${VAR:default} with environment values."""

    def replace(match):
        var_expr = match.group(1)
        if ":" in var_expr:
            var_name, default = var_expr.split(":", 1)
        else:
            var_name, default = var_expr, ""
        return os.environ.get(var_name, default)

    pattern = r"\$\{([^}]+)\}"
    return re.sub(pattern, replace, content)


def _split_ids(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _default_config() -> dict:
    """Return minimal default configuration."""
    owner_id = os.environ.get("OWNER_ID", "owner")
    return {
        "owner": {
            "id": owner_id,
            "allowed_users": _split_ids(os.environ.get("ALLOWED_USER_IDS", owner_id)),
            "timezone": os.environ.get("OWNER_TIMEZONE", "Europe/Berlin"),
        },
        "channels": {
            "cli": {"enabled": True},
            "api": {
                "enabled": True,
                "host": "0.0.0.0",
                "port": int(os.environ.get("PORT", "5000")),
            },
        },
        "agent": {
            "name": os.environ.get("AGENT_NAME", "Claw"),
            "max_iterations": 10,
            "soul_path": "soul.md",
            "skills_dir": "skills",
        },
        "approval": {
            "timeout": 300,
        },
        "router": {
            "history_threshold": 10,
        },
        "llm": {},
        "memory": {
            "db_path": "~/.claw/claw.db",
            "top_k": 3,
            "relevance_threshold": 0.3,
            "embeddings": "litellm",
        },
        "dashboard": {
            "notepad_path": "~/.claw/notepad.json",
            "poll_interval": 5,
        },
        "workspace": {
            "root": os.environ.get("CLAW_WORKSPACE", "."),
        },
        "terminal": {
            "allowed_prefixes": [
                "npm ", "ls", "dir", "mkdir ", "cd ", "pwd", "git ",
                "cat ", "type ", "echo ", "ps ", "node ", "python ",
            ],
            "timeout": 30,
        },
        "mcp": {
            "config_path": "mcp.json",
        },
        "scheduler": {
            "store_dir": "~/.claw/scheduler",
        },
        "heartbeat": {
            "enabled": True,
            "log_interval": 3600,
            "notify_interval": 12 * 3600,
        },
    }


def _merge_with_defaults(config: dict) -> dict:
    """Merge user config with defaults."""
    defaults = _default_config()

    def merge(base, override):
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = merge(result[key], value)
            else:
                result[key] = value
        return result

    return merge(defaults, config)


def get_channel_config(config: dict, channel: str) -> dict:
    """Get configuration for a specific channel.

    Args:
        config: Full configuration dict
        channel: Channel name (cli, api)

    Returns:
        Channel configuration dict, or empty dict if not found.
    """
    return config.get("channels", {}).get(channel, {})


def is_channel_enabled(config: dict, channel: str) -> bool:
    """Check if a channel is enabled."""
    channel_config = get_channel_config(config, channel)
    return channel_config.get("enabled", False)


def allowed_users(config: dict) -> list[str]:
    """User ids permitted to talk to the agent. The first one is the primary owner."""
    owner = config.get("owner", {})
    users = list(owner.get("allowed_users") or [])
    if not users and owner.get("id"):
        users = [owner["id"]]
    return [str(u) for u in users]
