"""
Terminal tool.

Commands must start with an allowlisted prefix and are only run after the
user approves them through the approval gate.
"""

import asyncio
import logging
from pathlib import Path

from approval import ApprovalPendingError
from tools import tool, tool_error

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
MAX_OUTPUT = 2000

DEFAULT_ALLOWED_PREFIXES = [
    "npm ", "ls", "dir", "mkdir ", "cd ", "pwd", "git ",
    "cat ", "type ", "echo ", "ps ", "node ", "python ",
]


def is_allowed(command: str, prefixes: list[str]) -> bool:
    normalized = command.strip().lower()
    return any(normalized.startswith(p.strip().lower()) for p in prefixes)


def _truncate(text: str) -> str:
    if len(text) <= MAX_OUTPUT:
        return text
    return text[:MAX_OUTPUT] + "\n...[TRUNCATED]"


async def run_command(command: str, cwd: str, timeout: float = DEFAULT_TIMEOUT) -> dict:
    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return tool_error(f"Command timed out after {timeout:g} seconds", command=command)

    result = {
        "exit_code": proc.returncode,
        "stdout": _truncate(stdout.decode("utf-8", errors="replace")),
        "stderr": _truncate(stderr.decode("utf-8", errors="replace")),
    }
    if proc.returncode != 0:
        result["error"] = f"Command exited with status {proc.returncode}"
    return result


@tool
async def execute_terminal(command: str, cwd: str = None, ctx=None) -> dict:
    """Execute a command in the host machine's terminal, e.g. to install packages, run
    builds or inspect the file system. The user is asked to approve the command
    before it runs. Do not assume it ran if they deny it.

    Args:
        command: The terminal command to run (e.g. 'npm install', 'mkdir foo').
        cwd: Working directory, defaults to the workspace root.
    """
    agent = ctx.agent
    terminal_config = agent.config.get("terminal", {})
    prefixes = terminal_config.get("allowed_prefixes", DEFAULT_ALLOWED_PREFIXES)

    if not is_allowed(command, prefixes):
        logger.warning("Blocked command not in allowlist: %s", command)
        return tool_error(
            f"Command '{command}' is not in the allowlist",
            fix=f"Only commands starting with one of {', '.join(p.strip() for p in prefixes)} are permitted.",
        )

    async def notify(description: str):
        await ctx.send_message(
            f"⚠️ Terminal Execution Request\n\nI want to run:\n`{description}`\n\n"
            "Approve? Reply with /yes or /no."
        )

    try:
        approved = await agent.approvals.request_approval(ctx.user_id, command, notify=notify)
    except ApprovalPendingError as e:
        return tool_error(str(e), fix="Wait for the user to answer the open request first.")

    if not approved:
        return tool_error("User denied execution", command=command)

    await ctx.send_message(f"⚙️ Executing:\n`{command}`")
    workdir = Path(cwd or agent.workspace_root).expanduser()
    return await run_command(command, str(workdir), terminal_config.get("timeout", DEFAULT_TIMEOUT))
