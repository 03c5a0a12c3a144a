"""
Terminal output for the Claw CLI.

User and agent messages, system notices, and an optional trace of what the
agent is doing (tool calls, model routing, scheduled runs).

Verbose levels (CLAW_VERBOSE=0|1|2 or off|light|deep):
    - OFF: messages only
    - LIGHT: tool names, turn summaries, scheduler runs [default]
    - DEEP: tool inputs and results as well

Colors: user green, agent cyan, trace yellow/dim, errors red, system blue.
Set NO_COLOR to disable.
"""

import os
import sys
from enum import IntEnum
from typing import Any


class VerboseLevel(IntEnum):
    OFF = 0
    LIGHT = 1
    DEEP = 2


_LEVEL_NAMES = {
    "0": VerboseLevel.OFF,
    "off": VerboseLevel.OFF,
    "false": VerboseLevel.OFF,
    "1": VerboseLevel.LIGHT,
    "light": VerboseLevel.LIGHT,
    "on": VerboseLevel.LIGHT,
    "true": VerboseLevel.LIGHT,
    "2": VerboseLevel.DEEP,
    "deep": VerboseLevel.DEEP,
    "all": VerboseLevel.DEEP,
}


def parse_verbose_level(value: str | int | VerboseLevel) -> VerboseLevel:
    """Parse "off"/"light"/"deep", 0-2, or a VerboseLevel. Unknown values mean OFF."""
    if isinstance(value, VerboseLevel):
        return value
    if isinstance(value, int):
        return VerboseLevel(min(max(value, 0), 2))
    return _LEVEL_NAMES.get(str(value).lower().strip(), VerboseLevel.OFF)


class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    BRIGHT_BLACK = "\033[90m"


def _supports_color() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    if not hasattr(sys.stdout, "isatty") or not sys.stdout.isatty():
        return False
    return os.environ.get("TERM") != "dumb"


class Console:
    """
    Styled stderr output. Import the module-level ``console`` instance.

        from utils.console import console
        console.agent("Hi there!", prefix="Claw")
    """

    def __init__(self):
        self._verbose_level = parse_verbose_level(os.environ.get("CLAW_VERBOSE", "1"))
        self._use_color = _supports_color()

    def set_verbose(self, level: VerboseLevel | int | str):
        self._verbose_level = parse_verbose_level(level)

    def get_verbose(self) -> VerboseLevel:
        return self._verbose_level

    def _colorize(self, text: str, *codes: str) -> str:
        if not self._use_color:
            return text
        return f"{''.join(codes)}{text}{Colors.RESET}"

    def _print(self, text: str):
        print(text, file=sys.stderr, flush=True)

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def banner(self, text: str, width: int = 40):
        self._print(self._colorize(text, Colors.BOLD, Colors.BLUE))
        self._print(self._colorize("=" * width, Colors.DIM, Colors.BLUE))

    def user_prompt(self) -> str:
        return self._colorize("> ", Colors.BOLD, Colors.GREEN)

    def agent(self, text: str, prefix: str = "Claw"):
        styled_prefix = self._colorize(f"{prefix}: ", Colors.BOLD, Colors.CYAN)
        self._print(f"{styled_prefix}{text}\n")

    def approval(self, text: str):
        """Approval requests stand out so they are not missed in the trace."""
        self._print(self._colorize(text, Colors.BOLD, Colors.MAGENTA))

    def system(self, text: str):
        self._print(self._colorize(text, Colors.BLUE))

    def error(self, text: str):
        self._print(self._colorize(f"Error: {text}", Colors.BOLD, Colors.RED))

    def warning(self, text: str):
        self._print(self._colorize(f"Warning: {text}", Colors.YELLOW))

    # -------------------------------------------------------------------------
    # Trace
    # -------------------------------------------------------------------------

    def verbose(self, text: str, level: VerboseLevel = VerboseLevel.LIGHT):
        if self._verbose_level < level:
            return
        if level == VerboseLevel.LIGHT:
            self._print(self._colorize(f"  {text}", Colors.YELLOW))
        else:
            self._print(self._colorize(f"    {text}", Colors.DIM, Colors.BRIGHT_BLACK))

    def tool_start(self, name: str, inputs: dict[str, Any] = None):
        self.verbose(f"[tool] {name}")
        if inputs and self._verbose_level >= VerboseLevel.DEEP:
            self.verbose(f"input: {self._summarize_value(inputs, 80)}", VerboseLevel.DEEP)

    def tool_end(self, name: str, result: Any = None, duration_ms: int = None):
        timing = f" ({duration_ms}ms)" if duration_ms else ""
        self.verbose(f"[tool] {name} done{timing}")
        if result and self._verbose_level >= VerboseLevel.DEEP:
            self.verbose(f"result: {self._summarize_value(result, 80)}", VerboseLevel.DEEP)

    def turn_start(self, user_id: str, trigger: str, model: str):
        self.verbose(f"[{trigger}] user {user_id} -> {model}")

    def turn_end(self, user_id: str, status: str, iterations: int, duration_ms: int):
        self.verbose(f"[turn] user {user_id} {status} after {iterations} call(s) ({duration_ms}ms)")

    def activity(self, channel: str, detail: str):
        """One-line notice for background sources (notepad, scheduler, api)."""
        self.verbose(f"[{channel}] {detail}")

    def _summarize_value(self, v: Any, max_len: int = 60) -> str:
        if v is None:
            return "null"
        if isinstance(v, str):
            return f'"{v[:max_len - 3]}..."' if len(v) > max_len else f'"{v}"'
        if isinstance(v, dict):
            parts = ", ".join(f"{k}={self._summarize_value(val, 30)}" for k, val in v.items())
            if len(parts) > max_len:
                parts = parts[:max_len - 3] + "..."
            return "{" + parts + "}"
        if isinstance(v, (list, tuple)):
            if len(v) > 3:
                return f"[...{len(v)} items]"
            return "[" + ", ".join(self._summarize_value(x, 20) for x in v) + "]"
        return str(v)[:max_len]

    def attach(self, agent):
        """Subscribe to an agent's events."""
        agent.on("tool_start", lambda e: self.tool_start(e.get("name", "?"), e.get("input")))
        agent.on("tool_end", lambda e: self.tool_end(e.get("name", "?"), e.get("result"), e.get("duration_ms")))
        agent.on("turn_start", lambda e: self.turn_start(e["user_id"], e["trigger"], e["model"]))
        agent.on("turn_end", lambda e: self.turn_end(e["user_id"], e["status"], e["iterations"], e["duration_ms"]))


console = Console()
