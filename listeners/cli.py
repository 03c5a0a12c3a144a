"""
CLI Listener - Command-line interface input with styled output.

REPL for the primary owner. Each line is handled in its own task so the
prompt stays usable while a turn runs, which is what lets the owner answer
an approval request with /yes or /no mid-turn.
"""

import asyncio
import logging
import sys

from listeners.inbound import InboundHandler
from utils.console import VerboseLevel, console

logger = logging.getLogger(__name__)

QUIT_WORDS = ("quit", "exit", "q")


def _handle_verbose_command(command: str):
    parts = command.lower().split()
    if len(parts) == 1:
        level = console.get_verbose()
        console.system(f"Verbose level: {level.name.lower()} ({level.value})")
        console.system("Usage: /verbose [off|light|deep]")
        return
    console.set_verbose(parts[1])
    console.system(f"Verbose output: {console.get_verbose().name.lower()}")


async def _process_line(handler: InboundHandler, user_id: str, line: str):
    reply = await handler.handle_text(user_id, line)
    if reply:
        console.agent(reply, prefix=handler.agent.name)


async def run_cli_listener(agent, config: dict = None):
    """Run the REPL until quit or EOF.

    Args:
        agent: The Agent instance
        config: Configuration dict (unused; listeners share one signature)
    """
    user_id = agent.primary_owner or "cli"
    handler = InboundHandler(agent, channel="cli")
    pending: set[asyncio.Task] = set()

    console.attach(agent)
    if console.get_verbose() >= VerboseLevel.LIGHT:
        console.system(f"Verbose mode: {console.get_verbose().name.lower()} (/verbose off to hide)")
    console.system(f"\n{agent.name} is ready. Type 'quit' to exit.\n")

    while True:
        print(console.user_prompt(), end="", file=sys.stderr, flush=True)
        try:
            line = await asyncio.to_thread(input)
        except EOFError:
            console.system("\nGoodbye!")
            break
        except KeyboardInterrupt:
            print("", file=sys.stderr)
            continue

        line = line.strip()
        if not line:
            continue
        if line.lower() in QUIT_WORDS:
            console.system("Goodbye!")
            break
        if line.lower().startswith("/verbose"):
            _handle_verbose_command(line)
            continue

        task = asyncio.create_task(_process_line(handler, user_id, line))
        pending.add(task)
        task.add_done_callback(pending.discard)

    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
