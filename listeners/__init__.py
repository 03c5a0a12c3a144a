"""
Listeners - Input channels for the agent.

Listeners receive messages from their source and route them to the agent.
Each is a plain async function taking ``(agent, config)`` that:
1. Waits for input from its channel
2. Runs it through the agent (chat channels via ``InboundHandler``)
3. Delivers the reply

Usage:
    from listeners.cli import run_cli_listener
    from listeners.proactive import run_proactive_listener

    await asyncio.gather(
        run_cli_listener(agent, config),
        run_proactive_listener(agent, config),
    )
"""

from listeners.cli import run_cli_listener
from listeners.inbound import InboundHandler
from listeners.proactive import NotepadPoller, run_heartbeat, run_proactive_listener

__all__ = [
    "InboundHandler",
    "NotepadPoller",
    "run_cli_listener",
    "run_heartbeat",
    "run_proactive_listener",
]
