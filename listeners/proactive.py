"""
Proactive listeners: the dashboard notepad poller and the heartbeat.

The dashboard writes directives to the notepad file and stamps a new ``ts``.
The poller compares timestamps every ``dashboard.poll_interval`` seconds and
turns each new directive into an agent turn for the primary owner. The
timestamp seen on the first read only initializes the poller, so a directive
left over from before a restart is not run again.
"""

import asyncio
import logging

from agent import NOTEPAD_DIRECTIVE_PREFIX, TRIGGER_NOTEPAD, AgentError
from utils.console import console

logger = logging.getLogger(__name__)

OUTPUT_PREFIX = "🖥️ Dashboard Task Output:\n"
HEARTBEAT_MESSAGE = "💓 System check: {name} background processes are running."


class NotepadPoller:
    """Detects new notepad directives and runs them as turns."""

    def __init__(self, agent, poll_interval: float = 5):
        self.agent = agent
        self.poll_interval = poll_interval
        self._last_ts: str | None = None
        self._initialized = False

    async def check_once(self) -> str | None:
        """Poll once. Returns the reply when a new directive was run."""
        text, ts = await asyncio.to_thread(self.agent.notepad.snapshot)
        if not self._initialized:
            self._initialized = True
            self._last_ts = ts
            return None
        if ts is None or ts == self._last_ts:
            return None
        self._last_ts = ts

        if not text.strip():
            return None
        user_id = self.agent.primary_owner
        if not user_id:
            logger.warning("New notepad directive but no owner configured, skipping")
            return None

        logger.info("New directive from dashboard: %s", text[:50])
        console.activity("notepad", f"new directive: {text[:50]}")

        context = self.agent.make_context(user_id, trigger=TRIGGER_NOTEPAD)
        send = context.send_message

        async def send_with_prefix(message: str):
            await send(f"{OUTPUT_PREFIX}{message}")

        context.send_message = send_with_prefix
        reply = await self.agent.handle(f"{NOTEPAD_DIRECTIVE_PREFIX}{text}", context)
        await context.send_message(reply)
        return reply

    async def run(self):
        while True:
            try:
                await self.check_once()
            except AgentError as e:
                logger.error("Notepad directive failed: %s", e)
            except Exception as e:
                logger.exception("Notepad poll error: %s", e)
            await asyncio.sleep(self.poll_interval)


async def run_heartbeat(agent, log_interval: float = 3600, notify_interval: float = 43200):
    """Log a liveness line every ``log_interval`` and message the owners every ``notify_interval``."""
    loop = asyncio.get_running_loop()
    next_log = loop.time() + log_interval
    next_notify = loop.time() + notify_interval
    while True:
        await asyncio.sleep(max(0.0, min(next_log, next_notify) - loop.time()))
        now = loop.time()
        if now >= next_log:
            logger.info("Heartbeat: %s is alive (%s)", agent.name, agent.state.status)
            next_log = now + log_interval
        if now >= next_notify:
            await agent.notify_owners(HEARTBEAT_MESSAGE.format(name=agent.name))
            next_notify = now + notify_interval


async def run_proactive_listener(agent, config: dict = None):
    """Run the notepad poller and, unless disabled, the heartbeat."""
    config = config or {}
    poller = NotepadPoller(agent, config.get("dashboard", {}).get("poll_interval", 5))
    jobs = [poller.run()]

    heartbeat = config.get("heartbeat", {})
    if heartbeat.get("enabled", True):
        jobs.append(run_heartbeat(
            agent,
            log_interval=heartbeat.get("log_interval", 3600),
            notify_interval=heartbeat.get("notify_interval", 43200),
        ))
    logger.info("Proactive listener started (notepad polling every %ss)", poller.poll_interval)
    await asyncio.gather(*jobs)
