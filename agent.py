"""
Claw agent: the bounded tool-calling loop and the services it runs on.

    User message -> model -> [tool calls -> execute -> tool messages] x N -> reply

One turn never makes more than ``max_iterations`` model calls. Every trigger
source (chat, voice, notepad poller, cron) goes through ``Agent.handle``,
which serializes turns per user via the SessionManager.

Events emitted:
- turn_start: {"user_id": str, "trigger": str, "model": str}
- turn_end: {"user_id": str, "status": str, "iterations": int, "duration_ms": int}
- tool_start: {"name": str, "input": dict}
- tool_end: {"name": str, "result": any, "duration_ms": int}
- llm_call_end: {"model": str, "input_tokens": int, "output_tokens": int, ...}
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from approval import ApprovalGate
from config import allowed_users, load_config
from llm import LiteLLMBackend, ModelBackend
from llm_config import LLMConfig
from memory.embeddings import EmbeddingProvider, create_provider
from memory.episodic import EpisodicMemory
from memory.store import NO_FACTS, MemoryStore
from router import ModelRouter
from scheduler import ScheduledTask, Scheduler, SchedulerStore
from sessions import AgentState, Session, SessionManager
from tools import ToolRegistry, builtin_tools
from tools.dashboard import Notepad
from tools.remote import RemoteToolManager
from utils.events import EventEmitter

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10
FALLBACK_REPLY = "Done."

TRIGGER_CHAT = "chat"
TRIGGER_VOICE = "voice"
TRIGGER_NOTEPAD = "notepad"
TRIGGER_CRON = "cron"
TRIGGER_API = "api"

NOTEPAD_DIRECTIVE_PREFIX = "Das Dashboard hat folgende neue Aufgabe (Active Directive) für dich: "

DEFAULT_SOUL = "You are Claw, a lean and secure personal AI agent."

TECHNICAL_PROMPT = """--- TECHNICAL INSTRUCTIONS ---
You have tools that extend your capabilities. When a tool is useful, use it; otherwise answer directly.
Keep answers short and precise. No filler, no disclaimers.
Prefer the file tools (read_file, write_file, list_directory) over terminal commands for managing files.
Terminal commands need the user's approval. If they deny it, say so and do not pretend it ran.
After finishing a task you may leave a short closing report on the notepad with write_notepad."""

ONBOARDING_PROMPT = """--- ONBOARDING ---
You do not know anything about the user yet. Run a short, conversational onboarding:
1. Ask about their name, work and main goals. Save each answer right away with core_memory_save.
2. Ask how they want you to behave (tone, persona, style).
3. Once agreed, write a markdown profile of those rules with update_soul.
Do not handle regular requests until onboarding is done. Start by greeting the user."""

BOARD_DIRECTIVE_PROMPT = """--- KANBAN BOARD ---
The user just gave you a direct instruction through the dashboard notepad. Carry it out with priority.
Use update_task_status whenever a board task changes state."""

BOARD_CHAT_PROMPT = """--- KANBAN BOARD ---
When the user chats with you directly, answer normally. Use create_board_task when they ask you to put something on their list.
When idle or asked about open work, check get_board_tasks, pick the most important task yourself (due date first, then 'Hoch', then 'Mittel'),
move it to 'In Bearbeitung' with update_task_status while you work on it and to 'Review' when it is done."""


class AgentError(Exception):
    """Base class for turn-level failures."""
    pass


class ModelCallError(AgentError):
    """The model backend failed; the turn was rolled back."""
    pass


class MaxIterationsExceeded(AgentError):
    """The model kept requesting tools past the iteration cap."""
    pass


SendText = Callable[[str], Awaitable[None]]
SendPhoto = Callable[[bytes, str | None], Awaitable[None]]


async def _discard_text(text: str) -> None:
    logger.debug("No transport for message: %s", text[:200])


async def _discard_photo(data: bytes, caption: str | None = None) -> None:
    logger.debug("No transport for photo (%d bytes)", len(data))


@dataclass
class TurnContext:
    """What a turn (and the tools it runs) knows about where the message came from.

    ``send_photo`` is part of the chat transport contract. Image generation is
    not built in, so no bundled tool calls it.
    """

    user_id: str
    trigger: str = TRIGGER_CHAT
    send_message: SendText = _discard_text
    send_photo: SendPhoto = _discard_photo
    agent: "Agent | None" = None


def repair_history(history: list[dict]) -> int:
    """Make every tool call and tool result line up.

    A turn that was cancelled mid-tool can leave an assistant message whose
    tool calls have no matching ``tool`` messages, and a history cleared
    mid-turn can leave ``tool`` messages with no call before them. Providers
    reject both. Missing results are inserted right after the existing ones
    and stray results are dropped. Returns the number of messages added or
    removed.
    """
    repaired: list[dict] = []
    added = 0
    dropped = 0
    i = 0
    while i < len(history):
        message = history[i]
        i += 1
        if message.get("role") == "tool":
            dropped += 1
            continue
        repaired.append(message)
        if message.get("role") != "assistant" or not message.get("tool_calls"):
            continue
        call_ids = [call["id"] for call in message["tool_calls"]]
        answered = set()
        while i < len(history) and history[i].get("role") == "tool":
            result = history[i]
            i += 1
            if result.get("tool_call_id") in call_ids and result.get("tool_call_id") not in answered:
                answered.add(result.get("tool_call_id"))
                repaired.append(result)
            else:
                dropped += 1
        for call_id in call_ids:
            if call_id not in answered:
                repaired.append({
                    "role": "tool",
                    "tool_call_id": call_id,
                    "content": json.dumps({"error": "Tool execution was interrupted", "repaired": True}),
                })
                added += 1
    if added or dropped:
        history[:] = repaired
        logger.warning("Repaired history: %d missing tool result(s) added, %d stray dropped", added, dropped)
    return added + dropped


def load_skills(skills_dir: str) -> str:
    """Concatenate ``skills/*.md`` into a prompt section."""
    path = Path(skills_dir).expanduser()
    if not path.is_dir():
        return ""
    sections = [
        f"### Skill: {skill.stem}\n{skill.read_text(encoding='utf-8')}"
        for skill in sorted(path.glob("*.md"))
    ]
    if not sections:
        return ""
    return "--- EXTENDED SKILLS ---\n" + "\n\n".join(sections)


class Agent(EventEmitter):
    """
    The agent and everything a turn needs: tools, memory, router, approvals,
    sessions, scheduler and outbound senders.

    Collaborators can be injected (tests pass a stub backend and embeddings);
    anything not given is built from config.
    """

    def __init__(
        self,
        config: dict | None = None,
        backend: ModelBackend | None = None,
        embeddings: EmbeddingProvider | None = None,
        store: MemoryStore | None = None,
        scheduler: Scheduler | None = None,
        llm_config: LLMConfig | None = None,
    ):
        self.__init_events__()
        self.config = config if config is not None else load_config()

        agent_config = self.config.get("agent", {})
        memory_config = self.config.get("memory", {})

        self.name = agent_config.get("name", "Claw")
        self.max_iterations = agent_config.get("max_iterations", DEFAULT_MAX_ITERATIONS)
        self.soul_path = Path(agent_config.get("soul_path", "soul.md")).expanduser()
        self.skills_dir = agent_config.get("skills_dir", "skills")
        self.workspace_root = self.config.get("workspace", {}).get("root", ".")
        self.owners = allowed_users(self.config)

        self.llm_config = llm_config or LLMConfig.from_config(self.config)
        self.backend = backend or LiteLLMBackend(self.llm_config, emitter=self)
        self.router = ModelRouter(
            self.llm_config,
            history_threshold=self.config.get("router", {}).get("history_threshold", 10),
        )

        self.store = store or MemoryStore(memory_config.get("db_path", "~/.claw/claw.db"))
        self.episodic = EpisodicMemory(
            self.store,
            embeddings or create_provider(self.config, self.llm_config.embedding_model),
            top_k=memory_config.get("top_k", 3),
            threshold=memory_config.get("relevance_threshold", 0.3),
        )
        self.notepad = Notepad(self.config.get("dashboard", {}).get("notepad_path", "~/.claw/notepad.json"))

        self.registry = ToolRegistry(builtin_tools(), emitter=self)
        self.remote_tools = RemoteToolManager(self.config.get("mcp", {}).get("config_path", "mcp.json"))
        self.approvals = ApprovalGate(timeout=self.config.get("approval", {}).get("timeout", 300))
        self.sessions = SessionManager()
        self.state = AgentState()

        self.scheduler = scheduler or Scheduler(
            executor=self._execute_scheduled_task,
            store=SchedulerStore(self.config.get("scheduler", {}).get("store_dir")),
        )
        if self.scheduler.executor is None:
            self.scheduler.executor = self._execute_scheduled_task

        self.senders: dict = {}
        self._background: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self):
        """Connect remote tools and start the scheduler."""
        self.state.started = True
        count = await self.remote_tools.start(self.registry)
        if count:
            logger.info("Registered %d remote tools", count)
        await self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()
        await self.remote_tools.stop(self.registry)
        self.approvals.cancel_all()
        await self.drain_background()
        self.state.started = False
        self.store.close()

    async def drain_background(self):
        """Wait for fire-and-forget work (episodic saves) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # -------------------------------------------------------------------------
    # Senders and users
    # -------------------------------------------------------------------------

    def register_sender(self, channel: str, sender):
        self.senders[channel] = sender

    @property
    def primary_owner(self) -> str | None:
        return self.owners[0] if self.owners else None

    def is_allowed(self, user_id: str) -> bool:
        return not self.owners or str(user_id) in self.owners

    def _sender_for(self, channel: str | None):
        if channel and channel in self.senders:
            return self.senders[channel]
        return next(iter(self.senders.values()), None)

    def make_context(self, user_id: str, trigger: str = TRIGGER_CHAT, channel: str | None = None) -> TurnContext:
        """TurnContext whose send functions deliver to ``user_id`` via ``channel``."""
        sender = self._sender_for(channel)
        ctx = TurnContext(user_id=str(user_id), trigger=trigger, agent=self)
        if sender is not None:
            async def send_message(text: str):
                await sender.send(str(user_id), text)

            async def send_photo(data: bytes, caption: str | None = None):
                await sender.send_photo(str(user_id), data, caption)

            ctx.send_message = send_message
            ctx.send_photo = send_photo
        return ctx

    async def notify_owners(self, text: str, channel: str | None = None) -> int:
        """Send ``text`` to every allowed user. Returns how many deliveries succeeded."""
        sender = self._sender_for(channel)
        if sender is None:
            logger.warning("No sender registered, dropping notification: %s", text[:100])
            return 0
        delivered = 0
        for user_id in self.owners:
            try:
                result = await sender.send(user_id, text)
            except Exception as e:
                logger.error("Failed to notify %s: %s", user_id, e)
                continue
            if not isinstance(result, dict) or result.get("sent", True):
                delivered += 1
        return delivered

    # -------------------------------------------------------------------------
    # Turns
    # -------------------------------------------------------------------------

    async def handle(self, message: str, context: TurnContext) -> str:
        """Run a turn for ``context.user_id`` after any turn already running for that user."""
        if context.agent is None:
            context.agent = self

        async def turn(session: Session) -> str:
            return await self.run_turn(message, session.history, context)

        return await self.sessions.run(context.user_id, turn)

    async def run_turn(self, user_message: str, history: list[dict], context: TurnContext) -> str:
        """
        Run one bounded reasoning turn, mutating ``history`` in place.

        Returns:
            The final reply text.

        Raises:
            ModelCallError: The model backend failed. Everything this turn
                appended to ``history`` is removed again.
            MaxIterationsExceeded: The model still wanted tools after
                ``max_iterations`` calls.
        """
        if context.agent is None:
            context.agent = self
        user_id = context.user_id
        repair_history(history)
        turn_start_len = len(history)
        history.append({"role": "user", "content": user_message})

        self.state.set_working(user_id, user_message[:100])
        start_time = time.time()
        iterations = 0
        status = "error"
        try:
            system = await self.build_system_prompt(user_message, context)
            model = self.router.select(user_message, history)
            tools = self.registry.schemas()
            self.emit("turn_start", {"user_id": user_id, "trigger": context.trigger, "model": model})

            while iterations < self.max_iterations:
                iterations += 1
                try:
                    response = await self.backend.call(history, tools, system, model)
                except Exception as e:
                    del history[turn_start_len:]
                    logger.error("Model call failed for user %s: %s", user_id, e)
                    raise ModelCallError(f"Model call failed: {e}") from e

                history.append(response.to_message())

                if not response.tool_calls:
                    reply = (response.text or "").strip() or FALLBACK_REPLY
                    self._spawn(self._save_episode(user_id, user_message, reply))
                    status = "ok"
                    return reply

                for call in response.tool_calls:
                    logger.info("Tool call -> %s", call.name)
                    result = await self.registry.execute(call.name, call.arguments, context)
                    history.append({"role": "tool", "tool_call_id": call.id, "content": result})

            raise MaxIterationsExceeded(
                f"Agent loop exceeded max iterations ({self.max_iterations}). Aborting."
            )
        finally:
            self.state.set_online(user_id)
            self.emit("turn_end", {
                "user_id": user_id,
                "status": status,
                "iterations": iterations,
                "duration_ms": int((time.time() - start_time) * 1000),
            })

    async def _save_episode(self, user_id: str, user_message: str, reply: str):
        try:
            await self.episodic.save(user_id, f"User: {user_message}\n{self.name}: {reply}")
        except Exception as e:
            logger.warning("Failed to save episodic memory: %s", e)

    async def build_system_prompt(self, user_message: str, context: TurnContext) -> str:
        """Assemble the per-turn system prompt. Nothing here is stored in history."""
        try:
            facts = await asyncio.to_thread(self.store.get_facts)
        except Exception as e:
            logger.error("Could not load core facts: %s", e)
            facts = "(core facts unavailable)"

        episodes = await self.episodic.context_for(context.user_id, user_message)

        parts = [
            self._load_soul(),
            TECHNICAL_PROMPT,
            load_skills(self.skills_dir),
            self._tool_awareness(),
            f"--- CURRENT TIME ---\n{time.strftime('%Y-%m-%d %H:%M %Z')}",
            f"--- CORE USER FACTS ---\n{facts}",
        ]
        if facts == NO_FACTS:
            parts.append(ONBOARDING_PROMPT)
        parts.append(BOARD_DIRECTIVE_PROMPT if context.trigger == TRIGGER_NOTEPAD else BOARD_CHAT_PROMPT)
        if episodes:
            parts.append(f"--- RELEVANT PAST CONTEXT ---\n{episodes}")
        return "\n\n".join(p for p in parts if p)

    def _load_soul(self) -> str:
        if self.soul_path.exists():
            return self.soul_path.read_text(encoding="utf-8")
        return DEFAULT_SOUL

    def _tool_awareness(self) -> str:
        lines = [f"- {s['name']}: {s['description']}" for s in self.registry.schemas()]
        return "--- AVAILABLE TOOLS ---\n" + "\n".join(lines) + "\nUse these tools proactively."

    # -------------------------------------------------------------------------
    # Scheduled tasks
    # -------------------------------------------------------------------------

    async def _execute_scheduled_task(self, task: ScheduledTask) -> str:
        """Scheduler executor: run a cron-triggered turn and deliver the reply."""
        user_id = task.user_id or self.primary_owner
        if not user_id:
            raise AgentError(f"Scheduled task {task.id} has no user to run for")

        ctx = self.make_context(user_id, trigger=TRIGGER_CRON)
        message = f"🔔 Scheduled task '{task.id}' triggered: {task.description}"
        reply = await self.handle(message, ctx)
        await ctx.send_message(reply)
        return reply
