"""
Unit tests for agent.py

Tests cover:
- History repair for orphaned tool calls
- Skill loading
- The bounded turn loop: replies, tool execution, iteration cap, rollback
- Model selection once per turn
- Episodic save after a successful turn
- System prompt assembly (soul, facts, onboarding, board directive, episodes)
- Per-user serialization through Agent.handle
- Scheduled task execution and owner notifications
"""

import asyncio
import json

import pytest

from agent import (
    FALLBACK_REPLY,
    TRIGGER_CRON,
    TRIGGER_NOTEPAD,
    Agent,
    MaxIterationsExceeded,
    ModelCallError,
    TurnContext,
    load_skills,
    repair_history,
)
from llm import ModelResponse
from scheduler import create_task
from conftest import StubBackend, text_response, tool_response


# =============================================================================
# History Repair
# =============================================================================


class TestRepairHistory:
    """Test repair_history()."""

    def _assistant_with_calls(self, *ids):
        return {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {"id": i, "type": "function", "function": {"name": "get_current_time", "arguments": "{}"}}
                for i in ids
            ],
        }

    def test_complete_history_untouched(self):
        history = [
            {"role": "user", "content": "hi"},
            self._assistant_with_calls("a"),
            {"role": "tool", "tool_call_id": "a", "content": "{}"},
            {"role": "assistant", "content": "done"},
        ]
        before = list(history)
        assert repair_history(history) == 0
        assert history == before

    def test_orphan_at_end_gets_result(self):
        history = [{"role": "user", "content": "hi"}, self._assistant_with_calls("a", "b")]
        assert repair_history(history) == 2
        assert [m["tool_call_id"] for m in history[2:]] == ["a", "b"]
        assert all(json.loads(m["content"])["repaired"] for m in history[2:])

    def test_partial_results_inserted_after_existing(self):
        history = [
            self._assistant_with_calls("a", "b"),
            {"role": "tool", "tool_call_id": "a", "content": "ok"},
            {"role": "user", "content": "next"},
        ]
        assert repair_history(history) == 1
        assert [m.get("tool_call_id") for m in history] == [None, "a", "b", None]
        assert history[-1]["content"] == "next"

    def test_result_without_call_dropped(self):
        history = [
            {"role": "tool", "tool_call_id": "gone", "content": "{}"},
            {"role": "assistant", "content": "Ran it"},
            {"role": "user", "content": "next"},
        ]
        assert repair_history(history) == 1
        assert [m["role"] for m in history] == ["assistant", "user"]

    def test_result_for_other_call_dropped(self):
        history = [
            self._assistant_with_calls("a"),
            {"role": "tool", "tool_call_id": "a", "content": "ok"},
            {"role": "tool", "tool_call_id": "x", "content": "stray"},
        ]
        assert repair_history(history) == 1
        assert [m.get("tool_call_id") for m in history] == [None, "a"]


class TestLoadSkills:
    """Test load_skills()."""

    def test_missing_dir(self, tmp_path):
        assert load_skills(str(tmp_path / "nope")) == ""

    def test_skills_rendered_by_name(self, tmp_path):
        (tmp_path / "weather.md").write_text("Use web_search for forecasts.")
        (tmp_path / "notes.txt").write_text("ignored")
        section = load_skills(str(tmp_path))
        assert "### Skill: weather" in section
        assert "Use web_search for forecasts." in section
        assert "ignored" not in section


# =============================================================================
# Turn Loop
# =============================================================================


def _ctx(agent, user_id="111", trigger="chat"):
    return TurnContext(user_id=user_id, trigger=trigger, agent=agent)


class TestRunTurn:
    """Test Agent.run_turn()."""

    @pytest.mark.asyncio
    async def test_plain_reply(self, agent, stub_backend):
        stub_backend.responses = [text_response("  Hello there!  ")]
        history = []

        reply = await agent.run_turn("hi", history, _ctx(agent))

        assert reply == "Hello there!"
        assert history[0] == {"role": "user", "content": "hi"}
        assert history[1]["role"] == "assistant"
        assert len(stub_backend.calls) == 1

    @pytest.mark.asyncio
    async def test_user_message_appended_before_model_call(self, agent, stub_backend):
        history = [{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "ok"}]
        await agent.run_turn("now", history, _ctx(agent))
        assert stub_backend.calls[0]["history"][-1] == {"role": "user", "content": "now"}

    @pytest.mark.asyncio
    async def test_empty_reply_falls_back(self, agent, stub_backend):
        stub_backend.responses = [text_response("   ")]
        assert await agent.run_turn("hi", [], _ctx(agent)) == FALLBACK_REPLY

        stub_backend.responses = [text_response(None)]
        assert await agent.run_turn("hi", [], _ctx(agent)) == FALLBACK_REPLY

    @pytest.mark.asyncio
    async def test_tool_call_then_reply(self, agent, stub_backend):
        stub_backend.responses = [
            tool_response(("get_current_time", "{}")),
            text_response("It is late."),
        ]
        history = []

        reply = await agent.run_turn("what time is it?", history, _ctx(agent))

        assert reply == "It is late."
        roles = [m["role"] for m in history]
        assert roles == ["user", "assistant", "tool", "assistant"]
        assert history[2]["tool_call_id"] == history[1]["tool_calls"][0]["id"]
        assert "iso" in json.loads(history[2]["content"])
        # The second model call sees the tool result
        assert stub_backend.calls[1]["history"][-1]["role"] == "tool"

    @pytest.mark.asyncio
    async def test_every_tool_call_gets_one_result_in_order(self, agent, stub_backend):
        stub_backend.responses = [
            tool_response(
                ("core_memory_save", '{"key": "name", "value": "Ada"}'),
                ("get_current_time", "{}"),
                ("core_memory_save", '{"key": "city", "value": "Berlin"}'),
            ),
            text_response("Saved."),
        ]
        history = []

        await agent.run_turn("remember me", history, _ctx(agent))

        call_ids = [c["id"] for c in history[1]["tool_calls"]]
        result_ids = [m["tool_call_id"] for m in history if m["role"] == "tool"]
        assert result_ids == call_ids
        assert "- city: Berlin\n- name: Ada" == agent.store.get_facts()

    @pytest.mark.asyncio
    async def test_unknown_tool_does_not_abort(self, agent, stub_backend):
        stub_backend.responses = [
            tool_response(("no_such_tool", "{}")),
            text_response("Sorry."),
        ]
        history = []

        reply = await agent.run_turn("x", history, _ctx(agent))

        assert reply == "Sorry."
        assert json.loads(history[2]["content"]) == {"error": "Unknown tool: no_such_tool"}

    @pytest.mark.asyncio
    async def test_max_iterations_exceeded(self, agent, stub_backend):
        agent.max_iterations = 3
        stub_backend.responses = [tool_response(("get_current_time", "{}")) for _ in range(5)]
        agent.state.started = True

        with pytest.raises(MaxIterationsExceeded):
            await agent.run_turn("loop forever", [], _ctx(agent))

        assert len(stub_backend.calls) == 3
        assert agent.state.user_status("111") == "online"

    @pytest.mark.asyncio
    async def test_model_error_rolls_back_history(self, agent, stub_backend):
        stub_backend.responses = [RuntimeError("provider down")]
        history = [{"role": "user", "content": "old"}, {"role": "assistant", "content": "reply"}]

        with pytest.raises(ModelCallError):
            await agent.run_turn("new", history, _ctx(agent))

        assert history == [{"role": "user", "content": "old"}, {"role": "assistant", "content": "reply"}]

    @pytest.mark.asyncio
    async def test_model_error_mid_turn_rolls_back_tool_messages(self, agent, stub_backend):
        stub_backend.responses = [tool_response(("get_current_time", "{}")), RuntimeError("boom")]
        history = []

        with pytest.raises(ModelCallError):
            await agent.run_turn("time?", history, _ctx(agent))

        assert history == []

    @pytest.mark.asyncio
    async def test_model_selected_once_per_turn(self, agent, stub_backend):
        agent.router.history_threshold = 2
        stub_backend.responses = [
            tool_response(("get_current_time", "{}")),
            tool_response(("get_current_time", "{}")),
            text_response("Here is your poem."),
        ]

        await agent.run_turn("schreibe ein gedicht", [], _ctx(agent))

        models = {c["model"] for c in stub_backend.calls}
        assert models == {"test/creative"}

    @pytest.mark.asyncio
    async def test_working_status_during_turn(self, agent):
        agent.state.started = True
        seen = []

        class ObservingBackend:
            async def call(self, history, tools, system, model):
                seen.append(agent.state.user_status("111"))
                return ModelResponse(text="ok")

        agent.backend = ObservingBackend()
        await agent.run_turn("hi", [], _ctx(agent))

        assert seen == ["working"]
        assert agent.state.status == "online"

    @pytest.mark.asyncio
    async def test_emits_turn_events(self, agent):
        events = []
        agent.on("*", lambda e: events.append(e["_event"]))

        await agent.run_turn("hi", [], _ctx(agent))

        assert events[0] == "turn_start"
        assert events[-1] == "turn_end"


class TestEpisodicSave:
    """Test the background episodic save after a turn."""

    @pytest.mark.asyncio
    async def test_episode_saved_after_reply(self, agent, stub_backend):
        stub_backend.responses = [text_response("Python is great.")]

        await agent.run_turn("tell me about python", [], _ctx(agent))
        await agent.drain_background()

        episodes = agent.store.all_episodes()
        assert len(episodes) == 1
        assert episodes[0].summary == "User: tell me about python\nClaw: Python is great."
        assert episodes[0].user_id == "111"

    @pytest.mark.asyncio
    async def test_board_task_turn(self, agent, stub_backend):
        stub_backend.responses = [
            tool_response(("create_board_task", json.dumps({"title": "Wocheneinkauf"}))),
            text_response("Task 'Wocheneinkauf' ist angelegt."),
        ]

        reply = await agent.handle("erstelle einen Task für Wocheneinkauf", _ctx(agent))
        await agent.drain_background()

        assert reply == "Task 'Wocheneinkauf' ist angelegt."
        tasks = agent.store.list_tasks()
        assert len(tasks) == 1
        assert tasks[0].title == "Wocheneinkauf"
        assert tasks[0].priority == "Mittel"
        assert tasks[0].status == "Geplant"
        assert agent.store.count_episodes() == 1

    @pytest.mark.asyncio
    async def test_no_episode_on_failure(self, agent, stub_backend):
        stub_backend.responses = [RuntimeError("down")]
        with pytest.raises(ModelCallError):
            await agent.run_turn("hi", [], _ctx(agent))
        await agent.drain_background()
        assert agent.store.count_episodes() == 0

    @pytest.mark.asyncio
    async def test_save_failure_is_swallowed(self, agent, stub_backend, stub_embeddings, monkeypatch):
        original = stub_embeddings.embed

        def embed(text):
            if text.startswith("User:"):
                raise RuntimeError("embedding service down")
            return original(text)

        monkeypatch.setattr(stub_embeddings, "embed", embed)
        stub_backend.responses = [text_response("fine")]

        reply = await agent.run_turn("hi", [], _ctx(agent))
        await agent.drain_background()

        assert reply == "fine"
        assert agent.store.count_episodes() == 0


# =============================================================================
# System Prompt
# =============================================================================


class TestSystemPrompt:
    """Test Agent.build_system_prompt()."""

    @pytest.mark.asyncio
    async def test_default_soul_and_onboarding(self, agent):
        prompt = await agent.build_system_prompt("hi", _ctx(agent))
        assert "You are Claw" in prompt
        assert "--- ONBOARDING ---" in prompt
        assert "No core facts known yet." in prompt

    @pytest.mark.asyncio
    async def test_soul_file_and_facts(self, agent):
        agent.soul_path.write_text("You are a pirate.")
        agent.store.save_fact("user_name", "Ada")

        prompt = await agent.build_system_prompt("hi", _ctx(agent))

        assert prompt.startswith("You are a pirate.")
        assert "- user_name: Ada" in prompt
        assert "--- ONBOARDING ---" not in prompt

    @pytest.mark.asyncio
    async def test_tools_listed(self, agent):
        prompt = await agent.build_system_prompt("hi", _ctx(agent))
        assert "- execute_terminal:" in prompt
        assert "- get_board_tasks:" in prompt

    @pytest.mark.asyncio
    async def test_board_prompt_depends_on_trigger(self, agent):
        chat = await agent.build_system_prompt("hi", _ctx(agent))
        directive = await agent.build_system_prompt("hi", _ctx(agent, trigger=TRIGGER_NOTEPAD))
        assert "direct instruction through the dashboard notepad" in directive
        assert "direct instruction through the dashboard notepad" not in chat
        assert "When the user chats with you directly" in chat

    @pytest.mark.asyncio
    async def test_relevant_episodes_included(self, agent):
        await agent.episodic.save("222", "User: I love my garden\nClaw: Nice!")
        await agent.episodic.save("222", "User: music tips?\nClaw: Try jazz.")

        prompt = await agent.build_system_prompt("how is the garden doing", _ctx(agent))

        assert "--- RELEVANT PAST CONTEXT ---" in prompt
        assert "I love my garden" in prompt
        assert "Try jazz" not in prompt

    @pytest.mark.asyncio
    async def test_prompt_not_stored_in_history(self, agent, stub_backend):
        history = []
        await agent.run_turn("hi", history, _ctx(agent))
        assert all(m["role"] != "system" for m in history)
        assert "You are Claw" in stub_backend.calls[0]["system"]


# =============================================================================
# Concurrency
# =============================================================================


class ConcurrencyBackend:
    """Tracks how many model calls are in flight at once."""

    def __init__(self):
        self.active = 0
        self.max_active = 0

    async def call(self, history, tools, system, model):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.02)
        self.active -= 1
        return ModelResponse(text=f"reply to {history[-1]['content']}")


class TestHandle:
    """Test Agent.handle() serialization."""

    @pytest.mark.asyncio
    async def test_same_user_turns_are_serialized(self, agent):
        backend = ConcurrencyBackend()
        agent.backend = backend

        replies = await asyncio.gather(
            agent.handle("first", agent.make_context("111")),
            agent.handle("second", agent.make_context("111")),
        )

        assert backend.max_active == 1
        assert replies == ["reply to first", "reply to second"]
        history = agent.sessions.history("111")
        assert [m["content"] for m in history] == ["first", "reply to first", "second", "reply to second"]

    @pytest.mark.asyncio
    async def test_different_users_run_concurrently(self, agent):
        backend = ConcurrencyBackend()
        agent.backend = backend

        await asyncio.gather(
            agent.handle("a", agent.make_context("111")),
            agent.handle("b", agent.make_context("222")),
        )

        assert backend.max_active == 2
        assert len(agent.sessions.history("111")) == 2
        assert len(agent.sessions.history("222")) == 2


# =============================================================================
# Senders, Owners, Scheduled Tasks
# =============================================================================


class TestOwnersAndSenders:
    """Test sender routing and owner notifications."""

    def test_primary_owner_is_first_allowed_user(self, agent):
        assert agent.primary_owner == "111"
        assert agent.is_allowed("222")
        assert not agent.is_allowed("999")

    @pytest.mark.asyncio
    async def test_context_sends_to_user(self, agent, sender):
        ctx = agent.make_context("222")
        await ctx.send_message("hello")
        await ctx.send_photo(b"\x89PNG", "a chart")
        assert sender.messages == [("222", "hello")]
        assert sender.photos == [("222", b"\x89PNG", "a chart")]

    @pytest.mark.asyncio
    async def test_notify_owners(self, agent, sender):
        delivered = await agent.notify_owners("ping")
        assert delivered == 2
        assert sender.messages == [("111", "ping"), ("222", "ping")]

    @pytest.mark.asyncio
    async def test_notify_without_sender(self, sample_config, stub_backend, stub_embeddings, llm_config):
        a = Agent(config=sample_config, backend=stub_backend, embeddings=stub_embeddings, llm_config=llm_config)
        assert await a.notify_owners("ping") == 0


class TestScheduledExecution:
    """Test the scheduler executor."""

    @pytest.mark.asyncio
    async def test_runs_cron_turn_for_task_user(self, agent, sender):
        triggers = []
        agent.on("turn_start", lambda e: triggers.append(e["trigger"]))
        agent.backend = StubBackend([text_response("Stand-up notes ready.")])
        task = create_task("standup", "Prepare stand-up notes", "every 1h", user_id="222")

        reply = await agent._execute_scheduled_task(task)

        assert reply == "Stand-up notes ready."
        assert triggers == [TRIGGER_CRON]
        assert sender.messages == [("222", "Stand-up notes ready.")]
        assert "standup" in agent.sessions.history("222")[0]["content"]

    @pytest.mark.asyncio
    async def test_defaults_to_primary_owner(self, agent, sender):
        task = create_task("t", "Say hi", "every 1h")
        await agent._execute_scheduled_task(task)
        assert sender.messages[0][0] == "111"


class TestLifecycle:
    """Test Agent.start()/stop()."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, agent):
        await agent.start()
        assert agent.state.status == "online"
        await agent.stop()
        assert agent.state.status == "offline"
