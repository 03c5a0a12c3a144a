"""
Shared fixtures for the Claw test suite.

Provides temp directories, environment cleanup, a sample config pointing at
temp paths, and stubs for the model backend and the embedding provider so
no test touches the network.
"""

import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Ensure the project root is on sys.path so tests can import project modules
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config import _merge_with_defaults  # noqa: E402
from llm import ModelResponse, ToolCall  # noqa: E402
from llm_config import LLMConfig, ModelConfig  # noqa: E402
from memory.embeddings import EmbeddingProvider  # noqa: E402


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a temporary directory that is cleaned up after the test."""
    return tmp_path


@pytest.fixture
def scheduler_dir(tmp_path):
    """Provide a temporary directory for scheduler persistence."""
    d = tmp_path / "scheduler"
    d.mkdir()
    return str(d)


@pytest.fixture
def config_dir(tmp_path):
    """Provide a temporary directory for config files."""
    d = tmp_path / "config"
    d.mkdir()
    return d


@pytest.fixture
def clean_env():
    """Temporarily clear Claw and provider env vars to avoid side effects."""
    keys = [
        "ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OPENROUTER_API_KEY",
        "TAVILY_API_KEY",
        "CLAW_CONFIG", "CLAW_WORKSPACE",
        "OWNER_ID", "ALLOWED_USER_IDS", "OWNER_TIMEZONE",
        "AGENT_NAME", "PORT",
    ]
    saved = {}
    for key in keys:
        if key in os.environ:
            saved[key] = os.environ.pop(key)
    yield
    for key, val in saved.items():
        os.environ[key] = val
    for key in keys:
        if key not in saved and key in os.environ:
            del os.environ[key]


@pytest.fixture
def mock_anthropic_key():
    """Set a fake ANTHROPIC_API_KEY for tests that need provider detection."""
    with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "sk-ant-test-key-123"}):
        yield


@pytest.fixture
def mock_openai_key():
    """Set a fake OPENAI_API_KEY for tests that need provider detection."""
    with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test-key-123"}):
        yield


@pytest.fixture
def sample_config(tmp_path, clean_env):
    """Full config with every file path inside tmp_path and two allowed users."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return _merge_with_defaults({
        "owner": {
            "id": "111",
            "allowed_users": ["111", "222"],
            "timezone": "UTC",
        },
        "agent": {
            "name": "Claw",
            "soul_path": str(tmp_path / "soul.md"),
            "skills_dir": str(tmp_path / "skills"),
        },
        "memory": {"db_path": ":memory:"},
        "dashboard": {"notepad_path": str(tmp_path / "notepad.json")},
        "workspace": {"root": str(workspace)},
        "mcp": {"config_path": str(tmp_path / "mcp.json")},
        "scheduler": {"store_dir": str(tmp_path / "scheduler")},
        "approval": {"timeout": 5},
    })


@pytest.fixture
def llm_config():
    """LLMConfig with a distinct, recognizable model id per tier."""
    return LLMConfig(
        standard_model=ModelConfig(model_id="test/standard"),
        creative_model=ModelConfig(model_id="test/creative"),
        coding_model=ModelConfig(model_id="test/coding"),
        vision_model=ModelConfig(model_id="test/vision"),
        embedding_model="test/embedding",
    )


# =============================================================================
# Stubs
# =============================================================================


def text_response(text: str | None) -> ModelResponse:
    return ModelResponse(text=text)


def tool_response(*calls: tuple[str, str], text: str | None = None) -> ModelResponse:
    """ModelResponse requesting tools; each call is ``(name, json_arguments)``."""
    return ModelResponse(
        text=text,
        tool_calls=[ToolCall(id=f"call_{i}_{name}", name=name, arguments=args) for i, (name, args) in enumerate(calls)],
    )


class StubBackend:
    """Model backend that replays scripted responses and records every call.

    A scripted item that is an exception instance is raised instead of
    returned. Once the script runs out, every call answers "Done".
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls: list[dict] = []

    async def call(self, history, tools, system, model):
        self.calls.append({
            "history": [dict(m) for m in history],
            "tools": tools,
            "system": system,
            "model": model,
        })
        if not self.responses:
            return text_response("Done")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class StubEmbeddings(EmbeddingProvider):
    """Keyword embeddings: one dimension per keyword, so overlap means similarity."""

    KEYWORDS = ("python", "garden", "music", "travel", "cooking")

    def __init__(self):
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        lowered = text.lower()
        return [1.0 if kw in lowered else 0.0 for kw in self.KEYWORDS]


@pytest.fixture
def stub_backend():
    return StubBackend()


@pytest.fixture
def stub_embeddings():
    return StubEmbeddings()


class RecordingSender:
    """Sender that keeps everything it is asked to deliver."""

    name = "test"
    capabilities = ["text", "photo"]

    def __init__(self):
        self.messages: list[tuple[str, str]] = []
        self.photos: list[tuple[str, bytes, str | None]] = []

    async def send(self, to: str, content: str, **kwargs) -> dict:
        self.messages.append((to, content))
        return {"sent": True, "channel": self.name}

    async def send_photo(self, to: str, data: bytes, caption: str | None = None) -> dict:
        self.photos.append((to, data, caption))
        return {"sent": True, "channel": self.name}


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def agent(sample_config, stub_backend, stub_embeddings, llm_config, sender):
    """Agent wired to stubs, with a recording sender registered as "test"."""
    from agent import Agent

    a = Agent(config=sample_config, backend=stub_backend, embeddings=stub_embeddings, llm_config=llm_config)
    a.register_sender("test", sender)
    yield a
    a.store.close()
