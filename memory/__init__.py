"""
Memory for Claw

Two layers, both stored in one SQLite file:
1. Core facts - key/value facts about the user, shown in every system prompt
2. Episodic memory - embedded "User: ... / Claw: ..." exchanges, recalled by
   cosine similarity across all users

The same database also holds the Kanban board tasks.

Usage:
    from memory import MemoryStore, EpisodicMemory, create_provider

    store = MemoryStore("~/.claw/claw.db")
    episodic = EpisodicMemory(store, create_provider(config))

    await episodic.save("42", "User: hi\\nClaw: hello")
    context = await episodic.context_for("42", "greeting")
"""

from .embeddings import (
    EmbeddingProvider,
    LiteLLMEmbeddings,
    LocalEmbeddings,
    cosine_similarity,
    create_provider,
)
from .episodic import EpisodicMemory, format_context
from .models import (
    OPEN_STATUSES,
    TASK_PRIORITIES,
    TASK_STATUSES,
    BoardTask,
    EpisodicMemoryEntry,
    ScoredEpisode,
)
from .store import NO_FACTS, MemoryStore

__all__ = [
    "BoardTask",
    "EmbeddingProvider",
    "EpisodicMemory",
    "EpisodicMemoryEntry",
    "LiteLLMEmbeddings",
    "LocalEmbeddings",
    "MemoryStore",
    "NO_FACTS",
    "OPEN_STATUSES",
    "ScoredEpisode",
    "TASK_PRIORITIES",
    "TASK_STATUSES",
    "cosine_similarity",
    "create_provider",
    "format_context",
]
