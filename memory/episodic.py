"""
Episodic memory index.

Stores an embedded summary of every finished turn and ranks them against a
query for retrieval-augmented context. Search deliberately spans all users:
what one user taught the agent is recalled for everyone.

Ranking is a brute-force cosine scan over every stored episode, which is fine
at the scale of conversation turns.
"""

import asyncio
import logging

from .embeddings import EmbeddingProvider, cosine_similarity
from .models import ScoredEpisode
from .store import MemoryStore

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 3
DEFAULT_THRESHOLD = 0.3


class EpisodicMemory:
    def __init__(
        self,
        store: MemoryStore,
        embeddings: EmbeddingProvider,
        top_k: int = DEFAULT_TOP_K,
        threshold: float = DEFAULT_THRESHOLD,
    ):
        self.store = store
        self.embeddings = embeddings
        self.top_k = top_k
        self.threshold = threshold

    async def save(self, user_id: str, text: str):
        """Embed ``text`` and append it as a new episode for ``user_id``."""
        vector = await asyncio.to_thread(self.embeddings.embed, text)
        return await asyncio.to_thread(self.store.save_episode, user_id, text, vector)

    async def search(self, user_id: str, query: str, top_k: int | None = None) -> list[ScoredEpisode]:
        """Rank all episodes against ``query``.

        Takes the ``top_k`` best scores and then drops anything below the
        relevance threshold, so the result may be shorter than ``top_k`` or
        empty. ``user_id`` is recorded for logging only.
        """
        top_k = self.top_k if top_k is None else top_k
        query_vector = await asyncio.to_thread(self.embeddings.embed, query)
        episodes = await asyncio.to_thread(self.store.all_episodes)

        scored = [
            ScoredEpisode(entry=episode, score=cosine_similarity(query_vector, episode.vector))
            for episode in episodes
        ]
        scored.sort(key=lambda s: s.score, reverse=True)
        # Inclusive: a score exactly at the threshold counts as relevant
        results = [s for s in scored[:top_k] if s.score >= self.threshold]

        logger.debug(
            "Episodic search for %s: %d candidates, %d relevant", user_id, len(episodes), len(results)
        )
        return results

    async def context_for(self, user_id: str, query: str, top_k: int | None = None) -> str:
        """Relevant episodes as ``- summary`` lines; empty string when none or on failure."""
        try:
            results = await self.search(user_id, query, top_k)
        except Exception as e:
            logger.warning("Episodic search failed: %s", e)
            return ""
        return format_context(results)


def format_context(results: list[ScoredEpisode]) -> str:
    return "\n".join(f"- {r.summary}" for r in results)
