"""
Embedding generation for episodic memory.

Two providers:
- LiteLLMEmbeddings: any LiteLLM-supported embedding model (OpenAI by default)
- LocalEmbeddings: sentence-transformers, no API key required

Provider selection (``create_provider``):
1. memory.embeddings == "local" -> LocalEmbeddings
2. otherwise -> LiteLLMEmbeddings with the configured embedding model

Anthropic does not serve embeddings; with only ANTHROPIC_API_KEY set, use
``embeddings: local``.
"""

import logging

import litellm

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"
MAX_EMBED_CHARS = 8000


class EmbeddingProvider:
    """Base class for embedding providers."""

    def embed(self, text: str) -> list[float]:
        raise NotImplementedError


class LiteLLMEmbeddings(EmbeddingProvider):
    """LiteLLM-based embeddings supporting multiple providers."""

    def __init__(self, model: str = DEFAULT_MODEL):
        self.model = model

    def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        if len(text) > MAX_EMBED_CHARS:
            text = text[:MAX_EMBED_CHARS]
        response = litellm.embedding(model=self.model, input=[text])
        return response.data[0]["embedding"]


class LocalEmbeddings(EmbeddingProvider):
    """Local embedding provider using sentence-transformers."""

    def __init__(self, model: str = "all-MiniLM-L6-v2"):
        self.model_name = model
        self._model = None

    @property
    def model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError(
                    "sentence-transformers package required for local embeddings. "
                    "Install with: pip install 'claw-agent[local]'"
                )
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, text: str) -> list[float]:
        embedding = self.model.encode(text)
        return embedding.tolist()


def create_provider(config: dict, embedding_model: str = DEFAULT_MODEL) -> EmbeddingProvider:
    """Pick the embedding provider from the ``memory`` config section."""
    kind = config.get("memory", {}).get("embeddings", "litellm")
    if kind == "local":
        logger.info("Using local sentence-transformers embeddings")
        return LocalEmbeddings()
    return LiteLLMEmbeddings(model=embedding_model)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors.

    A zero vector has similarity 0.0 with everything.
    """
    dot_product = sum(x * y for x, y in zip(a, b))
    norm_a = sum(x * x for x in a) ** 0.5
    norm_b = sum(x * x for x in b) ** 0.5
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot_product / (norm_a * norm_b)
