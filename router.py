"""
Model router.

Picks the model tier for a turn from the user's message and the length of
the conversation. Rules are evaluated in order and the first match wins:

    1. creative keyword, no coding keyword            -> creative
    2. coding keyword or history above threshold      -> coding
    3. vision keyword                                 -> vision
    4. anything else                                  -> standard

Matching is substring search over the lower-cased message.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from llm_config import LLMConfig, get_llm_config

logger = logging.getLogger(__name__)

CREATIVE_KEYWORDS = ("schreibe", "umschreiben", "gedicht", "geschichte", "witz", "kreativ")

CODING_KEYWORDS = (
    "refactor",
    "umstrukturieren",
    "komplexe logik",
    "fix deep bug",
    "implementiere feature",
    "architektur",
    "api",
    "backend",
    "crud",
    "komplex",
    "code-analyse",
    "debugging",
)

# Creative requests that mention code are not treated as creative
CREATIVE_EXCLUSIONS = CODING_KEYWORDS + ("code",)

VISION_KEYWORDS = (
    "analyse",
    "prüfe",
    "schau dir an",
    "bild",
    "screenshot",
    "generiere",
    "erstelle bild",
    "zeichne",
)

DEFAULT_HISTORY_THRESHOLD = 10


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(kw in text for kw in keywords)


@dataclass(frozen=True)
class Rule:
    name: str
    tier: str
    matches: Callable[[str, int], bool]


class ModelRouter:
    """Deterministic keyword classifier mapping a turn to a model id."""

    def __init__(self, llm_config: LLMConfig | None = None, history_threshold: int = DEFAULT_HISTORY_THRESHOLD):
        self.llm_config = llm_config
        self.history_threshold = history_threshold
        self.rules = [
            Rule(
                "creative",
                "creative",
                lambda text, n: _contains_any(text, CREATIVE_KEYWORDS) and not _contains_any(text, CREATIVE_EXCLUSIONS),
            ),
            Rule(
                "coding",
                "coding",
                lambda text, n: _contains_any(text, CODING_KEYWORDS) or n > self.history_threshold,
            ),
            Rule("vision", "vision", lambda text, n: _contains_any(text, VISION_KEYWORDS)),
        ]

    def classify(self, user_message: str, history: list) -> str:
        """Tier name for this turn."""
        text = (user_message or "").lower()
        length = len(history)
        for rule in self.rules:
            if rule.matches(text, length):
                logger.debug("Router rule %s matched -> %s", rule.name, rule.tier)
                return rule.tier
        return "standard"

    def select(self, user_message: str, history: list) -> str:
        """Model id for this turn."""
        tier = self.classify(user_message, history)
        config = self.llm_config or get_llm_config()
        model_id = config.for_tier(tier).model_id
        logger.info("Routing to %s model (%s)", tier, model_id)
        return model_id
