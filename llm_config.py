"""
LLM Configuration for multi-provider support using LiteLLM.

This module provides:
- One configurable model per routing tier (standard, creative, coding, vision)
- Multi-provider support (Anthropic, OpenAI, OpenRouter) via LiteLLM
- Automatic provider detection based on available API keys

Provider Detection:
- If ANTHROPIC_API_KEY is set: Uses Claude models by default
- If OPENAI_API_KEY is set: Uses GPT models by default
- If OPENROUTER_API_KEY is set: Routes everything through OpenRouter
- If several are set: Anthropic, then OpenAI, then OpenRouter
- If none is set: Raises helpful error at startup
"""

import os
from dataclasses import dataclass, field

TIERS = ("standard", "creative", "coding", "vision")


def _get_api_key(name: str) -> str | None:
    """Get API key from environment, refreshing each time."""
    return os.environ.get(name)


@dataclass
class ModelConfig:
    """Configuration for a specific model."""

    model_id: str
    max_tokens: int = 4096
    temperature: float = 0.0


# ═══════════════════════════════════════════════════════════
# PROVIDER DETECTION AND VALIDATION
# ═══════════════════════════════════════════════════════════


class NoLLMProviderError(Exception):
    """Raised when no LLM provider API key is configured."""
    pass


def get_available_provider() -> str:
    """
    Detect which LLM provider is available based on API keys.

    Returns:
        'anthropic', 'openai', 'openrouter', or 'none'
    """
    if _get_api_key("ANTHROPIC_API_KEY"):
        return "anthropic"
    elif _get_api_key("OPENAI_API_KEY"):
        return "openai"
    elif _get_api_key("OPENROUTER_API_KEY"):
        return "openrouter"
    return "none"


def is_llm_configured() -> bool:
    """True if at least one provider key is set."""
    return get_available_provider() != "none"


def get_missing_config_message() -> str:
    return """
Claw requires an LLM provider. Set one of these environment variables:

    export ANTHROPIC_API_KEY="sk-ant-..."
    export OPENAI_API_KEY="sk-..."
    export OPENROUTER_API_KEY="sk-or-..."

Models per tier can be customized in config.yaml:
    llm:
      standard: "gpt-4o-mini"
      coding:
        model: "claude-sonnet-4-20250514"
        max_tokens: 8192
"""


def check_llm_configuration() -> None:
    """
    Check if LLM is configured and raise helpful error if not.

    Raises:
        NoLLMProviderError: If no LLM provider is configured
    """
    if not is_llm_configured():
        raise NoLLMProviderError(get_missing_config_message())


# ═══════════════════════════════════════════════════════════
# DEFAULT MODEL CONFIGURATIONS BY PROVIDER
# ═══════════════════════════════════════════════════════════


ANTHROPIC_DEFAULTS = {
    "standard": "claude-3-5-haiku-20241022",
    "creative": "claude-sonnet-4-20250514",
    "coding": "claude-sonnet-4-20250514",
    "vision": "claude-sonnet-4-20250514",
    "embedding": "text-embedding-3-small",
}

OPENAI_DEFAULTS = {
    "standard": "gpt-4o-mini",
    "creative": "gpt-4o",
    "coding": "gpt-4o",
    "vision": "gpt-4o",
    "embedding": "text-embedding-3-small",
}

OPENROUTER_DEFAULTS = {
    "standard": "openrouter/google/gemini-2.0-flash-001",
    "creative": "openrouter/anthropic/claude-3.5-sonnet",
    "coding": "openrouter/anthropic/claude-3.5-sonnet",
    "vision": "openrouter/google/gemini-2.0-flash-001",
    "embedding": "openrouter/openai/text-embedding-3-small",
}

_MAX_TOKENS = {
    "standard": 2048,
    "creative": 4096,
    "coding": 8192,
    "vision": 4096,
}


def get_default_models_for_provider(provider: str) -> dict[str, str]:
    """
    Get default model IDs for each tier based on provider.

    Unknown providers fall back to the Anthropic defaults.
    """
    if provider == "openai":
        return OPENAI_DEFAULTS.copy()
    elif provider == "openrouter":
        return OPENROUTER_DEFAULTS.copy()
    return ANTHROPIC_DEFAULTS.copy()


# ═══════════════════════════════════════════════════════════
# LLM CONFIGURATION CLASS
# ═══════════════════════════════════════════════════════════


def _default_model(tier: str) -> ModelConfig:
    return ModelConfig(model_id=ANTHROPIC_DEFAULTS[tier], max_tokens=_MAX_TOKENS[tier])


@dataclass
class LLMConfig:
    """
    Model per routing tier.

    - standard: cheap default for everyday turns
    - creative: writing, poems, jokes
    - coding: refactoring, architecture, long conversations
    - vision: image analysis and generation requests
    """

    standard_model: ModelConfig = field(default_factory=lambda: _default_model("standard"))
    creative_model: ModelConfig = field(default_factory=lambda: _default_model("creative"))
    coding_model: ModelConfig = field(default_factory=lambda: _default_model("coding"))
    vision_model: ModelConfig = field(default_factory=lambda: _default_model("vision"))

    embedding_model: str = "text-embedding-3-small"

    def for_tier(self, tier: str) -> ModelConfig:
        """Model config for a tier name; unknown tiers get the standard model."""
        return getattr(self, f"{tier}_model", self.standard_model)

    def model_for_id(self, model_id: str) -> ModelConfig:
        for tier in TIERS:
            candidate = self.for_tier(tier)
            if candidate.model_id == model_id:
                return candidate
        return ModelConfig(model_id=model_id)

    @classmethod
    def from_config(cls, config: dict) -> "LLMConfig":
        """Create LLMConfig from a configuration dictionary."""
        llm_config = config.get("llm", {}) or {}

        defaults = get_default_models_for_provider(get_available_provider())
        instance = cls(
            **{
                f"{tier}_model": ModelConfig(model_id=defaults[tier], max_tokens=_MAX_TOKENS[tier])
                for tier in TIERS
            },
            embedding_model=defaults["embedding"],
        )

        for tier in TIERS:
            if tier in llm_config:
                setattr(instance, f"{tier}_model", cls._parse_model_config(llm_config[tier], tier))

        if "embedding_model" in llm_config:
            instance.embedding_model = llm_config["embedding_model"]

        return instance

    @staticmethod
    def _parse_model_config(config: dict | str, tier: str) -> ModelConfig:
        """Parse a model configuration from dict or string."""
        if isinstance(config, str):
            return ModelConfig(model_id=config, max_tokens=_MAX_TOKENS[tier])
        return ModelConfig(
            model_id=config.get("model", config.get("model_id", ANTHROPIC_DEFAULTS[tier])),
            max_tokens=config.get("max_tokens", _MAX_TOKENS[tier]),
            temperature=config.get("temperature", 0.0),
        )


# Global configuration instance
_llm_config: LLMConfig | None = None


def get_llm_config() -> LLMConfig:
    """Get the global LLM configuration."""
    global _llm_config
    if _llm_config is None:
        _llm_config = LLMConfig.from_config({})
    return _llm_config


def set_llm_config(config: LLMConfig):
    """Set the global LLM configuration."""
    global _llm_config
    _llm_config = config


def init_llm_config(config: dict | None = None) -> LLMConfig:
    """Initialize the global LLM configuration from a config dictionary."""
    global _llm_config
    _llm_config = LLMConfig.from_config(config or {})
    return _llm_config
