"""
Provider registry.

Static table mapping each supported model id to its provider family,
endpoint, credential header and pricing.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from .errors import ConfigError, ConfigErrorReason


class ProviderFamily(Enum):
    """Request/response JSON shape spoken by a provider."""
    OPENAI_STYLE = "openai"
    PERPLEXITY_STYLE = "perplexity"
    GEMINI_STYLE = "gemini"


# Raw-key header used by the Gemini generateContent API
GEMINI_API_KEY_HEADER = "x-goog-api-key"

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
PERPLEXITY_CHAT_URL = "https://api.perplexity.ai/chat/completions"
GEMINI_GENERATE_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_1k: Decimal  # Cost per 1K input tokens
    output_cost_per_1k: Decimal  # Cost per 1K output tokens

    def __post_init__(self):
        """Validate rates are non-negative."""
        if self.input_cost_per_1k < 0:
            raise ValueError("input_cost_per_1k cannot be negative")
        if self.output_cost_per_1k < 0:
            raise ValueError("output_cost_per_1k cannot be negative")


@dataclass(frozen=True)
class ModelDescriptor:
    """Everything needed to talk to one model."""
    id: str
    provider_family: ProviderFamily
    provider_name: str
    endpoint: str
    supports_vision: bool
    pricing: ModelPricing


@dataclass(frozen=True)
class ProviderRegistry:
    """Fixed registry of supported models."""
    models: Dict[str, ModelDescriptor]

    def resolve(self, model_id: str) -> ModelDescriptor:
        """Get the descriptor for a model.

        Args:
            model_id: Model identifier

        Returns:
            ModelDescriptor for the model

        Raises:
            ConfigError: If the model is not registered
        """
        if model_id not in self.models:
            raise ConfigError(f"Unknown model: {model_id}", ConfigErrorReason.UNKNOWN_MODEL)
        return self.models[model_id]

    def supports_vision(self, model_id: str) -> bool:
        """Unknown models never accept images."""
        descriptor = self.models.get(model_id)
        return descriptor is not None and descriptor.supports_vision

    def model_ids(self, family: Optional[ProviderFamily] = None) -> List[str]:
        return sorted(
            model_id for model_id, descriptor in self.models.items()
            if family is None or descriptor.provider_family == family
        )


def _openai(model_id: str, input_rate: str, output_rate: str) -> ModelDescriptor:
    return ModelDescriptor(
        id=model_id,
        provider_family=ProviderFamily.OPENAI_STYLE,
        provider_name="OpenAI",
        endpoint=OPENAI_CHAT_URL,
        supports_vision=True,
        pricing=ModelPricing(Decimal(input_rate), Decimal(output_rate)),
    )


def _perplexity(model_id: str, input_rate: str, output_rate: str) -> ModelDescriptor:
    return ModelDescriptor(
        id=model_id,
        provider_family=ProviderFamily.PERPLEXITY_STYLE,
        provider_name="Perplexity",
        endpoint=PERPLEXITY_CHAT_URL,
        supports_vision=True,
        pricing=ModelPricing(Decimal(input_rate), Decimal(output_rate)),
    )


def _gemini(model_id: str, input_rate: str, output_rate: str) -> ModelDescriptor:
    return ModelDescriptor(
        id=model_id,
        provider_family=ProviderFamily.GEMINI_STYLE,
        provider_name="Google",
        endpoint=GEMINI_GENERATE_URL.format(model=model_id),
        supports_vision=True,
        pricing=ModelPricing(Decimal(input_rate), Decimal(output_rate)),
    )


# Fixed registry - no dynamic fetching, no defaults for unknown ids
DEFAULT_REGISTRY = ProviderRegistry({
    descriptor.id: descriptor for descriptor in (
        _openai("gpt-4.1", "0.002", "0.008"),
        _openai("gpt-4.1-mini", "0.0004", "0.0016"),
        _openai("gpt-4.1-nano", "0.0001", "0.0004"),
        _openai("gpt-4o", "0.0025", "0.01"),
        _openai("gpt-4o-mini", "0.00015", "0.0006"),
        _perplexity("sonar-pro", "0.003", "0.015"),
        _perplexity("sonar", "0.001", "0.001"),
        _perplexity("sonar-reasoning-pro", "0.002", "0.008"),
        _gemini("gemini-2.5-pro", "0.00125", "0.01"),
        _gemini("gemini-2.5-flash", "0.0003", "0.0025"),
        _gemini("gemini-2.0-flash-001", "0.0001", "0.0004"),
    )
})
