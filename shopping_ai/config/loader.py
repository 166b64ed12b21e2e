"""
Configuration management and loading.

Handles AI settings, credentials from the environment, and persisting the
user's selections.
"""

import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from shopping_ai.core.prompts import TaskKind
from shopping_ai.core.registry import DEFAULT_REGISTRY, ProviderFamily, ProviderRegistry
from shopping_ai.core.request_builder import DEFAULT_MAX_TOKENS, SearchOptions
from shopping_ai.storage.db import DEFAULT_DB_PATH
from shopping_ai.storage.repository import KeyValueStore

DEFAULT_MODEL = "sonar-pro"

SEARCH_CONTEXT_SIZES = ("low", "medium", "high")
SEARCH_RECENCY_FILTERS = ("hour", "day", "week", "month", "year")
MAX_TAX_DETECTION_ATTEMPTS = 10

# Environment variables consulted when a key is absent from the file
API_KEY_ENV_VARS = {
    "openai_api_key": "OPENAI_API_KEY",
    "perplexity_api_key": "PERPLEXITY_API_KEY",
    "gemini_api_key": "GEMINI_API_KEY",
}

SETTINGS_KEY = "ai_settings"

# Fields the settings repository persists; database_path and log_level are per-process
PERSISTED_FIELDS = (
    "tax_rate_model",
    "photo_price_model",
    "tag_identification_model",
    "openai_api_key",
    "perplexity_api_key",
    "gemini_api_key",
    "max_tokens",
    "search_context_size",
    "search_recency_filter",
    "use_manual_tax_rate",
    "manual_tax_rate",
    "tax_detection_attempts",
)


@dataclass(frozen=True)
class AISettings:
    """Model selection, credentials and dispatch tuning."""
    tax_rate_model: str = DEFAULT_MODEL
    photo_price_model: str = DEFAULT_MODEL
    tag_identification_model: str = DEFAULT_MODEL
    openai_api_key: str = field(default="", repr=False)
    perplexity_api_key: str = field(default="", repr=False)
    gemini_api_key: str = field(default="", repr=False)
    max_tokens: int = DEFAULT_MAX_TOKENS
    search_context_size: str = "medium"
    search_recency_filter: Optional[str] = None
    use_manual_tax_rate: bool = False
    manual_tax_rate: float = 0.0
    tax_detection_attempts: int = 1
    database_path: str = DEFAULT_DB_PATH
    log_level: str = "warning"

    def __post_init__(self):
        """Validate tuning values."""
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if self.search_context_size not in SEARCH_CONTEXT_SIZES:
            raise ValueError(f"search_context_size must be one of: {list(SEARCH_CONTEXT_SIZES)}")
        if self.search_recency_filter is not None and self.search_recency_filter not in SEARCH_RECENCY_FILTERS:
            raise ValueError(f"search_recency_filter must be one of: {list(SEARCH_RECENCY_FILTERS)}")
        if self.manual_tax_rate < 0:
            raise ValueError("manual_tax_rate cannot be negative")
        if not 1 <= self.tax_detection_attempts <= MAX_TAX_DETECTION_ATTEMPTS:
            raise ValueError(f"tax_detection_attempts must be between 1 and {MAX_TAX_DETECTION_ATTEMPTS}")

    def model_for(self, task_kind: TaskKind) -> str:
        """Selected model id for a task kind."""
        if task_kind == TaskKind.TAX_RATE_LOOKUP:
            return self.tax_rate_model
        if task_kind == TaskKind.PRICE_TAG_IMAGE_ANALYSIS:
            return self.photo_price_model
        return self.tag_identification_model

    def api_key_for(self, family: ProviderFamily) -> str:
        return self.credentials()[family]

    def credentials(self) -> Dict[ProviderFamily, str]:
        return {
            ProviderFamily.OPENAI_STYLE: self.openai_api_key,
            ProviderFamily.PERPLEXITY_STYLE: self.perplexity_api_key,
            ProviderFamily.GEMINI_STYLE: self.gemini_api_key,
        }

    @property
    def search_options(self) -> SearchOptions:
        return SearchOptions(
            search_context_size=self.search_context_size,
            search_recency_filter=self.search_recency_filter,
        )

    def validate_models(self, registry: ProviderRegistry = DEFAULT_REGISTRY) -> None:
        """Check every selected model resolves.

        Raises:
            ConfigError: If a selected model is unknown
        """
        for model_id in (self.tax_rate_model, self.photo_price_model, self.tag_identification_model):
            registry.resolve(model_id)

    def with_env_credentials(self) -> "AISettings":
        """Fill empty API keys from the environment."""
        updates = {
            name: os.environ.get(env_var, "")
            for name, env_var in API_KEY_ENV_VARS.items()
            if not getattr(self, name)
        }
        return replace(self, **updates)


_FIELD_TYPES = {
    "tax_rate_model": str,
    "photo_price_model": str,
    "tag_identification_model": str,
    "openai_api_key": str,
    "perplexity_api_key": str,
    "gemini_api_key": str,
    "max_tokens": int,
    "search_context_size": str,
    "search_recency_filter": (str, type(None)),
    "use_manual_tax_rate": bool,
    "manual_tax_rate": (int, float),
    "tax_detection_attempts": int,
    "database_path": str,
    "log_level": str,
}


def _parse_settings(data: Dict[str, Any], source: str) -> AISettings:
    """Validate a raw settings mapping.

    Args:
        data: Raw key/value settings
        source: Where the data came from, for error messages

    Returns:
        Validated AISettings

    Raises:
        ValueError: If keys are unknown or values have the wrong type
    """
    unknown_keys = set(data.keys()) - set(_FIELD_TYPES)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys in {source}: {unknown_keys}")

    for key, value in data.items():
        expected = _FIELD_TYPES[key]
        # bool is an int subclass; only accept it where a bool is expected
        if isinstance(value, bool) and expected is not bool:
            raise ValueError(f"'{key}' in {source} has the wrong type")
        if not isinstance(value, expected):
            raise ValueError(f"'{key}' in {source} has the wrong type")

    values = dict(data)
    if "manual_tax_rate" in values:
        values["manual_tax_rate"] = float(values["manual_tax_rate"])
    return AISettings(**values)


def load_settings(
    path: Optional[str] = None,
    registry: ProviderRegistry = DEFAULT_REGISTRY
) -> AISettings:
    """Load and validate AI settings from a YAML file.

    Strict validation ensures no silent misconfiguration: unknown keys,
    wrong types and unknown model ids are all rejected up front.

    Args:
        path: Path to YAML configuration file; defaults only when None
        registry: Registry model ids must resolve against

    Returns:
        Validated AISettings with credentials filled from the environment

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
        ConfigError: If a selected model is unknown
    """
    if path is None:
        settings = AISettings()
    else:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            try:
                raw_config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

        if raw_config is None:
            raw_config = {}
        if not isinstance(raw_config, dict):
            raise ValueError("Configuration file must contain a mapping")

        settings = _parse_settings(raw_config, path)

    settings = settings.with_env_credentials()
    settings.validate_models(registry)
    return settings


class SettingsRepository:
    """Persists the user's AI settings in the key-value store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self, defaults: Optional[AISettings] = None) -> AISettings:
        """Overlay persisted selections on top of defaults.

        Args:
            defaults: Settings used for anything not persisted

        Returns:
            Merged settings
        """
        defaults = defaults or AISettings()
        raw = self.store.get(SETTINGS_KEY)
        if not isinstance(raw, dict):
            return defaults
        merged = asdict(defaults)
        for key, value in raw.items():
            if key not in PERSISTED_FIELDS:
                continue
            # An empty stored key must not hide one supplied by the environment
            if key in API_KEY_ENV_VARS and not value:
                continue
            merged[key] = value
        return _parse_settings(merged, "stored settings")

    def save(self, settings: AISettings) -> None:
        self.store.set(SETTINGS_KEY, {key: getattr(settings, key) for key in PERSISTED_FIELDS})
