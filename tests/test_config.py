"""
Unit tests for configuration loading and validation.

Tests strict validation, environment credentials and persisted settings.
"""

import os
import shutil
import tempfile

import pytest
import yaml

from shopping_ai.config.loader import (
    AISettings,
    SettingsRepository,
    load_settings,
)
from shopping_ai.core.errors import ConfigError, ConfigErrorReason
from shopping_ai.core.prompts import TaskKind
from shopping_ai.core.registry import ProviderFamily
from shopping_ai.storage.repository import KeyValueStore


@pytest.fixture()
def no_env_keys(monkeypatch):
    for name in ("OPENAI_API_KEY", "PERPLEXITY_API_KEY", "GEMINI_API_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.mark.usefixtures("no_env_keys")
class TestSettingsLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        config_path = self._write_config({
            "tax_rate_model": "sonar",
            "photo_price_model": "gpt-4o",
            "tag_identification_model": "gemini-2.5-flash",
            "openai_api_key": "sk-test",
            "max_tokens": 500,
            "search_context_size": "high",
            "search_recency_filter": "week",
            "tax_detection_attempts": 3,
        })

        settings = load_settings(config_path)

        assert settings.model_for(TaskKind.TAX_RATE_LOOKUP) == "sonar"
        assert settings.model_for(TaskKind.PRICE_TAG_IMAGE_ANALYSIS) == "gpt-4o"
        assert settings.model_for(TaskKind.PRICE_GUESS) == "gemini-2.5-flash"
        assert settings.model_for(TaskKind.ADDITIVE_ANALYSIS) == "gemini-2.5-flash"
        assert settings.api_key_for(ProviderFamily.OPENAI_STYLE) == "sk-test"
        assert settings.max_tokens == 500
        assert settings.search_options.search_recency_filter == "week"
        assert settings.tax_detection_attempts == 3

    def test_defaults_without_file(self):
        settings = load_settings()
        assert settings.tax_rate_model == "sonar-pro"
        assert settings.max_tokens == 300
        assert settings.use_manual_tax_rate is False

    def test_empty_file_uses_defaults(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, 'w').close()
        assert load_settings(config_path) == AISettings()

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError, match="Settings file not found"):
            load_settings(os.path.join(self.temp_dir, "nope.yaml"))

    def test_invalid_yaml(self):
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("tax_rate_model: [unclosed")
        with pytest.raises(yaml.YAMLError):
            load_settings(config_path)

    def test_non_mapping_rejected(self):
        config_path = self._write_config(["sonar"])
        with pytest.raises(ValueError, match="must contain a mapping"):
            load_settings(config_path)

    def test_unknown_keys_rejected(self):
        config_path = self._write_config({"tax_model": "sonar"})
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_settings(config_path)

    @pytest.mark.parametrize("key,value", [
        ("max_tokens", "300"),
        ("max_tokens", True),
        ("use_manual_tax_rate", "yes"),
        ("manual_tax_rate", "7"),
    ])
    def test_wrong_types_rejected(self, key, value):
        config_path = self._write_config({key: value})
        with pytest.raises(ValueError, match="has the wrong type"):
            load_settings(config_path)

    @pytest.mark.parametrize("key,value", [
        ("max_tokens", 0),
        ("search_context_size", "huge"),
        ("search_recency_filter", "decade"),
        ("manual_tax_rate", -1),
        ("tax_detection_attempts", 11),
    ])
    def test_invalid_values_rejected(self, key, value):
        config_path = self._write_config({key: value})
        with pytest.raises(ValueError):
            load_settings(config_path)

    def test_unknown_model_rejected(self):
        config_path = self._write_config({"photo_price_model": "gpt-99"})
        with pytest.raises(ConfigError) as exc_info:
            load_settings(config_path)
        assert exc_info.value.reason == ConfigErrorReason.UNKNOWN_MODEL

    def test_integer_manual_rate_accepted(self):
        config_path = self._write_config({"use_manual_tax_rate": True, "manual_tax_rate": 7})
        assert load_settings(config_path).manual_tax_rate == 7.0


class TestEnvironmentCredentials:
    def test_env_fills_missing_keys(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEY", "pplx-env")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)

        settings = load_settings()
        assert settings.perplexity_api_key == "pplx-env"
        assert settings.openai_api_key == ""

    def test_file_key_wins_over_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        settings = AISettings(openai_api_key="sk-file").with_env_credentials()
        assert settings.openai_api_key == "sk-file"

    def test_keys_hidden_from_repr(self):
        assert "sk-secret" not in repr(AISettings(openai_api_key="sk-secret"))


class TestSettingsRepository:
    """Test persisted user selections."""

    def test_round_trip(self, db_path):
        repository = SettingsRepository(KeyValueStore(db_path))
        saved = AISettings(tax_rate_model="sonar", use_manual_tax_rate=True, manual_tax_rate=8.25)
        repository.save(saved)

        loaded = repository.load()
        assert loaded.tax_rate_model == "sonar"
        assert loaded.use_manual_tax_rate is True
        assert loaded.manual_tax_rate == 8.25

    def test_nothing_saved_returns_defaults(self, db_path):
        defaults = AISettings(max_tokens=42)
        assert SettingsRepository(KeyValueStore(db_path)).load(defaults) == defaults

    def test_empty_stored_key_keeps_default(self, db_path):
        repository = SettingsRepository(KeyValueStore(db_path))
        repository.save(AISettings())

        loaded = repository.load(AISettings(gemini_api_key="from-env"))
        assert loaded.gemini_api_key == "from-env"

    def test_process_fields_not_persisted(self, db_path):
        repository = SettingsRepository(KeyValueStore(db_path))
        repository.save(AISettings(database_path="other.db"))
        assert repository.load().database_path == AISettings().database_path
