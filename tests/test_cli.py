"""
Tests for the CLI interface.
"""
import os
import shutil
import tempfile

import httpx
import respx
import yaml
from typer.testing import CliRunner

from shopping_ai.cli.main import EXIT_CODE_FAIL, EXIT_CODE_PASS, _format_currency, app
from shopping_ai.core.registry import GEMINI_GENERATE_URL

runner = CliRunner()


class TestCLI:
    """Test CLI commands against a temporary database."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = self._write_config({})

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, overrides: dict) -> str:
        config_data = {
            "database_path": os.path.join(self.temp_dir, "shopping_ai.db"),
            "tag_identification_model": "gemini-2.5-flash",
            "gemini_api_key": "gemini-test",
        }
        config_data.update(overrides)
        config_path = os.path.join(self.temp_dir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def _invoke(self, *args):
        return runner.invoke(app, ["--config", self.config_path, *args])

    def test_init_creates_database(self):
        result = self._invoke("init")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized" in result.output
        assert os.path.exists(os.path.join(self.temp_dir, "shopping_ai.db"))

    def test_status_shows_budget(self):
        assert self._invoke("set-budget", "10").exit_code == EXIT_CODE_PASS

        result = self._invoke("status")

        assert result.exit_code == EXIT_CODE_PASS
        assert "AI Usage Summary" in result.output
        assert "Budget: $10.0000" in result.output
        assert "Remaining: $10.0000" in result.output

    def test_negative_budget_rejected(self):
        result = self._invoke("set-budget", "--", "-1")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "budget cannot be negative" in result.output

    def test_set_spent_reports_adjustment(self):
        result = self._invoke("set-spent", "2.5")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Total spent set to $2.5000" in result.output

    def test_reset_billing_requires_confirmation(self):
        result = self._invoke("reset-billing")
        assert result.exit_code == EXIT_CODE_FAIL

        result = self._invoke("reset-billing", "--yes")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Billing reset" in result.output

    def test_empty_history(self):
        result = self._invoke("history")

        assert result.exit_code == EXIT_CODE_PASS
        assert "No interactions recorded" in result.output

    def test_remove_unknown_record(self):
        result = self._invoke("remove-record", "missing-id")
        assert result.exit_code == EXIT_CODE_FAIL

    def test_models_lists_registry(self):
        result = runner.invoke(app, ["models"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "sonar-pro" in result.output
        assert "gpt-4o-mini" in result.output

    def test_prompt_set_show_reset(self):
        result = self._invoke("prompts", "set", "taxRate", "Tax of {itemName}?")
        assert result.exit_code == EXIT_CODE_PASS

        result = self._invoke("prompts", "show", "taxRate")
        assert "(custom)" in result.output
        assert "Tax of {itemName}?" in result.output

        self._invoke("prompts", "reset", "taxRate")
        result = self._invoke("prompts", "show", "taxRate")
        assert "(default)" in result.output

    def test_unknown_task_kind(self):
        result = self._invoke("prompts", "show", "nonsense")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown task" in result.output

    def test_bad_config_file(self):
        self.config_path = self._write_config({"mystery_key": 1})

        result = self._invoke("status")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Configuration error" in result.output

    def test_manual_tax_rate(self):
        self.config_path = self._write_config({"use_manual_tax_rate": True, "manual_tax_rate": 8.5})

        result = self._invoke("tax", "Milk")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Tax rate for Milk: 8.5%" in result.output

    def test_additives_recorded_in_history(self):
        url = GEMINI_GENERATE_URL.format(model="gemini-2.5-flash")
        text = (
            '{"riskyAdditives": [{"name": "E102", "riskLevel": "High", "description": "dye"}], '
            '"safeAdditives": [{"name": "E300", "description": "vitamin C"}]}'
        )
        with respx.mock:
            respx.post(url).mock(return_value=httpx.Response(
                200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]}
            ))
            result = self._invoke("additives", "Soda")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Risky: 1  Safe: 1" in result.output

        result = self._invoke("status")
        assert "Interactions: 1" in result.output

    def test_missing_api_key(self, monkeypatch):
        self.config_path = self._write_config({"gemini_api_key": ""})
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)

        result = self._invoke("additives", "Soda")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "API key not configured" in result.output


class TestFormatting:
    def test_format_currency(self):
        assert _format_currency(1234.5) == "$1,234.5000"
        assert _format_currency(-0.25) == "-$0.2500"
        assert _format_currency(None) == "-"
