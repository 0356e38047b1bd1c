"""
Tests for the Typer CLI.

Only commands that never reach a vendor are exercised: configuration
errors, the credential table and the routing table.
"""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from main import app

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "router.yaml"
    path.write_text(
        "providers:\n"
        "  openai:\n"
        "    api_key: sk-test\n"
        "router:\n"
        "  max_retries: 1\n"
        "logging: false\n"
    )
    return path


class TestConfigErrors:

    def test_missing_config_file(self, tmp_path):
        result = runner.invoke(app, ["providers", "--config", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "Config not found" in result.output

    def test_invalid_config_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- not\n- a mapping\n")
        result = runner.invoke(app, ["routes", "--config", str(path)])
        assert result.exit_code == 1
        assert "Configuration Error" in result.output


class TestProvidersCommand:

    def test_shows_credential_status(self, config_file):
        result = runner.invoke(app, ["providers", "--config", str(config_file)])
        assert result.exit_code == 0
        assert "configured" in result.output
        assert "missing" in result.output
        assert "OPENAI_API_KEY" in result.output


class TestRoutesCommand:

    def test_routing_table(self, config_file):
        result = runner.invoke(app, ["routes", "--config", str(config_file)])
        assert result.exit_code == 0
        assert "fast_query" in result.output
        assert "max_retries=1" in result.output

    def test_candidate_chain(self, config_file):
        result = runner.invoke(app, ["routes", "--task", "fast_query", "--config", str(config_file)])
        assert result.exit_code == 0
        assert "grok/grok-2-mini" in result.output
        assert "skipped" in result.output


class TestAskValidation:

    def test_pin_requires_target(self, config_file):
        result = runner.invoke(app, ["ask", "hello", "--pin", "--config", str(config_file)])
        assert result.exit_code == 1
        assert "--pin requires --target" in result.output

    def test_bad_target_format(self, config_file):
        result = runner.invoke(
            app, ["ask", "hello", "--target", "openai", "--config", str(config_file)]
        )
        assert result.exit_code == 1
        assert "Invalid target" in result.output
