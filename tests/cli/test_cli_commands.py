"""Tests for the ai-bridge typer commands."""

import sys

import pytest
import yaml
from typer.testing import CliRunner

from ai_bridge.cli.main import app
from ai_bridge.services.provider_service import ProviderService

runner = CliRunner()

ECHO_CHILD = r"""
import json, sys
print(json.dumps({"type": "ready", "content": {}}), flush=True)
for line in sys.stdin:
    msg = json.loads(line)
    print(json.dumps({"type": msg["type"] + "Response", "content": msg.get("content"),
                      "requestId": msg.get("requestId")}), flush=True)
"""


@pytest.fixture
def config_file(tmp_path, paths):
    """Config pointing every path at the isolated test layout."""
    path = tmp_path / "ai-bridge.yaml"
    path.write_text(yaml.dump({
        "bridge": {"command": [sys.executable, "-c", ECHO_CHILD], "max_restarts": 0},
        "paths": {
            "config_root": str(paths.config_root),
            "home": str(paths.home),
            "workspace_root": str(paths.workspace_root),
        },
        "logging": {"level": "warning"},
    }))
    return str(path)


def invoke(config_file, *args):
    return runner.invoke(app, ["--config", config_file, *args])


class TestInspectionCommands:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "AI Bridge" in result.output

    def test_providers_list(self, config_file, paths):
        ProviderService(paths).add_claude({"id": "p1", "name": "Proxy"})
        result = invoke(config_file, "providers", "list")
        assert result.exit_code == 0
        assert "p1" in result.output
        assert "Proxy" in result.output

    def test_providers_list_json_redacts(self, config_file, paths):
        ProviderService(paths).add_claude({
            "id": "p2",
            "name": "Keyed",
            "settingsConfig": {"env": {"ANTHROPIC_AUTH_TOKEN": "sk-live-secret-value"}},
        })
        result = invoke(config_file, "providers", "list", "--json")
        assert result.exit_code == 0
        assert "sk-live-secret-value" not in result.output
        assert "REDACTED" in result.output

    def test_skills_list_empty(self, config_file):
        result = invoke(config_file, "skills", "list")
        assert result.exit_code == 0
        assert "No skills installed." in result.output

    def test_mcp_list_empty(self, config_file):
        result = invoke(config_file, "mcp", "list")
        assert result.exit_code == 0
        assert "No MCP servers configured." in result.output

    def test_usage_json(self, config_file):
        result = invoke(config_file, "usage", "--scope", "all", "--json")
        assert result.exit_code == 0
        assert '"totalSessions": 0' in result.output

    def test_usage_unknown_provider(self, config_file):
        result = invoke(config_file, "usage", "--provider", "gemini")
        assert result.exit_code == 1


class TestConfigCommands:
    def test_validate_ok(self, config_file):
        result = runner.invoke(app, ["config", "validate", "--config", config_file])
        assert result.exit_code == 0
        assert "Config is valid." in result.output

    def test_validate_invalid(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text(yaml.dump({"timeouts": {"quick": 999, "message": 1}}))
        result = runner.invoke(app, ["config", "validate", "--config", str(bad)])
        assert result.exit_code == 1
        assert "Config validation failed" in result.output

    def test_validate_missing(self, tmp_path):
        result = runner.invoke(app, ["config", "validate", "--config", str(tmp_path / "none.yaml")])
        assert result.exit_code == 1

    def test_show(self, config_file):
        result = invoke(config_file, "config", "show")
        assert result.exit_code == 0
        assert "bridge:" in result.output
        assert "timeouts:" in result.output


@pytest.mark.integration
class TestSendCommand:
    def test_send_prints_reply(self, config_file):
        result = invoke(config_file, "send", "ping", "--content", '{"a": 1}', "--idle", "0.2", "--json")
        assert result.exit_code == 0
        assert "pingResponse" in result.output
        assert '"ready"' not in result.output

    def test_unknown_timeout_class(self, config_file):
        result = invoke(config_file, "send", "ping", "--timeout", "forever")
        assert result.exit_code == 1
