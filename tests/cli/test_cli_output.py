"""Tests for CLI output formatters."""

import json

import pytest

from ai_bridge.cli.config import AIBridgeConfig
from ai_bridge.cli.output import (
    format_config,
    format_cost,
    format_envelope,
    format_mcp_servers,
    format_providers,
    format_tokens,
    format_usage,
)


@pytest.mark.parametrize(
    "amount,expected",
    [(None, "—"), (0, "$0.00"), (0.0042, "$0.0042"), (12.5, "$12.50"), (1234.567, "$1,234.57")],
)
def test_format_cost(amount, expected):
    assert format_cost(amount) == expected


@pytest.mark.parametrize("count,expected", [(999, "999"), (1500, "1.5K"), (2_300_000, "2.3M")])
def test_format_tokens(count, expected):
    assert format_tokens(count) == expected


class TestFormatEnvelope:
    def test_raw_is_json_line(self):
        envelope = {"type": "ready", "content": {"version": "1"}}
        assert json.loads(format_envelope(envelope, raw=True)) == envelope

    def test_markup_in_body_is_escaped(self):
        rendered = format_envelope({"type": "streamChunk", "content": "[bold]x[/bold]", "requestId": "r"})
        assert "\\[bold]" in rendered
        assert rendered.startswith("[dim]#r[/dim] [white]streamChunk[/white]")


class TestTables:
    def test_usage_json_passthrough(self):
        stats = {"totalSessions": 2, "byModel": []}
        assert json.loads(format_usage(stats, as_json=True)) == stats

    def test_usage_table(self):
        stats = {
            "projectName": "repo",
            "totalSessions": 1,
            "totalUsage": {"totalTokens": 1500, "inputTokens": 1000, "outputTokens": 500},
            "estimatedCost": 0.02,
            "weeklyComparison": {"currentWeek": {"sessions": 1}, "trends": {"sessions": 0}},
            "byModel": [{"model": "claude-sonnet-4", "sessionCount": 1, "totalTokens": 1500, "totalCost": 0.02}],
            "dailyUsage": [{"date": "2026-10-01", "sessions": 1, "usage": {"totalTokens": 1500}, "cost": 0.02}],
        }
        output = format_usage(stats)
        assert "repo" in output
        assert "claude-sonnet-4" in output
        assert "2026-10-01" in output

    def test_providers_json_redacted(self):
        providers = [{"id": "p", "settingsConfig": {"env": {"ANTHROPIC_AUTH_TOKEN": "sk-x"}}}]
        assert "sk-x" not in format_providers(providers, as_json=True)

    def test_empty_mcp(self):
        assert format_mcp_servers([]) == "No MCP servers configured."

    def test_config_lists_sections(self):
        text = format_config(AIBridgeConfig(), None)
        assert "built-in defaults" in text
        assert "[bold]timeouts:[/bold]" in text
