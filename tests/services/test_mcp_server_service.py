"""Tests for MCP server reconciliation in ~/.claude.json and config.toml."""

import asyncio
import tomllib

import pytest

from ai_bridge.errors import BridgeIOError, NotFoundError, ValidationError
from ai_bridge.services.mcp_server_service import (
    CLAUDE,
    CODEX,
    McpServerService,
    to_codex_entry,
    to_codex_table,
)


def _server(sid="ctx", enabled=True, **spec):
    return {
        "id": sid,
        "name": sid,
        "server": spec or {"type": "stdio", "command": "npx", "args": ["-y", "ctx7"]},
        "enabled": enabled,
    }


class FakeClient:
    """Stands in for MCPClient in probe tests."""

    tools = ["search", "fetch"]
    error: Exception | None = None
    delay: float = 0.0

    def __init__(self, params):
        self.params = params

    async def __aenter__(self):
        if self.error:
            raise self.error
        return self

    async def __aexit__(self, *exc):
        return None

    async def list_tool_names(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.tools)


class TestCodexTranslation:
    def test_entry_from_toml_table(self):
        entry = to_codex_entry("web", {"url": "https://x/mcp", "enabled": False, "tool_timeout_sec": 5})
        assert entry["server"] == {"type": "http", "url": "https://x/mcp"}
        assert entry["enabled"] is False
        assert entry["tool_timeout_sec"] == 5.0
        assert entry["apps"] == {"claude": False, "codex": True, "gemini": False}

    def test_scalar_args_become_list(self):
        entry = to_codex_entry("s", {"command": "uvx", "args": "one"})
        assert entry["server"]["args"] == ["one"]

    def test_table_drops_type_and_empty_fields(self):
        table = to_codex_table(_server(command="uvx", args=[], type="stdio"))
        assert table == {"command": "uvx", "enabled": True}


class TestClaudeFamily:
    """Tests for servers stored in ~/.claude.json."""

    def test_empty_list(self, paths):
        assert McpServerService(paths).list_servers(CLAUDE) == []

    def test_upsert_writes_claude_json_and_mirror(self, paths, read_json):
        service = McpServerService(paths)
        service.upsert(_server())
        claude_json = read_json(paths.claude_json_file)
        assert claude_json["mcpServers"]["ctx"]["command"] == "npx"
        project = claude_json["projects"][str(paths.workspace_root)]
        assert project["disabledMcpServers"] == []
        settings = read_json(paths.claude_settings_file)
        assert settings["mcpServers"] == claude_json["mcpServers"]

    def test_disable_then_enable_clears_both_lists(self, paths, write_json, read_json):
        write_json(paths.claude_json_file, {
            "mcpServers": {"ctx": {"command": "npx"}},
            "disabledMcpServers": ["ctx"],
        })
        service = McpServerService(paths)
        assert service.get("ctx")["enabled"] is False

        service.upsert({**_server(), "enabled": True})
        claude_json = read_json(paths.claude_json_file)
        assert claude_json["disabledMcpServers"] == []
        assert service.get("ctx")["enabled"] is True

    def test_toggle_goes_through_upsert(self, paths, read_json):
        service = McpServerService(paths)
        service.upsert(_server())
        updated = service.toggle("ctx")
        assert updated["enabled"] is False
        project = read_json(paths.claude_json_file)["projects"][str(paths.workspace_root)]
        assert project["disabledMcpServers"] == ["ctx"]
        assert service.status() == [{"id": "ctx", "status": "stopped"}]

    def test_type_is_inferred(self, paths, write_json):
        write_json(paths.claude_json_file, {"mcpServers": {"web": {"url": "https://x"}}})
        assert McpServerService(paths).get("web")["server"]["type"] == "http"

    def test_unrelated_keys_preserved(self, paths, write_json, read_json):
        write_json(paths.claude_json_file, {"numStartups": 7, "mcpServers": {}})
        McpServerService(paths).upsert(_server())
        assert read_json(paths.claude_json_file)["numStartups"] == 7

    def test_delete_purges_disabled_lists(self, paths, write_json, read_json):
        workspace = str(paths.workspace_root)
        write_json(paths.claude_json_file, {
            "mcpServers": {"ctx": {"command": "npx"}, "keep": {"command": "x"}},
            "disabledMcpServers": ["ctx"],
            "projects": {workspace: {"disabledMcpServers": ["ctx", "keep"]}},
        })
        McpServerService(paths).delete("ctx")
        claude_json = read_json(paths.claude_json_file)
        assert list(claude_json["mcpServers"]) == ["keep"]
        assert claude_json["disabledMcpServers"] == []
        assert claude_json["projects"][workspace]["disabledMcpServers"] == ["keep"]

    def test_delete_missing_raises(self, paths):
        with pytest.raises(NotFoundError):
            McpServerService(paths).delete("ghost")

    def test_falls_back_to_canonical_list(self, paths, write_json):
        write_json(paths.config_file, {"mcpServers": [_server("legacy")]})
        assert [s["id"] for s in McpServerService(paths).list_servers()] == ["legacy"]

    def test_upsert_requires_id(self, paths):
        with pytest.raises(ValidationError):
            McpServerService(paths).upsert({"server": {}})

    def test_unknown_family(self, paths):
        with pytest.raises(ValidationError):
            McpServerService(paths).list_servers("gemini")


class TestCodexFamily:
    """Tests for servers stored in ~/.codex/config.toml."""

    def test_upsert_preserves_unrelated_toml(self, paths):
        paths.codex_config_file.parent.mkdir(parents=True)
        paths.codex_config_file.write_text('model = "o3"\n\n[profiles.fast]\nmodel = "o4-mini"\n')
        service = McpServerService(paths)
        service.upsert(_server("ctx", command="npx", args=["-y"], env={"K": "v"}), CODEX)

        config = tomllib.loads(paths.codex_config_file.read_text())
        assert config["model"] == "o3"
        assert config["profiles"]["fast"]["model"] == "o4-mini"
        assert config["mcp_servers"]["ctx"] == {"command": "npx", "args": ["-y"], "env": {"K": "v"}, "enabled": True}

    def test_list_and_toggle(self, paths):
        service = McpServerService(paths)
        service.upsert(_server("ctx", command="npx"), CODEX)
        service.toggle("ctx", CODEX)
        entry = service.get("ctx", CODEX)
        assert entry["enabled"] is False
        assert entry["server"] == {"type": "stdio", "command": "npx"}

    def test_delete(self, paths):
        service = McpServerService(paths)
        service.upsert(_server("ctx", command="npx"), CODEX)
        service.delete("ctx", CODEX)
        assert service.list_servers(CODEX) == []
        with pytest.raises(NotFoundError):
            service.delete("ctx", CODEX)


class TestDamagedNativeFiles:
    """A native file that fails to parse is reported and never rewritten."""

    def test_codex_upsert_with_invalid_toml(self, paths):
        paths.codex_config_file.parent.mkdir(parents=True)
        original = b'model = "o3"\nmodel_provider = \n'
        paths.codex_config_file.write_bytes(original)

        with pytest.raises(BridgeIOError) as exc_info:
            McpServerService(paths).upsert(_server("ctx", command="npx"), CODEX)

        assert exc_info.value.path == str(paths.codex_config_file)
        assert paths.codex_config_file.read_bytes() == original

    def test_codex_delete_with_invalid_toml(self, paths):
        paths.codex_config_file.parent.mkdir(parents=True)
        original = b'[mcp_servers.ctx]\ncommand = "npx"\n[unclosed\n'
        paths.codex_config_file.write_bytes(original)

        with pytest.raises(BridgeIOError):
            McpServerService(paths).delete("ctx", CODEX)
        assert paths.codex_config_file.read_bytes() == original

    def test_claude_upsert_with_truncated_claude_json(self, paths):
        original = b'{"oauthAccount": {"emailAddress": "dev@example.com"}, "mcpServers": {'
        paths.claude_json_file.write_bytes(original)

        with pytest.raises(BridgeIOError):
            McpServerService(paths).upsert(_server())

        assert paths.claude_json_file.read_bytes() == original
        assert not paths.claude_settings_file.exists()

    def test_claude_upsert_with_damaged_settings_writes_nothing(self, paths, write_json, read_json):
        write_json(paths.claude_json_file, {"oauthAccount": {"emailAddress": "dev@example.com"}})
        before = paths.claude_json_file.read_bytes()
        paths.claude_settings_file.parent.mkdir(parents=True, exist_ok=True)
        paths.claude_settings_file.write_text('{"env": {"A": "1"}', encoding="utf-8")

        with pytest.raises(BridgeIOError):
            McpServerService(paths).upsert(_server())

        assert paths.claude_json_file.read_bytes() == before
        assert paths.claude_settings_file.read_text(encoding="utf-8") == '{"env": {"A": "1"}'

    def test_listing_tolerates_damaged_file(self, paths):
        paths.codex_config_file.parent.mkdir(parents=True)
        paths.codex_config_file.write_text("[unclosed\n", encoding="utf-8")
        assert McpServerService(paths).list_servers(CODEX) == []


class TestProbe:
    """Tests for live tool listing over stdio."""

    @pytest.mark.asyncio
    async def test_connected(self, paths):
        service = McpServerService(paths, client_factory=FakeClient)
        service.upsert(_server(command="npx", args=["-y", "ctx7"], env={"TOKEN": 1}))
        result = await service.probe("ctx")
        assert result == {"id": "ctx", "status": "connected", "tools": ["search", "fetch"]}

    @pytest.mark.asyncio
    async def test_connection_failure_is_reported(self, paths):
        class Failing(FakeClient):
            error = RuntimeError("spawn failed")

        service = McpServerService(paths, client_factory=Failing)
        service.upsert(_server(command="nope"))
        result = await service.probe("ctx")
        assert result["status"] == "failed"
        assert result["error"] == "spawn failed"

    @pytest.mark.asyncio
    async def test_timeout_is_reported(self, paths):
        class Slow(FakeClient):
            delay = 1.0

        service = McpServerService(paths, client_factory=Slow)
        service.upsert(_server(command="npx"))
        result = await service.probe("ctx", timeout=0.01)
        assert result == {"id": "ctx", "status": "failed", "tools": [], "error": "timeout"}

    @pytest.mark.asyncio
    async def test_http_server_cannot_be_probed(self, paths):
        service = McpServerService(paths, client_factory=FakeClient)
        service.upsert(_server("web", type="http", url="https://x/mcp"))
        with pytest.raises(ValidationError):
            await service.probe("web")
