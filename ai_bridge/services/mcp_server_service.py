"""MCP server definitions for both AI services.

Both families share one in-memory entry shape::

    {"id", "name", "server": {"type", "command" | "url", "args", "env", ...},
     "enabled", "apps"?, "startup_timeout_sec"?, "tool_timeout_sec"?,
     "enabled_tools"?, "disabled_tools"?}

and are persisted in each service's native file:

- Claude: ``~/.claude.json`` ``mcpServers`` (object keyed by id). Disabled
  ids live in ``disabledMcpServers`` and in
  ``projects[<workspace>].disabledMcpServers``. After every write the two
  keys are mirrored into ``~/.claude/settings.json``.
- Codex: ``~/.codex/config.toml`` table ``mcp_servers``; unrelated TOML keys
  are preserved across writes.

Enable/disable always goes through the full upsert path.
"""

import asyncio
import logging
from typing import Any

from mcp import StdioServerParameters

from ai_bridge.errors import NotFoundError, ValidationError
from ai_bridge.services.mcp_client import MCPClient
from ai_bridge.storage import JsonCodec, JsonDocumentStore, NativeDocument, TomlCodec
from ai_bridge.utils.paths import BridgePaths
from ai_bridge.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)

CLAUDE = "claude"
CODEX = "codex"
FAMILIES = (CLAUDE, CODEX)

CODEX_APPS = {"claude": False, "codex": True, "gemini": False}

# Server-spec fields carried between the shared shape and config.toml.
CODEX_SPEC_FIELDS = (
    "command", "args", "env", "cwd", "env_vars", "url",
    "bearer_token_env_var", "http_headers", "env_http_headers",
)
_CODEX_LIST_FIELDS = ("args", "env_vars")
_CODEX_MAP_FIELDS = ("env", "http_headers", "env_http_headers")
_CODEX_STR_FIELDS = ("command", "cwd", "url", "bearer_token_env_var")


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else [value]


def _string_ids(values: Any) -> list[str]:
    return [v for v in values if isinstance(v, str)] if isinstance(values, list) else []


def to_codex_entry(server_id: str, config: Any) -> dict:
    """Translate one ``mcp_servers`` TOML table into the shared shape."""
    entry: dict[str, Any] = {
        "id": server_id,
        "name": server_id,
        "server": {},
        "enabled": True,
        "apps": dict(CODEX_APPS),
    }
    if not isinstance(config, dict):
        return entry

    spec = entry["server"]
    spec["type"] = "http" if config.get("url") else "stdio"
    for key in _CODEX_STR_FIELDS:
        if config.get(key):
            spec[key] = str(config[key])
    for key in _CODEX_LIST_FIELDS:
        if config.get(key):
            spec[key] = _as_list(config[key])
    for key in _CODEX_MAP_FIELDS:
        if isinstance(config.get(key), dict):
            spec[key] = config[key]

    if isinstance(config.get("enabled"), bool):
        entry["enabled"] = config["enabled"]
    for key in ("startup_timeout_sec", "tool_timeout_sec"):
        if config.get(key) is not None:
            entry[key] = float(config[key])
    for key in ("enabled_tools", "disabled_tools"):
        if config.get(key):
            entry[key] = _as_list(config[key])
    return entry


def to_codex_table(entry: dict) -> dict:
    """Translate a shared-shape entry into its ``mcp_servers`` TOML table."""
    spec = entry.get("server") if isinstance(entry.get("server"), dict) else {}
    table = {key: spec[key] for key in CODEX_SPEC_FIELDS if spec.get(key)}
    if entry.get("enabled") is not None:
        table["enabled"] = bool(entry["enabled"])
    for key in ("startup_timeout_sec", "tool_timeout_sec"):
        if entry.get(key) is not None:
            table[key] = float(entry[key])
    for key in ("enabled_tools", "disabled_tools"):
        if entry.get(key):
            table[key] = entry[key]
    return table


def to_claude_entry(server_id: str, spec: Any, disabled: set[str]) -> dict | None:
    """Translate one ``mcpServers`` value into the shared shape."""
    if not isinstance(spec, dict):
        return None
    spec = dict(spec)
    if not spec.get("type"):
        spec["type"] = "http" if spec.get("url") else "stdio"
    return {
        "id": server_id,
        "name": server_id,
        "server": spec,
        "enabled": server_id not in disabled,
    }


class McpServerService:
    """List, upsert, delete, toggle and probe MCP servers per family."""

    def __init__(
        self,
        paths: BridgePaths,
        store: JsonDocumentStore | None = None,
        client_factory: Any = MCPClient,
    ) -> None:
        self._paths = paths
        self._store = store or JsonDocumentStore()
        self._client_factory = client_factory
        self._claude_json = NativeDocument(paths.claude_json_file, JsonCodec())
        self._codex_toml = NativeDocument(paths.codex_config_file, TomlCodec())

    @property
    def _project_key(self) -> str:
        return str(self._paths.workspace_root)

    @staticmethod
    def _check_family(family: str) -> None:
        if family not in FAMILIES:
            raise ValidationError(f"Unknown MCP family: {family!r}", field="family")

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def list_servers(self, family: str = CLAUDE) -> list[dict]:
        self._check_family(family)
        if family == CODEX:
            return self._list_codex()
        return self._list_claude()

    def get(self, server_id: str, family: str = CLAUDE) -> dict:
        """Return one entry.

        Raises:
            NotFoundError: If no server has this id.
        """
        for entry in self.list_servers(family):
            if isinstance(entry, dict) and entry.get("id") == server_id:
                return entry
        raise NotFoundError("MCP server", str(server_id))

    def upsert(self, server: dict, family: str = CLAUDE) -> dict:
        """Create or replace a server definition, including its enabled state.

        Raises:
            ValidationError: If the entry has no string id.
            BridgeIOError: If a native file exists but cannot be parsed; no
                file is written.
        """
        self._check_family(family)
        if not isinstance(server, dict) or not isinstance(server.get("id"), str) or not server["id"]:
            raise ValidationError("Server must have an id", field="id")
        if family == CODEX:
            self._upsert_codex(server)
        else:
            self._upsert_claude(server)
        logger.info("Upserted %s MCP server: %s", family, redact_for_logging(server))
        return server

    def delete(self, server_id: str, family: str = CLAUDE) -> None:
        """Delete a server and purge it from every disabled list.

        Raises:
            NotFoundError: If no server has this id.
            BridgeIOError: If a native file exists but cannot be parsed; no
                file is written.
        """
        self._check_family(family)
        if not isinstance(server_id, str) or not server_id:
            raise ValidationError("Server id is required", field="id")
        deleted = self._delete_codex(server_id) if family == CODEX else self._delete_claude(server_id)
        if not deleted:
            raise NotFoundError("MCP server", server_id)
        logger.info("Deleted %s MCP server %s", family, server_id)

    def toggle(self, server_id: str, family: str = CLAUDE) -> dict:
        """Flip a server's enabled flag through the upsert path.

        Returns:
            The updated entry.

        Raises:
            NotFoundError: If no server has this id.
        """
        current = self.get(server_id, family)
        updated = {**current, "enabled": not current.get("enabled", True)}
        self.upsert(updated, family)
        return updated

    def status(self, family: str = CLAUDE) -> list[dict]:
        """Return ``[{id, status: running|stopped}]`` from enabled flags."""
        return [
            {"id": entry.get("id"), "status": "running" if entry.get("enabled", True) else "stopped"}
            for entry in self.list_servers(family)
            if isinstance(entry, dict)
        ]

    async def probe(self, server_id: str, family: str = CLAUDE, timeout: float = 30.0) -> dict:
        """Connect to a stdio server and list its tools.

        Returns:
            ``{id, status: connected|failed, tools, error?}``. Connection
            failures are reported in the result, not raised.

        Raises:
            NotFoundError: If no server has this id.
            ValidationError: If the server is not a stdio server.
        """
        entry = self.get(server_id, family)
        spec = entry.get("server") if isinstance(entry.get("server"), dict) else {}
        if spec.get("type", "stdio") != "stdio" or not spec.get("command"):
            raise ValidationError(
                f"MCP server '{server_id}' is not a stdio server", field="server.type"
            )
        env = spec.get("env") if isinstance(spec.get("env"), dict) else None
        params = StdioServerParameters(
            command=str(spec["command"]),
            args=[str(a) for a in _as_list(spec.get("args") or [])],
            env={str(k): str(v) for k, v in env.items()} if env else None,
            cwd=spec.get("cwd") or None,
        )

        async def _list_tools() -> list[str]:
            async with self._client_factory(params) as client:
                return await client.list_tool_names()

        try:
            tools = await asyncio.wait_for(_list_tools(), timeout=timeout)
        except (asyncio.TimeoutError, TimeoutError):
            logger.warning("Probe of MCP server %s timed out after %ss", server_id, timeout)
            return {"id": server_id, "status": "failed", "tools": [], "error": "timeout"}
        except Exception as e:
            logger.warning("Probe of MCP server %s failed: %s", server_id, e)
            return {"id": server_id, "status": "failed", "tools": [], "error": str(e)}
        return {"id": server_id, "status": "connected", "tools": tools}

    # ------------------------------------------------------------------
    # Claude family
    # ------------------------------------------------------------------

    def _disabled_ids(self, claude_json: dict) -> set[str]:
        disabled = set(_string_ids(claude_json.get("disabledMcpServers")))
        projects = claude_json.get("projects")
        if isinstance(projects, dict):
            project = projects.get(self._project_key)
            if isinstance(project, dict):
                disabled.update(_string_ids(project.get("disabledMcpServers")))
        return disabled

    def _list_claude(self) -> list[dict]:
        claude_json = self._claude_json.read()
        if claude_json and isinstance(claude_json.get("mcpServers"), dict):
            disabled = self._disabled_ids(claude_json)
            entries = (
                to_claude_entry(sid, spec, disabled)
                for sid, spec in claude_json["mcpServers"].items()
            )
            return [entry for entry in entries if entry]

        config = self._store.load(self._paths.config_file, {})
        if isinstance(config.get("mcpServers"), list):
            return config["mcpServers"]
        legacy = self._store.load(self._paths.legacy_mcp_servers_file, {"servers": []})
        servers = legacy.get("servers")
        return servers if isinstance(servers, list) else []

    def _set_claude_disabled(self, claude_json: dict, server_id: str, enabled: bool) -> None:
        global_list = [i for i in _string_ids(claude_json.get("disabledMcpServers")) if i != server_id]
        claude_json["disabledMcpServers"] = global_list

        projects = claude_json.get("projects")
        if not isinstance(projects, dict):
            projects = claude_json["projects"] = {}
        project = projects.get(self._project_key)
        if not isinstance(project, dict):
            project = projects[self._project_key] = {}
        project_list = [i for i in _string_ids(project.get("disabledMcpServers")) if i != server_id]
        if not enabled:
            project_list.append(server_id)
        project["disabledMcpServers"] = project_list

    def _upsert_claude(self, server: dict) -> None:
        claude_json = self._claude_json.read_for_update() or {}
        settings = self._store.load(self._paths.claude_settings_file, {}, strict=True)
        if not isinstance(claude_json.get("mcpServers"), dict):
            claude_json["mcpServers"] = {}
        spec = server.get("server") if isinstance(server.get("server"), dict) else {}
        claude_json["mcpServers"][server["id"]] = dict(spec)
        self._set_claude_disabled(claude_json, server["id"], server.get("enabled") is not False)
        self._claude_json.write(claude_json)
        self._mirror_to_claude_settings(claude_json, settings)

    def _delete_claude(self, server_id: str) -> bool:
        claude_json = self._claude_json.read_for_update()
        if claude_json and isinstance(claude_json.get("mcpServers"), dict):
            if server_id not in claude_json["mcpServers"]:
                return False
            settings = self._store.load(self._paths.claude_settings_file, {}, strict=True)
            del claude_json["mcpServers"][server_id]
            if isinstance(claude_json.get("disabledMcpServers"), list):
                claude_json["disabledMcpServers"] = [
                    i for i in claude_json["disabledMcpServers"] if i != server_id
                ]
            projects = claude_json.get("projects")
            if isinstance(projects, dict):
                for project in projects.values():
                    if isinstance(project, dict) and isinstance(project.get("disabledMcpServers"), list):
                        project["disabledMcpServers"] = [
                            i for i in project["disabledMcpServers"] if i != server_id
                        ]
            self._claude_json.write(claude_json)
            self._mirror_to_claude_settings(claude_json, settings)
            return True

        config = self._store.load(self._paths.config_file, {}, strict=True)
        servers = config.get("mcpServers")
        if isinstance(servers, list):
            remaining = [s for s in servers if not (isinstance(s, dict) and s.get("id") == server_id)]
            if len(remaining) == len(servers):
                return False
            config["mcpServers"] = remaining
            self._store.save(self._paths.config_file, config)
            return True
        return False

    def _mirror_to_claude_settings(self, claude_json: dict, settings: dict) -> None:
        if isinstance(claude_json.get("mcpServers"), dict):
            settings["mcpServers"] = claude_json["mcpServers"]
        if isinstance(claude_json.get("disabledMcpServers"), list):
            settings["disabledMcpServers"] = claude_json["disabledMcpServers"]
        self._store.save(self._paths.claude_settings_file, settings)

    # ------------------------------------------------------------------
    # Codex family
    # ------------------------------------------------------------------

    def _list_codex(self) -> list[dict]:
        config = self._codex_toml.read()
        if not config or not isinstance(config.get("mcp_servers"), dict):
            return []
        return [to_codex_entry(sid, value) for sid, value in config["mcp_servers"].items()]

    def _upsert_codex(self, server: dict) -> None:
        config = self._codex_toml.read_for_update() or {}
        if not isinstance(config.get("mcp_servers"), dict):
            config["mcp_servers"] = {}
        config["mcp_servers"][server["id"]] = to_codex_table(server)
        self._codex_toml.write(config)

    def _delete_codex(self, server_id: str) -> bool:
        config = self._codex_toml.read_for_update()
        if not config or not isinstance(config.get("mcp_servers"), dict):
            return False
        if server_id not in config["mcp_servers"]:
            return False
        del config["mcp_servers"][server_id]
        self._codex_toml.write(config)
        return True
