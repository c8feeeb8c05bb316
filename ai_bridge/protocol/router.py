"""Message router: canonical type -> handler.

Every inbound envelope is normalized, dispatched to exactly one handler
and answered with at least one outbound envelope carrying the same
``requestId``. Handler exceptions are converted to an ``error`` envelope
here and nowhere else; unknown types get an empty ``<type>Response``.
"""

import inspect
import json
import logging
import shutil
import sys
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from ai_bridge import __version__
from ai_bridge.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    classify_exception,
    error_envelope_content,
)
from ai_bridge.protocol.context import HandlerContext
from ai_bridge.protocol.envelope import Envelope, RequestId, normalize_type
from ai_bridge.services.chat_service import ChatRequest, normalize_permission_mode
from ai_bridge.services.mcp_server_service import CLAUDE, CODEX
from ai_bridge.services.provider_service import LOCAL_PROVIDER_ID
from ai_bridge.services.skill_service import parse_skill_id
from ai_bridge.services.usage_service import aggregate
from ai_bridge.utils.redaction import redact_text

logger = logging.getLogger(__name__)

FILE_OPERATIONS = frozenset({
    "openFile",
    "openBrowser",
    "refreshFile",
    "showDiff",
    "showMultiEditDiff",
    "rewindFiles",
    "listFiles",
    "saveJson",
})
CODEX_PROVIDERS = ("codex", "openai")

# canonical type -> (method name, keyword arguments)
_ROUTES: dict[str, tuple[str, dict[str, Any]]] = {}


def handles(*types: str, **kwargs: Any) -> Callable:
    """Register a Router method for one or more canonical types."""

    def decorator(fn: Callable) -> Callable:
        for message_type in types:
            _ROUTES[message_type] = (fn.__name__, kwargs)
        return fn

    return decorator


class Sender(Protocol):
    def send(self, type_: str, content: Any = None, request_id: RequestId | None = None) -> None: ...


def _obj(content: Any) -> dict:
    return content if isinstance(content, dict) else {}


def _string_or_key(content: Any, key: str) -> str | None:
    """Accept either a bare string or ``{key: str}``."""
    if isinstance(content, str):
        return content or None
    value = _obj(content).get(key)
    return value if isinstance(value, str) and value else None


def _skill_target(content: Any) -> tuple[str | None, str, bool]:
    """Resolve ``(name, scope, enabled)`` from ``{name|id, scope, enabled}``."""
    data = _obj(content)
    scope = "local" if data.get("scope") == "local" else "global"
    name = data.get("name") if isinstance(data.get("name"), str) else None
    enabled = data["enabled"] if isinstance(data.get("enabled"), bool) else True
    if not name and isinstance(data.get("id"), str):
        name, enabled = parse_skill_id(data["id"], scope)
    return name or None, scope, enabled


class Router:
    """Dispatches envelopes against one ``HandlerContext``."""

    def __init__(
        self,
        context: HandlerContext,
        outbox: Sender,
        on_workspace_change: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.ctx = context
        self.outbox = outbox
        self.on_workspace_change = on_workspace_change

    @property
    def services(self):
        return self.ctx.services

    def _send(self, type_: str, content: Any = None, request_id: RequestId | None = None) -> None:
        self.outbox.send(type_, content, request_id)

    async def dispatch(self, envelope: Envelope) -> None:
        raw_type = envelope.type
        message_type = normalize_type(raw_type)
        request_id = envelope.requestId
        logger.debug("Handling message: %s -> %s", raw_type, message_type)

        if message_type in FILE_OPERATIONS:
            # Editor integrations are performed by the host.
            self._send("fileOperation", {"operation": message_type, **_obj(envelope.content)}, request_id)
            return

        route = _ROUTES.get(message_type)
        if route is None:
            logger.warning("Unknown message type: %s", message_type)
            self._send(f"{message_type}Response", {}, request_id)
            return

        name, kwargs = route
        try:
            result = getattr(self, name)(envelope.content, request_id, **kwargs)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Error handling %s: %s", message_type, redact_text(str(e)))
            logger.debug("Handler traceback", exc_info=True)
            self._send("error", error_envelope_content(e), request_id)

    # ------------------------------------------------------------------
    # Session & message
    # ------------------------------------------------------------------

    @handles("sendMessage", "sendMessageWithAttachments")
    async def send_message(self, content: Any, request_id: RequestId | None) -> None:
        """Stream one prompt: streamStart, chunks in arrival order, streamEnd.

        streamEnd is always sent. Failures become an inline error chunk.
        """
        data = {"text": content} if isinstance(content, str) else _obj(content)
        session_id = data.get("sessionId")
        provider = data.get("provider") or self.ctx.provider
        family = "codex" if provider in CODEX_PROVIDERS else "claude"
        settings = self.services.settings
        streaming = settings.get_streaming_enabled()
        thinking = settings.get().get("thinkingEnabled") is not False

        def chunk(delta: str) -> None:
            self._send("streamChunk", {"delta": delta, "sessionId": session_id}, request_id)

        channel_key = request_id if request_id is not None else uuid.uuid4().hex
        buffered: list[str] = []
        self._send("streamStart", {"sessionId": session_id}, request_id)
        try:
            cli_path = self.services.dependencies.cli_path(family)
            if cli_path is None:
                logger.warning("%s SDK unavailable; replying with install instructions", family)
                chunk(self.services.dependencies.remediation_text(family))
                return

            request = ChatRequest(
                text=str(data.get("text") or data.get("message") or ""),
                cwd=data.get("workingDirectory") or self.ctx.working_directory,
                session_id=session_id or self.ctx.sdk_session_id,
                model=data.get("model") or self.ctx.model,
                permission_mode=normalize_permission_mode(data.get("permissionMode", self.ctx.mode)),
                thinking_enabled=thinking,
                attachments=[a for a in data.get("attachments") or [] if isinstance(a, dict)],
            )
            channel = self.ctx.channel_factory(family, cli_path)
            self.ctx.active_channels[channel_key] = channel

            async for event in channel.stream(request):
                if event.kind == "text":
                    if streaming:
                        chunk(event.data)
                    else:
                        buffered.append(event.data)
                elif event.kind == "thinking":
                    if thinking:
                        self._send("thinkingChunk", {"delta": event.data, "sessionId": session_id}, request_id)
                elif event.kind == "message":
                    message = event.data if isinstance(event.data, dict) else {}
                    sdk_session = message.get("session_id") or message.get("thread_id")
                    if isinstance(sdk_session, str) and sdk_session:
                        self.ctx.sdk_session_id = sdk_session
                    self._send("messageUpdate", {"message": event.data, "sessionId": session_id}, request_id)
                elif event.kind == "error":
                    if not streaming and buffered:
                        chunk("".join(buffered))
                        buffered = []
                    chunk(f"\n\nError: {event.data}")

            if buffered:
                chunk("".join(buffered))
        except Exception as e:
            logger.error("Chat request failed: %s", redact_text(str(e)))
            if buffered:
                chunk("".join(buffered))
            chunk(f"\n\nError: {e}")
        finally:
            self.ctx.active_channels.pop(channel_key, None)
            self._send("streamEnd", {"sessionId": session_id}, request_id)

    @handles("getHistory")
    def get_history(self, content: Any, request_id: RequestId | None) -> None:
        self._send("historyLoaded", self.services.history.list_sessions(), request_id)

    @handles("loadSession")
    def load_session(self, content: Any, request_id: RequestId | None) -> None:
        session_id = _string_or_key(content, "sessionId")
        if not session_id:
            raise ValidationError("sessionId is required", field="sessionId")
        messages = self.services.history.load(session_id)
        self.ctx.session_id = session_id
        self.ctx.sdk_session_id = session_id
        self._send("updateMessages", json.dumps(messages, ensure_ascii=False, default=str), request_id)

    @handles("deleteSession")
    def delete_session(self, content: Any, request_id: RequestId | None) -> None:
        session_id = _string_or_key(content, "sessionId")
        self.services.history.delete(session_id)
        self._send("sessionDeleted", {"sessionId": session_id}, request_id)

    @handles("createNewSession")
    def create_new_session(self, content: Any, request_id: RequestId | None) -> None:
        self._send("sessionCreated", {"sessionId": self.ctx.new_session()}, request_id)

    @handles("interruptSession")
    async def interrupt_session(self, content: Any, request_id: RequestId | None) -> None:
        """Signal every running chat channel. Best effort only."""
        interrupted = 0
        for channel in list(self.ctx.active_channels.values()):
            if await channel.interrupt():
                interrupted += 1
        logger.info("Interrupt delivered to %d running channel(s)", interrupted)
        self._send("sessionInterrupted", {"success": True, "interrupted": interrupted}, request_id)

    @handles("exportSession")
    def export_session(self, content: Any, request_id: RequestId | None) -> None:
        data = _obj(content)
        session_id = _string_or_key(content, "sessionId")
        exported = self.services.history.export(session_id, data.get("title"))
        self._send("sessionExported", exported, request_id)

    @handles("toggleFavorite")
    def toggle_favorite(self, content: Any, request_id: RequestId | None) -> None:
        session_id = _string_or_key(content, "sessionId")
        favorite = self.services.history.toggle_favorite(session_id)
        self._send("favoriteToggled", {"sessionId": session_id, "favorite": favorite}, request_id)

    @handles("updateTitle")
    def update_title(self, content: Any, request_id: RequestId | None) -> None:
        data = _obj(content)
        session_id = data.get("sessionId")
        title = data.get("customTitle", data.get("title"))
        stored = self.services.history.update_title(session_id, title)
        self._send("titleUpdated", {"sessionId": session_id, "title": stored}, request_id)

    @handles("createNewTab")
    def create_new_tab(self, content: Any, request_id: RequestId | None) -> None:
        self._send("tabCreated", {"success": True}, request_id)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @handles("getSettings")
    def get_settings(self, content: Any, request_id: RequestId | None) -> None:
        self._send("settingsLoaded", self.services.settings.get(), request_id)

    @handles("updateSettings")
    def update_settings(self, content: Any, request_id: RequestId | None) -> None:
        self._send("settingsUpdated", self.services.settings.update(_obj(content)), request_id)

    @handles("getStreamingEnabled")
    def get_streaming_enabled(self, content: Any, request_id: RequestId | None) -> None:
        enabled = self.services.settings.get_streaming_enabled()
        self._send("streamingEnabledLoaded", {"streamingEnabled": enabled}, request_id)

    @handles("setStreamingEnabled")
    def set_streaming_enabled(self, content: Any, request_id: RequestId | None) -> None:
        data = _obj(content)
        if isinstance(data.get("streamingEnabled"), bool):
            desired = data["streamingEnabled"]
        else:
            desired = data.get("enabled") is not False
        enabled = self.services.settings.set_streaming_enabled(desired)
        self._send("streamingEnabledUpdated", {"streamingEnabled": enabled}, request_id)

    @handles("getSendShortcut")
    def get_send_shortcut(self, content: Any, request_id: RequestId | None) -> None:
        self._send("sendShortcutLoaded", {"shortcut": self.services.settings.get_send_shortcut()}, request_id)

    @handles("setSendShortcut")
    def set_send_shortcut(self, content: Any, request_id: RequestId | None) -> None:
        shortcut = self.services.settings.set_send_shortcut(_obj(content).get("shortcut"))
        self._send("sendShortcutUpdated", {"shortcut": shortcut}, request_id)

    @handles("getThinkingEnabled")
    def get_thinking_enabled(self, content: Any, request_id: RequestId | None) -> None:
        self._send("thinkingEnabledLoaded", {"enabled": self.services.settings.get_thinking_enabled()}, request_id)

    @handles("setThinkingEnabled")
    def set_thinking_enabled(self, content: Any, request_id: RequestId | None) -> None:
        enabled = self.services.settings.set_thinking_enabled(_obj(content).get("enabled") is not False)
        self._send("thinkingEnabledUpdated", {"enabled": enabled}, request_id)

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    @handles("getProviderConfig")
    def get_provider_config(self, content: Any, request_id: RequestId | None) -> None:
        provider = _obj(content).get("provider")
        config = self.services.providers.get_provider_config(provider)
        self._send("providerConfigLoaded", {"provider": provider, "config": config}, request_id)

    @handles("updateProviderConfig")
    def update_provider_config(self, content: Any, request_id: RequestId | None) -> None:
        data = _obj(content)
        provider = data.get("provider")
        config = self.services.providers.update_provider_config(provider, data.get("config"))
        self._send("providerConfigUpdated", {"provider": provider, "config": config}, request_id)

    @handles("getCurrentClaudeConfig")
    def get_current_claude_config(self, content: Any, request_id: RequestId | None) -> None:
        self._send("currentClaudeConfigLoaded", self.services.providers.get_current_claude_config(), request_id)

    @handles("updateCurrentClaudeConfig")
    def update_current_claude_config(self, content: Any, request_id: RequestId | None) -> None:
        updated = self.services.providers.update_current_claude_config(_obj(content))
        self._send("currentClaudeConfigUpdated", updated, request_id)

    @handles("getActiveProvider")
    def get_active_provider(self, content: Any, request_id: RequestId | None) -> None:
        self._send("activeProviderLoaded", self.services.providers.get_active_claude(), request_id)

    @handles("setActiveProvider", "setProvider")
    def set_active_provider(self, content: Any, request_id: RequestId | None) -> None:
        provider = _string_or_key(content, "provider")
        if not provider:
            raise ValidationError("Missing provider", field="provider")
        self.ctx.provider = self.services.settings.set_active_chat_provider(provider)
        self._send("activeProviderUpdated", {"provider": self.ctx.provider}, request_id)

    def _send_active_claude_state(self, request_id: RequestId | None) -> None:
        self.get_current_claude_config(None, request_id)
        self.get_active_provider(None, request_id)

    def _send_providers(self, request_id: RequestId | None) -> None:
        self._send("providersLoaded", self.services.providers.list_claude(), request_id)

    @handles("getProviders")
    def get_providers(self, content: Any, request_id: RequestId | None) -> None:
        self._send_providers(request_id)

    @handles("addProvider")
    def add_provider(self, content: Any, request_id: RequestId | None) -> None:
        if not isinstance(content, dict):
            raise ValidationError("Invalid provider payload")
        self.services.providers.add_claude(content)
        self._send_providers(request_id)

    @handles("updateProvider")
    def update_provider(self, content: Any, request_id: RequestId | None) -> None:
        data = _obj(content)
        if not isinstance(data.get("id"), str) or not isinstance(data.get("updates"), dict):
            raise ValidationError("Invalid update_provider payload")
        if self.services.providers.update_claude(data["id"], data["updates"]):
            self._send_active_claude_state(request_id)
        self._send_providers(request_id)

    @handles("deleteProvider")
    def delete_provider(self, content: Any, request_id: RequestId | None) -> None:
        provider_id = _obj(content).get("id")
        if not isinstance(provider_id, str):
            raise ValidationError("Invalid delete_provider payload", field="id")
        if self.services.providers.delete_claude(provider_id):
            self._send("showSwitchSuccess", {"message": "Reverted to the local settings.json configuration"}, request_id)
            self._send_active_claude_state(request_id)
        self._send_providers(request_id)

    @handles("switchProvider")
    def switch_provider(self, content: Any, request_id: RequestId | None) -> None:
        provider_id = _string_or_key(content, "id")
        if not provider_id:
            raise ValidationError("Missing provider id", field="id")
        try:
            self.services.providers.switch_claude(provider_id)
        except NotFoundError as e:
            self._send("backend_notification", {"type": "error", "message": str(e)}, request_id)
            raise
        if provider_id == LOCAL_PROVIDER_ID:
            message = "Switched to the local ~/.claude/settings.json configuration"
        else:
            message = "Switched: synced to ~/.claude/settings.json"
        self._send("showSwitchSuccess", {"message": message}, request_id)
        self._send_providers(request_id)
        self._send_active_claude_state(request_id)

    @handles("saveImportedProviders")
    def save_imported_providers(self, content: Any, request_id: RequestId | None) -> None:
        providers = content if isinstance(content, list) else _obj(content).get("providers")
        if not isinstance(providers, list):
            raise ValidationError("providers must be a list", field="providers")
        count = self.services.providers.import_claude(providers)
        self._send_providers(request_id)
        self._send(
            "backend_notification",
            {"type": "success", "message": f"Imported {count} provider configuration(s)"},
            request_id,
        )

    def _send_codex_providers(self, request_id: RequestId | None) -> None:
        self._send("codexProvidersLoaded", self.services.providers.list_codex(), request_id)

    @handles("getCodexProviders")
    def get_codex_providers(self, content: Any, request_id: RequestId | None) -> None:
        self._send_codex_providers(request_id)

    @handles("addCodexProvider")
    def add_codex_provider(self, content: Any, request_id: RequestId | None) -> None:
        if not isinstance(content, dict):
            raise ValidationError("Invalid codex provider payload")
        self.services.providers.add_codex(content)
        self._send_codex_providers(request_id)

    @handles("updateCodexProvider")
    def update_codex_provider(self, content: Any, request_id: RequestId | None) -> None:
        data = _obj(content)
        if not isinstance(data.get("id"), str) or not isinstance(data.get("updates"), dict):
            raise ValidationError("Invalid update_codex_provider payload")
        self.services.providers.update_codex(data["id"], data["updates"])
        self._send_codex_providers(request_id)

    @handles("switchCodexProvider")
    def switch_codex_provider(self, content: Any, request_id: RequestId | None) -> None:
        provider_id = _string_or_key(content, "id")
        if not provider_id:
            raise ValidationError("Missing provider id", field="id")
        self.services.providers.switch_codex(provider_id)
        self._send_codex_providers(request_id)

    @handles("deleteCodexProvider")
    def delete_codex_provider(self, content: Any, request_id: RequestId | None) -> None:
        provider_id = _string_or_key(content, "id")
        if not provider_id:
            raise ValidationError("Missing provider id", field="id")
        self.services.providers.delete_codex(provider_id)
        self._send_codex_providers(request_id)

    # ------------------------------------------------------------------
    # Model, mode, permissions
    # ------------------------------------------------------------------

    @handles("setModel")
    def set_model(self, content: Any, request_id: RequestId | None) -> None:
        model = _string_or_key(content, "model")
        if model:
            self.ctx.model = model
        self._send("modelSet", {"model": self.ctx.model}, request_id)

    @handles("setMode")
    def set_mode(self, content: Any, request_id: RequestId | None) -> None:
        mode = _string_or_key(content, "mode")
        if mode:
            self.ctx.mode = mode
        self._send("modeSet", {"mode": self.ctx.mode}, request_id)

    @handles("setReasoningEffort")
    def set_reasoning_effort(self, content: Any, request_id: RequestId | None) -> None:
        effort = _string_or_key(content, "effort") or _string_or_key(content, "reasoningEffort")
        if effort:
            self.ctx.reasoning_effort = effort
        self._send("reasoningEffortSet", {"effort": self.ctx.reasoning_effort}, request_id)

    @handles("permissionResponse", "permissionDecision", reply="permissionProcessed")
    @handles("askUserQuestionResponse", reply="askUserQuestionProcessed")
    @handles("planApprovalResponse", reply="planApprovalProcessed")
    def acknowledge(self, content: Any, request_id: RequestId | None, reply: str) -> None:
        self._send(reply, {"success": True}, request_id)

    # ------------------------------------------------------------------
    # MCP servers
    # ------------------------------------------------------------------

    def _send_mcp_servers(self, family: str, request_id: RequestId | None) -> None:
        self._send("mcpServersLoaded", self.services.mcp.list_servers(family), request_id)

    @handles("getMcpServers", family=CLAUDE)
    @handles("getCodexMcpServers", family=CODEX)
    def get_mcp_servers(self, content: Any, request_id: RequestId | None, family: str) -> None:
        self._send_mcp_servers(family, request_id)

    @handles("addMcpServer", family=CLAUDE, reply="mcpServerAdded")
    @handles("addCodexMcpServer", family=CODEX, reply="mcpServerAdded")
    @handles("updateMcpServer", family=CLAUDE, reply="mcpServerUpdated")
    @handles("updateCodexMcpServer", family=CODEX, reply="mcpServerUpdated")
    def upsert_mcp_server(self, content: Any, request_id: RequestId | None, family: str, reply: str) -> None:
        server = self.services.mcp.upsert(content, family)
        self._send(reply, server, request_id)
        self._send_mcp_servers(family, request_id)

    @handles("deleteMcpServer", family=CLAUDE)
    @handles("deleteCodexMcpServer", family=CODEX)
    def delete_mcp_server(self, content: Any, request_id: RequestId | None, family: str) -> None:
        server_id = _string_or_key(content, "id")
        self.services.mcp.delete(server_id, family)
        self._send("mcpServerDeleted", {"id": server_id}, request_id)
        self._send_mcp_servers(family, request_id)

    @handles("toggleMcpServer", family=CLAUDE)
    @handles("toggleCodexMcpServer", family=CODEX)
    def toggle_mcp_server(self, content: Any, request_id: RequestId | None, family: str) -> None:
        server_id = _string_or_key(content, "id")
        updated = self.services.mcp.toggle(server_id, family)
        self._send("mcpServerToggled", updated, request_id)
        self._send_mcp_servers(family, request_id)

    @handles("getMcpServerStatus")
    def get_mcp_server_status(self, content: Any, request_id: RequestId | None) -> None:
        self._send("mcpServerStatusLoaded", {"statuses": self.services.mcp.status(CLAUDE)}, request_id)

    @handles("probeMcpServer")
    async def probe_mcp_server(self, content: Any, request_id: RequestId | None) -> None:
        data = _obj(content)
        family = CODEX if data.get("family") == CODEX else CLAUDE
        result = await self.services.mcp.probe(_string_or_key(content, "id"), family)
        self._send("mcpServerProbed", result, request_id)

    # ------------------------------------------------------------------
    # Skills
    # ------------------------------------------------------------------

    @handles("getSkills")
    def get_skills(self, content: Any, request_id: RequestId | None) -> None:
        self._send("skillsLoaded", self.services.skills.list_all(), request_id)

    @handles("importSkill")
    def import_skill(self, content: Any, request_id: RequestId | None) -> None:
        data = _obj(content)
        scope = "local" if data.get("scope") == "local" else "global"
        if isinstance(data.get("paths"), list):
            paths = [p for p in data["paths"] if isinstance(p, str)]
        elif isinstance(data.get("files"), list):
            paths = [p for p in data["files"] if isinstance(p, str)]
        elif isinstance(data.get("path"), str):
            paths = [data["path"]]
        else:
            paths = []
        if not paths:
            self._send("skillImported", {"success": False, "error": "No files selected"}, request_id)
            return
        self._send("skillImported", self.services.skills.import_paths(paths, scope), request_id)

    @handles("openSkill")
    def open_skill(self, content: Any, request_id: RequestId | None) -> None:
        path = _string_or_key(content, "path")
        if not path:
            raise ValidationError("Skill path not provided", field="path")
        resolved = self.services.skills.resolve_open_path(path)
        self._send("fileOperation", {"operation": "openFile", "path": resolved}, request_id)

    def _skill_failure(self, reply: str, exc: Exception, request_id: RequestId | None) -> None:
        error = classify_exception(exc)
        body: dict[str, Any] = {"success": False, "error": error.message, "errorCode": error.code}
        if isinstance(exc, ConflictError):
            body["conflict"] = True
        logger.warning("%s failed: %s", reply, error.message)
        self._send(reply, body, request_id)

    @handles("deleteSkill")
    def delete_skill(self, content: Any, request_id: RequestId | None) -> None:
        name, scope, enabled = _skill_target(content)
        if not name:
            self._send("skillDeleted", {"success": False, "error": "Skill name missing"}, request_id)
            return
        try:
            result = self.services.skills.delete(name, scope, enabled)
        except (NotFoundError, ValidationError, OSError) as e:
            self._skill_failure("skillDeleted", e, request_id)
            return
        self._send("skillDeleted", result, request_id)

    @handles("toggleSkill")
    def toggle_skill(self, content: Any, request_id: RequestId | None) -> None:
        name, scope, enabled = _skill_target(content)
        if not name:
            raise ValidationError("Skill name missing", field="name")
        try:
            result = self.services.skills.toggle(name, scope, enabled)
        except (NotFoundError, ConflictError, ValidationError, OSError) as e:
            self._skill_failure("skillToggled", e, request_id)
            return
        self._send("skillToggled", result, request_id)

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def _send_agents(self, request_id: RequestId | None) -> None:
        self._send("agentsLoaded", self.services.agents.list_agents(), request_id)

    def _agent_result(self, operation: str, request_id: RequestId | None, action: Callable[[], Any]) -> None:
        try:
            action()
        except (ValidationError, NotFoundError, ConflictError, OSError) as e:
            error = classify_exception(e)
            logger.warning("Agent %s failed: %s", operation, error.message)
            self._send(
                "agentOperationResult",
                {"success": False, "operation": operation, "error": error.message, "errorCode": error.code},
                request_id,
            )
            return
        self._send_agents(request_id)
        self._send("agentOperationResult", {"success": True, "operation": operation}, request_id)

    @handles("getAgents")
    def get_agents(self, content: Any, request_id: RequestId | None) -> None:
        self._send_agents(request_id)

    @handles("getSelectedAgent")
    def get_selected_agent(self, content: Any, request_id: RequestId | None) -> None:
        self._send("selectedAgentLoaded", self.services.agents.get_selected(), request_id)

    @handles("setSelectedAgent")
    def set_selected_agent(self, content: Any, request_id: RequestId | None) -> None:
        data = _obj(content)
        agent = data.get("agent") if "agent" in data else (content or None)
        selected = self.services.agents.set_selected(agent if isinstance(agent, dict) else None)
        self._send("selectedAgentChanged", {"agent": selected}, request_id)

    @handles("addAgent")
    def add_agent(self, content: Any, request_id: RequestId | None) -> None:
        self._agent_result("add", request_id, lambda: self.services.agents.add(_obj(content)))

    @handles("updateAgent")
    def update_agent(self, content: Any, request_id: RequestId | None) -> None:
        data = _obj(content)
        self._agent_result(
            "update", request_id, lambda: self.services.agents.update(data.get("id"), data.get("updates"))
        )

    @handles("deleteAgent")
    def delete_agent(self, content: Any, request_id: RequestId | None) -> None:
        agent_id = _obj(content).get("id")

        def delete() -> None:
            if self.services.agents.delete(agent_id):
                self._send("selectedAgentChanged", {"agent": None}, request_id)

        self._agent_result("delete", request_id, delete)

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    @handles("getDependencies")
    def get_dependencies(self, content: Any, request_id: RequestId | None) -> None:
        self._send("dependenciesLoaded", self.services.dependencies.dependencies_view(), request_id)

    @handles("getSdkStatus")
    def get_sdk_status(self, content: Any, request_id: RequestId | None) -> None:
        self._send("sdkStatus", self.services.dependencies.status(), request_id)

    @handles("installDependency")
    async def install_dependency(self, content: Any, request_id: RequestId | None) -> None:
        sdk_id = _string_or_key(content, "id") or _string_or_key(content, "sdkId")

        def progress(line: str) -> None:
            self._send("dependencyInstallProgress", {"sdkId": sdk_id, "log": line}, request_id)

        result = await self.services.dependencies.install(sdk_id, progress)
        self._send("dependencyInstallResult", result, request_id)
        if result.get("success"):
            self.get_dependencies(None, request_id)

    @handles("uninstallDependency")
    def uninstall_dependency(self, content: Any, request_id: RequestId | None) -> None:
        sdk_id = _string_or_key(content, "id") or _string_or_key(content, "sdkId")
        result = self.services.dependencies.uninstall(sdk_id)
        self._send("dependencyUninstallResult", result, request_id)
        if result.get("success"):
            self.get_dependencies(None, request_id)

    @handles("checkNodeEnvironment")
    async def check_node_environment(self, content: Any, request_id: RequestId | None) -> None:
        status = await self.services.dependencies.node_environment()
        self._send(
            "nodeEnvironmentStatus",
            {key: status.get(key) for key in ("available", "nodeVersion", "npmVersion", "error")},
            request_id,
        )

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    @handles("getUsageStatistics")
    def get_usage_statistics(self, content: Any, request_id: RequestId | None) -> None:
        data = _obj(content)
        scope = "all" if data.get("scope") == "all" else "current"
        provider = data.get("provider") or self.ctx.provider or "claude"
        usage = self.services.usage
        try:
            stats = usage.statistics(provider, scope)
        except OSError as e:
            logger.warning("Usage scan failed, returning empty statistics: %s", e)
            project_path = "all" if scope == "all" else self.ctx.working_directory
            stats = aggregate([], project_path, usage.now_ms())
        self._send("usageStatisticsLoaded", stats, request_id)

    # ------------------------------------------------------------------
    # System
    # ------------------------------------------------------------------

    @handles("frontendReady")
    def frontend_ready(self, content: Any, request_id: RequestId | None) -> None:
        logger.info("Frontend ready")
        self._send(
            "frontendReadyAck",
            {"sdkStatus": self.services.dependencies.status(), "version": __version__},
            request_id,
        )

    @handles("refreshSlashCommands")
    def refresh_slash_commands(self, content: Any, request_id: RequestId | None) -> None:
        self._send("slashCommandsUpdated", {"commands": self.services.slash_commands.list()}, request_id)

    @handles("getNodePath")
    def get_node_path(self, content: Any, request_id: RequestId | None) -> None:
        path = self.ctx.node_path or shutil.which("node")
        self._send("nodePathLoaded", {"path": path}, request_id)

    @handles("setNodePath")
    def set_node_path(self, content: Any, request_id: RequestId | None) -> None:
        self.ctx.node_path = _string_or_key(content, "path")
        self._send("nodePathSet", {"success": True, "path": self.ctx.node_path}, request_id)

    @handles("getWorkingDirectory")
    def get_working_directory(self, content: Any, request_id: RequestId | None) -> None:
        self._send("workingDirectoryLoaded", {"path": self.ctx.working_directory}, request_id)

    @handles("setWorkingDirectory")
    async def set_working_directory(self, content: Any, request_id: RequestId | None) -> None:
        path = self.ctx.set_working_directory(_string_or_key(content, "path"))
        if self.on_workspace_change is not None:
            await self.on_workspace_change()
        self._send("workingDirectorySet", {"path": path, "success": True}, request_id)

    @handles("getEditorFontConfig")
    def get_editor_font_config(self, content: Any, request_id: RequestId | None) -> None:
        font_size = self.services.settings.get().get("fontSize")
        self._send(
            "editorFontConfigLoaded",
            {
                "fontFamily": "Consolas" if sys.platform == "win32" else "Menlo",
                "fontSize": font_size if isinstance(font_size, int) else 14,
                "lineSpacing": 1.5,
            },
            request_id,
        )
