"""Envelope model, type normalization and line framing.

Both directions of the stdio protocol carry one JSON envelope per line:
``{"type": str, "content": any, "requestId"?: str}``. The same stream also
carries free-form diagnostic text, so every line is classified before it
is parsed: only lines whose first non-blank character is ``{`` are
candidate envelopes.
"""

import json
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

RequestId = str | int


class Envelope(BaseModel):
    """One protocol message."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., min_length=1)
    content: Any = None
    requestId: RequestId | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "content": self.content}
        if self.requestId is not None:
            data["requestId"] = self.requestId
        return data

    def to_line(self) -> str:
        return encode_envelope(self.type, self.content, self.requestId)


def encode_envelope(type_: str, content: Any = None, request_id: RequestId | None = None) -> str:
    """Serialize an envelope to exactly one line, newline included."""
    data: dict[str, Any] = {"type": type_, "content": content}
    if request_id is not None:
        data["requestId"] = request_id
    # json.dumps escapes embedded newlines, so the result is a single line.
    return json.dumps(data, ensure_ascii=False, default=str) + "\n"


# Legacy snake_case spellings -> canonical type. Unknown types pass through.
NORMALIZATION: dict[str, str] = {
    # Session & message
    "send_message": "sendMessage",
    "send_message_with_attachments": "sendMessageWithAttachments",
    "get_history": "getHistory",
    "load_history_data": "getHistory",
    "load_session": "loadSession",
    "delete_session": "deleteSession",
    "create_new_session": "createNewSession",
    "interrupt_session": "interruptSession",
    "export_session": "exportSession",
    "toggle_favorite": "toggleFavorite",
    "update_title": "updateTitle",
    "create_new_tab": "createNewTab",
    # Settings
    "get_settings": "getSettings",
    "update_settings": "updateSettings",
    "get_streaming_enabled": "getStreamingEnabled",
    "set_streaming_enabled": "setStreamingEnabled",
    "get_send_shortcut": "getSendShortcut",
    "set_send_shortcut": "setSendShortcut",
    "get_thinking_enabled": "getThinkingEnabled",
    "set_thinking_enabled": "setThinkingEnabled",
    # Providers
    "get_provider_config": "getProviderConfig",
    "update_provider_config": "updateProviderConfig",
    "get_current_claude_config": "getCurrentClaudeConfig",
    "update_current_claude_config": "updateCurrentClaudeConfig",
    "get_active_provider": "getActiveProvider",
    "set_active_provider": "setActiveProvider",
    "set_provider": "setProvider",
    "get_providers": "getProviders",
    "add_provider": "addProvider",
    "update_provider": "updateProvider",
    "switch_provider": "switchProvider",
    "delete_provider": "deleteProvider",
    "get_codex_providers": "getCodexProviders",
    "add_codex_provider": "addCodexProvider",
    "update_codex_provider": "updateCodexProvider",
    "switch_codex_provider": "switchCodexProvider",
    "delete_codex_provider": "deleteCodexProvider",
    # Model & mode
    "set_model": "setModel",
    "set_mode": "setMode",
    "set_reasoning_effort": "setReasoningEffort",
    # Permission
    "permission_response": "permissionResponse",
    "permission_decision": "permissionDecision",
    "ask_user_question_response": "askUserQuestionResponse",
    "plan_approval_response": "planApprovalResponse",
    # MCP servers
    "get_mcp_servers": "getMcpServers",
    "add_mcp_server": "addMcpServer",
    "update_mcp_server": "updateMcpServer",
    "delete_mcp_server": "deleteMcpServer",
    "toggle_mcp_server": "toggleMcpServer",
    "get_mcp_server_status": "getMcpServerStatus",
    "probe_mcp_server": "probeMcpServer",
    "get_codex_mcp_servers": "getCodexMcpServers",
    "add_codex_mcp_server": "addCodexMcpServer",
    "update_codex_mcp_server": "updateCodexMcpServer",
    "delete_codex_mcp_server": "deleteCodexMcpServer",
    "toggle_codex_mcp_server": "toggleCodexMcpServer",
    "get_global_mcp_servers": "getMcpServers",
    "add_global_mcp_server": "addMcpServer",
    "update_global_mcp_server": "updateMcpServer",
    "delete_global_mcp_server": "deleteMcpServer",
    "toggle_global_mcp_server": "toggleMcpServer",
    # Skills
    "get_skills": "getSkills",
    "get_all_skills": "getSkills",
    "import_skill": "importSkill",
    "open_skill": "openSkill",
    "delete_skill": "deleteSkill",
    "toggle_skill": "toggleSkill",
    # Agents
    "get_agents": "getAgents",
    "get_selected_agent": "getSelectedAgent",
    "set_selected_agent": "setSelectedAgent",
    "add_agent": "addAgent",
    "update_agent": "updateAgent",
    "delete_agent": "deleteAgent",
    # Dependencies
    "get_dependencies": "getDependencies",
    "get_dependency_status": "getDependencies",
    "get_sdk_status": "getSdkStatus",
    "install_dependency": "installDependency",
    "uninstall_dependency": "uninstallDependency",
    "check_node_environment": "checkNodeEnvironment",
    # Usage
    "get_usage_statistics": "getUsageStatistics",
    # File operations
    "open_file": "openFile",
    "open_browser": "openBrowser",
    "refresh_file": "refreshFile",
    "show_diff": "showDiff",
    "show_multi_edit_diff": "showMultiEditDiff",
    "rewind_files": "rewindFiles",
    "list_files": "listFiles",
    "save_json": "saveJson",
    # System
    "frontend_ready": "frontendReady",
    "refresh_slash_commands": "refreshSlashCommands",
    "get_node_path": "getNodePath",
    "set_node_path": "setNodePath",
    "get_working_directory": "getWorkingDirectory",
    "set_working_directory": "setWorkingDirectory",
    "get_editor_font_config": "getEditorFontConfig",
    # Provider import
    "open_file_chooser_for_cc_switch": "openFileChooserForCcSwitch",
    "save_imported_providers": "saveImportedProviders",
    "preview_cc_switch_import": "previewCcSwitchImport",
}


def normalize_type(message_type: str) -> str:
    return NORMALIZATION.get(message_type, message_type)


class LineKind(str, Enum):
    BLANK = "blank"
    ENVELOPE = "envelope"
    DIAGNOSTIC = "diagnostic"


def classify_line(line: str) -> LineKind:
    """Decide which logical channel a line belongs to."""
    stripped = line.strip()
    if not stripped:
        return LineKind.BLANK
    if stripped.startswith("{"):
        return LineKind.ENVELOPE
    return LineKind.DIAGNOSTIC


def parse_envelope(line: str) -> Envelope | None:
    """Parse a candidate line. Malformed input is logged and yields None."""
    if classify_line(line) is not LineKind.ENVELOPE:
        return None
    try:
        data = json.loads(line)
    except ValueError:
        logger.debug("Dropping malformed line: %s", line.strip()[:200])
        return None
    if not isinstance(data, dict):
        logger.debug("Dropping non-object line: %s", line.strip()[:200])
        return None
    try:
        return Envelope.model_validate(data)
    except PydanticValidationError as e:
        logger.debug("Dropping invalid envelope (%s): %s", e.error_count(), line.strip()[:200])
        return None


class LineDecoder:
    """Reassembles text lines from arbitrarily split byte chunks.

    A partial trailing line is buffered until its newline arrives.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += chunk
        *complete, self._buffer = self._buffer.split(b"\n")
        return [raw.decode(self._encoding, errors="replace").rstrip("\r") for raw in complete]

    def flush(self) -> list[str]:
        """Return any buffered partial line (used at end of stream)."""
        if not self._buffer:
            return []
        tail, self._buffer = self._buffer, b""
        return [tail.decode(self._encoding, errors="replace").rstrip("\r")]
