"""User settings in ``settings.json``, plus the flags mirrored elsewhere.

The thinking flag lives in ``~/.claude/settings.json``
(``alwaysThinkingEnabled``) because the Claude tool reads it there; it is
mirrored into ``settings.json`` and the active provider's
``settingsConfig``.
"""

import logging
from typing import Any

from ai_bridge.errors import ValidationError
from ai_bridge.services.provider_service import ProviderService
from ai_bridge.storage import JsonDocumentStore
from ai_bridge.utils.paths import BridgePaths

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "theme": "auto",
    "fontSize": 14,
    "streamingEnabled": True,
    "activeProvider": "claude",
}
DEFAULT_SEND_SHORTCUT = "Enter"
CHAT_PROVIDERS = ("claude", "codex")


class SettingsService:
    """Read and patch user settings."""

    def __init__(
        self,
        paths: BridgePaths,
        providers: ProviderService,
        store: JsonDocumentStore | None = None,
    ) -> None:
        self._paths = paths
        self._providers = providers
        self._store = store or JsonDocumentStore()

    def _raw(self, for_update: bool = False) -> dict:
        return self._store.load(self._paths.settings_file, {}, strict=for_update)

    def _save(self, settings: dict) -> None:
        self._store.save(self._paths.settings_file, settings)

    def get(self) -> dict:
        """Return settings, or the defaults when the file is absent."""
        if not self._paths.settings_file.exists():
            return dict(DEFAULT_SETTINGS)
        return self._raw()

    def update(self, patch: dict[str, Any]) -> dict:
        """Shallow-merge ``patch`` into settings and return the result."""
        if not isinstance(patch, dict):
            raise ValidationError("Settings patch must be an object")
        settings = {**self._raw(for_update=True), **patch}
        self._save(settings)
        return settings

    def get_streaming_enabled(self) -> bool:
        return self._raw().get("streamingEnabled") is not False

    def set_streaming_enabled(self, enabled: bool) -> bool:
        settings = self._raw(for_update=True)
        settings["streamingEnabled"] = bool(enabled)
        self._save(settings)
        return settings["streamingEnabled"]

    def get_send_shortcut(self) -> str:
        return self._raw().get("sendShortcut") or DEFAULT_SEND_SHORTCUT

    def set_send_shortcut(self, shortcut: str | None) -> str:
        settings = self._raw(for_update=True)
        settings["sendShortcut"] = shortcut or DEFAULT_SEND_SHORTCUT
        self._save(settings)
        return settings["sendShortcut"]

    def get_thinking_enabled(self) -> bool:
        return self._providers.read_claude_settings().get("alwaysThinkingEnabled") is not False

    def set_thinking_enabled(self, enabled: bool) -> bool:
        """Write the thinking flag to all three places it is read from."""
        enabled = bool(enabled)
        claude_settings = self._providers.read_claude_settings(for_update=True)
        settings = self._raw(for_update=True)
        claude_settings["alwaysThinkingEnabled"] = enabled
        self._providers.write_claude_settings(claude_settings)

        settings["thinkingEnabled"] = enabled
        self._save(settings)

        self._providers.set_active_claude_setting("alwaysThinkingEnabled", enabled)
        return enabled

    def get_active_chat_provider(self) -> str:
        provider = self._raw().get("activeProvider")
        return provider if provider in CHAT_PROVIDERS else "claude"

    def set_active_chat_provider(self, provider: str) -> str:
        if provider not in CHAT_PROVIDERS:
            raise ValidationError(f"Unknown provider: {provider!r}", field="provider")
        settings = self._raw(for_update=True)
        settings["activeProvider"] = provider
        self._save(settings)
        logger.info("Active chat provider set to %s", provider)
        return provider
