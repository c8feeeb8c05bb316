"""Tests for user settings and mirrored flags."""

import pytest

from ai_bridge.errors import BridgeIOError, ValidationError
from ai_bridge.services.provider_service import ProviderService
from ai_bridge.services.settings_service import DEFAULT_SETTINGS, SettingsService


@pytest.fixture
def providers(paths):
    return ProviderService(paths)


@pytest.fixture
def service(paths, providers):
    return SettingsService(paths, providers)


class TestSettings:
    def test_defaults_when_absent(self, service):
        assert service.get() == DEFAULT_SETTINGS

    def test_update_is_shallow_merge(self, service, paths, write_json):
        write_json(paths.settings_file, {"theme": "dark", "fontSize": 12})
        assert service.update({"fontSize": 16}) == {"theme": "dark", "fontSize": 16}

    def test_update_rejects_non_object(self, service):
        with pytest.raises(ValidationError):
            service.update(["x"])

    def test_streaming_defaults_on(self, service):
        assert service.get_streaming_enabled() is True
        service.set_streaming_enabled(False)
        assert service.get_streaming_enabled() is False

    def test_send_shortcut(self, service):
        assert service.get_send_shortcut() == "Enter"
        assert service.set_send_shortcut("Cmd+Enter") == "Cmd+Enter"
        assert service.set_send_shortcut("") == "Enter"


class TestThinkingFlag:
    def test_written_to_all_three_places(self, service, providers, paths, read_json):
        providers.add_claude({"id": "p1", "settingsConfig": {}})
        providers.switch_claude("p1")

        assert service.set_thinking_enabled(False) is False

        assert read_json(paths.claude_settings_file)["alwaysThinkingEnabled"] is False
        assert read_json(paths.settings_file)["thinkingEnabled"] is False
        assert providers.get_active_claude()["settingsConfig"]["alwaysThinkingEnabled"] is False
        assert service.get_thinking_enabled() is False

    def test_defaults_on(self, service):
        assert service.get_thinking_enabled() is True

    def test_damaged_native_settings_block_every_write(self, service, paths, write_json):
        write_json(paths.settings_file, {"thinkingEnabled": True})
        before = paths.settings_file.read_bytes()
        paths.claude_settings_file.parent.mkdir(parents=True, exist_ok=True)
        paths.claude_settings_file.write_text('{"alwaysThinkingEnabled": true', encoding="utf-8")

        with pytest.raises(BridgeIOError):
            service.set_thinking_enabled(False)

        assert paths.settings_file.read_bytes() == before
        assert paths.claude_settings_file.read_text(encoding="utf-8") == '{"alwaysThinkingEnabled": true'


class TestDamagedSettingsFile:
    def test_update_refuses_to_replace(self, service, paths):
        paths.settings_file.parent.mkdir(parents=True, exist_ok=True)
        paths.settings_file.write_text('{"fontSize": 12,', encoding="utf-8")
        with pytest.raises(BridgeIOError):
            service.update({"theme": "dark"})
        with pytest.raises(BridgeIOError):
            service.set_streaming_enabled(False)
        assert paths.settings_file.read_text(encoding="utf-8") == '{"fontSize": 12,'

    def test_reads_fall_back_to_defaults(self, service, paths):
        paths.settings_file.parent.mkdir(parents=True, exist_ok=True)
        paths.settings_file.write_text('{"fontSize": 12,', encoding="utf-8")
        assert service.get_streaming_enabled() is True
        assert service.get_send_shortcut() == "Enter"


class TestActiveChatProvider:
    def test_default_is_claude(self, service):
        assert service.get_active_chat_provider() == "claude"

    def test_set_codex(self, service):
        service.set_active_chat_provider("codex")
        assert service.get_active_chat_provider() == "codex"

    def test_unknown_rejected(self, service):
        with pytest.raises(ValidationError):
            service.set_active_chat_provider("gemini")

    def test_unknown_stored_value_falls_back(self, service, paths, write_json):
        write_json(paths.settings_file, {"activeProvider": "gemini"})
        assert service.get_active_chat_provider() == "claude"
