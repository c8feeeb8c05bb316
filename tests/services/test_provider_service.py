"""Tests for provider reconciliation across canonical, legacy and native files."""

import pytest

from ai_bridge.errors import BridgeIOError, NotFoundError, ValidationError
from ai_bridge.services.provider_service import (
    LOCAL_PROVIDER_ID,
    ProviderService,
    extract_claude_env,
    merge_provider_settings,
)


@pytest.fixture
def service(paths):
    return ProviderService(paths, clock=lambda: 1_700_000_000_000)


def _provider(pid="p1", **env):
    return {
        "id": pid,
        "name": f"Provider {pid}",
        "settingsConfig": {"env": env or {"ANTHROPIC_AUTH_TOKEN": f"tok-{pid}"}},
    }


class TestMergeProviderSettings:
    def test_env_is_unioned(self):
        base = {"env": {"KEEP": "1", "ANTHROPIC_BASE_URL": "old"}, "model": "a"}
        patch = {"env": {"ANTHROPIC_BASE_URL": "new"}, "model": "b"}
        merged = merge_provider_settings(base, patch)
        assert merged == {"env": {"KEEP": "1", "ANTHROPIC_BASE_URL": "new"}, "model": "b"}
        assert base["env"]["ANTHROPIC_BASE_URL"] == "old"

    def test_none_inputs(self):
        assert merge_provider_settings(None, None) == {}


class TestExtractClaudeEnv:
    def test_auth_token_wins_over_api_key(self):
        env = {"env": {"ANTHROPIC_AUTH_TOKEN": "t", "ANTHROPIC_API_KEY": "k", "ANTHROPIC_BASE_URL": "u"}}
        assert extract_claude_env(env) == {"apiKey": "t", "baseUrl": "u"}

    def test_falls_back_to_api_key(self):
        assert extract_claude_env({"env": {"ANTHROPIC_API_KEY": "k"}}) == {"apiKey": "k", "baseUrl": ""}

    def test_missing_env(self):
        assert extract_claude_env({}) == {"apiKey": "", "baseUrl": ""}


class TestClaudeProviders:
    """Tests for the Claude provider family."""

    def test_empty_store_lists_only_local_entry(self, service):
        providers = service.list_claude()
        assert len(providers) == 1
        assert providers[0]["id"] == LOCAL_PROVIDER_ID
        assert providers[0]["isActive"] is True

    def test_add_never_overwrites(self, service):
        assert service.add_claude(_provider("p1")) is True
        assert service.add_claude({**_provider("p1"), "name": "Other"}) is False
        entry = service.list_claude()[1]
        assert entry["name"] == "Provider p1"
        assert entry["createdAt"] == 1_700_000_000_000

    def test_add_requires_id(self, service):
        with pytest.raises(ValidationError):
            service.add_claude({"name": "no id"})

    def test_add_rejects_reserved_id(self, service):
        with pytest.raises(ValidationError):
            service.add_claude({"id": LOCAL_PROVIDER_ID})

    def test_add_writes_legacy_mirror(self, service, paths, read_json):
        service.add_claude(_provider("p1"))
        mirror = read_json(paths.legacy_claude_providers_file)
        assert [p["id"] for p in mirror["providers"]] == ["p1"]

    def test_switch_merges_into_native_settings(self, service, paths, write_json, read_json):
        write_json(paths.claude_settings_file, {"env": {"OTHER": "x"}, "theme": "dark"})
        service.add_claude(_provider("p1"))

        active = service.switch_claude("p1")

        assert active["id"] == "p1"
        assert active["isActive"] is True
        native = read_json(paths.claude_settings_file)
        assert native == {"env": {"OTHER": "x", "ANTHROPIC_AUTH_TOKEN": "tok-p1"}, "theme": "dark"}
        assert read_json(paths.config_file)["claude"]["current"] == "p1"
        assert read_json(paths.settings_file)["activeClaudeProviderId"] == "p1"

    def test_switch_unknown_writes_nothing(self, service, paths):
        with pytest.raises(NotFoundError):
            service.switch_claude("ghost")
        assert not paths.config_file.exists()
        assert not paths.claude_settings_file.exists()

    def test_dangling_current_falls_back_to_local(self, service, paths, write_json):
        write_json(paths.config_file, {"claude": {"current": "gone", "providers": {}}})
        write_json(paths.claude_settings_file, {"env": {"ANTHROPIC_API_KEY": "native"}})
        active = service.get_active_claude()
        assert active["id"] == LOCAL_PROVIDER_ID
        assert active["apiKey"] == "native"

    def test_update_active_provider_rewrites_native(self, service, paths, read_json):
        service.add_claude(_provider("p1"))
        service.switch_claude("p1")
        is_active = service.update_claude("p1", {"settingsConfig": {"env": {"ANTHROPIC_BASE_URL": "https://x"}}})
        assert is_active is True
        assert read_json(paths.claude_settings_file)["env"]["ANTHROPIC_BASE_URL"] == "https://x"

    def test_update_inactive_provider_leaves_native(self, service, paths):
        service.add_claude(_provider("p1"))
        assert service.update_claude("p1", {"name": "Renamed"}) is False
        assert not paths.claude_settings_file.exists()
        assert service.list_claude()[1]["name"] == "Renamed"

    def test_update_missing_raises(self, service):
        with pytest.raises(NotFoundError):
            service.update_claude("ghost", {})

    def test_delete_active_resets_pointer(self, service, paths, read_json):
        service.add_claude(_provider("p1"))
        service.switch_claude("p1")
        assert service.delete_claude("p1") is True
        assert service.get_active_claude_id() == LOCAL_PROVIDER_ID
        assert read_json(paths.settings_file)["activeClaudeProviderId"] == LOCAL_PROVIDER_ID

    def test_delete_local_is_rejected(self, service):
        with pytest.raises(ValidationError):
            service.delete_claude(LOCAL_PROVIDER_ID)

    def test_import_tags_source_and_upserts(self, service):
        service.add_claude(_provider("p1"))
        count = service.import_claude([_provider("p1"), _provider("p2"), "junk", {"id": ""}])
        assert count == 2
        entries = {p["id"]: p for p in service.list_claude()[1:]}
        assert entries["p2"]["source"] == "cc-switch"
        assert entries["p1"]["source"] == "cc-switch"

    def test_current_claude_config(self, service, paths, write_json):
        service.add_claude(_provider("p1"))
        service.switch_claude("p1")
        config = service.get_current_claude_config()
        assert config == {
            "apiKey": "tok-p1",
            "baseUrl": "",
            "providerId": "p1",
            "providerName": "Provider p1",
        }

    def test_set_active_setting_noop_for_local(self, service, paths):
        service.set_active_claude_setting("alwaysThinkingEnabled", True)
        assert not paths.config_file.exists()

    def test_set_active_setting_on_provider(self, service):
        service.add_claude(_provider("p1"))
        service.switch_claude("p1")
        service.set_active_claude_setting("alwaysThinkingEnabled", True)
        assert service.get_active_claude()["settingsConfig"]["alwaysThinkingEnabled"] is True


class TestCodexProviders:
    """Tests for the Codex provider family."""

    def test_add_generates_id(self, service):
        provider_id = service.add_codex({"name": "OpenAI"})
        assert provider_id == "codex_provider_1700000000000"
        assert service.list_codex()[0]["isActive"] is False

    def test_switch_and_delete(self, service, paths, read_json):
        service.add_codex({"id": "c1", "name": "One"})
        service.switch_codex("c1")
        assert read_json(paths.settings_file)["activeCodexProvider"] == "c1"
        assert service.list_codex()[0]["isActive"] is True
        assert service.delete_codex("c1") is True
        assert read_json(paths.config_file)["codex"]["current"] == ""

    def test_switch_unknown_raises(self, service):
        with pytest.raises(NotFoundError):
            service.switch_codex("nope")

    def test_update_preserves_created_at(self, service):
        service.add_codex({"id": "c1", "name": "One", "createdAt": 5})
        service.update_codex("c1", {"name": "Two", "createdAt": 99})
        entry = service.list_codex()[0]
        assert entry["name"] == "Two"
        assert entry["createdAt"] == 5


class TestMigrateLegacy:
    """Tests for one-time migration of legacy provider files."""

    def test_imports_when_canonical_empty(self, service, paths, write_json):
        write_json(paths.legacy_claude_providers_file, {"providers": [_provider("old")]})
        write_json(paths.settings_file, {"activeClaudeProviderId": "old"})
        assert service.migrate_legacy() is True
        assert service.get_active_claude_id() == "old"

    def test_skips_when_canonical_populated(self, service, paths, write_json):
        service.add_claude(_provider("new"))
        write_json(paths.legacy_claude_providers_file, {"providers": [_provider("old")]})
        assert service.migrate_legacy() is False
        assert [p["id"] for p in service.list_claude()[1:]] == ["new"]

    def test_does_not_override_existing_current(self, service, paths, write_json):
        write_json(paths.config_file, {"claude": {"current": "p1", "providers": {"p1": _provider("p1")}}})
        write_json(paths.settings_file, {"activeClaudeProviderId": "other"})
        service.migrate_legacy()
        assert service.get_active_claude_id() == "p1"

    def test_nothing_to_migrate(self, service):
        assert service.migrate_legacy() is False


class TestDamagedFiles:
    """Writes stop before touching anything when an existing file is damaged."""

    def test_switch_with_damaged_native_settings(self, service, paths):
        service.add_claude(_provider("p"))
        config_before = paths.config_file.read_bytes()
        paths.claude_settings_file.parent.mkdir(parents=True, exist_ok=True)
        damaged = b'{"env": {"ANTHROPIC_MODEL": "opus"}, "permissions": {"allow": []}'
        paths.claude_settings_file.write_bytes(damaged)

        with pytest.raises(BridgeIOError) as exc_info:
            service.switch_claude("p")

        assert exc_info.value.path == str(paths.claude_settings_file)
        assert paths.claude_settings_file.read_bytes() == damaged
        assert paths.config_file.read_bytes() == config_before

    def test_add_with_damaged_config(self, service, paths):
        paths.config_file.parent.mkdir(parents=True, exist_ok=True)
        paths.config_file.write_text('{"claude": {"providers": {"p0": {', encoding="utf-8")

        with pytest.raises(BridgeIOError):
            service.add_claude(_provider("p1"))

        assert paths.config_file.read_text(encoding="utf-8") == '{"claude": {"providers": {"p0": {'
        assert not paths.legacy_claude_providers_file.exists()

    def test_codex_switch_with_damaged_settings(self, service, paths):
        provider_id = service.add_codex({"name": "Codex"})
        config_before = paths.config_file.read_bytes()
        paths.settings_file.write_text("[", encoding="utf-8")

        with pytest.raises(BridgeIOError):
            service.switch_codex(provider_id)

        assert paths.config_file.read_bytes() == config_before
        assert paths.settings_file.read_text(encoding="utf-8") == "["

    def test_migration_refuses_damaged_config(self, service, paths, write_json):
        write_json(paths.legacy_claude_providers_file, {"providers": [{"id": "old"}]})
        paths.config_file.parent.mkdir(parents=True, exist_ok=True)
        paths.config_file.write_text("{", encoding="utf-8")
        with pytest.raises(BridgeIOError):
            service.migrate_legacy()
        assert paths.config_file.read_text(encoding="utf-8") == "{"

    def test_reads_tolerate_damaged_config(self, service, paths):
        paths.config_file.parent.mkdir(parents=True, exist_ok=True)
        paths.config_file.write_text("{", encoding="utf-8")
        assert [p["id"] for p in service.list_claude()] == [LOCAL_PROVIDER_ID]


class TestProviderConfigDocuments:
    def test_round_trip(self, service, paths):
        service.update_provider_config("claude", {"model": "x"})
        assert service.get_provider_config("claude") == {"model": "x"}
        assert paths.provider_config_file("claude").exists()

    def test_rejects_path_traversal(self, service):
        with pytest.raises(ValidationError):
            service.get_provider_config("../etc")
