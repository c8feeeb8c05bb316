"""Provider reconciliation across canonical, legacy and native stores.

One logical provider entry lives in up to three places:

- ``config.json`` (canonical): ``{"claude": {"current", "providers"},
  "codex": {"current", "providers"}}``
- ``providers.json`` / ``codex-providers.json`` (legacy mirrors, rewritten
  from canonical state after every mutation, never read again after
  ``migrate_legacy``)
- ``~/.claude/settings.json`` (native), which receives the active Claude
  provider's ``settingsConfig`` on switch

The active pointer and native settings are mutated read-then-write with no
lock; the last writer wins.
"""

import logging
import re
import time
from collections.abc import Callable
from typing import Any

from ai_bridge.errors import NotFoundError, ValidationError
from ai_bridge.storage import JsonDocumentStore
from ai_bridge.utils.paths import BridgePaths
from ai_bridge.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)

LOCAL_PROVIDER_ID = "__local_settings_json__"
LOCAL_PROVIDER_NAME = "Local settings.json"
CODEX_PROVIDER_PREFIX = "codex_provider_"

_PROVIDER_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _now_ms() -> int:
    return int(time.time() * 1000)


def merge_provider_settings(base: dict | None, patch: dict | None) -> dict:
    """Merge a provider settings patch into a native settings document.

    Scalar and list keys in ``patch`` replace the existing value. The nested
    ``env`` map is unioned so unrelated environment entries survive.

    Args:
        base: Existing native settings (not mutated).
        patch: Incoming provider ``settingsConfig``.

    Returns:
        New merged settings dict.
    """
    merged = dict(base) if isinstance(base, dict) else {}
    for key, value in (patch if isinstance(patch, dict) else {}).items():
        if key == "env" and isinstance(value, dict):
            existing_env = merged.get("env")
            merged["env"] = {**(existing_env if isinstance(existing_env, dict) else {}), **value}
            continue
        merged[key] = value
    return merged


def extract_claude_env(settings: dict | None) -> dict[str, str]:
    """Return ``{apiKey, baseUrl}`` from a Claude settings document.

    ``ANTHROPIC_AUTH_TOKEN`` takes precedence over ``ANTHROPIC_API_KEY``.
    """
    env = settings.get("env") if isinstance(settings, dict) else None
    env = env if isinstance(env, dict) else {}
    token = env.get("ANTHROPIC_AUTH_TOKEN")
    if isinstance(token, str) and token:
        api_key = token
    else:
        api_key = env.get("ANTHROPIC_API_KEY") if isinstance(env.get("ANTHROPIC_API_KEY"), str) else ""
    base_url = env.get("ANTHROPIC_BASE_URL")
    return {"apiKey": api_key, "baseUrl": base_url if isinstance(base_url, str) else ""}


class ProviderService:
    """Claude and Codex provider families backed by ``config.json``."""

    def __init__(
        self,
        paths: BridgePaths,
        store: JsonDocumentStore | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._paths = paths
        self._store = store or JsonDocumentStore()
        self._clock = clock

    # ------------------------------------------------------------------
    # canonical document
    # ------------------------------------------------------------------

    def _load_config(self, for_update: bool = False) -> dict:
        config = self._store.load(self._paths.config_file, {}, strict=for_update)
        self._ensure_sections(config)
        return config

    @staticmethod
    def _ensure_sections(config: dict) -> dict:
        for family, default_current in (("claude", LOCAL_PROVIDER_ID), ("codex", "")):
            section = config.get(family)
            if not isinstance(section, dict):
                section = config[family] = {}
            if not isinstance(section.get("providers"), dict):
                section["providers"] = {}
            current = section.get("current")
            if not isinstance(current, str) or (family == "claude" and not current):
                section["current"] = default_current
        return config

    def _normalize_entry(self, provider_id: str, entry: Any) -> dict:
        base = dict(entry) if isinstance(entry, dict) else {}
        created_at = base.get("createdAt")
        if isinstance(created_at, bool) or not isinstance(created_at, (int, float)):
            created_at = self._clock()
        return {**base, "id": provider_id, "createdAt": created_at}

    def _entries(self, config: dict, family: str) -> list[dict]:
        providers = config[family]["providers"]
        return [
            self._normalize_entry(pid, value)
            for pid, value in providers.items()
            if isinstance(pid, str) and pid
        ]

    def _save_config(self, config: dict) -> None:
        self._store.save(self._paths.config_file, config)
        self._sync_legacy_mirrors(config)

    def _sync_legacy_mirrors(self, config: dict) -> None:
        self._store.save(
            self._paths.legacy_claude_providers_file,
            {"providers": self._entries(config, "claude")},
        )
        self._store.save(
            self._paths.legacy_codex_providers_file,
            {"providers": self._entries(config, "codex")},
        )

    def _load_settings(self, for_update: bool = False) -> dict:
        return self._store.load(self._paths.settings_file, {}, strict=for_update)

    def _save_settings(self, settings: dict) -> None:
        self._store.save(self._paths.settings_file, settings)

    def read_claude_settings(self, for_update: bool = False) -> dict:
        """Return ``~/.claude/settings.json`` (empty dict when absent).

        Args:
            for_update: Raise ``BridgeIOError`` instead of returning ``{}``
                when the file exists but does not parse.
        """
        return self._store.load(self._paths.claude_settings_file, {}, strict=for_update)

    def write_claude_settings(self, settings: dict) -> None:
        self._store.save(self._paths.claude_settings_file, settings)

    # ------------------------------------------------------------------
    # migration
    # ------------------------------------------------------------------

    def migrate_legacy(self) -> bool:
        """Copy legacy provider files into the canonical store.

        Runs once per server start. Legacy entries are imported only when
        the canonical map for that family is empty. A legacy active-id hint
        in ``settings.json`` seeds ``current`` when canonical has none.

        Returns:
            True if the canonical store was changed.
        """
        raw = self._store.load(self._paths.config_file, {}, strict=True)
        claude_current = raw.get("claude", {}).get("current") if isinstance(raw.get("claude"), dict) else None
        codex_current = raw.get("codex", {}).get("current") if isinstance(raw.get("codex"), dict) else None
        had_claude_current = isinstance(claude_current, str) and bool(claude_current)
        had_codex_current = isinstance(codex_current, str)
        config = self._ensure_sections(raw)
        changed = False

        for family, legacy_path in (
            ("claude", self._paths.legacy_claude_providers_file),
            ("codex", self._paths.legacy_codex_providers_file),
        ):
            legacy = self._store.load(legacy_path, {"providers": []})
            legacy_list = legacy.get("providers") if isinstance(legacy, dict) else None
            if not isinstance(legacy_list, list) or not legacy_list:
                continue
            if config[family]["providers"]:
                continue
            for entry in legacy_list:
                if isinstance(entry, dict) and isinstance(entry.get("id"), str) and entry["id"]:
                    config[family]["providers"][entry["id"]] = dict(entry)
            changed = True
            logger.info("Migrated %d legacy %s providers", len(legacy_list), family)

        settings = self._load_settings()
        legacy_claude_active = settings.get("activeClaudeProviderId")
        if not had_claude_current and isinstance(legacy_claude_active, str) and legacy_claude_active:
            config["claude"]["current"] = legacy_claude_active
            changed = True
        legacy_codex_active = settings.get("activeCodexProvider")
        if not had_codex_current and isinstance(legacy_codex_active, str):
            config["codex"]["current"] = legacy_codex_active
            changed = True

        if changed:
            self._save_config(config)
        return changed

    # ------------------------------------------------------------------
    # Claude family
    # ------------------------------------------------------------------

    def _claude_active_id(self, config: dict) -> str:
        current = config["claude"]["current"]
        if current == LOCAL_PROVIDER_ID or current in config["claude"]["providers"]:
            return current
        return LOCAL_PROVIDER_ID

    def _local_entry(self, active: bool, settings: dict | None = None) -> dict:
        entry = {
            "id": LOCAL_PROVIDER_ID,
            "name": LOCAL_PROVIDER_NAME,
            "isActive": active,
            "isLocalProvider": True,
        }
        if settings is not None:
            entry["settingsConfig"] = settings
            entry.update(extract_claude_env(settings))
        return entry

    def list_claude(self) -> list[dict]:
        """Return the local entry followed by every explicit Claude provider."""
        config = self._load_config()
        active_id = self._claude_active_id(config)
        providers = [
            {**entry, "isActive": entry["id"] == active_id}
            for entry in self._entries(config, "claude")
        ]
        return [self._local_entry(active_id == LOCAL_PROVIDER_ID), *providers]

    def get_active_claude_id(self) -> str:
        return self._claude_active_id(self._load_config())

    def get_active_claude(self) -> dict:
        """Return the active Claude provider.

        A dangling active id falls back to the native entry, which carries
        the native settings and the credentials derived from them.
        """
        config = self._load_config()
        active_id = self._claude_active_id(config)
        if active_id == LOCAL_PROVIDER_ID:
            return self._local_entry(True, self.read_claude_settings())
        entry = self._normalize_entry(active_id, config["claude"]["providers"][active_id])
        return {**entry, "isActive": True}

    def add_claude(self, provider: dict) -> bool:
        """Add a Claude provider. Existing ids are never overwritten.

        Returns:
            True if the provider was added, False if the id already existed.

        Raises:
            ValidationError: If the payload has no id.
        """
        if not isinstance(provider, dict):
            raise ValidationError("Provider payload must be an object")
        provider_id = provider.get("id")
        if not isinstance(provider_id, str) or not provider_id:
            raise ValidationError("Provider id is required", field="id")
        if provider_id == LOCAL_PROVIDER_ID:
            raise ValidationError("Provider id is reserved", field="id")

        config = self._load_config(for_update=True)
        if provider_id in config["claude"]["providers"]:
            logger.info("Claude provider %s already exists, not overwriting", provider_id)
            return False
        config["claude"]["providers"][provider_id] = self._normalize_entry(provider_id, provider)
        self._save_config(config)
        logger.info("Added Claude provider: %s", redact_for_logging(provider))
        return True

    def update_claude(self, provider_id: str, updates: dict) -> bool:
        """Merge ``updates`` into an existing Claude provider.

        If the provider is active, its new ``settingsConfig`` is merged into
        native settings.

        Returns:
            True if the updated provider is the active one.

        Raises:
            ValidationError: If the id or updates are malformed.
            NotFoundError: If no provider has this id.
        """
        if not isinstance(provider_id, str) or not provider_id:
            raise ValidationError("Provider id is required", field="id")
        if not isinstance(updates, dict):
            raise ValidationError("Provider updates must be an object", field="updates")

        config = self._load_config(for_update=True)
        existing = config["claude"]["providers"].get(provider_id)
        if not isinstance(existing, dict):
            raise NotFoundError("Provider", provider_id)
        created_at = self._normalize_entry(provider_id, existing)["createdAt"]
        updated = {**existing, **updates, "id": provider_id, "createdAt": created_at}
        config["claude"]["providers"][provider_id] = updated
        is_active = self._claude_active_id(config) == provider_id
        native = self.read_claude_settings(for_update=True) if is_active else None
        self._save_config(config)
        if native is not None:
            self.write_claude_settings(merge_provider_settings(native, updated.get("settingsConfig")))
        return is_active

    def switch_claude(self, provider_id: str) -> dict:
        """Make ``provider_id`` the active Claude provider.

        Sets the canonical pointer and the legacy ``activeClaudeProviderId``
        hint, then merges the provider's ``settingsConfig`` into native
        settings key-by-key (the ``env`` map is unioned).

        Returns:
            The newly active provider entry.

        Raises:
            ValidationError: If the id is missing.
            NotFoundError: If the id matches no provider. Nothing is written.
            BridgeIOError: If a settings file exists but does not parse.
                Nothing is written.
        """
        if not isinstance(provider_id, str) or not provider_id:
            raise ValidationError("Provider id is required", field="id")

        config = self._load_config(for_update=True)
        if provider_id != LOCAL_PROVIDER_ID and provider_id not in config["claude"]["providers"]:
            raise NotFoundError("Provider", provider_id)

        # Parse every file before writing any of them.
        settings = self._load_settings(for_update=True)
        native = None if provider_id == LOCAL_PROVIDER_ID else self.read_claude_settings(for_update=True)

        config["claude"]["current"] = provider_id
        self._save_config(config)
        settings["activeClaudeProviderId"] = provider_id
        self._save_settings(settings)
        if native is not None:
            provider = config["claude"]["providers"][provider_id]
            self.write_claude_settings(merge_provider_settings(native, provider.get("settingsConfig")))
        logger.info("Switched Claude provider to %s", provider_id)
        return self.get_active_claude()

    def delete_claude(self, provider_id: str) -> bool:
        """Delete a Claude provider.

        Returns:
            True if the deleted provider was active (the pointer is reset to
            the local entry).

        Raises:
            ValidationError: If the id is missing or names the local entry.
            NotFoundError: If no provider has this id.
        """
        if not isinstance(provider_id, str) or not provider_id:
            raise ValidationError("Provider id is required", field="id")
        if provider_id == LOCAL_PROVIDER_ID:
            raise ValidationError("The local provider cannot be deleted", field="id")

        config = self._load_config(for_update=True)
        if provider_id not in config["claude"]["providers"]:
            raise NotFoundError("Provider", provider_id)
        was_active = self._claude_active_id(config) == provider_id
        del config["claude"]["providers"][provider_id]

        if was_active:
            config["claude"]["current"] = LOCAL_PROVIDER_ID
            settings = self._load_settings(for_update=True)
            settings["activeClaudeProviderId"] = LOCAL_PROVIDER_ID
            self._save_settings(settings)
        self._save_config(config)
        return was_active

    def import_claude(self, providers: list, source: str = "cc-switch") -> int:
        """Bulk upsert providers, tagging each with ``source``.

        Returns:
            Number of entries written.

        Raises:
            ValidationError: If ``providers`` is not a list.
        """
        if not isinstance(providers, list):
            raise ValidationError("providers must be a list", field="providers")
        config = self._load_config(for_update=True)
        count = 0
        for entry in providers:
            if not isinstance(entry, dict):
                continue
            provider_id = entry.get("id")
            if not isinstance(provider_id, str) or not provider_id or provider_id == LOCAL_PROVIDER_ID:
                continue
            config["claude"]["providers"][provider_id] = self._normalize_entry(
                provider_id, {**entry, "source": source}
            )
            count += 1
        self._save_config(config)
        logger.info("Imported %d Claude providers from %s", count, source)
        return count

    def get_current_claude_config(self) -> dict:
        """Return ``{apiKey, baseUrl, providerId, providerName}``."""
        config = self._load_config()
        active_id = self._claude_active_id(config)
        if active_id == LOCAL_PROVIDER_ID:
            name = LOCAL_PROVIDER_NAME
        else:
            name = config["claude"]["providers"][active_id].get("name", "")
        return {
            **extract_claude_env(self.read_claude_settings()),
            "providerId": active_id,
            "providerName": name,
        }

    def update_current_claude_config(self, patch: dict) -> dict:
        """Merge ``patch`` into native settings and return ``{apiKey, baseUrl}``."""
        if not isinstance(patch, dict):
            raise ValidationError("Config patch must be an object")
        merged = merge_provider_settings(self.read_claude_settings(for_update=True), patch)
        self.write_claude_settings(merged)
        return extract_claude_env(merged)

    def set_active_claude_setting(self, key: str, value: Any) -> None:
        """Write one key into the active Claude provider's ``settingsConfig``.

        No-op while the local entry is active.
        """
        config = self._load_config(for_update=True)
        active_id = self._claude_active_id(config)
        if active_id == LOCAL_PROVIDER_ID:
            return
        entry = config["claude"]["providers"][active_id]
        settings_config = entry.get("settingsConfig")
        settings_config = dict(settings_config) if isinstance(settings_config, dict) else {}
        settings_config[key] = value
        config["claude"]["providers"][active_id] = {**entry, "settingsConfig": settings_config}
        self._save_config(config)

    # ------------------------------------------------------------------
    # Codex family
    # ------------------------------------------------------------------

    def _codex_active_id(self, config: dict) -> str:
        return config["codex"]["current"]

    def list_codex(self) -> list[dict]:
        config = self._load_config()
        active_id = self._codex_active_id(config)
        return [
            {**entry, "isActive": entry["id"] == active_id}
            for entry in self._entries(config, "codex")
        ]

    def add_codex(self, provider: dict) -> str:
        """Add or replace a Codex provider, generating an id when missing.

        Returns:
            The provider id.
        """
        if not isinstance(provider, dict):
            raise ValidationError("Provider payload must be an object")
        provider_id = provider.get("id")
        if not isinstance(provider_id, str) or not provider_id:
            provider_id = f"{CODEX_PROVIDER_PREFIX}{self._clock()}"
        config = self._load_config(for_update=True)
        config["codex"]["providers"][provider_id] = self._normalize_entry(provider_id, provider)
        self._save_config(config)
        return provider_id

    def update_codex(self, provider_id: str, updates: dict) -> None:
        if not isinstance(provider_id, str) or not provider_id:
            raise ValidationError("Provider id is required", field="id")
        if not isinstance(updates, dict):
            raise ValidationError("Provider updates must be an object", field="updates")
        config = self._load_config(for_update=True)
        existing = config["codex"]["providers"].get(provider_id)
        if not isinstance(existing, dict):
            raise NotFoundError("Codex provider", provider_id)
        created_at = self._normalize_entry(provider_id, existing)["createdAt"]
        config["codex"]["providers"][provider_id] = {
            **existing, **updates, "id": provider_id, "createdAt": created_at,
        }
        self._save_config(config)

    def switch_codex(self, provider_id: str) -> None:
        if not isinstance(provider_id, str) or not provider_id:
            raise ValidationError("Provider id is required", field="id")
        config = self._load_config(for_update=True)
        if provider_id not in config["codex"]["providers"]:
            raise NotFoundError("Codex provider", provider_id)
        settings = self._load_settings(for_update=True)
        config["codex"]["current"] = provider_id
        self._save_config(config)
        settings["activeCodexProvider"] = provider_id
        self._save_settings(settings)
        logger.info("Switched Codex provider to %s", provider_id)

    def delete_codex(self, provider_id: str) -> bool:
        """Delete a Codex provider. Returns True if it was active."""
        if not isinstance(provider_id, str) or not provider_id:
            raise ValidationError("Provider id is required", field="id")
        config = self._load_config(for_update=True)
        if provider_id not in config["codex"]["providers"]:
            raise NotFoundError("Codex provider", provider_id)
        del config["codex"]["providers"][provider_id]
        was_active = self._codex_active_id(config) == provider_id
        if was_active:
            config["codex"]["current"] = ""
            settings = self._load_settings(for_update=True)
            settings["activeCodexProvider"] = ""
            self._save_settings(settings)
        self._save_config(config)
        return was_active

    # ------------------------------------------------------------------
    # per-provider config documents
    # ------------------------------------------------------------------

    def _provider_config_path(self, provider: str):
        if not isinstance(provider, str) or not _PROVIDER_NAME_RE.match(provider):
            raise ValidationError(f"Invalid provider name: {provider!r}", field="provider")
        return self._paths.provider_config_file(provider)

    def get_provider_config(self, provider: str) -> dict:
        return self._store.load(self._provider_config_path(provider), {})

    def update_provider_config(self, provider: str, config: dict) -> dict:
        if not isinstance(config, dict):
            raise ValidationError("config must be an object", field="config")
        self._store.save(self._provider_config_path(provider), config)
        return config
