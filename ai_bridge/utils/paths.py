"""On-disk layout resolution.

Everything the bridge reads or writes is located through ``BridgePaths`` so
tests can root the whole tree in a temporary directory:

  <config_root>/            (default ~/.codemoss, or $CODEMOSS_HOME)
      settings.json, config.json, providers.json, codex-providers.json,
      favorites.json, session-titles.json, agent.json, agents.json,
      skills/, dependencies/<sdk-id>/
  <home>/.claude/settings.json, <home>/.claude.json, <home>/.codex/config.toml
  <home>/.claude/projects/, <home>/.codex/sessions/

Log files go to the platform log dir resolved by platformdirs.
"""

import os
from dataclasses import dataclass
from pathlib import Path

import platformdirs

APP_NAME = "ai-bridge"
APP_AUTHOR = "codemoss"
CONFIG_DIR_NAME = ".codemoss"


def get_log_dir() -> Path:
    """Return the directory for bridge log files."""
    return Path(platformdirs.user_log_dir(APP_NAME, appauthor=APP_AUTHOR))


def default_config_root(home: Path | None = None) -> Path:
    """Return the per-user config root, honouring $CODEMOSS_HOME."""
    override = os.environ.get("CODEMOSS_HOME", "").strip()
    if override:
        return Path(override).expanduser()
    return (home or Path.home()) / CONFIG_DIR_NAME


def default_workspace_root() -> Path:
    """Return $CODEMOSS_WORKSPACE_ROOT, falling back to the cwd."""
    override = os.environ.get("CODEMOSS_WORKSPACE_ROOT", "").strip()
    return Path(override) if override else Path.cwd()


@dataclass(frozen=True)
class BridgePaths:
    """Resolved file locations for one bridge instance."""

    config_root: Path
    home: Path
    workspace_root: Path

    @classmethod
    def default(cls) -> "BridgePaths":
        home = Path.home()
        return cls(
            config_root=default_config_root(home),
            home=home,
            workspace_root=default_workspace_root(),
        )

    @classmethod
    def from_root(cls, root: Path, workspace: Path | None = None) -> "BridgePaths":
        """Build a fully isolated layout under ``root`` (used by tests)."""
        home = root / "home"
        return cls(
            config_root=home / CONFIG_DIR_NAME,
            home=home,
            workspace_root=workspace or root / "workspace",
        )

    def with_workspace(self, workspace_root: Path) -> "BridgePaths":
        return BridgePaths(self.config_root, self.home, Path(workspace_root))

    # --- config root files ---

    @property
    def settings_file(self) -> Path:
        return self.config_root / "settings.json"

    @property
    def config_file(self) -> Path:
        return self.config_root / "config.json"

    @property
    def legacy_claude_providers_file(self) -> Path:
        return self.config_root / "providers.json"

    @property
    def legacy_codex_providers_file(self) -> Path:
        return self.config_root / "codex-providers.json"

    @property
    def legacy_mcp_servers_file(self) -> Path:
        return self.config_root / "mcp-servers.json"

    @property
    def favorites_file(self) -> Path:
        return self.config_root / "favorites.json"

    @property
    def titles_file(self) -> Path:
        return self.config_root / "session-titles.json"

    @property
    def agent_file(self) -> Path:
        return self.config_root / "agent.json"

    @property
    def legacy_agents_file(self) -> Path:
        return self.config_root / "agents.json"

    @property
    def skills_management_root(self) -> Path:
        return self.config_root / "skills"

    @property
    def dependencies_root(self) -> Path:
        return self.config_root / "dependencies"

    def dependency_dir(self, sdk_id: str) -> Path:
        return self.dependencies_root / sdk_id

    def provider_config_file(self, provider: str) -> Path:
        return self.config_root / f"{provider}-config.json"

    # --- native tool files ---

    @property
    def claude_dir(self) -> Path:
        return self.home / ".claude"

    @property
    def claude_settings_file(self) -> Path:
        return self.claude_dir / "settings.json"

    @property
    def claude_json_file(self) -> Path:
        return self.home / ".claude.json"

    @property
    def codex_config_file(self) -> Path:
        return self.home / ".codex" / "config.toml"

    @property
    def claude_projects_dir(self) -> Path:
        return self.claude_dir / "projects"

    @property
    def codex_sessions_dir(self) -> Path:
        return self.home / ".codex" / "sessions"

    @property
    def global_skills_dir(self) -> Path:
        return self.claude_dir / "skills"

    @property
    def local_skills_dir(self) -> Path:
        return self.workspace_root / ".claude" / "skills"

    @property
    def global_commands_dir(self) -> Path:
        return self.claude_dir / "commands"

    @property
    def local_commands_dir(self) -> Path:
        return self.workspace_root / ".claude" / "commands"

    def ensure_dirs_exist(self) -> None:
        """Create the config root if it doesn't exist."""
        self.config_root.mkdir(parents=True, exist_ok=True)
