"""Tests for on-disk layout resolution."""

from pathlib import Path

from ai_bridge.utils.paths import BridgePaths, default_config_root, default_workspace_root


def test_from_root_is_isolated(tmp_path):
    paths = BridgePaths.from_root(tmp_path)
    assert paths.config_root == tmp_path / "home" / ".codemoss"
    assert paths.claude_json_file == tmp_path / "home" / ".claude.json"
    assert paths.codex_config_file == tmp_path / "home" / ".codex" / "config.toml"
    assert paths.local_skills_dir == tmp_path / "workspace" / ".claude" / "skills"
    assert paths.dependency_dir("claude-sdk") == paths.config_root / "dependencies" / "claude-sdk"
    assert paths.provider_config_file("codex") == paths.config_root / "codex-config.json"


def test_with_workspace_keeps_roots(tmp_path):
    paths = BridgePaths.from_root(tmp_path)
    moved = paths.with_workspace(tmp_path / "other")
    assert moved.config_root == paths.config_root
    assert moved.local_commands_dir == tmp_path / "other" / ".claude" / "commands"


def test_config_root_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("CODEMOSS_HOME", str(tmp_path / "custom"))
    assert default_config_root(Path("/home/u")) == tmp_path / "custom"


def test_config_root_default():
    assert default_config_root(Path("/home/u")) == Path("/home/u/.codemoss")


def test_workspace_root_env(tmp_path, monkeypatch):
    monkeypatch.setenv("CODEMOSS_WORKSPACE_ROOT", str(tmp_path))
    assert default_workspace_root() == tmp_path


def test_workspace_root_falls_back_to_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert default_workspace_root() == tmp_path


def test_ensure_dirs_exist(tmp_path):
    paths = BridgePaths.from_root(tmp_path)
    paths.ensure_dirs_exist()
    assert paths.config_root.is_dir()
