"""Root-level pytest fixtures for all tests.

Every filesystem test runs against a ``BridgePaths`` layout rooted in
``tmp_path`` so nothing touches the real home directory.
"""

import json
import os
from pathlib import Path

import pytest

from ai_bridge.utils.paths import BridgePaths

# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that spawn real subprocesses"
    )


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep host environment overrides out of every test."""
    for name in ("CODEMOSS_HOME", "CODEMOSS_WORKSPACE_ROOT"):
        monkeypatch.delenv(name, raising=False)
    for name in [n for n in os.environ if n.startswith("AIBRIDGE_")]:
        monkeypatch.delenv(name)


# ============================================================================
# Path Fixtures
# ============================================================================


@pytest.fixture
def paths(tmp_path: Path) -> BridgePaths:
    """Isolated bridge layout with an existing workspace directory."""
    bridge_paths = BridgePaths.from_root(tmp_path)
    bridge_paths.workspace_root.mkdir(parents=True, exist_ok=True)
    bridge_paths.home.mkdir(parents=True, exist_ok=True)
    return bridge_paths


@pytest.fixture
def write_json():
    """Write a JSON document, creating parent directories."""

    def _write(path: Path, data) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def read_json():
    def _read(path: Path):
        return json.loads(path.read_text(encoding="utf-8"))

    return _read
