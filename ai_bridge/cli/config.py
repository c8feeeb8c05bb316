"""Configuration for the ``ai-bridge`` CLI and host supervisor.

Sources, lowest precedence first:

* built-in defaults (no file at all is a valid configuration)
* a YAML file: ``--config <path>``, else ``./ai-bridge.yaml``, else
  ``~/.ai-bridge/config.yaml``; ``${VAR}`` inside string values expands
  from the environment
* ``AIBRIDGE_<SECTION>_<KEY>`` environment variables
"""

import logging
import os
import re
import shlex
import sys
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from ai_bridge.utils.paths import BridgePaths, default_config_root, default_workspace_root

logger = logging.getLogger(__name__)

ENV_PREFIX = "AIBRIDGE_"
CONFIG_NAMES = ("ai-bridge.yaml", "ai-bridge.yml")
USER_CONFIG_NAMES = ("config.yaml", "config.yml")

_VAR_REF = re.compile(r"\$\{(?P<name>[^}]+)\}")


def resolve_env_vars(value: str) -> str:
    """Expand ``${VAR}`` references; unset variables become ``""``."""
    return _VAR_REF.sub(lambda m: os.environ.get(m.group("name"), ""), value)


def _expand(node: Any) -> Any:
    if isinstance(node, str):
        return resolve_env_vars(node)
    if isinstance(node, list):
        return list(map(_expand, node))
    if isinstance(node, dict):
        return {key: _expand(item) for key, item in node.items()}
    return node


def _default_command() -> list[str]:
    return [sys.executable, "-m", "ai_bridge", "serve"]


class BridgeProcessConfig(BaseModel):
    """How the host launches and supervises the child bridge."""

    command: list[str] = Field(default_factory=_default_command)
    max_restarts: int = 3
    restart_delay_base: float = 1.0
    stop_timeout: float = 5.0

    @field_validator("command", mode="before")
    @classmethod
    def split_command(cls, value: Any) -> Any:
        """Accept a shell-style string (e.g. from an env override)."""
        if isinstance(value, str):
            return shlex.split(value)
        return value

    @field_validator("command")
    @classmethod
    def command_not_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("command must not be empty")
        return value

    @field_validator("max_restarts")
    @classmethod
    def restarts_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_restarts must be >= 0")
        return value

    @field_validator("restart_delay_base", "stop_timeout")
    @classmethod
    def delays_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be >= 0")
        return value


class TimeoutConfig(BaseModel):
    """Per-class request timeouts in seconds."""

    quick: float = 30.0
    message: float = 180.0
    long: float = 600.0

    @field_validator("quick", "message", "long")
    @classmethod
    def positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    @model_validator(mode="after")
    def ordered(self) -> "TimeoutConfig":
        """Ensure quick <= message <= long."""
        if self.quick > self.message or self.message > self.long:
            raise ValueError("timeouts must satisfy quick <= message <= long")
        return self

    def as_dict(self) -> dict[str, float]:
        return {"quick": self.quick, "message": self.message, "long": self.long}


class PathsConfig(BaseModel):
    """Filesystem roots. Unset values fall back to the environment."""

    config_root: str | None = None
    home: str | None = None
    workspace_root: str | None = None

    def resolve(self) -> BridgePaths:
        home = Path(self.home).expanduser() if self.home else Path.home()
        config_root = (
            Path(self.config_root).expanduser() if self.config_root
            else default_config_root(home)
        )
        workspace = (
            Path(self.workspace_root).expanduser() if self.workspace_root
            else default_workspace_root()
        )
        return BridgePaths(config_root=config_root, home=home, workspace_root=workspace)


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["text", "json"] = "text"
    file: str | None = None

    @field_validator("level")
    @classmethod
    def known_level(cls, value: str) -> str:
        value = value.lower()
        if value not in ("debug", "info", "warning", "error", "critical"):
            raise ValueError(f"unknown log level: {value}")
        return value


class AIBridgeConfig(BaseModel):
    """Top-level configuration for the AI bridge CLI and supervisor."""

    bridge: BridgeProcessConfig = Field(default_factory=BridgeProcessConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _find_config_file() -> Path | None:
    search = [Path.cwd() / name for name in CONFIG_NAMES]
    search += [Path.home() / ".ai-bridge" / name for name in USER_CONFIG_NAMES]
    return next((candidate for candidate in search if candidate.exists()), None)


def _coerce(value: str) -> Any:
    """Turn an env string into int, float or bool where it reads as one."""
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            continue
    return value


def _split_env_key(name: str) -> tuple[str, str] | None:
    """Map ``AIBRIDGE_BRIDGE_MAX_RESTARTS`` to ``("bridge", "max_restarts")``.

    Longer section names are tried first so a section whose name prefixes
    another's cannot capture its variables.
    """
    rest = name[len(ENV_PREFIX):].lower()
    for section in sorted(AIBridgeConfig.model_fields, key=len, reverse=True):
        if rest.startswith(f"{section}_"):
            key = rest[len(section) + 1:]
            return (section, key) if key else None
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    for name, raw in os.environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        target = _split_env_key(name)
        if target is None:
            continue
        section, key = target
        values = data.setdefault(section, {})
        if isinstance(values, dict):
            values[key] = _coerce(raw)
    return data


def load_config(config_path: str | None = None) -> tuple[AIBridgeConfig, Path | None]:
    """Load configuration, returning it with the file it came from.

    Args:
        config_path: Explicit file. When omitted the working directory and
            then ``~/.ai-bridge/`` are searched.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        ValueError: If the file does not hold a mapping.
        pydantic.ValidationError: If the merged config is invalid.
    """
    source = Path(config_path) if config_path else _find_config_file()
    if config_path and not source.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    document: Any = {}
    if source is not None:
        logger.info("Loading config from %s", source)
        document = yaml.safe_load(source.read_text(encoding="utf-8")) or {}
        if not isinstance(document, dict):
            raise ValueError(f"Config file {source} must contain a mapping")

    return AIBridgeConfig(**_apply_env_overrides(_expand(document))), source
