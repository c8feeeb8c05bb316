"""JSON document store with atomic read-modify-write.

Every config document the bridge owns (settings.json, config.json, the
legacy mirrors, agent.json, favorites, titles) and the native JSON files it
shares with the Claude tooling go through ``JsonDocumentStore``.

Writes are atomic per file (temp file in the same directory + os.replace).
There is no cross-process lock: two bridge instances writing the same file
resolve as last-writer-wins.
"""

import copy
import json
import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ai_bridge.errors import BridgeIOError

logger = logging.getLogger(__name__)


def _cleanup_temp_artifacts(temp_fd: int | None, temp_path: str | None) -> None:
    """Best-effort cleanup for a failed atomic write."""
    if temp_fd is not None:
        try:
            os.close(temp_fd)
        except OSError:
            pass
    if temp_path is not None and os.path.exists(temp_path):
        try:
            os.unlink(temp_path)
        except OSError:
            pass


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to ``path`` atomically.

    Args:
        path: Destination file. Parent directories are created.
        text: Full file contents.

    Raises:
        BridgeIOError: If the directory cannot be created or the write fails.
    """
    temp_fd: int | None = None
    temp_path: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
        )
        with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
            temp_fd = None
            f.write(text)
        os.replace(temp_path, path)
        temp_path = None
    except OSError as e:
        _cleanup_temp_artifacts(temp_fd, temp_path)
        raise BridgeIOError(str(path), e.strerror or str(e)) from e


class JsonDocumentStore:
    """Load/save JSON documents with type-checked defaults."""

    def load(self, path: Path, default: Any = None, strict: bool = False) -> Any:
        """Load a JSON document.

        Args:
            path: File to read.
            default: Value returned (as a deep copy) when the file is missing.
                Outside strict mode it is also returned when the file is
                unreadable, malformed, or holds a different top-level type.
            strict: Raise instead of falling back when the file exists but
                cannot be used. Read-modify-write callers pass True so a
                damaged file is never replaced by a rebuilt default.

        Returns:
            Parsed document or a copy of ``default``.

        Raises:
            BridgeIOError: In strict mode, if the file exists but is
                unreadable, malformed, or of the wrong top-level type.
        """
        fallback = copy.deepcopy(default if default is not None else {})
        if not path.exists():
            return fallback
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            if strict:
                raise BridgeIOError(str(path), f"cannot parse existing file: {e}") from e
            logger.warning("Failed to load %s: %s", path, e)
            return fallback
        if not isinstance(data, type(fallback)):
            reason = f"expected {type(fallback).__name__}, found {type(data).__name__}"
            if strict:
                raise BridgeIOError(str(path), reason)
            logger.warning("Ignoring %s: %s", path, reason)
            return fallback
        return data

    def load_optional(self, path: Path) -> dict | None:
        """Load a JSON object, or None when the file is absent or not an object."""
        if not path.exists():
            return None
        data = self.load(path, {})
        return data if isinstance(data, dict) else None

    def save(self, path: Path, data: Any) -> None:
        """Serialize ``data`` as indented JSON and write it atomically."""
        atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")

    def update(
        self,
        path: Path,
        default: Any,
        mutator: Callable[[Any], Any],
    ) -> Any:
        """Read-modify-write helper.

        Args:
            path: Document to update.
            default: Default used when the file is missing.
            mutator: Receives the loaded document; may mutate it in place and
                return None, or return a replacement document.

        Returns:
            The document that was written.

        Raises:
            BridgeIOError: If the existing file cannot be parsed; it is left
                untouched.
        """
        data = self.load(path, default, strict=True)
        result = mutator(data)
        if result is not None:
            data = result
        self.save(path, data)
        return data
