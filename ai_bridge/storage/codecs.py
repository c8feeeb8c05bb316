"""File-format codecs behind one interface.

The reconciliation services talk to native tool files through a codec so
the same read/modify/write code serves the JSON files (``~/.claude.json``,
``~/.claude/settings.json``) and the TOML file (``~/.codex/config.toml``).
"""

import json
import logging
from pathlib import Path
from typing import Protocol

from ai_bridge.errors import BridgeIOError
from ai_bridge.storage.json_store import atomic_write_text
from ai_bridge.storage.toml_codec import TomlCodecError, generate_toml, parse_toml

logger = logging.getLogger(__name__)


class DocumentCodec(Protocol):
    """Text <-> dict translation for one file format."""

    name: str

    def load_text(self, text: str) -> dict: ...

    def dump_text(self, data: dict) -> str: ...


class JsonCodec:
    name = "json"

    def load_text(self, text: str) -> dict:
        data = json.loads(text) if text.strip() else {}
        if not isinstance(data, dict):
            raise ValueError("JSON document root must be an object")
        return data

    def dump_text(self, data: dict) -> str:
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


class TomlCodec:
    name = "toml"

    def load_text(self, text: str) -> dict:
        return parse_toml(text)

    def dump_text(self, data: dict) -> str:
        return generate_toml(data)


class NativeDocument:
    """A native tool file read and written through a codec.

    Attributes:
        path: Location of the file.
        codec: Format translator.
    """

    def __init__(self, path: Path, codec: DocumentCodec) -> None:
        self.path = path
        self.codec = codec

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> dict | None:
        """Return the parsed document, or None if absent or unparseable."""
        try:
            return self.read_for_update()
        except BridgeIOError as e:
            logger.warning("Failed to read %s as %s: %s", self.path, self.codec.name, e.reason)
            return None

    def read_for_update(self) -> dict | None:
        """Return the parsed document, or None only when the file is absent.

        Raises:
            BridgeIOError: If the file exists but cannot be read or parsed.
                Callers must not write the file back in that case.
        """
        if not self.path.exists():
            return None
        try:
            return self.codec.load_text(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, TomlCodecError) as e:
            raise BridgeIOError(str(self.path), f"cannot parse existing {self.codec.name} file: {e}") from e
        try:
            return self.codec.load_text(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, TomlCodecError) as e:
            logger.warning("Failed to read %s as %s: %s", self.path, self.codec.name, e)
            return None

    def write(self, data: dict) -> None:
        atomic_write_text(self.path, self.codec.dump_text(data))
