"""TOML codec for the Codex native config file.

Parsing uses the standard library ``tomllib``. There is no writer in the
standard library, so ``generate_toml`` emits the subset the Codex config
needs: scalars, arrays, nested tables and inline tables.

Layout rules for each table:
- plain key/values (scalars and arrays) come before sub-tables
- sub-tables become ``[a.b]`` headers, an empty table still gets a header
- tables inside arrays are written inline
"""

import json
import math
import re
import tomllib
from typing import Any

_BARE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")


class TomlCodecError(ValueError):
    """Raised when a document cannot be parsed or represented as TOML."""


def _format_key(key: str) -> str:
    key = str(key)
    if _BARE_KEY.match(key):
        return key
    return _format_string(key)


def _format_string(value: str) -> str:
    # JSON string escaping is a valid TOML basic string except for DEL,
    # which TOML forbids unescaped.
    return json.dumps(value, ensure_ascii=False).replace("\x7f", "\\u007f")


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return repr(value)


def _format_value(value: Any) -> str:
    if value is None:
        return '""'
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, str):
        return _format_string(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_format_value(item) for item in value) + "]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        pairs = ", ".join(
            f"{_format_key(k)} = {_format_value(v)}" for k, v in value.items()
        )
        return "{ " + pairs + " }"
    raise TomlCodecError(f"Cannot represent {type(value).__name__} in TOML")


def _write_table(lines: list[str], path: list[str], table: dict) -> None:
    simple = [(k, v) for k, v in table.items() if not isinstance(v, dict)]
    nested = [(k, v) for k, v in table.items() if isinstance(v, dict)]

    if path and (simple or not nested):
        if lines:
            lines.append("")
        lines.append("[" + ".".join(_format_key(p) for p in path) + "]")
    for key, value in simple:
        lines.append(f"{_format_key(key)} = {_format_value(value)}")
    for key, value in nested:
        _write_table(lines, path + [str(key)], value)


def generate_toml(config: dict) -> str:
    """Serialize a dict to TOML text.

    Args:
        config: Mapping of str keys to TOML-representable values.

    Returns:
        TOML document ending with a newline (empty string for an empty dict).
    """
    if not isinstance(config, dict):
        raise TomlCodecError("TOML document root must be a table")
    lines: list[str] = []
    _write_table(lines, [], config)
    return "\n".join(lines) + ("\n" if lines else "")


def parse_toml(text: str) -> dict:
    """Parse TOML text into a dict.

    Raises:
        TomlCodecError: If the text is not valid TOML.
    """
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise TomlCodecError(str(e)) from e
