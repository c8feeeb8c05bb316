"""Secret redaction for safe logging and error envelopes.

Provider entries carry API keys inside ``settingsConfig.env`` and MCP server
specs carry tokens in ``env``/``http_headers``. Anything the bridge logs or
prints passes through :func:`redact_for_logging` (structured payloads) or
:func:`redact_text` (exception messages) first.
"""

import re
from typing import Any

MASK = "***REDACTED***"

# Case-insensitive substrings of a key that mark its scalar value as secret
SECRET_KEY_FRAGMENTS = (
    "secret", "token", "authorization", "api_key", "apikey",
    "password", "credential",
)

# Keys masked wholesale, whatever shape the value has
OPAQUE_KEYS = frozenset({"credentials", "http_headers", "headers"})

_KEYWORDS = "|".join(SECRET_KEY_FRAGMENTS)
_TEXT_SECRETS = re.compile(
    rf"(?i)(?:authorization\s*:\s*)?bearer\s+\S+"
    rf'|"\w*(?:{_KEYWORDS})\w*"\s*:\s*"[^"]*"'
    rf"|\b\w*(?:{_KEYWORDS})\w*\s*[=:]\s*\S+"
    rf"|\bsk-[\w-]{{8,}}"
)


def is_secret_key(key: Any) -> bool:
    lowered = str(key).lower()
    return any(fragment in lowered for fragment in SECRET_KEY_FRAGMENTS)


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return redact_for_logging(value)
    if isinstance(value, (list, tuple)):
        return [_scrub(item) for item in value]
    return value


def redact_for_logging(obj: dict) -> dict:
    """Return a copy of ``obj`` with secret values masked.

    Scalars under secret-looking keys are replaced; nested containers are
    walked instead so that e.g. ``{"token_config": {"url": ...}}`` keeps its
    harmless fields. Keys in :data:`OPAQUE_KEYS` are masked entirely.

    Args:
        obj: Mapping to redact. Never mutated.
    """
    redacted = {}
    for key, value in obj.items():
        if str(key).lower() in OPAQUE_KEYS:
            redacted[key] = MASK
        elif isinstance(value, (dict, list, tuple)):
            redacted[key] = _scrub(value)
        elif is_secret_key(key):
            redacted[key] = MASK
        else:
            redacted[key] = value
    return redacted


def redact_text(msg: str | None, max_length: int = 2000) -> str | None:
    """Mask bearer tokens, ``key=value`` secrets and raw ``sk-`` keys in text.

    The result is cut to ``max_length`` characters (ending in ``...``).
    """
    if msg is None:
        return None
    masked = _TEXT_SECRETS.sub(MASK, msg)
    if len(masked) > max_length:
        masked = masked[: max_length - 3] + "..."
    return masked
