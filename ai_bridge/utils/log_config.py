"""Logging setup shared by the host CLI and the child bridge process.

The child bridge owns stdout for protocol envelopes, so every handler
installed here writes to stderr or a file, never to stdout.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

from ai_bridge.utils.paths import get_log_dir

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonLogFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(
    level: str = "info",
    fmt: str = "text",
    log_file: str | None = None,
) -> logging.Logger:
    """Install handlers on the ``ai_bridge`` logger.

    Args:
        level: Log level name (debug, info, warning, error).
        fmt: "text" or "json".
        log_file: Optional file path; parent directories are created. A bare
            file name (no directory part) is placed in the platform log dir.

    Returns:
        The configured package logger.
    """
    root = logging.getLogger("ai_bridge")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter: logging.Formatter
    if fmt == "json":
        formatter = JsonLogFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file:
        path = Path(log_file).expanduser()
        if path.parent == Path("."):
            path = get_log_dir() / path
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.propagate = False
    return root
