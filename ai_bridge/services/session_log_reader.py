"""Reader for the append-only session logs written by the AI tools.

Each log is newline-delimited JSON, one event per line. Blank lines,
malformed lines and non-object values are skipped. Logs are owned by the
tools; this module only reads them.

Layouts:
- Claude: ``~/.claude/projects/<project-dir>/<sessionId>.jsonl``
- Codex: ``~/.codex/sessions/**/<name>.jsonl`` (date-partitioned tree)
"""

import json
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CODEX_DEFAULT_MODEL = "gpt-5.1"
CODEX_SUMMARY_LENGTH = 45


@dataclass
class TokenUsage:
    """Token counters for one session."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens + self.cache_write_tokens + self.cache_read_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "cacheWriteTokens": self.cache_write_tokens,
            "cacheReadTokens": self.cache_read_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class UsageDelta:
    """Usage reported by one assistant message, with the model that produced it."""

    model: str | None
    usage: TokenUsage


@dataclass
class ClaudeUsageRecord:
    """Usage extracted from one Claude session log."""

    session_id: str
    timestamp_ms: int
    deltas: list[UsageDelta] = field(default_factory=list)
    summary: str | None = None

    @property
    def model(self) -> str:
        for delta in self.deltas:
            if delta.model:
                return delta.model
        return "unknown"


@dataclass
class CodexSessionRecord:
    """Usage extracted from one Codex session log.

    Codex reports cumulative totals, so ``usage`` is the last total seen.
    """

    session_id: str
    timestamp_ms: int
    model: str = CODEX_DEFAULT_MODEL
    usage: TokenUsage = field(default_factory=TokenUsage)
    summary: str | None = None


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_timestamp_ms(value: Any) -> int:
    """Parse an ISO-8601 timestamp to epoch milliseconds (0 if unparseable)."""
    if not value or not isinstance(value, str):
        return 0
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return 0
    return int(parsed.timestamp() * 1000)


def iter_records(path: Path) -> Iterator[dict]:
    """Yield each JSON object in a log file.

    Unreadable files yield nothing; malformed lines are skipped.
    """
    try:
        handle = path.open("r", encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Cannot read session log %s: %s", path, e)
        return
    with handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError:
                continue
            if isinstance(record, dict):
                yield record


def extract_text(record: dict) -> str:
    """Join the text and thinking blocks of a user/assistant record."""
    message = record.get("message")
    blocks = message.get("content") if isinstance(message, dict) else None
    if blocks is None:
        blocks = record.get("content")
    if isinstance(blocks, str):
        return blocks
    if not isinstance(blocks, list):
        return ""
    parts = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "text" and isinstance(block.get("text"), str):
            parts.append(block["text"])
        elif block.get("type") == "thinking" and isinstance(block.get("thinking"), str):
            parts.append(block["thinking"])
    return "".join(parts)


def read_claude_usage(path: Path) -> ClaudeUsageRecord:
    """Extract usage deltas, first timestamp and summary from a Claude log."""
    record = ClaudeUsageRecord(session_id=path.stem, timestamp_ms=0)
    for raw in iter_records(path):
        if not record.timestamp_ms and raw.get("timestamp"):
            record.timestamp_ms = parse_timestamp_ms(raw["timestamp"])

        message = raw.get("message") if isinstance(raw.get("message"), dict) else {}
        if raw.get("type") == "summary":
            if isinstance(raw.get("summary"), str):
                record.summary = raw["summary"]
            elif isinstance(message.get("content"), str):
                record.summary = message["content"]

        usage = message.get("usage")
        if raw.get("type") == "assistant" and isinstance(usage, dict):
            delta = TokenUsage(
                input_tokens=_int(usage.get("input_tokens")),
                output_tokens=_int(usage.get("output_tokens")),
                cache_write_tokens=_int(usage.get("cache_creation_input_tokens")),
                cache_read_tokens=_int(usage.get("cache_read_input_tokens")),
            )
            if delta.total_tokens:
                model = message.get("model")
                record.deltas.append(UsageDelta(str(model) if model else None, delta))
    return record


def read_codex_session(path: Path) -> CodexSessionRecord:
    """Extract model, final token totals and first prompt from a Codex log."""
    record = CodexSessionRecord(session_id=path.stem, timestamp_ms=0)
    model: str | None = None
    for raw in iter_records(path):
        if not record.timestamp_ms and raw.get("timestamp"):
            record.timestamp_ms = parse_timestamp_ms(raw["timestamp"])

        payload = raw.get("payload") if isinstance(raw.get("payload"), dict) else {}
        if model is None and raw.get("type") == "turn_context" and payload.get("model"):
            model = str(payload["model"])

        if raw.get("type") != "event_msg":
            continue
        if record.summary is None and payload.get("type") == "user_message":
            text = payload.get("message")
            if isinstance(text, str) and text:
                flat = text.replace("\n", " ").strip()
                if len(flat) > CODEX_SUMMARY_LENGTH:
                    flat = f"{flat[:CODEX_SUMMARY_LENGTH]}..."
                record.summary = flat
        if payload.get("type") == "token_count":
            info = payload.get("info") if isinstance(payload.get("info"), dict) else {}
            total = info.get("total_token_usage")
            if isinstance(total, dict):
                record.usage = TokenUsage(
                    input_tokens=_int(total.get("input_tokens")),
                    output_tokens=_int(total.get("output_tokens")),
                    cache_read_tokens=_int(total.get("cached_input_tokens")),
                )
    record.model = model or CODEX_DEFAULT_MODEL
    return record


def list_session_files(directory: Path) -> list[Path]:
    """Non-empty ``*.jsonl`` files directly inside ``directory``."""
    if not directory.is_dir():
        return []
    files = []
    try:
        entries = sorted(directory.iterdir())
    except OSError as e:
        logger.warning("Cannot list %s: %s", directory, e)
        return []
    for entry in entries:
        if entry.suffix != ".jsonl" or not entry.is_file():
            continue
        try:
            if entry.stat().st_size == 0:
                continue
        except OSError:
            continue
        files.append(entry)
    return files


def project_dirs(projects_root: Path) -> list[Path]:
    if not projects_root.is_dir():
        return []
    return sorted(p for p in projects_root.iterdir() if p.is_dir())


def walk_jsonl(root: Path, max_depth: int = 10) -> list[Path]:
    """Collect non-empty ``*.jsonl`` files under ``root`` up to ``max_depth``."""
    results: list[Path] = []
    if not root.is_dir():
        return results
    for dirpath, dirnames, filenames in os.walk(root):
        depth = len(Path(dirpath).relative_to(root).parts)
        if depth >= max_depth:
            dirnames[:] = []
        for name in sorted(filenames):
            if not name.endswith(".jsonl"):
                continue
            candidate = Path(dirpath) / name
            try:
                if candidate.stat().st_size == 0:
                    continue
            except OSError:
                continue
            results.append(candidate)
    return results


def find_session_file(projects_root: Path, session_id: str) -> Path | None:
    """Locate ``<sessionId>.jsonl`` in any Claude project directory."""
    if not session_id or "/" in session_id or "\\" in session_id:
        return None
    for directory in project_dirs(projects_root):
        candidate = directory / f"{session_id}.jsonl"
        if candidate.is_file():
            return candidate
    return None
