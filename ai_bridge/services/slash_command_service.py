"""Slash commands from ``*.md`` files, plus a filesystem watcher.

Commands live in ``~/.claude/commands`` (global) and
``<workspace>/.claude/commands`` (local). A file ``review.md`` becomes
``/review``; ``git/commit.md`` becomes ``/git:commit``. A workspace command
shadows a global one with the same name.

The watcher runs on the watchdog observer thread. Events are debounced
with a ``threading.Timer`` and bridged to the event loop via
``call_soon_threadsafe``.
"""

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import yaml
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ai_bridge.utils.paths import BridgePaths

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.5
DESCRIPTION_LENGTH = 200


def _front_matter(text: str) -> tuple[dict, str]:
    """Split YAML front-matter from the body. Invalid front-matter is ignored."""
    if not text.startswith("---"):
        return {}, text
    end = text.find("\n---", 3)
    if end == -1:
        return {}, text
    header = text[3:end]
    body = text[end + 4:].lstrip("\n")
    try:
        meta = yaml.safe_load(header)
    except yaml.YAMLError as e:
        logger.debug("Ignoring invalid front-matter: %s", e)
        return {}, body
    return (meta if isinstance(meta, dict) else {}), body


def describe_command(text: str) -> str:
    """Description from front-matter, else the first non-empty body line."""
    meta, body = _front_matter(text)
    description = meta.get("description")
    if isinstance(description, str) and description.strip():
        return description.strip()[:DESCRIPTION_LENGTH]
    for line in body.splitlines():
        stripped = line.strip().lstrip("#").strip()
        if stripped:
            return stripped[:DESCRIPTION_LENGTH]
    return ""


def _command_name(root: Path, path: Path) -> str:
    parts = path.relative_to(root).with_suffix("").parts
    return "/" + ":".join(parts)


def scan_commands(root: Path, scope: str) -> list[dict]:
    if not root.is_dir():
        return []
    commands = []
    for path in sorted(root.rglob("*.md")):
        if not path.is_file() or any(part.startswith(".") for part in path.relative_to(root).parts):
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Skipping command file %s: %s", path, e)
            continue
        commands.append({
            "name": _command_name(root, path),
            "description": describe_command(text),
            "scope": scope,
            "path": str(path),
        })
    return commands


class SlashCommandService:
    def __init__(self, paths: BridgePaths) -> None:
        self._paths = paths

    @property
    def roots(self) -> list[Path]:
        return [self._paths.global_commands_dir, self._paths.local_commands_dir]

    def list(self) -> list[dict]:
        """Return ``{name, description, scope, path}`` sorted by name."""
        merged: dict[str, dict] = {}
        for command in scan_commands(self._paths.global_commands_dir, "global"):
            merged[command["name"]] = command
        for command in scan_commands(self._paths.local_commands_dir, "local"):
            merged[command["name"]] = command
        return sorted(merged.values(), key=lambda c: c["name"])


class _DebouncingHandler(FileSystemEventHandler):
    """Collapses a burst of events into one callback after the burst settles."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        callback: Callable[[], Awaitable[None]],
        delay: float = DEBOUNCE_SECONDS,
    ) -> None:
        self._loop = loop
        self._callback = callback
        self._delay = delay
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def on_any_event(self, event: Any) -> None:
        src = str(getattr(event, "src_path", ""))
        dest = str(getattr(event, "dest_path", "") or "")
        if not event.is_directory and not (src.endswith(".md") or dest.endswith(".md")):
            return
        self._schedule()

    def _schedule(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self._delay, self._on_timer_expired)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _on_timer_expired(self) -> None:
        with self._lock:
            self._timer = None
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(lambda: asyncio.ensure_future(self._fire()))

    async def _fire(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Slash command refresh failed")

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class SlashCommandWatcher:
    """Watches the command roots and pushes ``slashCommandsUpdated``.

    Args:
        service: Command lister.
        push: Async callable receiving the unsolicited envelope dict.
        delay: Debounce window in seconds.
    """

    def __init__(
        self,
        service: SlashCommandService,
        push: Callable[[dict], Awaitable[None]],
        delay: float = DEBOUNCE_SECONDS,
    ) -> None:
        self._service = service
        self._push = push
        self._delay = delay
        self._observer: Observer | None = None
        self._handler: _DebouncingHandler | None = None

    async def refresh(self) -> None:
        commands = self._service.list()
        await self._push({"type": "slashCommandsUpdated", "content": {"commands": commands}})

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._handler = _DebouncingHandler(loop, self.refresh, self._delay)
        self._observer = Observer()
        watched = 0
        for root in self._service.roots:
            if not root.is_dir():
                logger.debug("Command root does not exist: %s", root)
                continue
            self._observer.schedule(self._handler, str(root), recursive=True)
            watched += 1
        self._observer.start()
        logger.info("Slash command watcher started (%d roots)", watched)

    async def stop(self) -> None:
        if self._handler is not None:
            self._handler.cancel()
        if self._observer is not None:
            observer, self._observer = self._observer, None
            observer.stop()
            await asyncio.to_thread(observer.join, 5)
            logger.info("Slash command watcher stopped")
