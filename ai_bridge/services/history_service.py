"""Chat history over the Claude session logs.

Sessions are read from ``~/.claude/projects/*/<sessionId>.jsonl``.
Favorites (``{sid: {favoritedAt}}``) and custom titles
(``{sid: {customTitle, updatedAt}}``) are kept in the config root.
"""

import logging
import secrets
import string
import time
from collections.abc import Callable
from datetime import datetime, timezone

from ai_bridge.errors import BridgeIOError, NotFoundError, ValidationError
from ai_bridge.services.session_log_reader import (
    extract_text,
    find_session_file,
    iter_records,
    list_session_files,
    project_dirs,
)
from ai_bridge.storage import JsonDocumentStore
from ai_bridge.utils.paths import BridgePaths

logger = logging.getLogger(__name__)

UNTITLED = "Untitled Session"
TITLE_LENGTH = 50
_MESSAGE_TYPES = ("user", "assistant")
_LOADED_TYPES = ("user", "assistant", "error")
_ID_ALPHABET = string.ascii_lowercase + string.digits


def _now_ms() -> int:
    return int(time.time() * 1000)


class HistoryService:
    """List, load, export and annotate past sessions."""

    def __init__(
        self,
        paths: BridgePaths,
        store: JsonDocumentStore | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._paths = paths
        self._store = store or JsonDocumentStore()
        self._clock = clock

    def _favorites(self, for_update: bool = False) -> dict:
        return self._store.load(self._paths.favorites_file, {}, strict=for_update)

    def _titles(self, for_update: bool = False) -> dict:
        return self._store.load(self._paths.titles_file, {}, strict=for_update)

    def _custom_title(self, titles: dict, session_id: str) -> str | None:
        entry = titles.get(session_id)
        title = entry.get("customTitle") if isinstance(entry, dict) else None
        if isinstance(title, str) and title.strip():
            return title.strip()
        return None

    def _require_file(self, session_id: str):
        if not isinstance(session_id, str) or not session_id:
            raise ValidationError("sessionId is required", field="sessionId")
        path = find_session_file(self._paths.claude_projects_dir, session_id)
        if path is None:
            raise NotFoundError("Session", session_id)
        return path

    def list_sessions(self) -> dict:
        """Return ``{success, sessions, total, favorites}`` newest first."""
        favorites = self._favorites()
        titles = self._titles()
        sessions = []
        for directory in project_dirs(self._paths.claude_projects_dir):
            for path in list_session_files(directory):
                session_id = path.stem
                message_count = 0
                inferred = ""
                for record in iter_records(path):
                    if record.get("type") in _MESSAGE_TYPES:
                        message_count += 1
                    if not inferred and record.get("type") == "user":
                        inferred = extract_text(record).strip()
                title = self._custom_title(titles, session_id) or (
                    inferred[:TITLE_LENGTH] if inferred else UNTITLED
                )
                try:
                    mtime = path.stat().st_mtime
                except OSError as e:
                    logger.warning("Skipping session %s: %s", path, e)
                    continue
                favorite = favorites.get(session_id)
                sessions.append({
                    "sessionId": session_id,
                    "title": title,
                    "messageCount": message_count,
                    "lastTimestamp": datetime.fromtimestamp(mtime, tz=timezone.utc)
                    .isoformat(timespec="milliseconds")
                    .replace("+00:00", "Z"),
                    "isFavorited": bool(favorite),
                    "favoritedAt": favorite.get("favoritedAt") if isinstance(favorite, dict) else None,
                    "provider": "claude",
                })
        sessions.sort(key=lambda s: s["lastTimestamp"], reverse=True)
        return {"success": True, "sessions": sessions, "total": len(sessions), "favorites": favorites}

    def load(self, session_id: str) -> list[dict]:
        """Return the user/assistant/error messages of a session.

        Raises:
            NotFoundError: If no log exists for the session.
        """
        path = self._require_file(session_id)
        messages = []
        for record in iter_records(path):
            if record.get("type") not in _LOADED_TYPES:
                continue
            message = {"type": record["type"], "content": extract_text(record), "raw": record}
            if record.get("timestamp"):
                message["timestamp"] = record["timestamp"]
            messages.append(message)
        return messages

    def export(self, session_id: str, title: str | None = None) -> dict:
        """Return ``{sessionId, title, messages}`` with every parsed record."""
        path = self._require_file(session_id)
        stored = self._custom_title(self._titles(), session_id)
        resolved = stored or (title if isinstance(title, str) and title else UNTITLED)
        return {"sessionId": session_id, "title": resolved, "messages": list(iter_records(path))}

    def delete(self, session_id: str) -> None:
        """Remove the session log and its favorite and title entries.

        Raises:
            NotFoundError: If no log exists for the session.
        """
        path = self._require_file(session_id)
        favorites = self._favorites(for_update=True)
        titles = self._titles(for_update=True)
        try:
            path.unlink()
        except OSError as e:
            raise BridgeIOError(str(path), str(e)) from e

        if session_id in favorites:
            del favorites[session_id]
            self._store.save(self._paths.favorites_file, favorites)
        if session_id in titles:
            del titles[session_id]
            self._store.save(self._paths.titles_file, titles)
        logger.info("Deleted session %s", session_id)

    def toggle_favorite(self, session_id: str) -> bool:
        """Flip the favorite flag. Returns the new state."""
        if not isinstance(session_id, str) or not session_id:
            raise ValidationError("sessionId is required", field="sessionId")
        favorites = self._favorites(for_update=True)
        if favorites.get(session_id):
            del favorites[session_id]
            favorite = False
        else:
            favorites[session_id] = {"favoritedAt": self._clock()}
            favorite = True
        self._store.save(self._paths.favorites_file, favorites)
        return favorite

    def update_title(self, session_id: str, title: str) -> str:
        """Set a custom title; a blank title removes it. Returns the stored title."""
        if not isinstance(session_id, str) or not session_id:
            raise ValidationError("sessionId is required", field="sessionId")
        trimmed = title.strip() if isinstance(title, str) else ""
        titles = self._titles(for_update=True)
        if trimmed:
            titles[session_id] = {"customTitle": trimmed, "updatedAt": self._clock()}
        else:
            titles.pop(session_id, None)
        self._store.save(self._paths.titles_file, titles)
        return trimmed

    def new_session_id(self) -> str:
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
        return f"session_{self._clock()}_{suffix}"
