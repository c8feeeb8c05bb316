"""Token and cost statistics rebuilt from session logs on every request.

Nothing is cached or persisted: each call rescans the logs, so results are
idempotent. The same aggregation routine serves Claude and Codex; only the
session extraction differs.
"""

import logging
import os
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from ai_bridge.services.session_log_reader import (
    TokenUsage,
    list_session_files,
    project_dirs,
    read_claude_usage,
    read_codex_session,
    walk_jsonl,
)
from ai_bridge.utils.paths import BridgePaths

logger = logging.getLogger(__name__)

MAX_RETURNED_SESSIONS = 200
CODEX_MAX_DEPTH = 10
_WEEK_MS = 7 * 24 * 60 * 60 * 1000
_PER_MILLION = 1_000_000.0


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens."""

    input: float
    output: float
    cache_write: float
    cache_read: float

    def cost(self, usage: TokenUsage) -> float:
        return (
            usage.input_tokens * self.input
            + usage.output_tokens * self.output
            + usage.cache_write_tokens * self.cache_write
            + usage.cache_read_tokens * self.cache_read
        ) / _PER_MILLION


CLAUDE_PRICING = {
    "opus": ModelPricing(15.0, 75.0, 18.75, 1.5),
    "sonnet": ModelPricing(3.0, 15.0, 3.75, 0.3),
    "haiku": ModelPricing(0.8, 4.0, 1.0, 0.08),
}
CODEX_PRICING = ModelPricing(3.0, 15.0, 0.0, 0.30)


def claude_pricing_for(model: str | None) -> ModelPricing:
    """Classify a model name by substring; unknown names get sonnet rates."""
    lower = str(model or "").lower()
    if "opus-4" in lower:
        return CLAUDE_PRICING["opus"]
    if "haiku-4" in lower:
        return CLAUDE_PRICING["haiku"]
    return CLAUDE_PRICING["sonnet"]


def sanitize_project_path(value: str) -> str:
    """Map a workspace path to Claude's project directory name."""
    return re.sub(r"[^a-zA-Z0-9]", "-", str(value or ""))


def percent_change(current: float, previous: float) -> float:
    """Percentage delta, defined as 0 when ``previous`` is 0."""
    if not previous:
        return 0
    return (current - previous) / previous * 100


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SessionUsage:
    session_id: str
    timestamp_ms: int
    model: str
    usage: TokenUsage
    cost: float
    summary: str | None = None

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "timestamp": self.timestamp_ms,
            "model": self.model,
            "usage": self.usage.to_dict(),
            "cost": self.cost,
            "summary": self.summary,
        }


def _week_bucket() -> dict:
    return {"sessions": 0, "cost": 0, "tokens": 0}


def aggregate(
    sessions: list[SessionUsage],
    project_path: str,
    now_ms: int,
) -> dict:
    """Roll sessions up into the statistics payload.

    Totals cover every session; only the returned ``sessions`` list is
    capped at the newest ``MAX_RETURNED_SESSIONS``.

    Args:
        sessions: Per-session usage.
        project_path: Workspace path, or ``"all"``.
        now_ms: Reference time for the week windows.

    Returns:
        ``{projectPath, projectName, totalSessions, totalUsage,
        estimatedCost, sessions, dailyUsage, weeklyComparison, byModel,
        lastUpdated}``.
    """
    total = TokenUsage()
    estimated_cost = 0.0
    daily: dict[str, dict] = {}
    by_model: dict[str, dict] = {}
    current_week = _week_bucket()
    last_week = _week_bucket()
    one_week_ago = now_ms - _WEEK_MS
    two_weeks_ago = now_ms - 2 * _WEEK_MS

    for session in sessions:
        usage = session.usage
        total.input_tokens += usage.input_tokens
        total.output_tokens += usage.output_tokens
        total.cache_write_tokens += usage.cache_write_tokens
        total.cache_read_tokens += usage.cache_read_tokens
        estimated_cost += session.cost

        date_key = datetime.fromtimestamp(session.timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
        day = daily.get(date_key)
        if day is None:
            day = daily[date_key] = {
                "date": date_key,
                "sessions": 0,
                "usage": TokenUsage(),
                "cost": 0.0,
                "modelsUsed": [],
            }
        day["sessions"] += 1
        day["cost"] += session.cost
        day["usage"].input_tokens += usage.input_tokens
        day["usage"].output_tokens += usage.output_tokens
        day["usage"].cache_write_tokens += usage.cache_write_tokens
        day["usage"].cache_read_tokens += usage.cache_read_tokens
        if session.model not in day["modelsUsed"]:
            day["modelsUsed"].append(session.model)

        stat = by_model.get(session.model)
        if stat is None:
            stat = by_model[session.model] = {
                "model": session.model,
                "totalCost": 0.0,
                "totalTokens": 0,
                "inputTokens": 0,
                "outputTokens": 0,
                "cacheCreationTokens": 0,
                "cacheReadTokens": 0,
                "sessionCount": 0,
            }
        stat["sessionCount"] += 1
        stat["totalCost"] += session.cost
        stat["totalTokens"] += usage.total_tokens
        stat["inputTokens"] += usage.input_tokens
        stat["outputTokens"] += usage.output_tokens
        stat["cacheCreationTokens"] += usage.cache_write_tokens
        stat["cacheReadTokens"] += usage.cache_read_tokens

        if session.timestamp_ms > one_week_ago:
            bucket = current_week
        elif session.timestamp_ms > two_weeks_ago:
            bucket = last_week
        else:
            continue
        bucket["sessions"] += 1
        bucket["cost"] += session.cost
        bucket["tokens"] += usage.total_tokens

    newest_first = sorted(sessions, key=lambda s: s.timestamp_ms, reverse=True)
    daily_usage = [
        {**day, "usage": day["usage"].to_dict()}
        for _, day in sorted(daily.items())
    ]

    if project_path == "all":
        project_name = "All Projects"
    else:
        project_name = os.path.basename(str(project_path).rstrip("/\\")) or "Root"

    return {
        "projectPath": project_path,
        "projectName": project_name,
        "totalSessions": len(sessions),
        "totalUsage": total.to_dict(),
        "estimatedCost": estimated_cost,
        "sessions": [s.to_dict() for s in newest_first[:MAX_RETURNED_SESSIONS]],
        "dailyUsage": daily_usage,
        "weeklyComparison": {
            "currentWeek": current_week,
            "lastWeek": last_week,
            "trends": {
                key: percent_change(current_week[key], last_week[key])
                for key in ("sessions", "cost", "tokens")
            },
        },
        "byModel": sorted(by_model.values(), key=lambda m: m["totalCost"], reverse=True),
        "lastUpdated": now_ms,
    }


class UsageService:
    """Build usage statistics for a provider and scope."""

    def __init__(self, paths: BridgePaths, clock: Callable[[], int] = _now_ms) -> None:
        self._paths = paths
        self._clock = clock

    def now_ms(self) -> int:
        return self._clock()

    def _claude_session_usage(self, path: Path) -> SessionUsage | None:
        record = read_claude_usage(path)
        if not record.deltas:
            return None
        usage = TokenUsage()
        cost = 0.0
        model = record.model
        pricing = claude_pricing_for(model)
        for delta in record.deltas:
            usage.input_tokens += delta.usage.input_tokens
            usage.output_tokens += delta.usage.output_tokens
            usage.cache_write_tokens += delta.usage.cache_write_tokens
            usage.cache_read_tokens += delta.usage.cache_read_tokens
            cost += pricing.cost(delta.usage)
        if usage.total_tokens == 0:
            return None
        return SessionUsage(
            session_id=record.session_id,
            timestamp_ms=record.timestamp_ms or self._clock(),
            model=model,
            usage=usage,
            cost=cost,
            summary=record.summary,
        )

    def claude_sessions(self, project_path: str) -> list[SessionUsage]:
        """Sessions for one workspace, or every project when ``"all"``."""
        root = self._paths.claude_projects_dir
        if project_path == "all":
            directories = project_dirs(root)
        else:
            folder = sanitize_project_path(project_path)
            directories = [root / folder] if folder else []

        sessions = []
        for directory in directories:
            for path in list_session_files(directory):
                session = self._claude_session_usage(path)
                if session:
                    sessions.append(session)
        return sessions

    def codex_sessions(self) -> list[SessionUsage]:
        """All Codex sessions; Codex logs are not partitioned by project."""
        sessions = []
        for path in walk_jsonl(self._paths.codex_sessions_dir, CODEX_MAX_DEPTH):
            record = read_codex_session(path)
            if not record.summary and record.usage.total_tokens == 0:
                continue
            sessions.append(
                SessionUsage(
                    session_id=record.session_id,
                    timestamp_ms=record.timestamp_ms or self._clock(),
                    model=record.model,
                    usage=record.usage,
                    cost=CODEX_PRICING.cost(record.usage),
                    summary=record.summary,
                )
            )
        return sessions

    def statistics(self, provider: str = "claude", scope: str = "current") -> dict:
        """Return the usage statistics payload.

        Args:
            provider: ``claude`` or ``codex``.
            scope: ``all`` for every project, anything else for the
                current workspace.
        """
        project_path = "all" if scope == "all" else str(self._paths.workspace_root)
        if provider == "codex":
            sessions = self.codex_sessions()
        else:
            sessions = self.claude_sessions(project_path)
        logger.debug("Aggregating %d %s sessions for %s", len(sessions), provider, project_path)
        return aggregate(sessions, project_path, self._clock())
