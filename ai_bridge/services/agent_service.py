"""Agent definitions stored in ``agent.json``.

Document shape: ``{"agents": {id: agent}, "selectedAgentId": str | None}``.
A legacy ``agents.json`` is copied over the first time ``agent.json`` is
missing. Array-form ``agents`` are normalized to a map keyed by id.
"""

import logging
import time
from collections.abc import Callable

from ai_bridge.errors import ConflictError, NotFoundError, ValidationError
from ai_bridge.storage import JsonDocumentStore
from ai_bridge.utils.paths import BridgePaths

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class AgentService:
    """CRUD and selection for agents."""

    def __init__(
        self,
        paths: BridgePaths,
        store: JsonDocumentStore | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._paths = paths
        self._store = store or JsonDocumentStore()
        self._clock = clock

    def _normalize(self, raw: dict) -> dict:
        config = dict(raw) if isinstance(raw, dict) else {}
        agents = config.get("agents")
        if isinstance(agents, dict):
            return config
        agent_map: dict[str, dict] = {}
        if isinstance(agents, list):
            for agent in agents:
                if not isinstance(agent, dict):
                    continue
                agent_id = agent.get("id") if isinstance(agent.get("id"), str) and agent.get("id") else None
                agent_id = agent_id or f"agent_{self._clock()}"
                agent_map[agent_id] = {**agent, "id": agent_id}
        config["agents"] = agent_map
        return config

    def _read(self, for_update: bool = False) -> dict:
        if self._paths.agent_file.exists():
            return self._normalize(self._store.load(self._paths.agent_file, {}, strict=for_update))
        if self._paths.legacy_agents_file.exists():
            config = self._normalize(self._store.load(self._paths.legacy_agents_file, {}))
            self._store.save(self._paths.agent_file, config)
            logger.info("Migrated legacy agents.json to agent.json")
            return config
        return {"agents": {}}

    def _write(self, config: dict) -> None:
        self._store.save(self._paths.agent_file, self._normalize(config))

    def list_agents(self) -> list[dict]:
        """Return agents newest ``createdAt`` first."""
        agents = self._read()["agents"]
        result = [
            {"id": agent_id, **(agent if isinstance(agent, dict) else {})}
            for agent_id, agent in agents.items()
        ]

        def created(agent: dict) -> float:
            value = agent.get("createdAt")
            return value if isinstance(value, (int, float)) and not isinstance(value, bool) else 0

        result.sort(key=created, reverse=True)
        return result

    def add(self, agent: dict) -> dict:
        """Add an agent, generating ``agent_<ms>`` when no id is given.

        Raises:
            ConflictError: If the id already exists.
        """
        if not isinstance(agent, dict):
            raise ValidationError("Agent payload must be an object")
        agent_id = agent.get("id") if isinstance(agent.get("id"), str) and agent.get("id") else None
        agent_id = agent_id or f"agent_{self._clock()}"

        config = self._read(for_update=True)
        if agent_id in config["agents"]:
            raise ConflictError(f"Agent with id '{agent_id}' already exists")
        entry = {**agent, "id": agent_id}
        if not entry.get("createdAt"):
            entry["createdAt"] = self._clock()
        config["agents"][agent_id] = entry
        self._write(config)
        return entry

    def update(self, agent_id: str, updates: dict) -> dict:
        """Merge ``updates`` into an agent, keeping its ``createdAt``.

        Raises:
            ValidationError: If the payload is malformed.
            NotFoundError: If the agent does not exist.
        """
        if not agent_id or not isinstance(updates, dict):
            raise ValidationError("Invalid update_agent payload")
        config = self._read(for_update=True)
        current = config["agents"].get(agent_id)
        if not isinstance(current, dict):
            raise NotFoundError("Agent", agent_id)
        created_at = current.get("createdAt") or updates.get("createdAt") or self._clock()
        entry = {**current, **updates, "id": agent_id, "createdAt": created_at}
        config["agents"][agent_id] = entry
        self._write(config)
        return entry

    def delete(self, agent_id: str) -> bool:
        """Delete an agent.

        Returns:
            True if the deleted agent was the selected one (selection cleared).

        Raises:
            NotFoundError: If the agent does not exist.
        """
        if not agent_id:
            raise ValidationError("Missing agent id", field="id")
        config = self._read(for_update=True)
        if agent_id not in config["agents"]:
            raise NotFoundError("Agent", agent_id)
        del config["agents"][agent_id]
        selection_cleared = config.get("selectedAgentId") == agent_id
        if selection_cleared:
            config["selectedAgentId"] = None
        self._write(config)
        return selection_cleared

    def get_selected(self) -> dict:
        """Return ``{selectedAgentId, agent}``; ``agent`` is None when unset."""
        config = self._read()
        selected_id = config.get("selectedAgentId")
        selected_id = selected_id if isinstance(selected_id, str) else None
        agent = config["agents"].get(selected_id) if selected_id else None
        return {
            "selectedAgentId": selected_id,
            "agent": {"id": selected_id, **agent} if isinstance(agent, dict) else None,
        }

    def set_selected(self, agent: dict | None) -> dict | None:
        """Select an agent, or clear the selection with None.

        A known agent is merged with the given fields.

        Returns:
            The selected agent payload, or None.
        """
        config = self._read(for_update=True)
        if isinstance(agent, dict) and isinstance(agent.get("id"), str) and agent["id"]:
            agent_id = agent["id"]
            config["selectedAgentId"] = agent_id
            existing = config["agents"].get(agent_id)
            if isinstance(existing, dict):
                config["agents"][agent_id] = {**existing, **agent}
            self._write(config)
            return agent
        config["selectedAgentId"] = None
        self._write(config)
        return None
