"""Tests for agent CRUD and selection."""

import pytest

from ai_bridge.errors import BridgeIOError, ConflictError, NotFoundError, ValidationError
from ai_bridge.services.agent_service import AgentService


@pytest.fixture
def clock():
    ticks = iter(range(1000, 100000))
    return lambda: next(ticks)


@pytest.fixture
def service(paths, clock):
    return AgentService(paths, clock=clock)


class TestAgentCrud:
    def test_add_generates_id_and_created_at(self, service):
        agent = service.add({"name": "Reviewer", "prompt": "Review code"})
        assert agent["id"] == "agent_1000"
        assert agent["createdAt"] == 1001

    def test_add_duplicate_id_conflicts(self, service):
        service.add({"id": "a1", "name": "One"})
        with pytest.raises(ConflictError):
            service.add({"id": "a1", "name": "Again"})

    def test_list_newest_first(self, service):
        service.add({"id": "old", "createdAt": 1})
        service.add({"id": "new", "createdAt": 5})
        service.add({"id": "undated", "createdAt": 0})
        assert [a["id"] for a in service.list_agents()][:2] == ["new", "old"]

    def test_update_keeps_created_at(self, service):
        service.add({"id": "a1", "name": "One", "createdAt": 7})
        updated = service.update("a1", {"name": "Renamed", "createdAt": 99})
        assert updated == {"id": "a1", "name": "Renamed", "createdAt": 7}

    def test_update_missing(self, service):
        with pytest.raises(NotFoundError):
            service.update("ghost", {"name": "x"})

    def test_update_requires_dict(self, service):
        with pytest.raises(ValidationError):
            service.update("a1", "nope")

    def test_delete_selected_clears_selection(self, service):
        service.add({"id": "a1"})
        service.set_selected({"id": "a1"})
        assert service.delete("a1") is True
        assert service.get_selected() == {"selectedAgentId": None, "agent": None}

    def test_delete_unselected(self, service):
        service.add({"id": "a1"})
        assert service.delete("a1") is False


class TestAgentStorage:
    def test_legacy_file_migrated(self, paths, service, write_json):
        write_json(paths.legacy_agents_file, {"agents": [{"id": "x", "name": "Legacy"}]})
        assert [a["id"] for a in service.list_agents()] == ["x"]
        assert paths.agent_file.exists()

    def test_array_agents_normalized_to_map(self, paths, service, write_json, read_json):
        write_json(paths.agent_file, {"agents": [{"name": "No id"}], "selectedAgentId": None})
        service.add({"id": "a1"})
        stored = read_json(paths.agent_file)
        assert isinstance(stored["agents"], dict)
        assert "a1" in stored["agents"]
        assert len(stored["agents"]) == 2


class TestSelection:
    def test_select_merges_fields(self, service):
        service.add({"id": "a1", "name": "One", "prompt": "p"})
        service.set_selected({"id": "a1", "name": "Picked"})
        selected = service.get_selected()
        assert selected["selectedAgentId"] == "a1"
        assert selected["agent"]["name"] == "Picked"
        assert selected["agent"]["prompt"] == "p"

    def test_clear_selection(self, service):
        service.add({"id": "a1"})
        service.set_selected({"id": "a1"})
        assert service.set_selected(None) is None
        assert service.get_selected()["selectedAgentId"] is None

    def test_unknown_selection_has_no_agent(self, service):
        service.set_selected({"id": "external"})
        assert service.get_selected() == {"selectedAgentId": "external", "agent": None}


def test_damaged_agent_file_is_not_replaced(paths, service):
    paths.agent_file.parent.mkdir(parents=True, exist_ok=True)
    paths.agent_file.write_text('{"agents": {"a1": {"name": "Reviewer"}}', encoding="utf-8")
    with pytest.raises(BridgeIOError):
        service.add({"name": "Writer", "prompt": "Write"})
    with pytest.raises(BridgeIOError):
        service.set_selected({"id": "a1"})
    assert paths.agent_file.read_text(encoding="utf-8") == '{"agents": {"a1": {"name": "Reviewer"}}'
