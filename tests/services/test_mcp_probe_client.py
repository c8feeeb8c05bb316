"""Tests for the MCP probe client."""

from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from mcp import StdioServerParameters

from ai_bridge.services.mcp_client import MCPClient, MCPConnectionError

MODULE = "ai_bridge.services.mcp_client"


class FakeSession:
    instances: list["FakeSession"] = []

    def __init__(self, read_stream, write_stream):
        self.initialize = AsyncMock()
        self.list_tools = AsyncMock(return_value=SimpleNamespace(
            tools=[SimpleNamespace(name="read_file"), SimpleNamespace(name="write_file")]
        ))
        self.closed = False
        FakeSession.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True


def _stdio(fail=False):
    state = {"closed": False}

    @asynccontextmanager
    async def fake_stdio_client(params):
        if fail:
            raise FileNotFoundError("npx not found")
        try:
            yield ("read", "write")
        finally:
            state["closed"] = True

    return fake_stdio_client, state


@pytest.fixture
def params():
    return StdioServerParameters(command="npx", args=["-y", "fs-mcp"])


class TestMCPClient:
    @pytest.mark.asyncio
    async def test_lists_tools_and_closes(self, params):
        fake_stdio, state = _stdio()
        with patch(f"{MODULE}.stdio_client", fake_stdio), patch(f"{MODULE}.ClientSession", FakeSession):
            async with MCPClient(params) as client:
                assert client.is_connected
                names = await client.list_tool_names()
        assert names == ["read_file", "write_file"]
        assert not client.is_connected
        assert state["closed"] is True
        assert FakeSession.instances[-1].closed is True

    @pytest.mark.asyncio
    async def test_spawn_failure_wrapped(self, params):
        fake_stdio, _ = _stdio(fail=True)
        with patch(f"{MODULE}.stdio_client", fake_stdio), patch(f"{MODULE}.ClientSession", FakeSession):
            with pytest.raises(MCPConnectionError) as excinfo:
                async with MCPClient(params):
                    pass
        assert excinfo.value.command == "npx"
        assert "npx not found" in excinfo.value.reason

    @pytest.mark.asyncio
    async def test_list_outside_context(self, params):
        with pytest.raises(MCPConnectionError):
            await MCPClient(params).list_tool_names()
