"""Short-lived MCP client for probing configured stdio servers.

A probe spawns the server, runs the MCP handshake, lists the advertised
tools and tears everything down again::

    params = StdioServerParameters(command="npx", args=["-y", "some-mcp"])
    async with MCPClient(params) as client:
        names = await client.list_tool_names()
"""

import logging
from contextlib import AsyncExitStack
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

logger = logging.getLogger(__name__)


class MCPConnectionError(Exception):
    """The server could not be spawned or did not complete the handshake."""

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"MCP server '{command}' unavailable: {reason}")


class MCPClient:
    """One stdio MCP session, scoped to an ``async with`` block."""

    def __init__(self, server_params: StdioServerParameters) -> None:
        self._params = server_params
        self._stack: AsyncExitStack | None = None
        self._session: ClientSession | None = None

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    async def __aenter__(self) -> "MCPClient":
        stack = AsyncExitStack()
        try:
            read_stream, write_stream = await stack.enter_async_context(stdio_client(self._params))
            session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
            await session.initialize()
        except Exception as e:
            await self._close_quietly(stack)
            raise MCPConnectionError(self._params.command, str(e) or type(e).__name__) from e
        self._stack = stack
        self._session = session
        logger.debug("MCP session open: %s", self._params.command)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        stack, self._stack, self._session = self._stack, None, None
        if stack is not None:
            await self._close_quietly(stack)

    @staticmethod
    async def _close_quietly(stack: AsyncExitStack) -> None:
        try:
            await stack.aclose()
        except Exception as e:
            logger.debug("MCP session teardown failed: %s", e)

    async def list_tool_names(self) -> list[str]:
        """Names of the tools the server advertises.

        Raises:
            MCPConnectionError: If called outside ``async with``.
        """
        if self._session is None:
            raise MCPConnectionError(self._params.command, "session is not open")
        result = await self._session.list_tools()
        return [tool.name for tool in result.tools]
