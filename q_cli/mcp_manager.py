"""MCP capability-server connections for q.

Connects to every configured server over streamable HTTP, exposes their
tools under ``<server>.<tool>`` names, and tears everything down again.

Usage:
    async with McpManager() as manager:
        await manager.connect(config.mcp)
        tools = await manager.get_tools()
        result = await tools["github.search_issues"].call({"query": "..."})

A server that cannot be reached is logged and left out; it never blocks the
other servers or the query.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
import json
import logging
from typing import Any

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import CallToolResult, Implementation, Tool

from q_cli import __version__
from q_cli.config import McpConfig, McpServerConfig
from q_cli.errors import McpError

logger = logging.getLogger(__name__)

# Client info sent to MCP servers during initialization
_CLIENT_INFO = Implementation(name="q", version=__version__)

OIDC_UNSUPPORTED = (
    "Authentication required. OIDC is not supported; "
    "use header-based authentication instead."
)


@asynccontextmanager
async def open_session(server: McpServerConfig) -> AsyncIterator[ClientSession]:
    """Open and initialize one MCP session over streamable HTTP."""
    async with streamablehttp_client(
        server.url,
        headers=server.headers or None,
        timeout=server.timeout,
    ) as (read, write, _get_session_id):
        async with ClientSession(
            read,
            write,
            read_timeout_seconds=timedelta(seconds=server.timeout),
            client_info=_CLIENT_INFO,
        ) as session:
            await session.initialize()
            yield session


def _leaf_errors(exc: BaseException) -> list[BaseException]:
    # Transport failures surface wrapped in anyio task-group exception groups.
    if isinstance(exc, BaseExceptionGroup):
        leaves: list[BaseException] = []
        for inner in exc.exceptions:
            leaves.extend(_leaf_errors(inner))
        return leaves
    return [exc]


def describe_error(exc: BaseException) -> str:
    return "; ".join(str(e) or type(e).__name__ for e in _leaf_errors(exc))


def is_auth_error(message: str) -> bool:
    """Does this failure look like an interactive (OAuth/OIDC) auth demand?"""
    lower = message.lower()
    return (
        "oidc" in lower
        or "oauth" in lower
        or ("401" in lower and "unauthorized" in lower)
    )


def render_tool_result(result: CallToolResult) -> str:
    """Flatten MCP content blocks into text for the model."""
    parts = []
    for block in result.content:
        text = getattr(block, "text", None)
        if text is not None:
            parts.append(text)
        else:
            parts.append(json.dumps(block.model_dump(mode="json")))
    return "\n".join(parts)


class McpConnection:
    """A live session with one server.

    The transport and session contexts are entered and exited inside one
    dedicated task, which stays parked until ``close`` is called.
    """

    def __init__(self, name: str, config: McpServerConfig):
        self.name = name
        self.config = config
        self.session: ClientSession | None = None
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._error: Exception | None = None

    async def open(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"mcp:{self.name}")
        await self._ready.wait()
        if self.session is None:
            await self._task
            raise self._error or ConnectionError("session closed during setup")

    async def _run(self) -> None:
        try:
            async with open_session(self.config) as session:
                self.session = session
                self._ready.set()
                await self._closing.wait()
        except Exception as e:
            self._error = e
        finally:
            self.session = None
            self._ready.set()

    async def list_tools(self) -> list[Tool]:
        if self.session is None:
            raise ConnectionError("not connected")
        result = await self.session.list_tools()
        return list(result.tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        if self.session is None:
            raise ConnectionError("not connected")
        return await self.session.call_tool(name, arguments)

    async def close(self) -> None:
        """Release the session. Teardown errors are raised to the caller."""
        if self._task is None:
            return
        task, self._task = self._task, None
        self._closing.set()
        await task
        if self._error is not None:
            error, self._error = self._error, None
            raise error


@dataclass
class McpTool:
    """Catalog entry for one tool on one server."""

    name: str  # namespaced: <server>.<tool>
    server: str
    tool_name: str
    description: str
    input_schema: dict[str, Any]
    connection: McpConnection = field(repr=False)

    async def call(self, arguments: dict[str, Any]) -> CallToolResult:
        return await self.connection.call_tool(self.tool_name, arguments)


class McpManager:
    """Owns every MCP connection for one invocation."""

    def __init__(self) -> None:
        self._connections: dict[str, McpConnection] = {}

    @property
    def server_count(self) -> int:
        return len(self._connections)

    @property
    def connected_servers(self) -> list[str]:
        return list(self._connections)

    async def connect(self, config: McpConfig | None) -> None:
        """Connect to all configured servers concurrently."""
        if config is None or not config.servers:
            logger.debug("No MCP servers configured")
            return

        if not config.enabled:
            logger.debug("MCP disabled in config")
            return

        await asyncio.gather(
            *(self._connect_server(name, server) for name, server in config.servers.items())
        )
        logger.debug("Connected to %d MCP server(s)", len(self._connections))

    async def _connect_server(self, name: str, server: McpServerConfig) -> None:
        try:
            await self._open(name, server)
        except McpError as e:
            logger.warning("%s", e.message)

    async def _open(self, name: str, server: McpServerConfig) -> None:
        logger.debug("Connecting to MCP server '%s' at %s", name, server.url)
        connection = McpConnection(name, server)
        try:
            await connection.open()
        except Exception as e:
            message = describe_error(e)
            if is_auth_error(message):
                raise McpError(name, OIDC_UNSUPPORTED) from e
            raise McpError(name, f"Connection failed: {message}") from e

        self._connections[name] = connection
        logger.debug("Connected to MCP server '%s'", name)

    async def get_tools(self) -> dict[str, McpTool]:
        """Aggregate every server's tools under namespaced names."""
        catalog: dict[str, McpTool] = {}

        for server_name, connection in self._connections.items():
            try:
                tools = await connection.list_tools()
            except Exception as e:
                logger.warning(
                    "Failed to get tools from '%s': %s", server_name, describe_error(e)
                )
                continue

            for tool in tools:
                namespaced = f"{server_name}.{tool.name}"
                catalog[namespaced] = McpTool(
                    name=namespaced,
                    server=server_name,
                    tool_name=tool.name,
                    description=tool.description or "",
                    input_schema=dict(tool.inputSchema or {}),
                    connection=connection,
                )
                logger.debug("Registered tool: %s", namespaced)

        logger.debug("Total tools available: %d", len(catalog))
        return catalog

    async def close(self) -> None:
        """Close every connection. Safe to call more than once."""
        connections = list(self._connections.items())
        self._connections.clear()
        await asyncio.gather(*(self._close_one(name, conn) for name, conn in connections))

    async def _close_one(self, name: str, connection: McpConnection) -> None:
        try:
            await connection.close()
            logger.debug("Closed MCP connection to '%s'", name)
        except Exception as e:
            logger.debug("Error closing '%s': %s", name, describe_error(e))

    async def __aenter__(self) -> McpManager:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
