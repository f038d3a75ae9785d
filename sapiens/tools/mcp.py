"""
MCP tool transport.

Connects to a Model Context Protocol server either over SSE (a URL, optionally
with headers) or over stdio (a spawned server subprocess), discovers its tools
and forwards tool calls to it.
"""

import asyncio
import logging
from typing import Any

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.stdio import StdioServerParameters, stdio_client

from sapiens.config.settings import MCPSettings
from sapiens.llm.models import ToolDeclaration
from sapiens.tools.base import ToolTransport

logger = logging.getLogger(__name__)


class MCPToolTransport(ToolTransport):
    """
    Tool transport speaking MCP (JSON-RPC) to a single server.

    Exactly one of ``url`` (SSE) or ``command`` (stdio) must be given. The
    connection handshake is bounded by ``connect_timeout_s`` and each listing by
    ``list_timeout_s``; a failed listing marks the transport disconnected.
    """

    def __init__(
        self,
        url: str | None = None,
        headers: dict[str, str] | None = None,
        command: str | None = None,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        connect_timeout_s: float = 10.0,
        list_timeout_s: float = 5.0,
    ):
        if (url is None) == (command is None):
            raise ValueError("Provide exactly one of url (SSE) or command (stdio)")

        self._url = url
        self._headers = headers or {}
        self._command = command
        self._args = args or []
        self._env = env
        self._connect_timeout_s = connect_timeout_s
        self._list_timeout_s = list_timeout_s

        self._connected = False
        self._session: ClientSession | None = None
        self._transport_context = None
        self._session_context = None
        self._tools: list[ToolDeclaration] = []

    @classmethod
    def from_settings(cls, settings: MCPSettings) -> "MCPToolTransport":
        """Build a transport from MCP settings (URL takes precedence over command)."""
        if settings.server_url:
            return cls(
                url=settings.server_url,
                headers=settings.headers,
                connect_timeout_s=settings.connect_timeout_s,
                list_timeout_s=settings.list_timeout_s,
            )
        return cls(
            command=settings.command,
            args=settings.args,
            connect_timeout_s=settings.connect_timeout_s,
            list_timeout_s=settings.list_timeout_s,
        )

    @property
    def endpoint(self) -> str:
        if self._url is not None:
            return self._url
        return " ".join([self._command, *self._args])

    def _open_transport(self):
        if self._url is not None:
            return sse_client(self._url, headers=self._headers or None)
        server_params = StdioServerParameters(command=self._command, args=self._args, env=self._env)
        return stdio_client(server_params)

    async def connect(self) -> None:
        """Open the transport, start the client session and run the MCP handshake."""
        if self._connected:
            return
        # Never open a second session over one that is still held
        await self._close_contexts()

        try:
            self._transport_context = self._open_transport()
            read_stream, write_stream = await self._transport_context.__aenter__()

            self._session_context = ClientSession(read_stream, write_stream)
            self._session = await self._session_context.__aenter__()

            async with asyncio.timeout(self._connect_timeout_s):
                await self._session.initialize()
        except Exception as e:
            await self._close_contexts()
            raise ConnectionError(f"Could not connect to MCP server at {self.endpoint}: {e}") from e

        self._connected = True
        logger.info(f"Connected to MCP server at {self.endpoint}")

        # Prime the tool cache; list_tools closes the session on failure
        try:
            await self.list_tools()
        except ConnectionError as e:
            logger.warning(f"Could not load MCP tools: {e}")

    async def disconnect(self) -> None:
        """Close the session and the underlying transport."""
        if self._session_context is None and self._transport_context is None:
            self._connected = False
            return
        await self._close_contexts()
        logger.info(f"Disconnected from MCP server at {self.endpoint}")

    async def _close_contexts(self) -> None:
        self._connected = False
        if self._session_context is not None:
            await self._session_context.__aexit__(None, None, None)
            self._session_context = None
            self._session = None
        if self._transport_context is not None:
            await self._transport_context.__aexit__(None, None, None)
            self._transport_context = None

    def is_connected(self) -> bool:
        return self._connected

    async def list_tools(self) -> list[ToolDeclaration]:
        """List the server's tools and refresh the cache."""
        if not self._connected:
            raise ConnectionError("MCP client is not connected")

        try:
            async with asyncio.timeout(self._list_timeout_s):
                result = await self._session.list_tools()
        except Exception as e:
            await self._close_contexts()
            raise ConnectionError(f"Error listing MCP tools: {e}") from e

        self._tools = [
            ToolDeclaration(
                name=tool.name,
                description=tool.description or "",
                parameter_schema=tool.inputSchema or {"type": "object", "properties": {}},
            )
            for tool in result.tools
        ]
        return list(self._tools)

    @property
    def cached_tools(self) -> list[ToolDeclaration]:
        """Tools from the most recent listing."""
        return list(self._tools)

    def has_tool(self, name: str) -> bool:
        return any(tool.name == name for tool in self._tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """Call a tool on the server and join its text content blocks."""
        if not self._connected:
            raise RuntimeError("MCP client is not connected")

        result = await self._session.call_tool(name, arguments)

        # MCP returns content as a list of blocks; keep the text ones
        text_parts = [content.text for content in result.content if hasattr(content, "text")]
        text = "\n".join(text_parts)

        if getattr(result, "isError", False):
            raise RuntimeError(f"MCP tool '{name}' returned an error: {text or 'no details'}")
        return text
