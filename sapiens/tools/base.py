"""
Base classes for tools and tool transports.

A Tool is anything the model can call: it describes itself with a
ToolDeclaration and executes with a decoded argument map. A ToolTransport is the
connection to an external tool server that remote tools are discovered from and
dispatched through.
"""

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from sapiens.agent.errors import ArgumentDecodeFailed
from sapiens.llm.models import ToolDeclaration


class ToolOrigin(str, Enum):
    """Where a tool's implementation lives."""

    LOCAL = "local"
    REMOTE = "remote"
    STRUCTURED = "structured"


class Tool(ABC):
    """
    A named, schema-described capability the model may call.

    Subclasses set ``origin`` and implement ``invoke``. The orchestration loop
    only ever talks to this interface.
    """

    origin: ToolOrigin

    def __init__(self, declaration: ToolDeclaration):
        self._declaration = declaration

    @property
    def name(self) -> str:
        return self._declaration.name

    def describe(self) -> ToolDeclaration:
        """Return the provider-facing declaration for this tool."""
        return self._declaration

    @abstractmethod
    async def invoke(self, arguments: dict[str, Any]) -> str:
        """
        Execute the tool.

        Args:
            arguments: Decoded, string-keyed argument map

        Returns:
            The result serialized as text

        Raises:
            ToolExecutionFailed: If the tool could not produce a result
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class ToolTransport(ABC):
    """
    Connection to an external tool server.

    Implementations may be shared between agents; they hold connection state
    only and never cache tool results.
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Open the connection and perform any handshake.

        Raises:
            ConnectionError: If the server cannot be reached
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection. Safe to call when not connected."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the transport is currently usable."""

    @abstractmethod
    async def list_tools(self) -> list[ToolDeclaration]:
        """
        List the tools the server offers.

        Raises:
            ConnectionError: If the transport is not connected or listing fails
        """

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """
        Invoke a tool on the server.

        Returns:
            The tool result as text

        Raises:
            RuntimeError: If the call fails or the server reports an error
        """

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
        return False


def serialize_result(value: Any) -> str:
    """Serialize a tool return value to text; strings pass through unchanged."""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if hasattr(value, "model_dump_json"):
        return value.model_dump_json()
    return json.dumps(value, default=str)


def decode_arguments(name: str, raw: str) -> dict[str, Any]:
    """
    Decode a provider-native (JSON object string) argument payload.

    An empty payload means "no arguments". Anything that is not a JSON object is
    rejected rather than defaulted.

    Raises:
        ArgumentDecodeFailed: If the payload is not a JSON object
    """
    if not raw or not raw.strip():
        return {}
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ArgumentDecodeFailed(name, raw, f"not valid JSON ({e})") from e
    if not isinstance(arguments, dict):
        raise ArgumentDecodeFailed(name, raw, f"expected a JSON object, got {type(arguments).__name__}")
    return arguments
