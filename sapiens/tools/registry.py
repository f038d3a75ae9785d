"""
Per-agent tool registry.

Holds local tools, remote tools and the optional structured-output pseudo-tool
behind one name-keyed lookup. Registration order is preserved, so tool
declarations reach the model in the order they were added.

Name collisions:
- Registering a local tool under a taken name raises DuplicateToolName.
- Remote batches skip tools whose name is already taken (logged as a warning);
  whatever was registered first keeps the name.
"""

import logging
import threading
from typing import Any, Iterable

from sapiens.agent.errors import DuplicateToolName, ToolNotFound
from sapiens.llm.models import ToolDeclaration
from sapiens.tools.base import Tool, ToolOrigin
from sapiens.tools.local import LocalTool, StructuredOutputTool, ToolHandler
from sapiens.tools.remote import RemoteTool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Unified local + remote tool lookup for one agent."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}
        self._lock = threading.Lock()

    def register_local(
        self,
        name: str,
        description: str,
        parameter_schema: dict[str, Any],
        handler: ToolHandler,
    ) -> LocalTool:
        """
        Register an in-process tool.

        Raises:
            DuplicateToolName: If any tool (local, remote or the structured-output
                pseudo-tool) already uses ``name``
        """
        tool = LocalTool(
            ToolDeclaration(name=name, description=description, parameter_schema=parameter_schema),
            handler,
        )
        with self._lock:
            if name in self._tools:
                raise DuplicateToolName(name)
            self._tools[name] = tool
        logger.debug(f"Registered local tool '{name}'")
        return tool

    def register_remote_batch(self, tools: Iterable[RemoteTool]) -> list[RemoteTool]:
        """
        Bulk-add tools discovered from a remote source.

        Tools whose name is already registered are skipped with a warning.

        Returns:
            The tools actually registered
        """
        added: list[RemoteTool] = []
        with self._lock:
            for tool in tools:
                existing = self._tools.get(tool.name)
                if existing is not None:
                    logger.warning(
                        f"Remote tool '{tool.name}' collides with an existing "
                        f"{existing.origin.value} tool; keeping the existing one"
                    )
                    continue
                self._tools[tool.name] = tool
                added.append(tool)
        logger.debug(f"Registered {len(added)} remote tool(s): {[t.name for t in added]}")
        return added

    def set_structured_tool(self, declaration: ToolDeclaration) -> StructuredOutputTool:
        """Install (or replace) the structured-output pseudo-tool."""
        tool = StructuredOutputTool(declaration)
        with self._lock:
            existing = self._tools.get(declaration.name)
            if existing is not None and existing.origin is not ToolOrigin.STRUCTURED:
                raise DuplicateToolName(declaration.name)
            self._tools[declaration.name] = tool
        return tool

    def clear_structured_tool(self) -> None:
        with self._lock:
            for name in [n for n, t in self._tools.items() if t.origin is ToolOrigin.STRUCTURED]:
                del self._tools[name]

    def lookup(self, name: str) -> Tool:
        """
        Resolve a tool by name, whatever its origin.

        Raises:
            ToolNotFound: If no tool is registered under ``name``
        """
        with self._lock:
            tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        return tool

    def declare_all(self, include_structured_pseudo_tool: bool = True) -> list[ToolDeclaration]:
        """Provider-facing declarations, optionally without the pseudo-tool."""
        with self._lock:
            tools = list(self._tools.values())
        return [
            tool.describe()
            for tool in tools
            if include_structured_pseudo_tool or tool.origin is not ToolOrigin.STRUCTURED
        ]

    def has_real_tools(self) -> bool:
        """Whether any local or remote tool is registered."""
        with self._lock:
            return any(t.origin is not ToolOrigin.STRUCTURED for t in self._tools.values())

    def names(self) -> list[str]:
        with self._lock:
            return list(self._tools)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tools

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)
