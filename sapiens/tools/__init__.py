"""
Tool layer.

Local tools wrap in-process handler functions; remote tools forward calls to an
external tool transport (e.g. an MCP server). Both implement the same ``Tool``
interface and live side by side in a ``ToolRegistry``.
"""

from sapiens.tools.base import Tool, ToolOrigin, ToolTransport
from sapiens.tools.local import LocalTool, StructuredOutputTool
from sapiens.tools.registry import ToolRegistry
from sapiens.tools.remote import RemoteTool

__all__ = [
    "LocalTool",
    "RemoteTool",
    "StructuredOutputTool",
    "Tool",
    "ToolOrigin",
    "ToolRegistry",
    "ToolTransport",
]
