"""Tools discovered from, and dispatched through, an external tool transport."""

import asyncio
import logging
from typing import Any

from sapiens.agent.errors import ToolExecutionFailed
from sapiens.llm.models import ToolDeclaration
from sapiens.tools.base import Tool, ToolOrigin, ToolTransport

logger = logging.getLogger(__name__)


class RemoteTool(Tool):
    """
    Tool whose implementation lives behind a ToolTransport.

    Every call is bounded by ``timeout_s``. Transport errors, remote-side errors
    and timeouts all surface as ToolExecutionFailed; retrying is left to the
    transport.
    """

    origin = ToolOrigin.REMOTE

    def __init__(self, declaration: ToolDeclaration, transport: ToolTransport, timeout_s: float = 30.0):
        super().__init__(declaration)
        self._transport = transport
        self._timeout_s = timeout_s

    @property
    def transport(self) -> ToolTransport:
        return self._transport

    async def invoke(self, arguments: dict[str, Any]) -> str:
        if not self._transport.is_connected():
            raise ToolExecutionFailed(self.name, "tool transport is not connected")

        try:
            async with asyncio.timeout(self._timeout_s or None):
                return await self._transport.call_tool(self.name, arguments)
        except TimeoutError as e:
            raise ToolExecutionFailed(self.name, f"timed out after {self._timeout_s}s") from e
        except ToolExecutionFailed:
            raise
        except Exception as e:
            logger.warning(f"Remote tool '{self.name}' failed: {e}")
            raise ToolExecutionFailed(self.name, str(e)) from e
