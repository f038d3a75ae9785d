"""In-process tools: caller-registered handlers and the structured-output pseudo-tool."""

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from sapiens.agent.errors import ToolExecutionFailed
from sapiens.llm.models import ToolDeclaration
from sapiens.tools.base import Tool, ToolOrigin, serialize_result

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Union[Any, Awaitable[Any]]]


class LocalTool(Tool):
    """
    Tool backed by a handler function.

    The handler receives the decoded argument map and may be a plain function or a
    coroutine function. Its return value is serialized to text (strings as-is,
    everything else as JSON).
    """

    origin = ToolOrigin.LOCAL

    def __init__(self, declaration: ToolDeclaration, handler: ToolHandler):
        if not callable(handler):
            raise TypeError(f"Handler for tool '{declaration.name}' is not callable")
        super().__init__(declaration)
        self._handler = handler

    async def invoke(self, arguments: dict[str, Any]) -> str:
        try:
            result = self._handler(arguments)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning(f"Local tool '{self.name}' raised: {e}")
            raise ToolExecutionFailed(self.name, str(e)) from e
        return serialize_result(result)


class StructuredOutputTool(Tool):
    """
    The structured-output schema disguised as a tool.

    The agent reads the arguments of a call to this tool as the structured
    answer; invoking it only acknowledges receipt so the call gets a result turn.
    """

    origin = ToolOrigin.STRUCTURED

    async def invoke(self, arguments: dict[str, Any]) -> str:
        return "Structured output recorded."
