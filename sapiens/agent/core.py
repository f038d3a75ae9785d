"""
Agent: the tool-calling orchestration engine.

The agent owns a conversation, a tool registry (local handlers plus tools
discovered from remote transports), an optional structured-output schema and a
recursion-depth guard. One top-level ``ask``/``run`` drives this loop:

    Requesting   assemble request -> backend.complete() (retried, linear backoff)
        ↓
    Interpreting no tool calls?  -> Finalizing (optional structured-output pass)
        ↓                        tool calls? -> append assistant turn
    Dispatching  resolve + run each call in emission order, append results
        ↓
    depth += 1;  depth >= max -> DepthExceeded, else back to Requesting

Design decisions:
- The loop is an explicit bounded ``while``, not recursion, so the depth guard
  and cancellation are checked once per round.
- Calls within a turn are dispatched sequentially, in the order the model
  emitted them; results land in history in that same order.
- A failing local handler is reported to the model as an error tool result so
  it can recover (``abort_on_local_tool_error`` flips this to a hard failure).
  Remote failures always abort: retries belong to the transport.
- All names in a turn are resolved and all arguments decoded before anything is
  appended, so ToolNotFound / ArgumentDecodeFailed leave no unanswered calls.
  When a dispatch aborts the run, every call left without a result gets an
  error result before the exception propagates.
- A per-agent asyncio lock serializes concurrent top-level calls on the same
  instance; the conversation's own lock is only held while appending.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Iterable, TypeVar

from pydantic import BaseModel

from sapiens.agent.assembler import CompletionRequest, RequestAssembler
from sapiens.agent.conversation import Conversation
from sapiens.agent.errors import (
    ArgumentDecodeFailed,
    BackendUnavailable,
    Cancelled,
    DepthExceeded,
    StructuredParseFailed,
    ToolExecutionFailed,
    ToolNotFound,
)
from sapiens.config.settings import AgentSettings, Settings, get_settings
from sapiens.llm.backend import LiteLLMBackend, LLMBackend
from sapiens.llm.models import (
    AgentResponse,
    BackendResponse,
    LLMError,
    Message,
    SystemPrompt,
    TokenUsage,
    ToolCallRequest,
    ToolInvocationResult,
)
from sapiens.llm.structured import STRUCTURED_OUTPUT_TOOL, Schema, StructuredOutput, to_pseudo_tool
from sapiens.tools.base import Tool, ToolOrigin, ToolTransport, decode_arguments
from sapiens.tools.local import LocalTool, ToolHandler
from sapiens.tools.mcp import MCPToolTransport
from sapiens.tools.registry import ToolRegistry
from sapiens.tools.remote import RemoteTool

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONTEXT_PREAMBLE = "Here is important context information to use when answering questions:\n\n"


class Agent:
    """
    A conversational agent that can call tools.

    Args:
        backend: LLM backend used for every completion
        settings: Loop limits and tool policies (defaults to AgentSettings())
        name: Display name, used in logs

    Example:
        agent = Agent(LiteLLMBackend(LLMSettings(model="openai/gpt-4o")))
        agent.add_system_prompt("You are a weather reporter", version="1")
        agent.register_tool("get_temp", "Current temperature", schema, get_temp)
        response = await agent.ask("Should I wear a jacket in Delhi today?")
    """

    def __init__(
        self,
        backend: LLMBackend,
        settings: AgentSettings | None = None,
        name: str = "agent",
    ):
        self.name = name
        self._backend = backend
        self._settings = settings or AgentSettings()
        self._system_prompts: list[SystemPrompt] = []
        self._registry = ToolRegistry()
        self._conversation = Conversation()
        self._assembler = RequestAssembler(self._conversation, self._registry)
        self._structured: StructuredOutput | None = None
        self._owned_transports: list[ToolTransport] = []
        self._turn_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None, name: str = "agent") -> Agent:
        """Build an agent on a LiteLLM backend from application settings."""
        settings = settings or get_settings()
        return cls(LiteLLMBackend(settings.llm), settings.agent, name=name)

    # ------------------------------------------------------------------
    # Configuration surface
    # ------------------------------------------------------------------

    @property
    def settings(self) -> AgentSettings:
        return self._settings

    @property
    def tools(self) -> ToolRegistry:
        return self._registry

    @property
    def depth(self) -> int:
        """Recursion depth reached by the current (or last) run."""
        return self._conversation.depth

    @property
    def system_prompts(self) -> list[SystemPrompt]:
        return list(self._system_prompts)

    @property
    def latest_system_prompt(self) -> SystemPrompt | None:
        return self._system_prompts[-1] if self._system_prompts else None

    def add_system_prompt(self, content: str, version: str = "") -> SystemPrompt:
        """Add a system prompt; the most recently added one is sent."""
        prompt = SystemPrompt(content=content, version=version)
        self._system_prompts.append(prompt)
        return prompt

    def add_context(self, text: str) -> Message:
        """Inject context information into the conversation as a system turn."""
        return self._conversation.append_system_turn(f"{CONTEXT_PREAMBLE}{text}")

    def register_tool(
        self,
        name: str,
        description: str,
        parameter_schema: Schema | dict[str, Any],
        handler: ToolHandler,
    ) -> LocalTool:
        """
        Register a locally implemented tool.

        Args:
            name: Tool name (unique across local and remote tools)
            description: What the tool does and when the model should use it
            parameter_schema: JSON-Schema object for the arguments
            handler: Called with the decoded argument dict; may be async

        Raises:
            DuplicateToolName: If the name is already registered
        """
        if isinstance(parameter_schema, Schema):
            parameter_schema = parameter_schema.to_json_schema()
        return self._registry.register_local(name, description, parameter_schema, handler)

    async def add_remote_tools(self, transport: ToolTransport) -> list[str]:
        """
        Discover the transport's tools and register them.

        Connects the transport first if needed. Names that collide with an
        already-registered tool are skipped (see ToolRegistry).

        Returns:
            Names of the tools that were registered
        """
        if not transport.is_connected():
            await transport.connect()
        declarations = await transport.list_tools()
        added = self._registry.register_remote_batch(
            RemoteTool(declaration, transport, timeout_s=self._settings.remote_tool_timeout_s)
            for declaration in declarations
        )
        logger.info(f"Agent '{self.name}' added {len(added)} remote tool(s)")
        return [tool.name for tool in added]

    async def add_mcp(self, url: str, headers: dict[str, str] | None = None) -> MCPToolTransport:
        """
        Connect to an MCP server over SSE and register its tools.

        The transport is owned by the agent and disconnected by ``close()``.
        """
        transport = MCPToolTransport(url=url, headers=headers)
        await transport.connect()
        try:
            await self.add_remote_tools(transport)
        except Exception:
            await transport.disconnect()
            raise
        self._owned_transports.append(transport)
        return transport

    def set_structured_output(self, schema: Schema | dict[str, Any] | type[BaseModel]) -> None:
        """
        Ask for answers in a structured shape.

        Registers the schema as the ``structured_output`` pseudo-tool and uses it
        to parse final answers (see RequestAssembler for when each is used).
        """
        self._structured = StructuredOutput(schema)
        self._registry.set_structured_tool(to_pseudo_tool(self._structured.json_schema))

    def clear_structured_output(self) -> None:
        self._structured = None
        self._registry.clear_structured_tool()

    def history(self) -> tuple[Message, ...]:
        return self._conversation.snapshot()

    def reset_history(self) -> None:
        self._conversation.reset()

    async def close(self) -> None:
        """Disconnect transports this agent created."""
        while self._owned_transports:
            await self._owned_transports.pop().disconnect()

    async def __aenter__(self) -> Agent:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def ask(self, query: str, cancel_event: asyncio.Event | None = None) -> AgentResponse:
        """
        Send one user message and run the tool loop to a final answer.

        Args:
            query: The user's message (must be non-empty after stripping)
            cancel_event: Setting this event aborts the run with Cancelled

        Raises:
            ValueError: If query is empty
            BackendUnavailable, DepthExceeded, ToolNotFound, ToolExecutionFailed,
            ArgumentDecodeFailed, Cancelled: see sapiens.agent.errors
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")
        return await self.run([query], cancel_event=cancel_event)

    async def run(
        self,
        messages: Iterable[Message | str],
        cancel_event: asyncio.Event | None = None,
    ) -> AgentResponse:
        """Append the given turns (strings become user turns) and run the tool loop."""
        async with self._turn_lock:
            for message in messages:
                if isinstance(message, str):
                    self._conversation.append_user_turn(message)
                else:
                    self._conversation.append(message)
            return await self._run_loop(cancel_event)

    # ------------------------------------------------------------------
    # Orchestration loop
    # ------------------------------------------------------------------

    async def _run_loop(self, cancel_event: asyncio.Event | None) -> AgentResponse:
        self._conversation.reset_depth()
        structured = self._structured
        calls: list[ToolCallRequest] = []
        results: list[ToolInvocationResult] = []
        usage = TokenUsage()
        candidate: Any = None

        while True:
            self._raise_if_cancelled(cancel_event)

            request = self._assembler.build(self._system_prompt_text(), structured)
            logger.debug(
                f"Agent '{self.name}' round {self._conversation.depth + 1}: "
                f"{len(request.history)} message(s), {len(request.tools)} tool(s)"
            )
            response = await self._complete(request, cancel_event)
            usage += response.usage

            if not response.tool_calls:
                return await self._finalize(
                    response.content, response, request, structured, candidate, calls, results, usage, cancel_event
                )

            real_calls = [call for call in response.tool_calls if call.name != STRUCTURED_OUTPUT_TOOL]
            if structured is not None and not real_calls:
                # Answered through the pseudo-tool: the arguments are the answer
                call = response.tool_calls[-1]
                calls.extend(response.tool_calls)
                candidate = self._structured_from_call(structured, call)
                return await self._finalize(
                    response.content or call.arguments_raw,
                    response, request, structured, candidate, calls, results, usage, cancel_event,
                )

            dispatch = self._resolve(response.tool_calls)
            if not dispatch:
                # Every call named an unknown tool and was skipped
                return await self._finalize(
                    response.content, response, request, structured, candidate, calls, results, usage, cancel_event
                )

            self._conversation.append_assistant_turn(response.content, [call for call, _, _ in dispatch])
            calls.extend(call for call, _, _ in dispatch)

            try:
                for call, tool, arguments in dispatch:
                    self._raise_if_cancelled(cancel_event)
                    result = await self._dispatch(call, tool, arguments, cancel_event)
                    self._conversation.append_tool_result_turn(call.id, call.name, result.result_text)
                    results.append(result)
                    if tool.origin is ToolOrigin.STRUCTURED and structured is not None:
                        candidate = self._structured_from_call(structured, call) or candidate
            except (ToolExecutionFailed, Cancelled) as e:
                self._answer_open_calls(dispatch, e)
                raise

            depth = self._conversation.increment_depth()
            if depth >= self._settings.max_tool_call_depth:
                logger.warning(f"Agent '{self.name}' hit the tool-call depth limit ({depth})")
                raise DepthExceeded(depth)

    def _resolve(self, calls: list[ToolCallRequest]) -> list[tuple[ToolCallRequest, Tool, dict[str, Any]]]:
        """Resolve names and decode arguments for every call before any side effects."""
        resolved = []
        for call in calls:
            try:
                tool = self._registry.lookup(call.name)
            except ToolNotFound:
                if not self._settings.skip_unknown_tools:
                    raise
                logger.warning(f"Skipping call {call.id} to unknown tool '{call.name}'")
                continue
            resolved.append((call, tool, decode_arguments(call.name, call.arguments_raw)))
        return resolved

    def _answer_open_calls(
        self,
        dispatch: list[tuple[ToolCallRequest, Tool, dict[str, Any]]],
        error: ToolExecutionFailed | Cancelled,
    ) -> None:
        """
        Give every call of an aborted turn a result, so the history stays valid
        for providers and a later ask/run can continue from it.
        """
        pending = self._conversation.pending_tool_call_ids
        # The first unanswered call is the one that was running
        running = True
        for call, _, _ in dispatch:
            if call.id not in pending:
                continue
            if isinstance(error, Cancelled):
                text = "Error: cancelled"
            elif running:
                text = f"Error: Tool '{call.name}' failed: {error.reason}"
            else:
                text = f"Error: Tool '{call.name}' was not run: {error}"
            self._conversation.append_tool_result_turn(call.id, call.name, text)
            running = False

    async def _dispatch(
        self,
        call: ToolCallRequest,
        tool: Tool,
        arguments: dict[str, Any],
        cancel_event: asyncio.Event | None,
    ) -> ToolInvocationResult:
        logger.debug(f"Dispatching {tool.origin.value} tool '{call.name}' (call {call.id})")
        try:
            text = await self._guard(tool.invoke(arguments), cancel_event)
        except ToolExecutionFailed as e:
            if tool.origin is ToolOrigin.LOCAL and not self._settings.abort_on_local_tool_error:
                # Hand the failure to the model and let it decide how to proceed
                return ToolInvocationResult(
                    tool_call_id=call.id,
                    name=call.name,
                    result_text=f"Error: Tool '{call.name}' failed: {e.reason}",
                    error=e.reason,
                )
            raise
        return ToolInvocationResult(tool_call_id=call.id, name=call.name, result_text=text)

    async def _finalize(
        self,
        content: str,
        response: BackendResponse,
        request: CompletionRequest,
        structured: StructuredOutput | None,
        candidate: Any,
        calls: list[ToolCallRequest],
        results: list[ToolInvocationResult],
        usage: TokenUsage,
        cancel_event: asyncio.Event | None,
    ) -> AgentResponse:
        self._conversation.append_assistant_turn(content)

        parsed = candidate
        if structured is not None and parsed is None:
            if request.response_format is not None:
                parsed = self._try_parse(structured, content, log_failure=False)
            if parsed is None:
                coercion = self._assembler.build_coercion(self._system_prompt_text(), structured)
                restated = await self._complete(coercion, cancel_event)
                usage += restated.usage
                parsed = self._try_parse(structured, restated.content)

        return AgentResponse(
            content=content,
            tool_calls=calls,
            tool_results=results,
            structured=parsed,
            model=response.model,
            usage=usage,
            depth=self._conversation.depth,
        )

    async def _complete(self, request: CompletionRequest, cancel_event: asyncio.Event | None) -> BackendResponse:
        """Backend call with bounded retries and linear backoff."""
        attempts = self._settings.max_retry
        last_error: LLMError | None = None

        for attempt in range(1, attempts + 1):
            self._raise_if_cancelled(cancel_event)
            try:
                return await self._guard(
                    self._backend.complete(
                        request.system_prompt,
                        request.history,
                        list(request.tools),
                        request.response_format,
                    ),
                    cancel_event,
                )
            except LLMError as e:
                last_error = e
                logger.warning(f"Backend call failed (attempt {attempt}/{attempts}): {e}")
                if attempt < attempts:
                    delay = self._settings.retry_backoff_base_ms * attempt / 1000
                    await self._guard(asyncio.sleep(delay), cancel_event)

        raise BackendUnavailable(attempts, str(last_error)) from last_error

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _system_prompt_text(self) -> str:
        latest = self.latest_system_prompt
        return latest.content if latest else ""

    def _structured_from_call(self, structured: StructuredOutput, call: ToolCallRequest) -> Any:
        try:
            return structured.validate_data(decode_arguments(call.name, call.arguments_raw))
        except (ArgumentDecodeFailed, StructuredParseFailed) as e:
            logger.warning(f"Ignoring unusable structured_output call {call.id}: {e}")
            return None

    @staticmethod
    def _try_parse(structured: StructuredOutput, text: str, log_failure: bool = True) -> Any:
        try:
            return structured.parse(text)
        except StructuredParseFailed as e:
            if log_failure:
                logger.warning(f"Structured output unavailable, returning plain text: {e}")
            return None

    @staticmethod
    def _raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise Cancelled("Run cancelled by caller")

    @staticmethod
    async def _guard(awaitable: Awaitable[T], cancel_event: asyncio.Event | None) -> T:
        """Await ``awaitable`` unless ``cancel_event`` fires first."""
        if cancel_event is None:
            return await awaitable

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()

        if work.done() and not work.cancelled():
            return work.result()

        with contextlib.suppress(asyncio.CancelledError):
            await work
        raise Cancelled("Run cancelled by caller")
