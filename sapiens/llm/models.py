"""
Data models shared by the agent, the tool registry and LLM backends.

- Message: one role-tagged turn in a conversation (immutable once created)
- ToolCallRequest: a tool invocation the model asked for
- ToolInvocationResult: what a dispatched tool produced
- ToolDeclaration: how a tool is described to the model
- BackendResponse: what a backend returns for one completion request
- TokenUsage: prompt/completion token counts
- SystemPrompt, AgentResponse: agent-level prompt and result types
- LLMError: transport/provider failure raised by backends
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LLMError(Exception):
    """Raised by a backend when the provider call fails."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class Role(str, Enum):
    """Conversation roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallRequest(BaseModel):
    """
    A tool invocation requested by the model.

    ``arguments_raw`` keeps the provider-native encoding (a JSON object string for
    OpenAI-style providers); it is decoded only when the call is dispatched.
    """

    id: str = Field(description="Provider-assigned call id, echoed on the tool result")
    name: str = Field(description="Requested tool name")
    arguments_raw: str = Field(default="", description="Provider-native argument payload")

    model_config = ConfigDict(frozen=True)


class Message(BaseModel):
    """One turn in the conversation. Never mutated after it is appended."""

    role: Role
    content: str = ""
    name: str | None = Field(None, description="Tool that produced a tool-result turn")
    tool_call_id: str | None = Field(
        None, description="Invocation a tool-result turn answers"
    )
    tool_calls: tuple[ToolCallRequest, ...] = Field(
        default=(), description="Tool calls requested by an assistant turn"
    )

    model_config = ConfigDict(frozen=True)

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: tuple[ToolCallRequest, ...] = ()) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool_result(cls, tool_call_id: str, name: str, content: str) -> Message:
        return cls(role=Role.TOOL, content=content, name=name, tool_call_id=tool_call_id)


class ToolInvocationResult(BaseModel):
    """
    Outcome of one dispatched tool call.

    ``result_text`` is always a string (structured values are JSON-serialized).
    When the tool failed and the failure was handed back to the model,
    ``error`` holds the failure message and ``result_text`` the text the model saw.
    """

    tool_call_id: str
    name: str
    result_text: str
    error: str | None = None

    model_config = ConfigDict(frozen=True)


class ToolDeclaration(BaseModel):
    """Provider-facing description of a callable tool."""

    name: str = Field(min_length=1)
    description: str = ""
    parameter_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON-Schema object tree for the tool arguments",
    )

    model_config = ConfigDict(frozen=True)


class TokenUsage(BaseModel):
    """Token accounting for one or more backend calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class BackendResponse(BaseModel):
    """A single completion returned by an LLM backend."""

    content: str = ""
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)
    model: str = ""
    usage: TokenUsage = Field(default_factory=TokenUsage)


class SystemPrompt(BaseModel):
    """A versioned system prompt; the most recently added one is in effect."""

    content: str
    version: str = ""

    model_config = ConfigDict(frozen=True)


class AgentResponse(BaseModel):
    """
    Final result of one top-level ask/run.

    ``content`` is the model's prose answer. ``structured`` holds the parsed
    structured output when a schema is set and parsing succeeded, otherwise None.
    ``tool_calls`` and ``tool_results`` list every call dispatched and every result
    produced during the run, in order.
    """

    content: str = ""
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)
    tool_results: list[ToolInvocationResult] = Field(default_factory=list)
    structured: Any = None
    model: str = ""
    usage: TokenUsage = Field(default_factory=TokenUsage)
    depth: int = 0
