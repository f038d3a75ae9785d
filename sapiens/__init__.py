"""
Sapiens - tool-calling agent orchestration over LLM backends.

This package keeps conversation state for an agent, presents local functions and
remotely discovered (MCP) tools to the model as one tool set, drives the
request / tool-dispatch loop until the model converges on an answer, and can
coerce that answer into a caller-defined structured schema.
"""

from sapiens.agent import Agent, AgentResponse
from sapiens.agent.errors import (
    AgentError,
    ArgumentDecodeFailed,
    BackendUnavailable,
    Cancelled,
    DepthExceeded,
    DuplicateToolName,
    StructuredParseFailed,
    ToolExecutionFailed,
    ToolNotFound,
)
from sapiens.llm.structured import Schema

__version__ = "0.1.0"

__all__ = [
    "Agent",
    "AgentResponse",
    "Schema",
    "AgentError",
    "ArgumentDecodeFailed",
    "BackendUnavailable",
    "Cancelled",
    "DepthExceeded",
    "DuplicateToolName",
    "StructuredParseFailed",
    "ToolExecutionFailed",
    "ToolNotFound",
]
