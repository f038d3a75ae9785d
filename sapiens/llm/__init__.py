"""
LLM layer.

Backend contract and LiteLLM implementation, the shared message/tool data
models, and structured-output schema handling.
"""

from sapiens.llm.backend import LiteLLMBackend, LLMBackend
from sapiens.llm.models import (
    BackendResponse,
    LLMError,
    Message,
    Role,
    TokenUsage,
    ToolCallRequest,
    ToolDeclaration,
    ToolInvocationResult,
)

__all__ = [
    "BackendResponse",
    "LiteLLMBackend",
    "LLMBackend",
    "LLMError",
    "Message",
    "Role",
    "TokenUsage",
    "ToolCallRequest",
    "ToolDeclaration",
    "ToolInvocationResult",
]
