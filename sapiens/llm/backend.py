"""
LLM backends.

The agent only needs one capability from a provider: send the system prompt,
the conversation, the tool declarations and an optional response-format
directive, and get back text and/or tool-call requests. ``LLMBackend`` is that
contract; ``LiteLLMBackend`` implements it for every provider LiteLLM routes to
(OpenAI, Anthropic, Gemini, Ollama, ...), using the OpenAI message format.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Sequence

from litellm import acompletion

from sapiens.config.settings import LLMSettings
from sapiens.llm.models import (
    BackendResponse,
    LLMError,
    Message,
    Role,
    TokenUsage,
    ToolCallRequest,
    ToolDeclaration,
)

logger = logging.getLogger(__name__)


class LLMBackend(ABC):
    """Provider-agnostic completion capability."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        history: Sequence[Message],
        tools: Sequence[ToolDeclaration],
        response_format: dict[str, Any] | None = None,
    ) -> BackendResponse:
        """
        Run one completion.

        Args:
            system_prompt: Latest system prompt ("" for none)
            history: Conversation so far, oldest first
            tools: Tool declarations the model may call (may be empty)
            response_format: Optional schema-constrained response directive

        Returns:
            The model's text and any tool-call requests

        Raises:
            LLMError: If the provider call fails
        """


class LiteLLMBackend(LLMBackend):
    """
    Backend built on LiteLLM's ``acompletion``.

    Users can swap providers by changing the model string in settings; the
    provider prefix tells LiteLLM where to route the request.
    """

    def __init__(self, settings: LLMSettings):
        self._settings = settings

    @property
    def model(self) -> str:
        return self._settings.model

    def _to_provider_messages(self, system_prompt: str, history: Sequence[Message]) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        for message in history:
            if message.role is Role.ASSISTANT and message.tool_calls:
                messages.append({
                    "role": "assistant",
                    "content": message.content or self._settings.assistant_filler,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments_raw or "{}"},
                        }
                        for call in message.tool_calls
                    ],
                })
            elif message.role is Role.TOOL:
                messages.append({
                    "role": "tool",
                    "tool_call_id": message.tool_call_id,
                    "name": message.name,
                    "content": message.content,
                })
            else:
                messages.append({"role": message.role.value, "content": message.content})
        return messages

    @staticmethod
    def _to_provider_tools(tools: Sequence[ToolDeclaration]) -> list[dict[str, Any]]:
        """
        Wrap declarations in LiteLLM's (OpenAI) tool format:
            {"type": "function", "function": {"name": ..., "description": ..., "parameters": ...}}
        """
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameter_schema,
                },
            }
            for tool in tools
        ]

    async def complete(
        self,
        system_prompt: str,
        history: Sequence[Message],
        tools: Sequence[ToolDeclaration],
        response_format: dict[str, Any] | None = None,
    ) -> BackendResponse:
        call_kwargs: dict[str, Any] = {
            "model": self._settings.model,
            "messages": self._to_provider_messages(system_prompt, history),
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
        }
        if self._settings.api_key:
            call_kwargs["api_key"] = self._settings.api_key
        if self._settings.api_base:
            call_kwargs["api_base"] = self._settings.api_base
        # Include tools only if we have them
        if tools:
            call_kwargs["tools"] = self._to_provider_tools(tools)
        if response_format is not None:
            call_kwargs["response_format"] = response_format

        try:
            response = await acompletion(**call_kwargs)
        except Exception as e:
            raise LLMError(f"LLM API call failed: {e}", cause=e)

        if not response.choices:
            raise LLMError("No choices returned from the model")

        message = response.choices[0].message
        tool_calls = [
            ToolCallRequest(
                id=call.id,
                name=call.function.name,
                arguments_raw=call.function.arguments or "",
            )
            for call in (message.tool_calls or [])
        ]

        usage = TokenUsage()
        if getattr(response, "usage", None) is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
            )

        logger.debug(
            f"Completion from {response.model}: {len(tool_calls)} tool call(s), "
            f"{usage.total_tokens} tokens"
        )
        return BackendResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            model=response.model or self._settings.model,
            usage=usage,
        )
