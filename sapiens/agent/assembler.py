"""Builds outbound completion requests from agent state."""

from dataclasses import dataclass
from typing import Any

from sapiens.agent.conversation import Conversation
from sapiens.llm.models import Message, ToolDeclaration
from sapiens.llm.structured import StructuredOutput, coercion_prompt, to_response_format
from sapiens.tools.registry import ToolRegistry


@dataclass(frozen=True)
class CompletionRequest:
    """Everything one backend call needs."""

    system_prompt: str
    history: tuple[Message, ...]
    tools: tuple[ToolDeclaration, ...]
    response_format: dict[str, Any] | None = None


class RequestAssembler:
    """
    Combines the latest system prompt, a history snapshot, the tool declarations
    and the structured-output directive into a CompletionRequest.

    With a structured-output schema and no real tools, the pseudo-tool is
    declared and a response-format directive is attached. Once real tools are
    registered, only they are declared; the final answer is coerced into the
    schema afterwards (see ``build_coercion``).
    """

    def __init__(self, conversation: Conversation, registry: ToolRegistry):
        self._conversation = conversation
        self._registry = registry

    def build(self, system_prompt: str, structured: StructuredOutput | None = None) -> CompletionRequest:
        history = self._conversation.snapshot()

        if structured is not None and not self._registry.has_real_tools():
            return CompletionRequest(
                system_prompt=system_prompt,
                history=history,
                tools=tuple(self._registry.declare_all(include_structured_pseudo_tool=True)),
                response_format=to_response_format(structured.json_schema),
            )

        return CompletionRequest(
            system_prompt=system_prompt,
            history=history,
            tools=tuple(self._registry.declare_all(include_structured_pseudo_tool=False)),
        )

    def build_coercion(self, system_prompt: str, structured: StructuredOutput) -> CompletionRequest:
        """
        One-off request asking the model to restate its answer as JSON.

        The coercion prompt rides on a copy of the history and is never appended
        to the conversation itself.
        """
        history = self._conversation.snapshot() + (Message.user(coercion_prompt(structured.json_schema)),)
        return CompletionRequest(system_prompt=system_prompt, history=history, tools=())
