"""
Conversation state: an append-only, role-tagged message log plus loop bookkeeping.

All mutation goes through one lock, held only for the duration of an append or
copy. Request assembly works from ``snapshot()`` so it never sees a
half-written turn.
"""

import logging
import threading
from typing import Sequence

from sapiens.llm.models import Message, Role, ToolCallRequest

logger = logging.getLogger(__name__)


class Conversation:
    """Ordered message history owned by a single agent."""

    def __init__(self):
        self._messages: list[Message] = []
        self._depth = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------

    def append_system_turn(self, content: str) -> Message:
        return self._append(Message.system(content))

    def append_user_turn(self, content: str) -> Message:
        return self._append(Message.user(content))

    def append_assistant_turn(
        self, content: str, tool_calls: Sequence[ToolCallRequest] = ()
    ) -> Message:
        return self._append(Message.assistant(content, tuple(tool_calls)))

    def append_tool_result_turn(self, tool_call_id: str, name: str, content: str) -> Message:
        """
        Append a tool result.

        Raises:
            ValueError: If ``tool_call_id`` was not requested by the assistant turn
                immediately preceding this block of tool results
        """
        message = Message.tool_result(tool_call_id, name, content)
        with self._lock:
            if tool_call_id not in self._open_call_ids():
                raise ValueError(
                    f"Tool result for '{tool_call_id}' does not answer a call from the "
                    "preceding assistant turn"
                )
            self._messages.append(message)
        return message

    def append(self, message: Message) -> Message:
        """Append a pre-built message, routing tool results through the orphan check."""
        if message.role is Role.TOOL:
            return self.append_tool_result_turn(message.tool_call_id or "", message.name or "", message.content)
        return self._append(message)

    def _append(self, message: Message) -> Message:
        with self._lock:
            self._messages.append(message)
        return message

    def _open_call_ids(self) -> set[str]:
        # Caller holds the lock. Walk back over the current block of tool results
        # to the assistant turn that requested them.
        answered: set[str] = set()
        for message in reversed(self._messages):
            if message.role is Role.TOOL:
                answered.add(message.tool_call_id or "")
                continue
            if message.role is Role.ASSISTANT:
                return {call.id for call in message.tool_calls} - answered
            break
        return set()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> tuple[Message, ...]:
        """Immutable copy of the history for request assembly."""
        with self._lock:
            return tuple(self._messages)

    @property
    def pending_tool_call_ids(self) -> set[str]:
        """Calls from the latest assistant turn that have no result yet."""
        with self._lock:
            return self._open_call_ids()

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    # ------------------------------------------------------------------
    # Depth bookkeeping
    # ------------------------------------------------------------------

    @property
    def depth(self) -> int:
        with self._lock:
            return self._depth

    def reset_depth(self) -> None:
        """Called once per top-level ask/run, not per internal round."""
        with self._lock:
            self._depth = 0

    def increment_depth(self) -> int:
        with self._lock:
            self._depth += 1
            return self._depth

    def reset(self) -> None:
        """Explicit history reset: drops every message and the depth counter."""
        with self._lock:
            self._messages.clear()
            self._depth = 0
        logger.debug("Conversation history reset")
