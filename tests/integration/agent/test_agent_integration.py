"""
Integration tests for the Agent.

These tests wire the real Agent to the real LiteLLMBackend and real tools. The
LLM API itself is always mocked; we never burn real API tokens in tests.

The value of these tests vs. unit tests:
- Unit tests replace the backend with a mock and check loop logic in isolation.
- These tests run the provider translation too, so the tool declarations,
  assistant tool-call turns and tool results are checked in the exact message
  format LiteLLM receives.

An optional test at the bottom talks to a real MCP server; it only runs when
MCP_SERVER_URL (SSE) or MCP_COMMAND (stdio) is set.
"""

import json
import os
from unittest.mock import MagicMock, patch

import pytest

from sapiens import Agent, Schema
from sapiens.config.settings import AgentSettings, LLMSettings, MCPSettings
from sapiens.llm.backend import LiteLLMBackend
from sapiens.tools.mcp import MCPToolTransport


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_text_response(text: str) -> MagicMock:
    """Build a mock LiteLLM text-only response."""
    choice = MagicMock()
    choice.message.content = text
    choice.message.tool_calls = None

    response = MagicMock()
    response.choices = [choice]
    response.model = "openai/gpt-4o-mini"
    response.usage.prompt_tokens = 200
    response.usage.completion_tokens = 100
    return response


def _make_tool_call_response(*calls: tuple[str, str, dict]) -> MagicMock:
    """Build a mock LiteLLM response requesting (id, name, arguments) tool calls."""
    tool_calls = []
    for call_id, name, arguments in calls:
        tool_call = MagicMock()
        tool_call.id = call_id
        tool_call.function.name = name
        tool_call.function.arguments = json.dumps(arguments)
        tool_calls.append(tool_call)

    choice = MagicMock()
    choice.message.content = None
    choice.message.tool_calls = tool_calls

    response = MagicMock()
    response.choices = [choice]
    response.model = "openai/gpt-4o-mini"
    response.usage.prompt_tokens = 200
    response.usage.completion_tokens = 30
    return response


@pytest.fixture
def agent():
    backend = LiteLLMBackend(LLMSettings(model="openai/gpt-4o-mini", api_key="test-api-key"))
    agent = Agent(backend, AgentSettings(retry_backoff_base_ms=0), name="weather")
    agent.add_system_prompt("You are a weather reporter", version="1")
    agent.register_tool(
        "get_temp",
        "Current temperature for a city",
        Schema(properties={"city": Schema(type="string")}, required=["city"]),
        lambda args: {"city": args["city"], "celsius": 31},
    )
    return agent


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestLocalToolRoundTrip:

    @pytest.mark.asyncio
    async def test_provider_messages_after_tool_round(self, agent):
        with patch(
            "sapiens.llm.backend.acompletion",
            side_effect=[
                _make_tool_call_response(("call_1", "get_temp", {"city": "Delhi"})),
                _make_text_response("31C in Delhi, no jacket needed."),
            ],
        ) as mock_call:
            result = await agent.ask("Should I wear a jacket in Delhi today?")

        assert result.content == "31C in Delhi, no jacket needed."
        assert result.usage.prompt_tokens == 400

        first = mock_call.call_args_list[0].kwargs
        assert first["tools"][0]["function"]["name"] == "get_temp"
        assert first["tools"][0]["function"]["parameters"]["required"] == ["city"]

        messages = mock_call.call_args_list[1].kwargs["messages"]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "tool"]
        assert messages[2]["tool_calls"][0]["id"] == "call_1"
        assert messages[3]["tool_call_id"] == "call_1"
        assert json.loads(messages[3]["content"]) == {"city": "Delhi", "celsius": 31}

    @pytest.mark.asyncio
    async def test_structured_answer_after_tools(self, agent):
        agent.set_structured_output(
            Schema(properties={"wear_jacket": Schema(type="boolean")}, required=["wear_jacket"])
        )

        with patch(
            "sapiens.llm.backend.acompletion",
            side_effect=[
                _make_tool_call_response(("call_1", "get_temp", {"city": "Delhi"})),
                _make_text_response("No jacket needed."),
                _make_text_response('```json\n{"wear_jacket": false}\n```'),
            ],
        ) as mock_call:
            result = await agent.ask("Should I wear a jacket in Delhi today?")

        assert result.structured == {"wear_jacket": False}
        coercion = mock_call.call_args_list[2].kwargs
        assert "tools" not in coercion
        assert coercion["messages"][-1]["role"] == "user"


def _mcp_settings() -> MCPSettings | None:
    if os.getenv("MCP_SERVER_URL") or os.getenv("MCP_COMMAND"):
        return MCPSettings()
    return None


@pytest.mark.integration
@pytest.mark.skipif(_mcp_settings() is None, reason="MCP_SERVER_URL or MCP_COMMAND not set")
class TestRealMCPServer:

    @pytest.mark.asyncio
    async def test_discovers_and_lists_tools(self, agent):
        transport = MCPToolTransport.from_settings(_mcp_settings())
        try:
            names = await agent.add_remote_tools(transport)
            assert transport.is_connected()
            assert names
            assert all(name in agent.tools for name in names)
        finally:
            await transport.disconnect()
