"""
Unit tests for the LiteLLM backend.

Tests cover:
- Request construction (messages, tools, response format, settings)
- Tool-call and assistant-turn translation
- Response parsing (text, tool calls, usage, model)
- Error handling
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from sapiens.config.settings import LLMSettings
from sapiens.llm.backend import LiteLLMBackend
from sapiens.llm.models import (
    BackendResponse,
    LLMError,
    Message,
    ToolCallRequest,
    ToolDeclaration,
)


# ---------------------------------------------------------------------------
# Helpers for building mock LiteLLM responses
# ---------------------------------------------------------------------------

def _make_text_response(text: str, model: str = "openai/gpt-4o") -> MagicMock:
    """Build a mock LiteLLM response that contains only text (no tool calls)."""
    choice = MagicMock()
    choice.message.content = text
    choice.message.tool_calls = None

    response = MagicMock()
    response.choices = [choice]
    response.model = model
    response.usage.prompt_tokens = 100
    response.usage.completion_tokens = 50
    return response


def _make_tool_call_response(tool_name: str, arguments: dict, tool_call_id: str = "call_123") -> MagicMock:
    """Build a mock LiteLLM response that requests a tool call."""
    tool_call = MagicMock()
    tool_call.id = tool_call_id
    tool_call.function.name = tool_name
    tool_call.function.arguments = json.dumps(arguments)

    choice = MagicMock()
    choice.message.content = None
    choice.message.tool_calls = [tool_call]

    response = MagicMock()
    response.choices = [choice]
    response.model = "openai/gpt-4o"
    response.usage.prompt_tokens = 100
    response.usage.completion_tokens = 30
    return response


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return LLMSettings(model="openai/gpt-4o", max_tokens=512, temperature=0.2, api_key="test-api-key")


@pytest.fixture
def backend(settings):
    return LiteLLMBackend(settings)


@pytest.fixture
def weather_tool():
    return ToolDeclaration(
        name="get_temp",
        description="Current temperature",
        parameter_schema={"type": "object", "properties": {"city": {"type": "string"}}},
    )


# ---------------------------------------------------------------------------
# Test Classes
# ---------------------------------------------------------------------------

class TestRequestConstruction:
    """Tests for the kwargs passed to acompletion."""

    @pytest.mark.asyncio
    async def test_passes_model_and_sampling_settings(self, backend):
        with patch("sapiens.llm.backend.acompletion", return_value=_make_text_response("Hi")) as mock_call:
            await backend.complete("", [Message.user("Hello")], [])

        kwargs = mock_call.call_args.kwargs
        assert kwargs["model"] == "openai/gpt-4o"
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 512
        assert kwargs["api_key"] == "test-api-key"
        assert "api_base" not in kwargs

    @pytest.mark.asyncio
    async def test_api_base_override(self):
        backend = LiteLLMBackend(LLMSettings(model="openai/local", api_base="http://localhost:8000/v1"))

        with patch("sapiens.llm.backend.acompletion", return_value=_make_text_response("Hi")) as mock_call:
            await backend.complete("", [Message.user("Hello")], [])

        kwargs = mock_call.call_args.kwargs
        assert kwargs["api_base"] == "http://localhost:8000/v1"
        assert "api_key" not in kwargs

    @pytest.mark.asyncio
    async def test_system_prompt_sent_first(self, backend):
        with patch("sapiens.llm.backend.acompletion", return_value=_make_text_response("Hi")) as mock_call:
            await backend.complete("Be brief", [Message.user("Hello")], [])

        messages = mock_call.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "Be brief"}
        assert messages[1] == {"role": "user", "content": "Hello"}

    @pytest.mark.asyncio
    async def test_empty_system_prompt_omitted(self, backend):
        with patch("sapiens.llm.backend.acompletion", return_value=_make_text_response("Hi")) as mock_call:
            await backend.complete("", [Message.user("Hello")], [])

        messages = mock_call.call_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["user"]

    @pytest.mark.asyncio
    async def test_no_tools_omits_tools_param(self, backend):
        with patch("sapiens.llm.backend.acompletion", return_value=_make_text_response("Hi")) as mock_call:
            await backend.complete("", [Message.user("Hello")], [])

        kwargs = mock_call.call_args.kwargs
        assert "tools" not in kwargs
        assert "response_format" not in kwargs

    @pytest.mark.asyncio
    async def test_tools_in_function_format(self, backend, weather_tool):
        with patch("sapiens.llm.backend.acompletion", return_value=_make_text_response("Hi")) as mock_call:
            await backend.complete("", [Message.user("Hello")], [weather_tool])

        tools = mock_call.call_args.kwargs["tools"]
        assert tools == [
            {
                "type": "function",
                "function": {
                    "name": "get_temp",
                    "description": "Current temperature",
                    "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
                },
            }
        ]

    @pytest.mark.asyncio
    async def test_response_format_forwarded(self, backend):
        response_format = {"type": "json_schema", "json_schema": {"name": "structured_output", "schema": {}}}

        with patch("sapiens.llm.backend.acompletion", return_value=_make_text_response("{}")) as mock_call:
            await backend.complete("", [Message.user("Hello")], [], response_format)

        assert mock_call.call_args.kwargs["response_format"] == response_format


class TestHistoryTranslation:
    """Tests for assistant tool-call turns and tool results."""

    @pytest.mark.asyncio
    async def test_tool_round_translated(self, backend):
        call = ToolCallRequest(id="c1", name="get_temp", arguments_raw='{"city": "Delhi"}')
        history = [
            Message.user("Temperature?"),
            Message.assistant("", (call,)),
            Message.tool_result("c1", "get_temp", "31C"),
        ]

        with patch("sapiens.llm.backend.acompletion", return_value=_make_text_response("31C")) as mock_call:
            await backend.complete("", history, [])

        messages = mock_call.call_args.kwargs["messages"]
        assert messages[1] == {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {
                    "id": "c1",
                    "type": "function",
                    "function": {"name": "get_temp", "arguments": '{"city": "Delhi"}'},
                }
            ],
        }
        assert messages[2] == {"role": "tool", "tool_call_id": "c1", "name": "get_temp", "content": "31C"}

    @pytest.mark.asyncio
    async def test_assistant_filler_for_empty_tool_call_turn(self):
        backend = LiteLLMBackend(LLMSettings(model="gemini/gemini-2.0-flash", assistant_filler="I'll help you with that."))
        call = ToolCallRequest(id="c1", name="get_temp")

        with patch("sapiens.llm.backend.acompletion", return_value=_make_text_response("ok")) as mock_call:
            await backend.complete("", [Message.user("Hi"), Message.assistant("", (call,))], [])

        assistant = mock_call.call_args.kwargs["messages"][1]
        assert assistant["content"] == "I'll help you with that."
        assert assistant["tool_calls"][0]["function"]["arguments"] == "{}"

    @pytest.mark.asyncio
    async def test_context_system_turns_kept_in_place(self, backend):
        history = [Message.system("Context: Delhi is hot"), Message.user("Weather?")]

        with patch("sapiens.llm.backend.acompletion", return_value=_make_text_response("Hot")) as mock_call:
            await backend.complete("Be brief", history, [])

        roles = [m["role"] for m in mock_call.call_args.kwargs["messages"]]
        assert roles == ["system", "system", "user"]


class TestResponseParsing:
    """Tests for turning LiteLLM responses into BackendResponse."""

    @pytest.mark.asyncio
    async def test_text_response(self, backend):
        with patch("sapiens.llm.backend.acompletion", return_value=_make_text_response("It is sunny.")):
            result = await backend.complete("", [Message.user("Weather?")], [])

        assert isinstance(result, BackendResponse)
        assert result.content == "It is sunny."
        assert result.tool_calls == []
        assert result.model == "openai/gpt-4o"
        assert result.usage.prompt_tokens == 100
        assert result.usage.completion_tokens == 50
        assert result.usage.total_tokens == 150

    @pytest.mark.asyncio
    async def test_tool_call_response(self, backend, weather_tool):
        mock_resp = _make_tool_call_response("get_temp", {"city": "Delhi"}, tool_call_id="call_abc")

        with patch("sapiens.llm.backend.acompletion", return_value=mock_resp):
            result = await backend.complete("", [Message.user("Temperature?")], [weather_tool])

        assert result.content == ""
        assert result.tool_calls == [
            ToolCallRequest(id="call_abc", name="get_temp", arguments_raw='{"city": "Delhi"}')
        ]

    @pytest.mark.asyncio
    async def test_missing_model_falls_back_to_settings(self, backend):
        mock_resp = _make_text_response("Hi", model=None)

        with patch("sapiens.llm.backend.acompletion", return_value=mock_resp):
            result = await backend.complete("", [Message.user("Hello")], [])

        assert result.model == "openai/gpt-4o"


class TestErrorHandling:
    """Provider failures surface as LLMError."""

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self, backend):
        with patch("sapiens.llm.backend.acompletion", side_effect=Exception("API rate limit exceeded")):
            with pytest.raises(LLMError, match="rate limit") as exc_info:
                await backend.complete("", [Message.user("Hello")], [])

        assert str(exc_info.value.cause) == "API rate limit exceeded"

    @pytest.mark.asyncio
    async def test_no_choices(self, backend):
        mock_resp = _make_text_response("unused")
        mock_resp.choices = []

        with patch("sapiens.llm.backend.acompletion", return_value=mock_resp):
            with pytest.raises(LLMError, match="No choices"):
                await backend.complete("", [Message.user("Hello")], [])
