"""Tests for the OpenRouter LLM client."""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

from billbot.errors import ModelProviderError
from billbot.llm_client import (
    OpenRouterMessagesAdapter,
    OpenRouterStream,
    TextBlock,
    ToolUseBlock,
    get_client,
    get_model,
    map_provider_error,
)


def _status_error(cls, status: int, headers: dict | None = None):
    request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
    response = httpx.Response(status, headers=headers or {}, request=request)
    return cls("provider said no", response=response, body=None)


def _chunk(content=None, tool_calls=None, finish_reason=None, usage=None):
    choices = []
    if content is not None or tool_calls is not None or finish_reason is not None:
        choices = [
            SimpleNamespace(
                delta=SimpleNamespace(content=content, tool_calls=tool_calls),
                finish_reason=finish_reason,
            )
        ]
    return SimpleNamespace(choices=choices, usage=usage)


def _tool_delta(index, *, id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


class _FakeAsyncStream:
    def __init__(self, chunks):
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)

    async def close(self):
        self.closed = True


async def _returns(value):
    return value


class TestGetModel:
    def test_get_model_returns_default_when_no_override(self):
        with patch("billbot.llm_client.settings") as mock_settings:
            mock_settings.openrouter_model = ""
            mock_settings.default_model = "anthropic/claude-sonnet-4"

            assert get_model() == "anthropic/claude-sonnet-4"

    def test_get_model_returns_openrouter_override(self):
        with patch("billbot.llm_client.settings") as mock_settings:
            mock_settings.openrouter_model = "openai/gpt-4o"
            mock_settings.default_model = "anthropic/claude-sonnet-4"

            assert get_model() == "openai/gpt-4o"


class TestGetClient:
    def test_get_client_sends_openrouter_headers(self):
        with patch("billbot.llm_client.settings") as mock_settings, patch(
            "billbot.llm_client.openai.AsyncOpenAI"
        ) as mock_openai:
            mock_settings.openrouter_api_key = "sk-or-test"
            mock_settings.openrouter_base_url = ""
            mock_settings.openrouter_app_url = "https://bill-bot.app"
            mock_settings.openrouter_app_title = "Bill Bot"

            get_client()

        mock_openai.assert_called_once_with(
            api_key="sk-or-test",
            base_url="https://openrouter.ai/api/v1",
            default_headers={"HTTP-Referer": "https://bill-bot.app", "X-Title": "Bill Bot"},
        )


class TestErrorMapping:
    def test_rate_limit_is_recoverable_with_retry_after(self):
        error = map_provider_error(_status_error(openai.RateLimitError, 429, {"retry-after": "12"}))

        assert error.code == "RATE_LIMITED"
        assert error.recoverable is True
        assert error.retry_after == 12.0
        assert error.is_rate_limited

    def test_auth_error_is_not_recoverable(self):
        error = map_provider_error(_status_error(openai.AuthenticationError, 401))

        assert error.code == "MODEL_AUTH_ERROR"
        assert error.recoverable is False

    def test_bad_request_is_not_recoverable(self):
        error = map_provider_error(_status_error(openai.BadRequestError, 400))

        assert error.code == "MODEL_BAD_REQUEST"
        assert error.recoverable is False

    def test_server_error_is_recoverable(self):
        error = map_provider_error(_status_error(openai.InternalServerError, 503))

        assert error.code == "MODEL_UNAVAILABLE"
        assert error.recoverable is True

    def test_timeout_is_recoverable(self):
        request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
        error = map_provider_error(openai.APITimeoutError(request=request))

        assert error.code == "MODEL_TIMEOUT"
        assert error.recoverable is True


class TestMessageConversion:
    def test_assistant_tool_use_and_tool_results(self):
        adapter = OpenRouterMessagesAdapter(MagicMock())
        messages = adapter._to_openai_messages(
            "system text",
            [
                {"role": "user", "content": "find tax bills"},
                {
                    "role": "assistant",
                    "content": [
                        TextBlock(type="text", text="Searching."),
                        ToolUseBlock(type="tool_use", id="call_1", name="search_bills", input={"query": "tax"}),
                    ],
                },
                {
                    "role": "user",
                    "content": [
                        {"type": "tool_result", "tool_use_id": "call_1", "content": "[]"},
                        {"type": "tool_result", "tool_use_id": "call_2", "content": "boom", "is_error": True},
                    ],
                },
            ],
        )

        assert messages[0] == {"role": "system", "content": "system text"}
        assert messages[2]["tool_calls"][0]["function"] == {"name": "search_bills", "arguments": '{"query": "tax"}'}
        assert messages[2]["content"] == "Searching."
        assert messages[3] == {"role": "tool", "tool_call_id": "call_1", "content": "[]"}
        assert messages[4]["content"] == "ERROR: boom"

    def test_tools_are_converted_to_functions(self):
        adapter = OpenRouterMessagesAdapter(MagicMock())
        tools = adapter._to_openai_tools([{"name": "t", "description": "d", "input_schema": {"type": "object"}}])

        assert tools == [{"type": "function", "function": {"name": "t", "description": "d", "parameters": {"type": "object"}}}]


class TestStreaming:
    @pytest.mark.asyncio
    async def test_stream_yields_text_and_accumulates_tool_calls(self):
        chunks = [
            _chunk(content="Let me "),
            _chunk(content="search."),
            _chunk(tool_calls=[_tool_delta(0, id="call_1", name="search_bills", arguments='{"que')]),
            _chunk(tool_calls=[_tool_delta(0, arguments='ry": "tax"}')]),
            _chunk(finish_reason="tool_calls"),
            _chunk(usage=SimpleNamespace(prompt_tokens=12, completion_tokens=7, cost=0.0021)),
        ]
        raw = _FakeAsyncStream(chunks)

        async with OpenRouterStream(_returns(raw)) as stream:
            texts = [t async for t in stream.text_stream]
            message = await stream.get_final_message()

        assert texts == ["Let me ", "search."]
        assert message.text == "Let me search."
        assert message.tool_uses == [
            ToolUseBlock(type="tool_use", id="call_1", name="search_bills", input={"query": "tax"})
        ]
        assert message.usage.total_tokens == 19
        assert message.usage.cost == 0.0021
        assert message.stop_reason == "tool_calls"
        assert raw.closed is True

    @pytest.mark.asyncio
    async def test_stream_open_failure_maps_to_provider_error(self):
        async def failing():
            raise _status_error(openai.RateLimitError, 429, {"retry-after": "3"})

        with pytest.raises(ModelProviderError) as exc_info:
            async with OpenRouterStream(failing()):
                pass

        assert exc_info.value.retry_after == 3.0

    def test_stream_request_options(self):
        create = MagicMock()
        adapter = OpenRouterMessagesAdapter(SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create))))

        adapter.stream(
            model="anthropic/claude-sonnet-4",
            max_tokens=100,
            system="s",
            messages=[{"role": "user", "content": "hi"}],
            tools=[{"name": "t", "input_schema": {"type": "object"}}],
            tool_choice="none",
            temperature=0.2,
        )

        kwargs = create.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}
        assert kwargs["temperature"] == 0.2
        assert kwargs["tool_choice"] == "none"
