"""OpenRouter LLM client with Anthropic-style message adapter methods."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import openai

from billbot.config import settings
from billbot.errors import ModelProviderError


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class TextBlock:
    type: str
    text: str


@dataclass
class ToolUseBlock:
    type: str
    id: str
    name: str
    input: dict[str, Any]


@dataclass
class MessageResponse:
    content: list[Any]
    usage: Usage
    stop_reason: str | None = None

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if b.type == "text")

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if b.type == "tool_use"]


def _retry_after(headers: Any) -> float | None:
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def map_provider_error(exc: Exception) -> ModelProviderError:
    """Translate an OpenAI SDK exception into a ModelProviderError."""
    if isinstance(exc, ModelProviderError):
        return exc
    if isinstance(exc, openai.APITimeoutError):
        return ModelProviderError("Model provider request timed out", code="MODEL_TIMEOUT", recoverable=True)
    if isinstance(exc, openai.APIConnectionError):
        return ModelProviderError("Model provider unreachable", code="MODEL_UNAVAILABLE", recoverable=True)
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        if status == 429:
            return ModelProviderError(
                "Rate limit exceeded. Please try again later.",
                status_code=status,
                retry_after=_retry_after(exc.response.headers),
            )
        if status in (401, 403):
            return ModelProviderError("Invalid model provider API key", status_code=status)
        if status == 400:
            return ModelProviderError(
                f"Model provider rejected the request: {exc.message}",
                status_code=status,
                code="MODEL_BAD_REQUEST",
                recoverable=False,
            )
        if status >= 500:
            return ModelProviderError(
                "Model provider temporarily unavailable",
                status_code=status,
                code="MODEL_UNAVAILABLE",
            )
        return ModelProviderError(f"Model provider error ({status})", status_code=status)
    return ModelProviderError(f"Model provider error: {type(exc).__name__}")


@dataclass
class _PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)

    def to_block(self) -> ToolUseBlock:
        raw = "".join(self.arguments) or "{}"
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = {"_raw_arguments": raw}
        if not isinstance(parsed, dict):
            parsed = {"_raw_arguments": raw}
        return ToolUseBlock(type="tool_use", id=self.id, name=self.name, input=parsed)


class OpenRouterStream:
    """One streamed completion turn.

    ``text_stream`` yields content fragments in arrival order; tool-call
    fragments are accumulated by index and returned by ``get_final_message``.
    """

    def __init__(self, stream_coro: Any):
        self._stream_coro = stream_coro
        self._stream: Any | None = None
        self._usage = Usage()
        self._text: list[str] = []
        self._tool_calls: dict[int, _PendingToolCall] = {}
        self._stop_reason: str | None = None
        self._finished = False

    async def __aenter__(self) -> "OpenRouterStream":
        try:
            self._stream = await self._stream_coro
        except openai.OpenAIError as exc:
            raise map_provider_error(exc) from exc
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stream is not None:
            await self._stream.close()

    def _absorb_tool_calls(self, deltas: Any) -> None:
        for delta in deltas or []:
            index = getattr(delta, "index", 0) or 0
            pending = self._tool_calls.setdefault(index, _PendingToolCall())
            if getattr(delta, "id", None):
                pending.id = delta.id
            function = getattr(delta, "function", None)
            if function is None:
                continue
            if getattr(function, "name", None):
                pending.name = function.name
            if getattr(function, "arguments", None):
                pending.arguments.append(function.arguments)

    async def _iter_text(self) -> AsyncIterator[str]:
        if self._stream is None:
            return
        try:
            async for chunk in self._stream:
                usage = getattr(chunk, "usage", None)
                if usage:
                    self._usage = Usage(
                        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
                        cost=getattr(usage, "cost", None),
                    )

                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                choice = choices[0]
                if getattr(choice, "finish_reason", None):
                    self._stop_reason = choice.finish_reason
                delta = getattr(choice, "delta", None)
                if not delta:
                    continue
                self._absorb_tool_calls(getattr(delta, "tool_calls", None))
                text = getattr(delta, "content", None)
                if text:
                    self._text.append(text)
                    yield text
        except openai.OpenAIError as exc:
            raise map_provider_error(exc) from exc
        self._finished = True

    @property
    def text_stream(self) -> AsyncIterator[str]:
        return self._iter_text()

    async def get_final_message(self) -> MessageResponse:
        if not self._finished:
            async for _ in self.text_stream:
                pass
        content: list[Any] = []
        text = "".join(self._text)
        if text:
            content.append(TextBlock(type="text", text=text))
        for index in sorted(self._tool_calls):
            content.append(self._tool_calls[index].to_block())
        return MessageResponse(content=content, usage=self._usage, stop_reason=self._stop_reason)


class OpenRouterMessagesAdapter:
    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _temperature_for_model(model: str, requested: float | None = None) -> float:
        # Some OpenAI GPT-5-compatible gateways only accept temperature=1.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return settings.openrouter_temperature if requested is None else requested

    def _to_openai_messages(self, system: str, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        openai_messages: list[dict[str, Any]] = [{"role": "system", "content": system}]

        for message in messages:
            role = message["role"]
            content = message["content"]

            if isinstance(content, str):
                openai_messages.append({"role": role, "content": content})
                continue

            if role == "assistant" and isinstance(content, list):
                text_parts: list[str] = []
                tool_calls: list[dict[str, Any]] = []
                for block in content:
                    block = block if isinstance(block, dict) else vars(block)
                    if block.get("type") == "text" and block.get("text"):
                        text_parts.append(block["text"])
                    elif block.get("type") == "tool_use":
                        tool_calls.append(
                            {
                                "id": block.get("id"),
                                "type": "function",
                                "function": {
                                    "name": block.get("name"),
                                    "arguments": json.dumps(block.get("input") or {}),
                                },
                            }
                        )
                msg: dict[str, Any] = {"role": "assistant"}
                msg["content"] = "\n".join(text_parts) if text_parts else None
                if tool_calls:
                    msg["tool_calls"] = tool_calls
                openai_messages.append(msg)
                continue

            if role == "user" and isinstance(content, list):
                for tool_result in content:
                    if tool_result.get("type") != "tool_result":
                        continue
                    tool_content = str(tool_result.get("content", ""))
                    if tool_result.get("is_error"):
                        tool_content = f"ERROR: {tool_content}"
                    openai_messages.append(
                        {
                            "role": "tool",
                            "tool_call_id": tool_result.get("tool_use_id", ""),
                            "content": tool_content,
                        }
                    )
                continue

            openai_messages.append({"role": role, "content": str(content)})

        return openai_messages

    def _to_openai_tools(self, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "parameters": t.get("input_schema", {"type": "object", "properties": {}}),
                },
            }
            for t in tools
        ]

    def stream(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str = "auto",
        temperature: float | None = None,
    ) -> OpenRouterStream:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._to_openai_messages(system, messages),
            "max_tokens": max_tokens,
            "temperature": self._temperature_for_model(model, temperature),
            "stream": True,
            "stream_options": {"include_usage": True},
            # OpenRouter reports the request cost in the usage block when asked.
            "extra_body": {"usage": {"include": True}},
        }
        if tools:
            kwargs["tools"] = self._to_openai_tools(tools)
            kwargs["tool_choice"] = tool_choice
        return OpenRouterStream(self._client.chat.completions.create(**kwargs))


class OpenRouterClientAdapter:
    def __init__(self, openai_client: Any):
        self.messages = OpenRouterMessagesAdapter(openai_client)


def get_client() -> OpenRouterClientAdapter:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = openai.AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
        default_headers={
            "HTTP-Referer": settings.openrouter_app_url,
            "X-Title": settings.openrouter_app_title,
        },
    )
    return OpenRouterClientAdapter(openai_client)


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


_client: OpenRouterClientAdapter | None = None


def client() -> OpenRouterClientAdapter:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
