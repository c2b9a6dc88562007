# llm.py
# Reasoning-oracle boundary.
#
# The core only sees OracleProvider.complete(); adapters translate to a
# concrete API. Any provider failure is re-raised as OracleError, which is
# fatal to the run. The core never retries.

from typing import Any, Protocol

from openai import OpenAI, OpenAIError

from stepgraph.errors import OracleError
from stepgraph.models import Completion, ToolCall, Usage


class OracleProvider(Protocol):
    def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | dict[str, Any] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> Completion: ...


class OpenAIChatProvider:
    """
    OpenAI-compatible chat-completions adapter.

    Works against any endpoint speaking the same wire format, e.g.:

        OpenAIChatProvider(api_key=key, base_url="https://openrouter.ai/api/v1")
    """

    def __init__(self, api_key: str | None, base_url: str | None = None, client: OpenAI | None = None) -> None:
        self._client = client or OpenAI(api_key=api_key or "DUMMY", base_url=base_url)

    def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | dict[str, Any] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> Completion:
        kwargs: dict[str, Any] = {"model": model, "messages": messages}
        if tools:
            kwargs["tools"] = [{"type": "function", "function": tool} for tool in tools]
            kwargs["tool_choice"] = tool_choice or "auto"
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if response_format is not None:
            kwargs["response_format"] = response_format

        try:
            response = self._client.chat.completions.create(**kwargs)
        except OpenAIError as exc:
            raise OracleError(f"LLM request failed: {exc}") from exc

        if not response.choices:
            raise OracleError("LLM response contained no choices")
        choice = response.choices[0]
        message = choice.message
        tool_calls = [
            ToolCall(id=call.id, name=call.function.name, arguments=call.function.arguments or "{}")
            for call in (message.tool_calls or [])
        ]
        usage = None
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        return Completion(
            content=message.content or "",
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason,
            usage=usage,
        )
