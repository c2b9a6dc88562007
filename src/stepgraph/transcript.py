# transcript.py
# Negotiation transcript between a step and the oracle.
#
# Messages are a closed set of role-tagged variants. The adjacency rule:
# an assistant message carrying tool requests must be followed by exactly
# one tool reply per request before the next assistant or user message.
# `Transcript.repair()` restores that rule for the most recent gap.

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from stepgraph.models import ToolCall, ToolResult


class SystemMessage(BaseModel):
    role: Literal["system"] = "system"
    content: str


class UserMessage(BaseModel):
    role: Literal["user"] = "user"
    content: str


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ToolMessage(BaseModel):
    role: Literal["tool"] = "tool"
    tool_call_id: str
    name: str
    content: str


Message = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]

_MESSAGE_ADAPTER: TypeAdapter[Message] = TypeAdapter(Message)


def tool_reply(call: ToolCall, result: ToolResult | dict[str, Any]) -> ToolMessage:
    """Tool message answering `call` with the JSON-serialised result."""
    payload = result.model_dump() if isinstance(result, ToolResult) else result
    return ToolMessage(tool_call_id=call.id, name=call.name, content=json.dumps(payload))


class Transcript:
    """Ordered message list passed to the oracle each round."""

    def __init__(self, messages: list[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def append(self, message: Message | dict[str, Any]) -> None:
        if isinstance(message, dict):
            message = _MESSAGE_ADAPTER.validate_python(message)
        self._messages.append(message)

    # ------------------------------------------------------------------
    # Adjacency repair
    # ------------------------------------------------------------------

    def _last_tool_request_index(self) -> int | None:
        for index in range(len(self._messages) - 1, -1, -1):
            message = self._messages[index]
            if isinstance(message, AssistantMessage) and message.tool_calls:
                return index
        return None

    def pending_tool_call_ids(self) -> list[str]:
        """Ids of the latest tool requests still lacking an adjacent reply."""
        index = self._last_tool_request_index()
        if index is None:
            return []
        answered: set[str] = set()
        for message in self._messages[index + 1 :]:
            if not isinstance(message, ToolMessage):
                break
            answered.add(message.tool_call_id)
        request = self._messages[index]
        return [call.id for call in request.tool_calls if call.id not in answered]

    def repair(self) -> list[str]:
        """
        Synthesize failure replies for unanswered requests of the most recent
        assistant tool round and splice them directly after that message.

        Only the single most recent gap is repaired. Returns the ids that
        received a synthetic reply.
        """
        missing = self.pending_tool_call_ids()
        if not missing:
            return []
        index = self._last_tool_request_index()
        request = self._messages[index]
        by_id = {call.id: call for call in request.tool_calls}
        synthetic = [
            tool_reply(
                by_id[call_id],
                ToolResult(name=by_id[call_id].name, ok=False, error="missing_tool_reply"),
            )
            for call_id in missing
        ]
        insert_at = index + 1
        self._messages[insert_at:insert_at] = synthetic
        return missing

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_openai(self) -> list[dict[str, Any]]:
        """Chat-completions wire format."""
        wire: list[dict[str, Any]] = []
        for message in self._messages:
            if isinstance(message, AssistantMessage) and message.tool_calls:
                wire.append(
                    {
                        "role": "assistant",
                        "content": message.content,
                        "tool_calls": [
                            {
                                "id": call.id,
                                "type": "function",
                                "function": {"name": call.name, "arguments": call.arguments or "{}"},
                            }
                            for call in message.tool_calls
                        ],
                    }
                )
            elif isinstance(message, ToolMessage):
                wire.append(
                    {
                        "role": "tool",
                        "tool_call_id": message.tool_call_id,
                        "name": message.name,
                        "content": message.content,
                    }
                )
            else:
                wire.append({"role": message.role, "content": message.content})
        return wire

    def dump(self) -> list[dict[str, Any]]:
        return [message.model_dump() for message in self._messages]
