from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .contracts import ChatMessage, CompletionRequest, Role
from .errors import FunctionCallMissingError, InvalidRequestError, TransportError


class WireFunctionCall(BaseModel):
    name: str
    arguments: str


class WireMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant", "function"]
    content: str | None = None
    name: str | None = None
    function_call: WireFunctionCall | None = None

    def to_payload(self) -> dict:
        out = self.model_dump(exclude_none=True)
        if self.role == "assistant" and self.function_call is not None:
            # The chat API expects an explicit null next to a function call.
            out["content"] = None
        return out


class ChatCompletionWireRequest(BaseModel):
    model: str | None = None
    messages: list[WireMessage]
    temperature: float
    frequency_penalty: float | None = None
    stream: bool = True

    @field_validator("messages")
    @classmethod
    def _validate_messages(cls, v: list[WireMessage]) -> list[WireMessage]:
        if not v:
            raise ValueError("messages must be non-empty.")
        return v

    @field_validator("temperature")
    @classmethod
    def _validate_temperature(cls, v: float) -> float:
        if not (0.0 <= v <= 2.0):
            raise ValueError("temperature must be between 0 and 2.")
        return v

    @field_validator("frequency_penalty")
    @classmethod
    def _validate_frequency_penalty(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not (-2.0 <= v <= 2.0):
            raise ValueError("frequency_penalty must be between -2 and 2.")
        return v

    def to_payload(self) -> dict:
        payload: dict = {
            "messages": [m.to_payload() for m in self.messages],
            "temperature": self.temperature,
            "stream": self.stream,
        }
        if self.model is not None:
            payload["model"] = self.model
        if self.frequency_penalty is not None:
            payload["frequency_penalty"] = self.frequency_penalty
        return payload


class ChunkDelta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str | None = None
    content: str | None = None
    function_call: dict | None = None


class ChunkChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: int = 0
    delta: ChunkDelta = ChunkDelta()
    finish_reason: str | None = None


class ChatCompletionChunk(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    model: str | None = None
    choices: list[ChunkChoice] = []


def _normalize_one(message: ChatMessage) -> WireMessage:
    call = message.function_call
    if message.role is Role.USER:
        return WireMessage(role="user", content=message.content)
    if message.role is Role.SYSTEM:
        return WireMessage(role="system", content=message.content)
    if message.role is Role.ASSISTANT:
        if call is not None:
            return WireMessage(
                role="assistant",
                function_call=WireFunctionCall(name=call.name, arguments=call.arguments),
            )
        return WireMessage(role="assistant", content=message.content)
    if message.role is Role.FUNCTION:
        if call is None:
            raise FunctionCallMissingError("Function message requires a function call.")
        return WireMessage(role="function", name=call.name, content=message.content)
    raise InvalidRequestError(f"Unsupported message role: {message.role!r}")


def normalize_messages(messages: Sequence[ChatMessage]) -> list[WireMessage]:
    """Convert every message or fail; no partial list is ever returned."""
    return [_normalize_one(m) for m in messages]


def build_wire_request(request: CompletionRequest, *, model: str | None) -> ChatCompletionWireRequest:
    messages = normalize_messages(request.messages)
    try:
        return ChatCompletionWireRequest(
            model=model,
            messages=messages,
            temperature=request.temperature,
            frequency_penalty=request.frequency_penalty,
            stream=True,
        )
    except ValidationError as e:
        raise InvalidRequestError(str(e)) from e


_DONE = object()


def parse_sse_line(line: str) -> ChatCompletionChunk | object | None:
    """
    Decode one line of an OpenAI-style event stream.

    Returns None for lines that carry no event, the module-level `_DONE`
    sentinel for the terminal marker, and a chunk otherwise.
    """
    if not line or not line.startswith("data:"):
        return None
    raw = line[len("data:") :].strip()
    if not raw:
        return None
    if raw == "[DONE]":
        return _DONE
    try:
        return ChatCompletionChunk.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise TransportError("Failed to decode upstream SSE JSON.") from e


def is_done(event: object) -> bool:
    return event is _DONE
