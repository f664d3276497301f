from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .models import LLMType


class Role(str, Enum):
    USER = "user"
    SYSTEM = "system"
    ASSISTANT = "assistant"
    FUNCTION = "function"


@dataclass(frozen=True)
class FunctionCall:
    name: str
    arguments: str


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str
    function_call: FunctionCall | None = None

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, function_call: FunctionCall | None = None) -> "ChatMessage":
        return cls(role=Role.ASSISTANT, content=content, function_call=function_call)

    @classmethod
    def function(cls, content: str, function_call: FunctionCall | None) -> "ChatMessage":
        return cls(role=Role.FUNCTION, content=content, function_call=function_call)


@dataclass(frozen=True)
class CompletionRequest:
    model: LLMType
    messages: tuple[ChatMessage, ...]
    temperature: float
    frequency_penalty: float | None = None
    stream: bool = True

    def __post_init__(self) -> None:
        # Accept any sequence from callers; store immutably.
        object.__setattr__(self, "messages", tuple(self.messages))


@dataclass(frozen=True)
class PromptCompletionRequest:
    model: LLMType
    prompt: str
    temperature: float
    max_tokens: int | None = None
    stop: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CompletionResponse:
    transcript_so_far: str
    latest_delta: str | None
    model: str
