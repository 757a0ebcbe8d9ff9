"""Core type definitions for the provider adaptation layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union

from baton_llm.errors import InvalidArgumentError


class Role(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class StreamEventType(Enum):
    CREATED = "created"
    OUTPUT_ITEM_ADDED = "output_item.added"
    OUTPUT_ITEM_DONE = "output_item.done"
    COMPLETED = "completed"
    UNKNOWN = "unknown"


@dataclass
class MessageItem:
    role: str = "assistant"
    content: str = ""
    type: str = field(default="message", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "role": self.role, "content": self.content}


@dataclass
class FunctionCallItem:
    id: str = ""
    name: str = ""
    # Kept exactly as the provider sent it; usually a JSON string.
    arguments: str | dict[str, Any] = ""
    item_id: str | None = None
    type: str = field(default="function_call", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
        }


OutputItem = Union[MessageItem, FunctionCallItem]


@dataclass
class Message:
    role: Role = Role.USER
    content: str | list[dict[str, Any]] = ""
    tool_call_id: str | None = None
    tool_calls: list[FunctionCallItem] | None = None
    name: str | None = None

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(
            part.get("text", "")
            for part in self.content
            if isinstance(part, dict) and part.get("text")
        )

    @classmethod
    def system(cls, text: str) -> Message:
        return cls(role=Role.SYSTEM, content=text)

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role=Role.USER, content=text)

    @classmethod
    def assistant(
        cls, text: str = "", tool_calls: list[FunctionCallItem] | None = None
    ) -> Message:
        return cls(role=Role.ASSISTANT, content=text, tool_calls=tool_calls)

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str = "") -> Message:
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)


@dataclass
class ToolDefinition:
    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)
    type: str = "function"
    strict: bool | None = None


@dataclass
class ToolChoice:
    mode: str = "auto"
    tool_name: str | None = None


@dataclass(frozen=True)
class CompletionRequest:
    """One completion call. Frozen; build a new request to change anything."""

    messages: tuple[Message, ...] = ()
    model: str = ""
    tools: tuple[ToolDefinition, ...] | None = None
    stream: bool = False
    tool_choice: ToolChoice | None = None
    previous_response_id: str | None = None
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))
        if self.tools is not None:
            object.__setattr__(self, "tools", tuple(self.tools))
        object.__setattr__(self, "params", dict(self.params))
        self._validate()

    def _validate(self) -> None:
        if not isinstance(self.model, str) or not self.model.strip():
            raise InvalidArgumentError("model must be a non-empty string")
        if not self.messages:
            raise InvalidArgumentError("at least one message is required")
        for msg in self.messages:
            if not isinstance(msg, Message):
                raise InvalidArgumentError(
                    f"messages must be Message instances, got {type(msg).__name__}"
                )
            if msg.role == Role.TOOL and not msg.tool_call_id:
                raise InvalidArgumentError("tool messages require a tool_call_id")
        for tool in self.tools or ():
            if not isinstance(tool, ToolDefinition):
                raise InvalidArgumentError(
                    f"Invalid tool type: {type(tool).__name__}"
                )
            if tool.type == "function":
                if not tool.name:
                    raise InvalidArgumentError("function tools require a name")
                if not isinstance(tool.parameters, dict):
                    raise InvalidArgumentError(
                        f"parameters for tool '{tool.name}' must be a JSON schema object"
                    )


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    raw: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Usage:
        data = data or {}
        input_tokens = data.get("input_tokens", data.get("prompt_tokens", 0)) or 0
        output_tokens = data.get("output_tokens", data.get("completion_tokens", 0)) or 0
        total = data.get("total_tokens") or input_tokens + output_tokens
        return cls(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total,
            raw=data or None,
        )


@dataclass
class NormalizedResponse:
    """The canonical item-based completion every caller consumes."""

    output: list[OutputItem] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    model: str = ""
    id: str = ""
    finish_reason: str | None = None
    metadata: dict[str, Any] | None = None
    raw: dict[str, Any] | None = None

    @property
    def text(self) -> str:
        return "".join(
            item.content for item in self.output if isinstance(item, MessageItem)
        )

    @property
    def function_calls(self) -> list[FunctionCallItem]:
        return [item for item in self.output if isinstance(item, FunctionCallItem)]

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "output": [item.to_dict() for item in self.output],
            "usage": self.usage.raw,
            "model": self.model,
            "id": self.id,
        }
        if self.metadata:
            result["metadata"] = self.metadata
        return result


@dataclass(frozen=True)
class CapabilitySet:
    responses_api: bool = False
    chat_completion: bool = False
    streaming: bool = False
    function_calling: bool = False
    handoffs: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "handoffs", self.function_calling)

    def to_dict(self) -> dict[str, bool]:
        return {
            "responses_api": self.responses_api,
            "chat_completion": self.chat_completion,
            "streaming": self.streaming,
            "function_calling": self.function_calling,
            "handoffs": self.handoffs,
        }


@dataclass
class StreamEvent:
    type: StreamEventType = StreamEventType.UNKNOWN
    response: dict[str, Any] | None = None
    item: dict[str, Any] | None = None
    output_item: OutputItem | None = None
    output_index: int | None = None
    sequence_number: int | None = None
    final_response: NormalizedResponse | None = None
    raw: Any = None
