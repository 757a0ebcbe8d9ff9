"""Conversion between the Chat Completions and Responses wire shapes.

Both request directions (canonical messages to either wire shape) and both
response directions (either wire shape to ``NormalizedResponse`` and back)
live here. Provider payloads are passed through ``canonicalize`` first, so
the rest of the module only ever sees plain ``dict[str, Any]`` trees.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import replace
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel

from baton_llm.types import (
    CompletionRequest,
    FunctionCallItem,
    Message,
    MessageItem,
    NormalizedResponse,
    OutputItem,
    Role,
    ToolChoice,
    ToolDefinition,
    Usage,
)

logger = logging.getLogger(__name__)

_HOSTED_TOOL_TYPES = ("web_search",)


def canonicalize(payload: Any) -> Any:
    """Convert a decoded provider payload into plain str-keyed dicts and lists."""
    if isinstance(payload, BaseModel):
        return canonicalize(payload.model_dump())
    if isinstance(payload, dict):
        return {_canonical_key(k): canonicalize(v) for k, v in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [canonicalize(v) for v in payload]
    to_dict = getattr(payload, "to_dict", None)
    if callable(to_dict):
        return canonicalize(to_dict())
    return payload


def _canonical_key(key: Any) -> str:
    if isinstance(key, str):
        return key
    if isinstance(key, Enum):
        return str(key.value)
    if isinstance(key, bytes):
        return key.decode()
    return str(key)


def _new_response_id() -> str:
    return f"resp_{uuid.uuid4().hex}"


def _arguments_to_wire(arguments: str | dict[str, Any]) -> str:
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments)


class FormatNormalizer:
    """Bidirectional converter between the two wire shapes."""

    # -- Request direction: Chat Completions --

    def chat_messages(self, messages: Iterable[Message]) -> list[dict[str, Any]]:
        return [self._chat_message(m) for m in messages]

    def _chat_message(self, msg: Message) -> dict[str, Any]:
        if msg.role == Role.TOOL:
            return {
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "content": msg.content,
            }
        result: dict[str, Any] = {"role": msg.role.value, "content": msg.content}
        if msg.name:
            result["name"] = msg.name
        if msg.role == Role.ASSISTANT and msg.tool_calls:
            result["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": _arguments_to_wire(tc.arguments),
                    },
                }
                for tc in msg.tool_calls
            ]
        return result

    def chat_tools(self, tools: Iterable[ToolDefinition]) -> list[dict[str, Any]]:
        converted = []
        for t in tools:
            if t.type != "function":
                logger.debug("Skipping hosted tool %r on Chat Completions path", t.type)
                continue
            converted.append({
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.parameters,
                },
            })
        return converted

    def chat_tool_choice(self, tc: ToolChoice) -> Any:
        if tc.mode == "named":
            return {"type": "function", "function": {"name": tc.tool_name}}
        return tc.mode

    def chat_request(self, request: CompletionRequest, *, stream: bool | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model,
            "messages": self.chat_messages(request.messages),
            "stream": request.stream if stream is None else stream,
        }
        if request.tools is not None:
            body["tools"] = self.chat_tools(request.tools)
        if request.tool_choice:
            body["tool_choice"] = self.chat_tool_choice(request.tool_choice)
        body.update(request.params)
        return body

    # -- Request direction: Responses --

    def response_items(
        self, messages: Iterable[Message]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Split messages into (instructions, input items)."""
        instructions_parts: list[str] = []
        items: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == Role.SYSTEM:
                if msg.text:
                    instructions_parts.append(msg.text)
                continue

            if msg.role == Role.TOOL:
                content = msg.content
                if not isinstance(content, str):
                    content = json.dumps(content)
                items.append({
                    "type": "function_call_output",
                    "call_id": msg.tool_call_id,
                    "output": content,
                })
                continue

            role = msg.role.value
            parts = self._content_parts(msg.content, role)
            if parts:
                items.append({"type": "message", "role": role, "content": parts})

            for tc in msg.tool_calls or []:
                items.append({
                    "type": "function_call",
                    "call_id": tc.id,
                    "name": tc.name,
                    "arguments": _arguments_to_wire(tc.arguments),
                })

        instructions = "\n\n".join(instructions_parts) or None
        return instructions, items

    def _content_parts(
        self, content: str | list[dict[str, Any]], role: str
    ) -> list[dict[str, Any]]:
        if isinstance(content, list):
            return list(content)
        if not content:
            return []
        text_type = "input_text" if role == "user" else "output_text"
        return [{"type": text_type, "text": content}]

    def response_tools(self, tools: Iterable[ToolDefinition]) -> list[dict[str, Any]]:
        converted = []
        for t in tools:
            if t.type in _HOSTED_TOOL_TYPES:
                converted.append({"type": t.type})
                continue
            strict = t.strict if t.strict is not None else _is_strict_schema(t.parameters)
            converted.append({
                "type": "function",
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters,
                "strict": strict,
            })
        return converted

    def response_tool_choice(self, tc: ToolChoice) -> Any:
        if tc.mode == "named":
            return {"type": "function", "name": tc.tool_name}
        return tc.mode

    def responses_request(
        self, request: CompletionRequest, *, stream: bool | None = None
    ) -> dict[str, Any]:
        instructions, items = self.response_items(request.messages)
        body: dict[str, Any] = {
            "model": request.model,
            "input": items,
            "stream": request.stream if stream is None else stream,
        }
        if instructions:
            body["instructions"] = instructions
        if request.tools is not None:
            body["tools"] = self.response_tools(request.tools)
        if request.tool_choice:
            body["tool_choice"] = self.response_tool_choice(request.tool_choice)
        if request.previous_response_id:
            body["previous_response_id"] = request.previous_response_id
        body.update(request.params)
        return body

    def messages_from_items(
        self,
        items: Iterable[dict[str, Any]],
        base: Iterable[Message] | None = None,
    ) -> list[Message]:
        """Rebuild chat-style messages from Responses input items."""
        messages = [replace(m) for m in base or []]
        for item in canonicalize(list(items)):
            item_type = item.get("type")
            if item_type == "message":
                role = Role(item.get("role", "user"))
                content = item.get("content", "")
                if isinstance(content, list):
                    content = "".join(
                        p.get("text", "") for p in content if isinstance(p, dict)
                    )
                messages.append(Message(role=role, content=content))
            elif item_type == "function_call":
                call = FunctionCallItem(
                    id=item.get("call_id") or item.get("id", ""),
                    name=item.get("name", ""),
                    arguments=item.get("arguments", ""),
                )
                last = messages[-1] if messages else None
                if last is not None and last.role == Role.ASSISTANT:
                    last.tool_calls = (last.tool_calls or []) + [call]
                else:
                    messages.append(Message.assistant("", tool_calls=[call]))
            elif item_type == "function_call_output":
                messages.append(
                    Message.tool_result(item.get("call_id", ""), item.get("output", ""))
                )
        return messages

    # -- Response direction --

    def from_chat_completion(self, data: dict[str, Any]) -> NormalizedResponse:
        data = canonicalize(data) or {}
        output: list[OutputItem] = []
        choices = data.get("choices") or []
        choice = choices[0] if choices else {}
        message = choice.get("message") or {}

        if not choices:
            logger.debug("No choices found in Chat Completions response")

        content = message.get("content")
        if content:
            output.append(
                MessageItem(role=message.get("role") or "assistant", content=content)
            )

        for tc in message.get("tool_calls") or []:
            fn = tc.get("function") or {}
            output.append(
                FunctionCallItem(
                    id=tc.get("id", ""),
                    name=fn.get("name", ""),
                    arguments=fn.get("arguments", ""),
                )
            )

        return NormalizedResponse(
            output=output,
            usage=Usage.from_dict(data.get("usage")),
            model=data.get("model", ""),
            id=data.get("id") or _new_response_id(),
            finish_reason=choice.get("finish_reason"),
            metadata=data.get("metadata") or None,
            raw=data,
        )

    def from_responses(self, data: dict[str, Any]) -> NormalizedResponse:
        data = canonicalize(data) or {}
        output: list[OutputItem] = []

        for item in data.get("output") or []:
            converted = self.output_item(item)
            if converted is not None:
                output.append(converted)

        status = data.get("status")
        finish_reason = None
        if output and isinstance(output[-1], FunctionCallItem):
            finish_reason = "tool_calls"
        elif status == "completed":
            finish_reason = "stop"
        elif status == "incomplete":
            finish_reason = "length"
        elif status:
            finish_reason = status

        return NormalizedResponse(
            output=output,
            usage=Usage.from_dict(data.get("usage")),
            model=data.get("model", ""),
            id=data.get("id") or _new_response_id(),
            finish_reason=finish_reason,
            metadata=data.get("metadata") or None,
            raw=data,
        )

    def output_item(self, item: dict[str, Any]) -> OutputItem | None:
        """Convert one Responses output item; None for item types we don't model."""
        item_type = item.get("type", "")
        if item_type == "message":
            content = item.get("content", "")
            if isinstance(content, list):
                content = "".join(
                    c.get("text", "")
                    for c in content
                    if isinstance(c, dict) and c.get("type") in ("output_text", "text")
                )
            return MessageItem(role=item.get("role") or "assistant", content=content or "")
        if item_type == "function_call":
            return FunctionCallItem(
                id=item.get("call_id") or item.get("id", ""),
                name=item.get("name", ""),
                arguments=item.get("arguments", ""),
                item_id=item.get("id"),
            )
        logger.debug("Leaving output item of type %r in raw payload", item_type)
        return None

    def normalize(self, data: dict[str, Any]) -> NormalizedResponse:
        """Normalize a payload of either shape."""
        data = canonicalize(data) or {}
        if "choices" in data:
            return self.from_chat_completion(data)
        return self.from_responses(data)

    # -- Canonical back to wire --

    def to_chat_completion(self, resp: NormalizedResponse) -> dict[str, Any]:
        message: dict[str, Any] = {"role": "assistant", "content": resp.text or None}
        calls = resp.function_calls
        if calls:
            message["tool_calls"] = [
                {
                    "id": fc.id,
                    "type": "function",
                    "function": {
                        "name": fc.name,
                        "arguments": _arguments_to_wire(fc.arguments),
                    },
                }
                for fc in calls
            ]
        finish_reason = resp.finish_reason or ("tool_calls" if calls else "stop")
        return {
            "id": resp.id,
            "model": resp.model,
            "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
            "usage": {
                "prompt_tokens": resp.usage.input_tokens,
                "completion_tokens": resp.usage.output_tokens,
                "total_tokens": resp.usage.total_tokens,
            },
        }

    def to_responses(self, resp: NormalizedResponse) -> dict[str, Any]:
        output: list[dict[str, Any]] = []
        for item in resp.output:
            if isinstance(item, MessageItem):
                output.append({
                    "type": "message",
                    "role": item.role,
                    "content": [{"type": "output_text", "text": item.content}],
                })
            else:
                output.append({
                    "type": "function_call",
                    "id": item.item_id or item.id,
                    "call_id": item.id,
                    "name": item.name,
                    "arguments": _arguments_to_wire(item.arguments),
                })
        return {
            "id": resp.id,
            "model": resp.model,
            "status": "incomplete" if resp.finish_reason == "length" else "completed",
            "output": output,
            "usage": {
                "input_tokens": resp.usage.input_tokens,
                "output_tokens": resp.usage.output_tokens,
                "total_tokens": resp.usage.total_tokens,
            },
        }


def _is_strict_schema(parameters: dict[str, Any]) -> bool:
    return (
        isinstance(parameters.get("properties"), dict)
        and parameters.get("additionalProperties") is False
        and isinstance(parameters.get("required"), list)
    )
