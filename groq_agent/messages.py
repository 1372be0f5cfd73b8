"""Conversation data types: tool calls, tool results, chat entries, stream chunks.

Conversation messages themselves stay plain dicts in the chat-completions wire
shape, since that is what the transport sends and the session file stores.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str = "{}"

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "ToolCall":
        function = data.get("function") or {}
        arguments = function.get("arguments")
        if not isinstance(arguments, str):
            arguments = "{}" if arguments is None else str(arguments)
        return cls(
            id=str(data.get("id") or ""),
            name=str(function.get("name") or ""),
            arguments=arguments,
        )


@dataclass
class ToolResult:
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, output: str) -> "ToolResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def message_content(self) -> str:
        """Content of the tool message fed back to the model."""
        if self.success:
            return self.output or "Success"
        return self.error or "Error"

    def display_content(self) -> str:
        """Content shown to the user in the tool_result entry."""
        if self.success:
            return self.output or "Success"
        return self.error or "Error occurred"


@dataclass
class ChatEntry:
    type: str  # "user" | "assistant" | "tool_result"
    content: str
    timestamp: float = field(default_factory=time.time)
    tool_calls: Optional[List[ToolCall]] = None
    tool_call: Optional[ToolCall] = None
    tool_result: Optional[ToolResult] = None


@dataclass
class StreamingChunk:
    type: str  # "content" | "tool_calls" | "tool_result" | "token_count" | "done"
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call: Optional[ToolCall] = None
    tool_result: Optional[ToolResult] = None
    token_count: Optional[int] = None


def user_message(content: str) -> Dict[str, Any]:
    return {"role": "user", "content": content}


def assistant_message(content: str, tool_calls: Optional[List[ToolCall]] = None) -> Dict[str, Any]:
    msg: Dict[str, Any] = {"role": "assistant", "content": content or ""}
    if tool_calls:
        msg["tool_calls"] = [tc.to_wire() for tc in tool_calls]
    return msg


def tool_message(call: ToolCall, result: ToolResult) -> Dict[str, Any]:
    return {
        "role": "tool",
        "tool_call_id": call.id,
        "name": call.name,
        "content": result.message_content(),
    }
