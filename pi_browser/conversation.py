"""
Conversation state for one agent run.

The conversation is append-only. Assistant turns are LangChain AIMessages;
tool results are kept as ToolResult records and rendered to LangChain
messages each time the model is called.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from .tool_schemas import BROWSER_TOOLS, ToolSpec


@dataclass(frozen=True)
class ImageContent:
    """Base64 encoded image returned by a tool."""
    data: str
    mime_type: str = "image/png"

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass
class ToolOutput:
    """Normalized result of one browser action."""
    text: str
    image: Optional[ImageContent] = None


@dataclass
class ToolResult:
    """Outcome of a tool call, paired with the call by id."""
    tool_call_id: str
    tool_name: str
    text: str
    image: Optional[ImageContent] = None
    is_error: bool = False
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_output(cls, tool_call_id: str, tool_name: str, output: ToolOutput) -> "ToolResult":
        return cls(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            text=output.text,
            image=output.image,
        )

    @classmethod
    def from_error(cls, tool_call_id: str, tool_name: str, error: BaseException) -> "ToolResult":
        return cls(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            text=f"Error: {error}",
            is_error=True,
        )

    @property
    def content(self) -> list[dict[str, Any]]:
        """Content blocks: text first, then the image if any."""
        blocks: list[dict[str, Any]] = [{"type": "text", "text": self.text}]
        if self.image is not None:
            blocks.append({
                "type": "image",
                "data": self.image.data,
                "mime_type": self.image.mime_type,
            })
        return blocks

    def to_messages(self) -> list[BaseMessage]:
        """Render for the chat model.

        Tool messages carry text only (most providers reject images there),
        so a screenshot follows as a separate user message.
        """
        messages: list[BaseMessage] = [
            ToolMessage(
                content=self.text,
                tool_call_id=self.tool_call_id,
                name=self.tool_name,
                status="error" if self.is_error else "success",
            )
        ]
        if self.image is not None:
            messages.append(HumanMessage(content=[
                {"type": "text", "text": f"Image returned by {self.tool_name}:"},
                {"type": "image_url", "image_url": {"url": self.image.data_url()}},
            ]))
        return messages

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging (image bytes left out)."""
        return {
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "text": self.text,
            "has_image": self.image is not None,
            "is_error": self.is_error,
            "timestamp": self.timestamp,
        }


Entry = Union[HumanMessage, AIMessage, ToolResult]


def message_text(message: AIMessage) -> str:
    """User-visible text of an assistant message (string or block content)."""
    content = message.content
    if isinstance(content, str):
        return content.strip()
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts).strip()


class Conversation:
    """System prompt, tool schema and the ordered message history."""

    def __init__(self, system_prompt: str, tools: tuple[ToolSpec, ...] = BROWSER_TOOLS):
        self.system_prompt = system_prompt
        self.tools = tools
        self._entries: list[Entry] = []

    @property
    def entries(self) -> tuple[Entry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def add_user(self, text: str) -> HumanMessage:
        message = HumanMessage(content=text)
        self._entries.append(message)
        return message

    def add_assistant(self, message: AIMessage) -> AIMessage:
        self._entries.append(message)
        return message

    def add_tool_result(self, result: ToolResult) -> ToolResult:
        """Append a tool result; its id must belong to an earlier tool call.

        Raises:
            ValueError: If no preceding assistant message made that call
        """
        if result.tool_call_id not in self._issued_call_ids():
            raise ValueError(
                f"Tool result {result.tool_call_id!r} has no matching tool call"
            )
        self._entries.append(result)
        return result

    def _issued_call_ids(self) -> set[str]:
        ids = set()
        for entry in self._entries:
            if isinstance(entry, AIMessage):
                ids.update(call["id"] for call in entry.tool_calls)
                ids.update(call["id"] for call in entry.invalid_tool_calls if call.get("id"))
        return ids

    @property
    def user_messages(self) -> list[HumanMessage]:
        return [e for e in self._entries if isinstance(e, HumanMessage)]

    @property
    def assistant_messages(self) -> list[AIMessage]:
        return [e for e in self._entries if isinstance(e, AIMessage)]

    @property
    def tool_results(self) -> list[ToolResult]:
        return [e for e in self._entries if isinstance(e, ToolResult)]

    def to_messages(self) -> list[BaseMessage]:
        """Full message list for the chat model, system prompt first.

        Image messages of a turn are held back until all of that turn's tool
        messages are out, since tool messages must directly follow the
        assistant message that called them.
        """
        messages: list[BaseMessage] = [SystemMessage(content=self.system_prompt)]
        held: list[BaseMessage] = []
        for entry in self._entries:
            if isinstance(entry, ToolResult):
                tool_message, *images = entry.to_messages()
                messages.append(tool_message)
                held.extend(images)
                continue
            messages.extend(held)
            held.clear()
            messages.append(entry)
        messages.extend(held)
        return messages
