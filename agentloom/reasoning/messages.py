"""Transcript model exchanged with the reasoning engine."""

import json
from typing import Any

from pydantic import BaseModel, Field
from typing_extensions import Annotated, Literal


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    type: Literal["image"] = "image"
    data: str
    mime_type: str = "image/png"


class ToolCallPart(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(BaseModel):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    output: str
    is_error: bool = False


MessagePart = Annotated[
    TextPart | ImagePart | ToolCallPart | ToolResultPart,
    Field(discriminator="type")
]


class Message(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: list[MessagePart] = Field(default_factory=list)

    @classmethod
    def system(cls, text: str) -> 'Message':
        return cls(role="system", content=[TextPart(text=text)])

    @classmethod
    def user(cls, text: str) -> 'Message':
        return cls(role="user", content=[TextPart(text=text)])

    @classmethod
    def assistant(cls, parts: list[TextPart | ToolCallPart]) -> 'Message':
        return cls(role="assistant", content=list(parts))

    @classmethod
    def tool(cls, results: list[ToolResultPart]) -> 'Message':
        return cls(role="tool", content=list(results))

    def text(self) -> str:
        return "\n".join(part.text for part in self.content if isinstance(part, TextPart))

    def tool_calls(self) -> list[ToolCallPart]:
        return [part for part in self.content if isinstance(part, ToolCallPart)]

    def flatten(self) -> str:
        """Plain text rendering used for token estimation and logging."""
        chunks = []
        for part in self.content:
            if isinstance(part, TextPart):
                chunks.append(part.text)
            elif isinstance(part, ToolCallPart):
                chunks.append(part.tool_name + json.dumps(part.input, ensure_ascii=False))
            elif isinstance(part, ToolResultPart):
                chunks.append(part.tool_name + part.output)
        return "".join(chunks) if self.role in ("assistant", "tool") else "\n".join(chunks)


def used_tool_names(messages: list[Message]) -> list[str]:
    """Names of every tool the model has called so far, in first use order."""
    names: list[str] = []
    for message in messages:
        if message.role != "assistant":
            continue
        for call in message.tool_calls():
            if call.tool_name not in names:
                names.append(call.tool_name)
    return names
