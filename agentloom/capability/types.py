"""Type definitions for capabilities (tools) and their results."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from typing_extensions import Annotated, Literal


class CapabilityDescriptor(BaseModel):
    """Name, description and JSON schema of a capability"""
    model_config = ConfigDict(populate_by_name=True)

    name: Annotated[str, Field(description="Unique capability name")]
    description: Annotated[str, Field(description="What the capability does", default="")]
    input_schema: Annotated[dict[str, Any], Field(
        description="JSON schema of the arguments",
        alias="inputSchema",
        default_factory=lambda: {"type": "object", "properties": {}},
    )]


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["image"] = "image"
    data: Annotated[str, Field(description="Base64 encoded image data")]
    mime_type: Annotated[str, Field(alias="mimeType", default="image/png")]


CapabilityContent = Annotated[
    TextContent | ImageContent,
    Field(discriminator="type")
]


class CapabilityResult(BaseModel):
    """Result of a capability invocation"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    content: Annotated[list[CapabilityContent], Field(default_factory=list)]
    is_error: Annotated[bool, Field(alias="isError", default=False)]

    @classmethod
    def text(cls, text: str, is_error: bool = False) -> 'CapabilityResult':
        return cls(content=[TextContent(text=text)], is_error=is_error)

    @classmethod
    def error(cls, text: str) -> 'CapabilityResult':
        return cls.text(text, is_error=True)

    def text_content(self) -> str:
        return "\n".join(part.text for part in self.content if isinstance(part, TextContent))


def validate_capability_result(data: dict) -> CapabilityResult:
    """Validate and return a CapabilityResult from a protocol response."""
    return TypeAdapter(CapabilityResult).validate_python(data)


__all__ = [
    "CapabilityDescriptor",
    "TextContent",
    "ImageContent",
    "CapabilityContent",
    "CapabilityResult",
    "validate_capability_result",
]
