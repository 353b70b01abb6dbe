from abc import ABC, abstractmethod
from typing import AsyncIterator

from openai import AsyncAzureOpenAI, AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated, Literal

from agentloom.capability.types import CapabilityDescriptor
from agentloom.reasoning.messages import Message

# Type alias for OpenAI clients
AsyncOpenAIClient = AsyncAzureOpenAI | AsyncOpenAI

FinishReason = Literal["stop", "length", "tool-calls", "content-filter", "error", "other", "unknown"]


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class TextStartPart(BaseModel):
    type: Literal["text-start"] = "text-start"
    id: str = ""


class TextDeltaPart(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    id: str = ""
    delta: str


class TextEndPart(BaseModel):
    type: Literal["text-end"] = "text-end"
    id: str = ""


class ReasoningStartPart(BaseModel):
    type: Literal["reasoning-start"] = "reasoning-start"


class ReasoningDeltaPart(BaseModel):
    type: Literal["reasoning-delta"] = "reasoning-delta"
    delta: str


class ReasoningEndPart(BaseModel):
    type: Literal["reasoning-end"] = "reasoning-end"


class ToolInputStartPart(BaseModel):
    type: Literal["tool-input-start"] = "tool-input-start"
    id: str
    tool_name: str


class ToolInputDeltaPart(BaseModel):
    type: Literal["tool-input-delta"] = "tool-input-delta"
    id: str
    delta: str


class ToolCallStreamPart(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: Annotated[str, Field(description="JSON encoded arguments", default="")]


class ErrorStreamPart(BaseModel):
    type: Literal["error"] = "error"
    error: str


class FinishPart(BaseModel):
    type: Literal["finish"] = "finish"
    finish_reason: FinishReason
    usage: Usage = Field(default_factory=Usage)


StreamPart = Annotated[
    TextStartPart | TextDeltaPart | TextEndPart
    | ReasoningStartPart | ReasoningDeltaPart | ReasoningEndPart
    | ToolInputStartPart | ToolInputDeltaPart | ToolCallStreamPart
    | ErrorStreamPart | FinishPart,
    Field(discriminator="type")
]


class ReasoningRequest(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    messages: list[Message]
    tools: list[CapabilityDescriptor] = Field(default_factory=list)
    tool_choice: str | None = None


class ChatLLM(ABC):
    """Abstract base class for chat language models."""

    @abstractmethod
    async def chat(self, messages: list[dict], **params) -> str:
        """Send a non streaming chat completion request.

        Args:
            messages: List of message dictionaries with 'role' and 'content'
            **params: Additional parameters for the chat completion API

        Returns:
            Generated response text
        """
        pass

    @abstractmethod
    def stream(self, request: ReasoningRequest) -> AsyncIterator[StreamPart]:
        """Stream one reasoning step as typed parts, ending with a ``finish`` part."""
        pass
