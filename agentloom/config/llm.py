import os
from enum import Enum

from pydantic import BaseModel, Field, TypeAdapter
from typing_extensions import Annotated, Literal


class ChatLLMType(str, Enum):
    AzureOpenAI = "azure_openai"
    OpenAI = "openai"
    DeepSeek = "deepseek"


class OpenAIChatConfig(BaseModel):
    type: Literal[ChatLLMType.OpenAI]
    endpoint: Annotated[str | None, Field(
        description="The OpenAI compatible endpoint URL",
        default=None,
    )]
    api_key: Annotated[str, Field(
        description="The API key for authentication",
        default_factory=lambda: os.environ["OPENAI_API_KEY"],
    )]
    timeout: Annotated[float, Field(
        description="Request timeout in seconds",
        default=180.0,
    )]
    model: Annotated[str, Field(
        description="The model identifier used for reasoning steps",
    )]
    max_tokens: Annotated[int | None, Field(
        description="The maximum number of tokens to generate per reasoning step",
        default=8192,
    )]
    temperature: Annotated[float | None, Field(
        description="Controls randomness in the model's output (0.0 to 2.0)",
        default=0.7,
    )]
    top_p: Annotated[float | None, Field(
        description="Controls diversity via nucleus sampling (0.0 to 1.0)",
        default=None,
    )]
    parallel_tool_calls: Annotated[bool, Field(
        description="Whether the model may request several tool calls in one step",
        default=True,
    )]
    stream_usage: Annotated[bool, Field(
        description="Request token usage in the final stream chunk",
        default=True,
    )]
    reasoning_effort: Annotated[Literal["low", "medium", "high"] | None, Field(
        description="Thinking budget of reasoning models, left to the provider when not set",
        default=None,
    )]

    def chat_params(self) -> dict:
        """Build kwargs for streaming chat completion API calls.

        Returns:
            Dictionary of parameters for chat completion
        """
        params: dict = {
            'max_tokens': self.max_tokens,
            'temperature': self.temperature,
        }
        if self.top_p is not None:
            params['top_p'] = self.top_p
        if self.reasoning_effort is not None:
            params['reasoning_effort'] = self.reasoning_effort
        if self.stream_usage:
            params['stream_options'] = {'include_usage': True}
        return params


class AzureOpenAIChatConfig(OpenAIChatConfig):
    type: Literal[ChatLLMType.AzureOpenAI]
    endpoint: Annotated[str, Field(
        description="The Azure OpenAI endpoint URL",
    )]
    deployment: Annotated[str, Field(
        description="The deployment name for the chat model",
    )]
    api_key: Annotated[str | None, Field(
        description="The API key for authentication",
        default_factory=lambda: os.environ.get("OPENAI_API_KEY"),
    )]
    api_version: Annotated[str, Field(
        description="The Azure OpenAI API version to use",
    )]


class DeepSeekChatConfig(OpenAIChatConfig):
    type: Literal[ChatLLMType.DeepSeek]
    api_key: Annotated[str, Field(
        description="The API key for authentication",
        default_factory=lambda: os.environ["DEEPSEEK_API_KEY"],
    )]
    endpoint: Annotated[str, Field(
        description="The DeepSeek endpoint URL",
        default="https://api.deepseek.com",
    )]


ChatConfig = Annotated[AzureOpenAIChatConfig | OpenAIChatConfig | DeepSeekChatConfig, Field(
    description="Configuration for the reasoning engine",
    discriminator="type",
)]


def validate_chat_config(data: dict) -> ChatConfig:
    """Validate and return a ChatConfig instance from raw data."""
    return TypeAdapter(ChatConfig).validate_python(data)
