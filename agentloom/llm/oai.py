import json
import logging
from typing import Any, AsyncIterator

from openai import AsyncAzureOpenAI, AsyncOpenAI

from agentloom.config.llm import AzureOpenAIChatConfig, DeepSeekChatConfig, OpenAIChatConfig
from agentloom.llm.types import (
    AsyncOpenAIClient,
    ChatLLM,
    FinishPart,
    ReasoningDeltaPart,
    ReasoningEndPart,
    ReasoningRequest,
    ReasoningStartPart,
    StreamPart,
    TextDeltaPart,
    TextEndPart,
    TextStartPart,
    ToolCallStreamPart,
    ToolInputDeltaPart,
    ToolInputStartPart,
    Usage,
)
from agentloom.reasoning.messages import ImagePart, Message, TextPart, ToolCallPart, ToolResultPart

logger = logging.getLogger(__name__)

_FINISH_REASONS = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "content_filter": "content-filter",
}


def to_openai_messages(messages: list[Message]) -> list[dict[str, Any]]:
    result: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            result.append({"role": "system", "content": message.text()})
        elif message.role == "user":
            if any(isinstance(part, ImagePart) for part in message.content):
                content: list[dict[str, Any]] = []
                for part in message.content:
                    if isinstance(part, TextPart):
                        content.append({"type": "text", "text": part.text})
                    elif isinstance(part, ImagePart):
                        content.append({
                            "type": "image_url",
                            "image_url": {"url": f"data:{part.mime_type};base64,{part.data}"},
                        })
                result.append({"role": "user", "content": content})
            else:
                result.append({"role": "user", "content": message.text()})
        elif message.role == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": message.text() or None}
            calls = [part for part in message.content if isinstance(part, ToolCallPart)]
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": call.tool_call_id,
                        "type": "function",
                        "function": {"name": call.tool_name, "arguments": json.dumps(call.input, ensure_ascii=False)},
                    }
                    for call in calls
                ]
            result.append(entry)
        elif message.role == "tool":
            for part in message.content:
                if isinstance(part, ToolResultPart):
                    result.append({"role": "tool", "tool_call_id": part.tool_call_id, "content": part.output})
    return result


def to_openai_tool_choice(tool_choice: str | None) -> Any:
    if tool_choice in ("auto", "required", "none"):
        return tool_choice
    return {"type": "function", "function": {"name": tool_choice}}


class OpenAIChatLLM(ChatLLM):
    def __init__(
            self,
            client: AsyncOpenAIClient,
            model: str,
            *,
            chat_params: dict | None = None,
            parallel_tool_calls: bool = True,
    ):
        self.client = client
        self.model = model
        self.chat_params: dict = chat_params or {}
        self.parallel_tool_calls = parallel_tool_calls

    @classmethod
    def from_config(cls, config: AzureOpenAIChatConfig | OpenAIChatConfig | DeepSeekChatConfig) -> 'OpenAIChatLLM':
        if isinstance(config, AzureOpenAIChatConfig):
            client = AsyncAzureOpenAI(
                azure_endpoint=config.endpoint,
                azure_deployment=config.deployment,
                api_version=config.api_version,
                api_key=config.api_key,
                timeout=config.timeout,
            )
        else:
            client = AsyncOpenAI(
                base_url=config.endpoint,
                api_key=config.api_key,
                timeout=config.timeout,
            )
        return cls(client, config.model, chat_params=config.chat_params(),
                   parallel_tool_calls=config.parallel_tool_calls)

    async def chat(self, messages: list[dict], **params) -> str:
        params.pop('stream_options', None)
        chat_params = {k: v for k, v in self.chat_params.items() if k != 'stream_options'}
        resp = await self.client.chat.completions.create(
            messages=messages,
            model=self.model,
            **chat_params,
            **params,
        )
        return resp.choices[0].message.content or ""

    async def stream(self, request: ReasoningRequest) -> AsyncIterator[StreamPart]:
        params: dict[str, Any] = dict(self.chat_params)
        if request.tools:
            params['tools'] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema,
                    },
                }
                for tool in request.tools
            ]
            params['parallel_tool_calls'] = self.parallel_tool_calls
            if request.tool_choice:
                params['tool_choice'] = to_openai_tool_choice(request.tool_choice)

        response = await self.client.chat.completions.create(
            messages=to_openai_messages(request.messages),
            model=self.model,
            stream=True,
            **params,
        )

        text_open = False
        reasoning_open = False
        tool_calls: dict[int, dict[str, str]] = {}
        finish_reason: str | None = None
        usage = Usage()
        async for chunk in response:
            if chunk.usage is not None:
                usage = Usage(
                    input_tokens=chunk.usage.prompt_tokens or 0,
                    output_tokens=chunk.usage.completion_tokens or 0,
                    total_tokens=chunk.usage.total_tokens or 0,
                )
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            reasoning = getattr(delta, "reasoning_content", None)
            if reasoning:
                if not reasoning_open:
                    reasoning_open = True
                    yield ReasoningStartPart()
                yield ReasoningDeltaPart(delta=reasoning)
            if delta.content:
                if reasoning_open:
                    reasoning_open = False
                    yield ReasoningEndPart()
                if not text_open:
                    text_open = True
                    yield TextStartPart()
                yield TextDeltaPart(delta=delta.content)
            for call in delta.tool_calls or []:
                if call.index not in tool_calls:
                    if text_open:
                        text_open = False
                        yield TextEndPart()
                    tool_calls[call.index] = {
                        "id": call.id or f"call_{call.index}",
                        "name": call.function.name if call.function and call.function.name else "",
                        "arguments": "",
                    }
                    yield ToolInputStartPart(id=tool_calls[call.index]["id"], tool_name=tool_calls[call.index]["name"])
                if call.function and call.function.arguments:
                    tool_calls[call.index]["arguments"] += call.function.arguments
                    yield ToolInputDeltaPart(id=tool_calls[call.index]["id"], delta=call.function.arguments)
            if choice.finish_reason:
                finish_reason = choice.finish_reason

        if reasoning_open:
            yield ReasoningEndPart()
        if text_open:
            yield TextEndPart()
        for index in sorted(tool_calls):
            call = tool_calls[index]
            yield ToolCallStreamPart(tool_call_id=call["id"], tool_name=call["name"], input=call["arguments"])
        if usage.total_tokens == 0:
            usage.total_tokens = usage.input_tokens + usage.output_tokens
        yield FinishPart(finish_reason=_FINISH_REASONS.get(finish_reason or "", "other" if finish_reason else "unknown"),
                         usage=usage)
