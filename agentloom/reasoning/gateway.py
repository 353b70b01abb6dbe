"""Reasoning gateway: one streamed reasoning step of an agent.

The gateway owns everything around the raw engine call: history
compression, user interventions, the per-call cancellation token, lifecycle
events for the streamed output and the retry policy.
"""

import asyncio
import json
import logging
import time
import uuid
from typing import TYPE_CHECKING

from agentloom.capability.types import CapabilityDescriptor
from agentloom.config.runtime import RuntimeConfig
from agentloom.exceptions import ReasoningError, ReasoningFinishError, TaskCancelledError
from agentloom.llm.logger import LLMLogger, ReasoningCall
from agentloom.llm.types import (
    ChatLLM,
    ErrorStreamPart,
    FinishPart,
    ReasoningDeltaPart,
    ReasoningEndPart,
    ReasoningRequest,
    ReasoningStartPart,
    TextDeltaPart,
    TextEndPart,
    TextStartPart,
    ToolCallStreamPart,
    ToolInputDeltaPart,
    ToolInputStartPart,
    Usage,
)
from agentloom.reasoning.compression import HistoryCompressor, TruncatingCompressor
from agentloom.reasoning.messages import Message, TextPart, ToolCallPart
from agentloom.reasoning.tokens import estimate_prompt_tokens
from agentloom.runtime.callback import (
    ErrorEvent,
    FinishEvent,
    TextEvent,
    ThinkingEvent,
    ToolStreamingEvent,
    ToolUseEvent,
)
from agentloom.tracer import trace_reasoning

if TYPE_CHECKING:
    from agentloom.runtime.context import AgentContext

logger = logging.getLogger(__name__)

INTERVENTION_PREFIX = "The user is intervening in the current task, please replan and execute " \
                      "according to the following instructions:"


class _StepState:
    """Accumulated output of one streamed step"""

    def __init__(self):
        self.text = ""
        self.text_stream_id: str | None = None
        self.thinking = ""
        self.thinking_stream_id: str | None = None
        self.pending_tools: dict[str, tuple[str, str]] = {}
        self.tool_calls: list[ToolCallPart] = []
        self.finish_reason: str | None = None
        self.usage: Usage | None = None

    def parts(self) -> list[TextPart | ToolCallPart]:
        if self.text:
            return [TextPart(text=self.text), *self.tool_calls]
        return list(self.tool_calls)


class ReasoningGateway:
    def __init__(
            self,
            chat_llm: ChatLLM,
            compressor: HistoryCompressor | None = None,
            llm_logger: LLMLogger | None = None,
    ):
        self.chat_llm = chat_llm
        self.compressor = compressor or TruncatingCompressor()
        self.llm_logger = llm_logger

    @staticmethod
    def should_compress(config: RuntimeConfig, messages: list[Message], capabilities: list[CapabilityDescriptor]) -> bool:
        if len(messages) >= config.compress_threshold:
            return True
        return len(messages) >= 10 and \
            estimate_prompt_tokens(messages, capabilities) >= config.compress_tokens_threshold

    @trace_reasoning()
    async def generate_step(
            self,
            agent_ctx: 'AgentContext',
            messages: list[Message],
            capabilities: list[CapabilityDescriptor],
            tool_choice: str | None = None,
            no_compress: bool = False,
    ) -> list[TextPart | ToolCallPart]:
        """Run one reasoning step and return its text and tool calls.

        ``messages`` is modified in place by compression and interventions.
        """
        task = agent_ctx.task
        config = agent_ctx.config
        attempt = 0
        force_compress = False
        while True:
            await task.check_cancelled()
            if not no_compress and (force_compress or self.should_compress(config, messages, capabilities)):
                await self.compressor.compress(agent_ctx, messages, capabilities)
            force_compress = False
            if tool_choice is None:
                self._append_interventions(agent_ctx, messages)

            request = ReasoningRequest(messages=list(messages), tools=capabilities, tool_choice=tool_choice)
            extendable = len(messages) >= 3 and not no_compress and attempt < config.max_retries
            started = time.monotonic()
            state = _StepState()
            try:
                with task.call_token() as token:
                    await token.run(self._consume(agent_ctx, request, state, extendable))
            except ReasoningFinishError as e:
                self._log_call(agent_ctx, request, state, started, error=str(e))
                raise
            except TaskCancelledError:
                # Raises when the task is cancelled, waits while it is paused
                await task.check_cancelled()
                logger.info("Reasoning step of %s aborted by pause, retrying", agent_ctx.agent.id)
                continue
            except Exception as e:
                self._log_call(agent_ctx, request, state, started, error=str(e))
                await task.check_cancelled()
                if attempt >= config.max_retries:
                    raise
                delay = config.retry_base_delay * (attempt + 1) ** 2
                logger.warning("Reasoning step of %s failed (%s), retrying in %.1fs",
                               agent_ctx.agent.id, e, delay)
                await asyncio.sleep(delay)
                force_compress = "is too long" in str(e)
                attempt += 1
                continue

            self._log_call(agent_ctx, request, state, started)
            agent_ctx.run.reasoning_calls += 1
            if state.finish_reason == "length" and extendable:
                logger.warning("Reasoning output of %s hit the length limit, compressing and retrying",
                               agent_ctx.agent.id)
                force_compress = True
                attempt += 1
                continue
            return state.parts()

    def _append_interventions(self, agent_ctx: 'AgentContext', messages: list[Message]):
        interventions = agent_ctx.task.take_interventions()
        if interventions:
            lines = "\n".join(f"- {text}" for text in interventions)
            messages.append(Message.user(f"{INTERVENTION_PREFIX}\n{lines}"))

    async def _consume(self, agent_ctx: 'AgentContext', request: ReasoningRequest, state: _StepState,
                       extendable: bool):
        fields = agent_ctx.event_fields()

        async def close_text():
            if state.text_stream_id is not None:
                await agent_ctx.emit(TextEvent(**fields, stream_id=state.text_stream_id, done=True, text=state.text))
                state.text_stream_id = None

        async def close_thinking():
            if state.thinking_stream_id is not None:
                await agent_ctx.emit(ThinkingEvent(**fields, stream_id=state.thinking_stream_id, done=True,
                                                   text=state.thinking))
                state.thinking_stream_id = None

        async for part in self.chat_llm.stream(request):
            if isinstance(part, TextStartPart):
                state.text_stream_id = uuid.uuid4().hex
            elif isinstance(part, TextDeltaPart):
                if state.text_stream_id is None:
                    state.text_stream_id = uuid.uuid4().hex
                state.text += part.delta
                await agent_ctx.emit(TextEvent(**fields, stream_id=state.text_stream_id, done=False, text=state.text))
            elif isinstance(part, TextEndPart):
                await close_text()
            elif isinstance(part, ReasoningStartPart):
                state.thinking_stream_id = uuid.uuid4().hex
            elif isinstance(part, ReasoningDeltaPart):
                if state.thinking_stream_id is None:
                    state.thinking_stream_id = uuid.uuid4().hex
                state.thinking += part.delta
                await agent_ctx.emit(ThinkingEvent(**fields, stream_id=state.thinking_stream_id, done=False,
                                                   text=state.thinking))
            elif isinstance(part, ReasoningEndPart):
                await close_thinking()
            elif isinstance(part, ToolInputStartPart):
                await close_text()
                state.pending_tools[part.id] = (part.tool_name, "")
            elif isinstance(part, ToolInputDeltaPart):
                await close_text()
                name, params_text = state.pending_tools.get(part.id, ("", ""))
                params_text += part.delta
                state.pending_tools[part.id] = (name, params_text)
                await agent_ctx.emit(ToolStreamingEvent(**fields, tool_id=part.id, tool_name=name,
                                                        params_text=params_text))
            elif isinstance(part, ToolCallStreamPart):
                await close_text()
                try:
                    arguments = json.loads(part.input) if part.input.strip() else {}
                except json.JSONDecodeError as e:
                    raise ReasoningError(f"Invalid arguments for {part.tool_name}: {e}") from e
                call = ToolCallPart(tool_call_id=part.tool_call_id, tool_name=part.tool_name,
                                    input=arguments if isinstance(arguments, dict) else {})
                state.pending_tools.pop(part.tool_call_id, None)
                state.tool_calls.append(call)
                await agent_ctx.emit(ToolUseEvent(**fields, tool_id=call.tool_call_id, tool_name=call.tool_name,
                                                  params=call.input))
            elif isinstance(part, ErrorStreamPart):
                await agent_ctx.emit(ErrorEvent(**fields, error=part.error))
                raise ReasoningError(part.error)
            elif isinstance(part, FinishPart):
                await close_text()
                await close_thinking()
                state.finish_reason = part.finish_reason
                state.usage = part.usage
                if part.finish_reason == "content-filter":
                    raise ReasoningFinishError(part.finish_reason, "trigger content filtering violation")
                if part.finish_reason == "other":
                    raise ReasoningFinishError(part.finish_reason, "terminated due to other reasons")
                if part.finish_reason == "length" and extendable:
                    continue
                await agent_ctx.emit(FinishEvent(**fields, finish_reason=part.finish_reason, usage=part.usage))
        await close_text()
        await close_thinking()

    def _log_call(self, agent_ctx: 'AgentContext', request: ReasoningRequest, state: _StepState, started: float,
                  error: str | None = None):
        if self.llm_logger is None:
            return
        self.llm_logger.log_call(agent_ctx.task_id, agent_ctx.agent.id, ReasoningCall(
            messages=[{"role": message.role, "content": message.flatten()} for message in request.messages],
            tools=[tool.name for tool in request.tools],
            response_text=state.text,
            tool_calls=[{"name": call.tool_name, "arguments": call.input} for call in state.tool_calls],
            finish_reason=state.finish_reason,
            usage=state.usage.model_dump() if state.usage else None,
            error=error,
            duration_ms=int((time.monotonic() - started) * 1000),
        ))
