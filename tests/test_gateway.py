"""Tests for the reasoning gateway: streaming events, retries, compression and interventions."""

from typing import Any

import pytest

from agentloom.capability.types import CapabilityDescriptor
from agentloom.config.runtime import RuntimeConfig
from agentloom.exceptions import ReasoningError, ReasoningFinishError, TaskCancelledError
from agentloom.llm.types import (
    ChatLLM,
    ErrorStreamPart,
    FinishPart,
    ReasoningDeltaPart,
    ReasoningRequest,
    ReasoningStartPart,
    TextDeltaPart,
    TextEndPart,
    TextStartPart,
    ToolCallStreamPart,
    ToolInputDeltaPart,
    ToolInputStartPart,
)
from agentloom.plan.types import PlanAgent
from agentloom.reasoning.compression import HistoryCompressor
from agentloom.reasoning.gateway import INTERVENTION_PREFIX, ReasoningGateway
from agentloom.reasoning.messages import Message, TextPart, ToolCallPart
from agentloom.runtime.callback import (
    ErrorEvent,
    FinishEvent,
    LifecycleCallback,
    TextEvent,
    ThinkingEvent,
    ToolStreamingEvent,
    ToolUseEvent,
)
from agentloom.runtime.context import AgentContext, TaskContext


class ScriptedLLM(ChatLLM):
    """Streams one scripted step per call; an exception in the script is raised instead."""

    def __init__(self, *steps: list[Any] | Exception):
        self.steps = list(steps)
        self.requests: list[ReasoningRequest] = []

    async def chat(self, messages: list[dict], **params) -> str:
        return "complete"

    async def stream(self, request: ReasoningRequest):
        self.requests.append(request)
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        for part in step:
            yield part


class RecordingCallback(LifecycleCallback):
    def __init__(self):
        self.events = []

    async def on_event(self, event, agent_ctx=None):
        self.events.append(event)

    def of_type(self, event_type):
        return [event for event in self.events if isinstance(event, event_type)]


class CountingCompressor(HistoryCompressor):
    def __init__(self):
        self.calls = 0

    async def compress(self, agent_ctx, messages, capabilities):
        self.calls += 1


def text_step(*chunks: str, finish_reason: str = "stop") -> list[Any]:
    return [TextStartPart(), *(TextDeltaPart(delta=chunk) for chunk in chunks), TextEndPart(),
            FinishPart(finish_reason=finish_reason)]


def make_context(**config: Any) -> tuple[AgentContext, RecordingCallback]:
    callback = RecordingCallback()
    config.setdefault("retry_base_delay", 0)
    task = TaskContext("t1", config=RuntimeConfig(**config), callback=callback)
    return AgentContext(task, PlanAgent(id="t1-00", name="Browser", task="Compare prices")), callback


def transcript(length: int = 2) -> list[Message]:
    messages = [Message.system("You are a browser agent"), Message.user("Compare prices")]
    while len(messages) < length:
        messages.append(Message.assistant([TextPart(text=f"note {len(messages)}")]))
    return messages


TOOLS = [CapabilityDescriptor(name="web_search", description="Search the web")]


class TestStreaming:
    @pytest.mark.asyncio
    async def test_text_step(self):
        ctx, callback = make_context()
        gateway = ReasoningGateway(ScriptedLLM(text_step("Hel", "lo")))

        parts = await gateway.generate_step(ctx, transcript(), TOOLS)

        assert parts == [TextPart(text="Hello")]
        text_events = callback.of_type(TextEvent)
        assert [(event.text, event.done) for event in text_events] == [("Hel", False), ("Hello", False),
                                                                        ("Hello", True)]
        assert len({event.stream_id for event in text_events}) == 1
        assert callback.of_type(FinishEvent)[0].finish_reason == "stop"
        assert ctx.run.reasoning_calls == 1

    @pytest.mark.asyncio
    async def test_thinking_is_streamed_but_not_returned(self):
        ctx, callback = make_context()
        llm = ScriptedLLM([ReasoningStartPart(), ReasoningDeltaPart(delta="hmm"), *text_step("Done")])

        parts = await ReasoningGateway(llm).generate_step(ctx, transcript(), TOOLS)

        assert parts == [TextPart(text="Done")]
        thinking = callback.of_type(ThinkingEvent)
        assert thinking[-1].done is True and thinking[-1].text == "hmm"

    @pytest.mark.asyncio
    async def test_tool_call_step(self):
        ctx, callback = make_context()
        llm = ScriptedLLM([
            ToolInputStartPart(id="c1", tool_name="web_search"),
            ToolInputDeltaPart(id="c1", delta='{"query": '),
            ToolInputDeltaPart(id="c1", delta='"laptops"}'),
            ToolCallStreamPart(tool_call_id="c1", tool_name="web_search", input='{"query": "laptops"}'),
            FinishPart(finish_reason="tool-calls"),
        ])

        parts = await ReasoningGateway(llm).generate_step(ctx, transcript(), TOOLS)

        assert parts == [ToolCallPart(tool_call_id="c1", tool_name="web_search", input={"query": "laptops"})]
        streaming = callback.of_type(ToolStreamingEvent)
        assert streaming[-1].params_text == '{"query": "laptops"}'
        assert callback.of_type(ToolUseEvent)[0].params == {"query": "laptops"}
        assert llm.requests[0].tools == TOOLS

    @pytest.mark.asyncio
    async def test_text_and_tool_calls(self):
        ctx, _ = make_context()
        llm = ScriptedLLM([
            TextDeltaPart(delta="Searching"),
            ToolCallStreamPart(tool_call_id="c1", tool_name="web_search", input=""),
            FinishPart(finish_reason="tool-calls"),
        ])

        parts = await ReasoningGateway(llm).generate_step(ctx, transcript(), TOOLS)

        assert parts == [TextPart(text="Searching"), ToolCallPart(tool_call_id="c1", tool_name="web_search")]


class TestFailures:
    @pytest.mark.asyncio
    async def test_content_filter_is_fatal(self):
        ctx, _ = make_context()
        llm = ScriptedLLM(text_step("x", finish_reason="content-filter"), text_step("never"))

        with pytest.raises(ReasoningFinishError, match="LLM error: trigger content filtering violation"):
            await ReasoningGateway(llm).generate_step(ctx, transcript(), TOOLS)
        assert len(llm.requests) == 1

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self):
        ctx, _ = make_context()
        llm = ScriptedLLM(RuntimeError("rate limited"), text_step("ok"))

        parts = await ReasoningGateway(llm).generate_step(ctx, transcript(), TOOLS)

        assert parts == [TextPart(text="ok")]
        assert len(llm.requests) == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self):
        ctx, _ = make_context(max_retries=1)
        llm = ScriptedLLM(RuntimeError("down"), RuntimeError("still down"))

        with pytest.raises(RuntimeError, match="still down"):
            await ReasoningGateway(llm).generate_step(ctx, transcript(), TOOLS)
        assert len(llm.requests) == 2

    @pytest.mark.asyncio
    async def test_error_part_emits_event(self):
        ctx, callback = make_context(max_retries=0)
        llm = ScriptedLLM([ErrorStreamPart(error="upstream failed")])

        with pytest.raises(ReasoningError, match="upstream failed"):
            await ReasoningGateway(llm).generate_step(ctx, transcript(), TOOLS)
        assert callback.of_type(ErrorEvent)[0].error == "upstream failed"

    @pytest.mark.asyncio
    async def test_invalid_tool_arguments(self):
        ctx, _ = make_context(max_retries=0)
        llm = ScriptedLLM([ToolCallStreamPart(tool_call_id="c1", tool_name="web_search", input="{not json")])

        with pytest.raises(ReasoningError, match="Invalid arguments for web_search"):
            await ReasoningGateway(llm).generate_step(ctx, transcript(), TOOLS)

    @pytest.mark.asyncio
    async def test_cancelled_task(self):
        ctx, _ = make_context()
        ctx.task.cancel("stop")
        llm = ScriptedLLM(text_step("never"))

        with pytest.raises(TaskCancelledError):
            await ReasoningGateway(llm).generate_step(ctx, transcript(), TOOLS)
        assert llm.requests == []


class TestCompression:
    @pytest.mark.asyncio
    async def test_compresses_long_transcript_once(self):
        ctx, _ = make_context(compress_threshold=4)
        compressor = CountingCompressor()
        gateway = ReasoningGateway(ScriptedLLM(text_step("ok")), compressor=compressor)

        await gateway.generate_step(ctx, transcript(5), TOOLS)

        assert compressor.calls == 1

    @pytest.mark.asyncio
    async def test_short_transcript_is_not_compressed(self):
        ctx, _ = make_context()
        compressor = CountingCompressor()
        gateway = ReasoningGateway(ScriptedLLM(text_step("ok")), compressor=compressor)

        await gateway.generate_step(ctx, transcript(5), TOOLS)

        assert compressor.calls == 0

    @pytest.mark.asyncio
    async def test_length_limit_compresses_and_retries(self):
        ctx, callback = make_context()
        compressor = CountingCompressor()
        llm = ScriptedLLM(text_step("partial", finish_reason="length"), text_step("full"))
        gateway = ReasoningGateway(llm, compressor=compressor)

        parts = await gateway.generate_step(ctx, transcript(3), TOOLS)

        assert parts == [TextPart(text="full")]
        assert compressor.calls == 1
        assert [event.finish_reason for event in callback.of_type(FinishEvent)] == ["stop"]

    @pytest.mark.asyncio
    async def test_length_limit_without_compression(self):
        ctx, _ = make_context()
        llm = ScriptedLLM(text_step("partial", finish_reason="length"))

        parts = await ReasoningGateway(llm).generate_step(ctx, transcript(3), TOOLS, no_compress=True)

        assert parts == [TextPart(text="partial")]

    @pytest.mark.asyncio
    async def test_too_long_error_forces_compression(self):
        ctx, _ = make_context()
        compressor = CountingCompressor()
        llm = ScriptedLLM(RuntimeError("This model's context is too long"), text_step("ok"))

        await ReasoningGateway(llm, compressor=compressor).generate_step(ctx, transcript(), TOOLS)

        assert compressor.calls == 1


class TestInterventions:
    @pytest.mark.asyncio
    async def test_interventions_are_appended(self):
        ctx, _ = make_context()
        ctx.task.add_intervention("Only use official stores")
        messages = transcript()
        llm = ScriptedLLM(text_step("ok"))

        await ReasoningGateway(llm).generate_step(ctx, messages, TOOLS)

        assert messages[-1].role == "user"
        assert messages[-1].text() == f"{INTERVENTION_PREFIX}\n- Only use official stores"
        assert llm.requests[0].messages[-1] == messages[-1]
        assert ctx.task.interventions == []

    @pytest.mark.asyncio
    async def test_forced_tool_choice_skips_interventions(self):
        ctx, _ = make_context()
        ctx.task.add_intervention("Only use official stores")
        messages = transcript()

        await ReasoningGateway(ScriptedLLM(text_step("ok"))).generate_step(
            ctx, messages, TOOLS, tool_choice="web_search")

        assert len(messages) == 2
        assert ctx.task.interventions == ["Only use official stores"]
