"""Tests for the agentloom.tracer framework."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import yaml

from agentloom.exceptions import TaskCancelledError
from agentloom.runtime.records import CapabilityInvocationRecord, PolicyStage
from agentloom.tracer.context import (
    _active_tracer,
    _current_span,
    get_active_tracer,
    get_current_span,
    set_active_tracer,
    set_current_span,
)
from agentloom.tracer.decorators import (
    trace_agent,
    trace_invocation,
    trace_reasoning,
    trace_stage,
    trace_task,
)
from agentloom.tracer.exporter import YAMLExporter
from agentloom.tracer.span import Span, SpanKind
from agentloom.tracer.tracer import Tracer


# ---------------------------------------------------------------------------
# Span
# ---------------------------------------------------------------------------


class TestSpan:
    def test_create_span(self):
        span = Span(kind=SpanKind.TASK, name="test")
        assert span.kind == SpanKind.TASK
        assert span.name == "test"
        assert span.status == "ok"
        assert span.children == []
        assert span.parent is None
        assert len(span.span_id) == 12

    def test_add_child(self):
        parent = Span(kind=SpanKind.TASK, name="task")
        child = Span(kind=SpanKind.STAGE, name="stage")
        parent.add_child(child)
        assert child.parent is parent
        assert child in parent.children

    def test_finish_error(self):
        span = Span(kind=SpanKind.INVOCATION, name="test")
        span.finish(error=ValueError("boom"))
        assert span.status == "error"
        assert span.error == "boom"
        assert span.duration_ms is not None

    def test_to_dict(self):
        parent = Span(kind=SpanKind.AGENT, name="agent")
        child = Span(kind=SpanKind.REASONING, name="generate_step")
        child.set_attribute("model", "gpt-4")
        parent.add_child(child)
        child.finish()
        parent.finish()

        d = parent.to_dict()
        assert d["kind"] == "agent"
        assert d["children"][0]["kind"] == "reasoning"
        assert d["children"][0]["attributes"] == {"model": "gpt-4"}

    def test_cancellation_is_not_an_error(self):
        span = Span(kind=SpanKind.AGENT, name="agent")
        span.finish(error=TaskCancelledError("Task was cancelled"))
        assert span.status == "cancelled"
        assert span.error == "Task was cancelled"

    def test_events_are_serialized(self):
        span = Span(kind=SpanKind.INVOCATION, name="web_search")
        span.add_event("pre_invocation", outcome="allow")
        span.finish()

        events = span.to_dict()["events"]
        assert events[0]["name"] == "pre_invocation"
        assert events[0]["outcome"] == "allow"


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class TestContext:
    def test_default_none(self):
        assert get_current_span() is None
        assert get_active_tracer() is None

    def test_set_and_reset_span(self):
        span = Span(kind=SpanKind.REASONING, name="test")
        token = set_current_span(span)
        assert get_current_span() is span
        _current_span.reset(token)
        assert get_current_span() is None

    def test_set_and_reset_tracer(self):
        tracer = Tracer()
        token = set_active_tracer(tracer)
        assert get_active_tracer() is tracer
        _active_tracer.reset(token)
        assert get_active_tracer() is None


# ---------------------------------------------------------------------------
# Tracer
# ---------------------------------------------------------------------------


class TestTracer:
    def test_start_end_span(self):
        tracer = Tracer()
        span, token = tracer.start_span(SpanKind.TASK, "root")
        assert get_current_span() is span
        assert tracer.task_spans == [span]

        child_span, child_token = tracer.start_span(SpanKind.STAGE, "stage")
        assert child_span.parent is span

        tracer.end_span(child_span, child_token)
        assert get_current_span() is span
        tracer.end_span(span, token)
        assert get_current_span() is None

    @pytest.mark.asyncio
    async def test_span_context_manager_error(self):
        tracer = Tracer()
        parent, parent_token = tracer.start_span(SpanKind.AGENT, "agent")
        with pytest.raises(ValueError, match="boom"):
            async with tracer.span(SpanKind.REASONING, "step") as span:
                assert span.parent is parent
                raise ValueError("boom")
        assert span.status == "error"
        assert get_current_span() is parent
        tracer.end_span(parent, parent_token)

    def test_export_without_exporter_is_noop(self):
        tracer = Tracer()
        span, token = tracer.start_span(SpanKind.TASK, "root")
        tracer.end_span(span, token)
        tracer.export()


# ---------------------------------------------------------------------------
# YAMLExporter
# ---------------------------------------------------------------------------


class TestYAMLExporter:
    def test_export_creates_file(self, tmp_path: Path):
        exporter = YAMLExporter(output_dir=tmp_path)
        root = Span(kind=SpanKind.TASK, name="task")
        child = Span(kind=SpanKind.STAGE, name="Normal(p-00)")
        child.finish()
        root.add_child(child)
        root.finish()

        path = exporter.export(root, filename="test_trace.yaml")
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)

        assert data["kind"] == "task"
        assert data["children"][0]["name"] == "Normal(p-00)"

    def test_export_auto_filename(self, tmp_path: Path):
        exporter = YAMLExporter(output_dir=tmp_path)
        root = Span(kind=SpanKind.TASK, name="t")
        root.finish()
        path = exporter.export(root)
        assert path.name.startswith("trace_")
        assert path.suffix == ".yaml"


# ---------------------------------------------------------------------------
# Decorators
# ---------------------------------------------------------------------------


class TestDecorators:
    @pytest.mark.asyncio
    async def test_no_tracer_passthrough(self):
        assert get_active_tracer() is None

        @trace_reasoning()
        async def my_func():
            return 42

        assert await my_func() == 42

    @pytest.mark.asyncio
    async def test_invocation_name_getter(self):
        tracer = Tracer()
        token = tracer.activate()
        parent, parent_token = tracer.start_span(SpanKind.AGENT, "agent")

        @trace_invocation(name_getter=lambda self, call: call)
        async def invoke(self, call):
            assert get_current_span().name == "web_search"

        await invoke(None, "web_search")
        assert parent.children[0].kind == SpanKind.INVOCATION
        assert parent.children[0].name == "web_search"

        tracer.end_span(parent, parent_token)
        tracer.deactivate(token)

    @pytest.mark.asyncio
    async def test_error_marks_span(self):
        tracer = Tracer()
        token = tracer.activate()
        parent, parent_token = tracer.start_span(SpanKind.AGENT, "parent")

        @trace_reasoning("failing_call")
        async def failing():
            raise ValueError("fail!")

        with pytest.raises(ValueError, match="fail!"):
            await failing()

        assert parent.children[0].status == "error"
        assert get_current_span() is parent
        tracer.end_span(parent, parent_token)
        tracer.deactivate(token)

    @pytest.mark.asyncio
    async def test_parallel_agents_nest_under_stage(self):
        tracer = Tracer()
        token = tracer.activate()

        @trace_agent(name_getter=lambda name: name)
        async def agent(name):
            await asyncio.sleep(0)

        @trace_stage("Parallel(p-01, p-02)")
        async def stage():
            await asyncio.gather(agent("a"), agent("b"))

        @trace_task("task")
        async def task():
            await stage()

        await task()
        root = tracer.task_spans[-1]
        stage_span = root.children[0]
        assert stage_span.kind == SpanKind.STAGE
        assert sorted(child.name for child in stage_span.children) == ["a", "b"]
        tracer.deactivate(token)

    @pytest.mark.asyncio
    async def test_task_auto_export(self, tmp_path: Path):
        tracer = Tracer(exporter=YAMLExporter(output_dir=tmp_path))
        token = tracer.activate()

        @trace_reasoning("step")
        async def reasoning():
            return "content"

        @trace_agent("agent")
        async def agent():
            return await reasoning()

        @trace_task("my_task")
        async def task():
            return await agent()

        assert await task() == "content"

        files = list(tmp_path.glob("trace_*.yaml"))
        assert len(files) == 1
        with open(files[0], "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        assert data["kind"] == "task"
        assert data["children"][0]["kind"] == "agent"
        assert data["children"][0]["children"][0]["name"] == "step"
        tracer.deactivate(token)

    @pytest.mark.asyncio
    async def test_policy_outcomes_become_invocation_events(self):
        tracer = Tracer()
        token = tracer.activate()
        parent, parent_token = tracer.start_span(SpanKind.AGENT, "agent")

        @trace_invocation(name_getter=lambda record: record.name)
        async def invoke(record):
            record.record(PolicyStage.PRE_INVOCATION, "allow")
            record.record(PolicyStage.INVOCATION, "success")

        await invoke(CapabilityInvocationRecord(call_id="c1", name="web_search", arguments={}))

        events = parent.children[0].events
        assert [(event.name, event.attributes["outcome"]) for event in events] == [
            ("pre_invocation", "allow"), ("invocation", "success")]
        tracer.end_span(parent, parent_token)
        tracer.deactivate(token)
