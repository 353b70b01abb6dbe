from agentloom.tracer.context import get_active_tracer, get_current_span, set_current_span
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

__all__ = [
    "Tracer",
    "YAMLExporter",
    "Span",
    "SpanKind",
    "get_active_tracer",
    "get_current_span",
    "set_current_span",
    "trace_task",
    "trace_stage",
    "trace_agent",
    "trace_reasoning",
    "trace_invocation",
]
