import logging
from contextlib import asynccontextmanager
from contextvars import Token
from typing import Any, AsyncIterator, Optional

from agentloom.tracer.context import (
    get_current_span,
    reset_active_tracer,
    reset_current_span,
    set_active_tracer,
    set_current_span,
)
from agentloom.tracer.exporter import YAMLExporter
from agentloom.tracer.span import Span, SpanKind

logger = logging.getLogger(__name__)


class Tracer:
    """Hierarchical span-based tracer.

    Parameters
    ----------
    exporter:
        Exporter used to persist a task's trace tree when the task span ends.
        May be ``None`` (trace data is kept only in memory).
    """

    def __init__(self, exporter: YAMLExporter | None = None) -> None:
        self._exporter = exporter
        self._task_spans: list[Span] = []

    def activate(self) -> Token:
        """Push this tracer into the ``ContextVar`` so decorators find it."""
        return set_active_tracer(self)

    def deactivate(self, token: Token) -> None:
        reset_active_tracer(token)

    def start_span(
        self,
        kind: SpanKind,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> tuple[Span, Token]:
        """Create a new span and make it the *current* span.

        The new span is added as a child of the currently active span (if
        any).  Returns ``(span, context_token)``; the token must be passed to
        :meth:`end_span` to restore the previous span.
        """
        span = Span(kind=kind, name=name)
        if attributes:
            span.attributes.update(attributes)
        parent = get_current_span()
        if parent is not None:
            parent.add_child(span)
        if kind == SpanKind.TASK:
            self._task_spans.append(span)
        return span, set_current_span(span)

    def end_span(self, span: Span, token: Token, error: BaseException | None = None) -> None:
        span.finish(error=error)
        reset_current_span(token)

    @asynccontextmanager
    async def span(
        self,
        kind: SpanKind,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AsyncIterator[Span]:
        """Context-manager that wraps a block in a span.

        Usage::

            async with tracer.span(SpanKind.REASONING, "generate_step"):
                parts = await gateway.generate_step(...)
        """
        span, token = self.start_span(kind, name, attributes)
        error: BaseException | None = None
        try:
            yield span
        except BaseException as exc:
            error = exc
            raise
        finally:
            self.end_span(span, token, error=error)

    def export(self, span: Span | None = None) -> None:
        """Persist a task trace tree (the latest one by default) via the configured exporter."""
        if self._exporter is None:
            logger.debug("No exporter configured, skipping trace export.")
            return
        span = span or (self._task_spans[-1] if self._task_spans else None)
        if span is None:
            logger.warning("No task span recorded, nothing to export.")
            return
        self._exporter.export(span, filename=f"trace_{span.name}_{span.span_id}.yaml")

    @property
    def task_spans(self) -> list[Span]:
        return list(self._task_spans)
