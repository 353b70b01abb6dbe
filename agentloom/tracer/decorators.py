"""Tracer decorators for the span levels.

Each decorator creates a span of the appropriate :class:`SpanKind`, pushes
it as the *current* span for the duration of the decorated ``async`` call,
and pops it on exit.  If no tracer has been activated the decorated function
runs untraced.

Usage::

    @trace_task()
    async def execute(self, task_ctx): ...

    @trace_agent(name_getter=lambda self, agent_ctx: agent_ctx.agent.id)
    async def run(self, agent_ctx): ...
"""

from __future__ import annotations

import functools
from typing import Any, Callable, TypeVar

from agentloom.tracer.context import get_active_tracer
from agentloom.tracer.span import SpanKind

F = TypeVar("F", bound=Callable[..., Any])


def _resolve_name(name: str | None, fn: Callable, args: tuple, kwargs: dict,
                  name_getter: Callable[..., str | None] | None) -> str:
    if name_getter is not None:
        resolved = name_getter(*args, **kwargs)
        if resolved:
            return str(resolved)
    return name or fn.__name__


def _make_decorator(
    kind: SpanKind,
    name: str | None = None,
    *,
    auto_export: bool = False,
    name_getter: Callable[..., str | None] | None = None,
) -> Callable[[F], F]:
    """Build a decorator that wraps an *async* function in a span.

    *name_getter* receives the call's arguments and returns the span name,
    falling back to *name* or the function name.
    """

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer = get_active_tracer()
            if tracer is None:
                return await fn(*args, **kwargs)

            span, token = tracer.start_span(kind, _resolve_name(name, fn, args, kwargs, name_getter))
            error: BaseException | None = None
            try:
                return await fn(*args, **kwargs)
            except BaseException as exc:
                error = exc
                raise
            finally:
                tracer.end_span(span, token, error=error)
                if auto_export:
                    tracer.export(span)

        return wrapper  # type: ignore[return-value]

    return decorator


def trace_task(name: str | None = None, *, name_getter: Callable[..., str | None] | None = None) -> Callable[[F], F]:
    """Mark an async function as a **task**-level span, the root of a trace tree.

    When it ends the tracer exports the collected data.
    """
    return _make_decorator(SpanKind.TASK, name, auto_export=True, name_getter=name_getter)


def trace_stage(name: str | None = None, *, name_getter: Callable[..., str | None] | None = None) -> Callable[[F], F]:
    """Mark an async function as a **stage**-level span."""
    return _make_decorator(SpanKind.STAGE, name, name_getter=name_getter)


def trace_agent(name: str | None = None, *, name_getter: Callable[..., str | None] | None = None) -> Callable[[F], F]:
    """Mark an async function as an **agent**-level span."""
    return _make_decorator(SpanKind.AGENT, name, name_getter=name_getter)


def trace_reasoning(name: str | None = None) -> Callable[[F], F]:
    """Mark an async function as a **reasoning**-level span."""
    return _make_decorator(SpanKind.REASONING, name)


def trace_invocation(name: str | None = None, *, name_getter: Callable[..., str | None] | None = None) -> Callable[[F], F]:
    """Mark an async function as a capability **invocation**-level span."""
    return _make_decorator(SpanKind.INVOCATION, name, name_getter=name_getter)
