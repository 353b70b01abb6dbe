import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from agentloom.exceptions import TaskCancelledError


class SpanKind(str, Enum):
    """Hierarchy level of a span inside a trace tree.

    The expected nesting order (outermost to innermost) is::

        TASK  ->  STAGE  ->  AGENT  ->  REASONING | INVOCATION

    Agents of a parallel stage run concurrently; each one nests under the
    stage span because the current span lives in a ``ContextVar`` that is
    copied into every task created by ``asyncio.gather``.
    """

    TASK = "task"
    STAGE = "stage"
    AGENT = "agent"
    REASONING = "reasoning"
    INVOCATION = "invocation"


class SpanStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SpanEvent:
    """A point in time inside a span, e.g. a policy stage outcome."""
    name: str
    timestamp: datetime
    attributes: dict[str, Any]


@dataclass
class Span:
    """A single node in the trace tree."""

    kind: SpanKind
    name: str
    span_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    status: SpanStatus = SpanStatus.OK
    error: Optional[str] = None
    attributes: dict[str, Any] = field(default_factory=dict)
    events: list[SpanEvent] = field(default_factory=list)
    children: list['Span'] = field(default_factory=list)
    parent: Optional['Span'] = field(default=None, repr=False)

    @property
    def duration_ms(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def add_event(self, name: str, **attributes: Any) -> None:
        self.events.append(SpanEvent(name=name, timestamp=datetime.now(), attributes=attributes))

    def add_child(self, child: 'Span') -> None:
        child.parent = self
        self.children.append(child)

    def finish(self, error: BaseException | None = None) -> None:
        """Close the span; task cancellation is recorded apart from failures."""
        self.end_time = datetime.now()
        if error is None:
            return
        if isinstance(error, (TaskCancelledError, asyncio.CancelledError)):
            self.status = SpanStatus.CANCELLED
        else:
            self.status = SpanStatus.ERROR
        self.error = str(error) or type(error).__name__

    def to_dict(self) -> dict[str, Any]:
        """Recursively serialize this span and its children to plain data."""
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "name": self.name,
            "span_id": self.span_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
        }
        if self.duration_ms is not None:
            d["duration_ms"] = round(self.duration_ms, 2)
        if self.error is not None:
            d["error"] = self.error
        if self.attributes:
            d["attributes"] = self.attributes
        if self.events:
            d["events"] = [
                {"name": event.name, "at": event.timestamp.isoformat(), **event.attributes}
                for event in self.events
            ]
        if self.children:
            d["children"] = [c.to_dict() for c in self.children]
        return d
