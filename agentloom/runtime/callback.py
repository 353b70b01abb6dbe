"""Lifecycle events and the callback interface that receives them.

Events are fire-and-forget notifications about a running task.  Text and
thinking events are emitted repeatedly while a reasoning step streams: every
partial event of one stream carries the same ``stream_id`` and the complete
text so far, and the event with ``done=True`` supersedes the partial ones.

The callback also carries the blocking human interaction facet (``confirm``,
``request``, ``select``) used by the human interaction capability.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from typing_extensions import Annotated, Literal

from agentloom.capability.types import CapabilityResult
from agentloom.llm.types import Usage

if TYPE_CHECKING:
    from agentloom.runtime.context import AgentContext


class EventBase(BaseModel):
    task_id: str
    agent_name: str | None = None
    node_id: str | None = None


class PlanEvent(EventBase):
    type: Literal["plan"] = "plan"
    markup: str
    done: bool = True


class AgentStartEvent(EventBase):
    type: Literal["agent_start"] = "agent_start"
    task: str = ""


class TextEvent(EventBase):
    type: Literal["text"] = "text"
    stream_id: str
    done: bool
    text: str


class ThinkingEvent(EventBase):
    type: Literal["thinking"] = "thinking"
    stream_id: str
    done: bool
    text: str


class ToolStreamingEvent(EventBase):
    type: Literal["tool_streaming"] = "tool_streaming"
    tool_id: str
    tool_name: str
    params_text: str


class ToolUseEvent(EventBase):
    type: Literal["tool_use"] = "tool_use"
    tool_id: str
    tool_name: str
    params: dict[str, Any] = Field(default_factory=dict)


class ToolResultEvent(EventBase):
    type: Literal["tool_result"] = "tool_result"
    tool_id: str
    tool_name: str
    params: dict[str, Any] = Field(default_factory=dict)
    result: CapabilityResult


class AgentResultEvent(EventBase):
    type: Literal["agent_result"] = "agent_result"
    result: str | None = None
    error: str | None = None


class ErrorEvent(EventBase):
    type: Literal["error"] = "error"
    error: str


class FinishEvent(EventBase):
    type: Literal["finish"] = "finish"
    finish_reason: str
    usage: Usage = Field(default_factory=Usage)


LifecycleEvent = Annotated[
    PlanEvent | AgentStartEvent | TextEvent | ThinkingEvent | ToolStreamingEvent | ToolUseEvent
    | ToolResultEvent | AgentResultEvent | ErrorEvent | FinishEvent,
    Field(discriminator="type")
]


class LifecycleCallback(ABC):
    @abstractmethod
    async def on_event(self, event: LifecycleEvent, agent_ctx: 'AgentContext | None' = None):
        """Receive a lifecycle event."""
        ...

    async def confirm(self, agent_ctx: 'AgentContext', prompt: str) -> bool:
        """Request an explicit yes/no confirmation from the user."""
        return False

    async def request(self, agent_ctx: 'AgentContext', prompt: str) -> str:
        """Prompt the user for free-form input and return it."""
        return ""

    async def select(self, agent_ctx: 'AgentContext', prompt: str, options: list[str], multiple: bool = False) -> list[str]:
        """Let the user pick from *options*."""
        return []

    async def help(self, agent_ctx: 'AgentContext', help_type: str, prompt: str) -> bool:
        """Ask the user to resolve a blocker (login, verification code, ...). Returns whether it was solved."""
        return False


class LoggingCallback(LifecycleCallback):
    """``LifecycleCallback`` backed by Python's :mod:`logging` module.

    Partial text and thinking events are logged at DEBUG, everything else at
    INFO (errors at ERROR).  ``confirm`` always returns ``True`` and
    ``request`` returns an empty string.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)

    async def on_event(self, event: LifecycleEvent, agent_ctx: 'AgentContext | None' = None):
        prefix = f"[{event.task_id}]" + (f"[{event.agent_name}]" if event.agent_name else "")
        if isinstance(event, (TextEvent, ThinkingEvent)):
            if event.done:
                self._logger.info("%s %s: %s", prefix, event.type, event.text)
            else:
                self._logger.debug("%s %s (partial): %s", prefix, event.type, event.text)
        elif isinstance(event, ToolStreamingEvent):
            self._logger.debug("%s streaming %s: %s", prefix, event.tool_name, event.params_text)
        elif isinstance(event, ToolUseEvent):
            self._logger.info("%s calling %s with %s", prefix, event.tool_name, event.params)
        elif isinstance(event, ToolResultEvent):
            level = logging.WARNING if event.result.is_error else logging.INFO
            self._logger.log(level, "%s %s returned: %s", prefix, event.tool_name, event.result.text_content())
        elif isinstance(event, ErrorEvent):
            self._logger.error("%s %s", prefix, event.error)
        elif isinstance(event, AgentResultEvent) and event.error:
            self._logger.error("%s agent failed: %s", prefix, event.error)
        elif isinstance(event, FinishEvent):
            self._logger.debug("%s finish %s, usage %s", prefix, event.finish_reason, event.usage)
        else:
            self._logger.info("%s %s", prefix, event.type)

    async def confirm(self, agent_ctx: 'AgentContext', prompt: str) -> bool:
        self._logger.info("Auto-confirming: %s", prompt)
        return True

    async def request(self, agent_ctx: 'AgentContext', prompt: str) -> str:
        self._logger.info("Auto-request (no interactive input): %s", prompt)
        return ""
