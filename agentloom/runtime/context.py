"""Task and agent execution contexts."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterator

from agentloom.cancellation import CancellationToken
from agentloom.config.runtime import RuntimeConfig
from agentloom.plan.types import Plan, PlanAgent
from agentloom.reasoning.messages import Message
from agentloom.runtime.callback import LifecycleCallback, LifecycleEvent, LoggingCallback
from agentloom.runtime.policy import PolicyHooks
from agentloom.runtime.records import AgentRun, TaskChain

logger = logging.getLogger(__name__)


class VariableStore:
    """Key/value store shared by the coroutines of a task.

    Single writes are last-write-wins.  Read-modify-write sequences go through
    :meth:`update`, which serializes them with a lock.
    """

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})
        self._lock = asyncio.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any):
        self._data[key] = value

    def delete(self, key: str):
        self._data.pop(key, None)

    async def update(self, key: str, func: Callable[[Any], Any | Awaitable[Any]]) -> Any:
        async with self._lock:
            value = func(self._data.get(key))
            if asyncio.iscoroutine(value):
                value = await value
            self._data[key] = value
            return value

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def snapshot(self) -> dict[str, Any]:
        return dict(self._data)

    def clear(self):
        self._data.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))


class TaskContext:
    """Runtime state of one task: its plan, shared variables, cancellation and pause state"""

    def __init__(
            self,
            task_id: str,
            config: RuntimeConfig | None = None,
            plan: Plan | None = None,
            callback: LifecycleCallback | None = None,
            hooks: PolicyHooks | None = None,
            variables: dict[str, Any] | None = None,
    ):
        self.task_id = task_id
        self.config = config or RuntimeConfig()
        self.plan = plan
        self.callback = callback or LoggingCallback()
        self.hooks = hooks or PolicyHooks()
        self.variables = VariableStore(variables)
        self.cancel_token = CancellationToken()
        self.chain = TaskChain(task_prompt=(plan.task_prompt or plan.name) if plan else "", plan=plan)
        self.interventions: list[str] = []
        self._triggers: dict[str, asyncio.Queue] = {}
        self._paused = False
        self._resumed = asyncio.Event()
        self._resumed.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    @property
    def paused(self) -> bool:
        return self._paused

    def cancel(self, reason: str | None = None):
        self.cancel_token.cancel(reason or "Task was cancelled")
        # Wake paused coroutines so they observe the cancellation
        self._resumed.set()

    def pause(self, abort_current_step: bool = False):
        self._paused = True
        self._resumed.clear()
        if abort_current_step:
            self.cancel_token.cancel_children("Pause")

    def resume(self):
        self._paused = False
        self._resumed.set()

    def reset(self):
        """Prepare a cancelled or paused task for another execution."""
        self.cancel_token.cancel("reset")
        self.cancel_token = CancellationToken()
        self.resume()

    async def check_cancelled(self, wait_if_paused: bool = True):
        """Raise ``TaskCancelledError`` if the task is cancelled; block while it is paused."""
        self.cancel_token.raise_if_cancelled()
        while self._paused and wait_if_paused:
            await self._resumed.wait()
            self.cancel_token.raise_if_cancelled()

    def call_token(self) -> CancellationToken:
        """A disposable token for one call, cancelled with the task or on an aborting pause."""
        return self.cancel_token.child()

    def add_intervention(self, text: str):
        self.interventions.append(text)

    def take_interventions(self) -> list[str]:
        interventions = [text for text in self.interventions if text]
        self.interventions = []
        return interventions

    def trigger(self, event: str, payload: str = ""):
        """Deliver an external event to the agents watching for it."""
        self._triggers.setdefault(event, asyncio.Queue()).put_nowait(payload)

    async def wait_for_trigger(self, event: str, timeout: float | None = None) -> str | None:
        """Wait for the next delivery of *event*; ``None`` on timeout."""
        queue = self._triggers.setdefault(event, asyncio.Queue())
        with self.call_token() as token:
            try:
                return await token.run(asyncio.wait_for(queue.get(), timeout))
            except asyncio.TimeoutError:
                return None

    async def emit(self, event: LifecycleEvent, agent_ctx: 'AgentContext | None' = None):
        await self.callback.on_event(event, agent_ctx)


class AgentContext:
    """State of one plan agent run: private variables, transcript and failure counter"""

    def __init__(self, task: TaskContext, agent: PlanAgent, agent_name: str | None = None):
        self.task = task
        self.agent = agent
        self.agent_name = agent_name or agent.name
        self.run = AgentRun(agent=agent)
        self.variables = VariableStore()
        self.messages: list[Message] = []
        self.consecutive_errors = 0

    @property
    def task_id(self) -> str:
        return self.task.task_id

    @property
    def config(self) -> RuntimeConfig:
        return self.task.config

    def ext_info(self) -> dict[str, Any]:
        return {
            "taskId": self.task.task_id,
            "nodeId": self.agent.id,
            "agent_name": self.agent_name,
        }

    def event_fields(self) -> dict[str, Any]:
        return {"task_id": self.task.task_id, "agent_name": self.agent_name, "node_id": self.agent.id}

    async def emit(self, event: LifecycleEvent):
        await self.task.emit(event, self)
