"""Execution records kept for every task, agent run and capability invocation."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from agentloom.capability.types import CapabilityResult
from agentloom.plan.types import Plan, PlanAgent
from agentloom.tracer.context import get_current_span


class PolicyStage(str, Enum):
    PRE_INVOCATION = "pre_invocation"
    APPROVAL = "approval"
    INVOCATION = "invocation"
    ON_EXCEPTION = "on_exception"
    POST_INVOCATION = "post_invocation"


@dataclass(frozen=True)
class PolicyStageOutcome:
    stage: PolicyStage
    outcome: str
    detail: str | None = None


@dataclass
class CapabilityInvocationRecord:
    """One attempt at invoking a capability; a retry produces a new record"""
    call_id: str
    name: str
    arguments: dict[str, Any]
    attempt: int = 0
    outcomes: list[PolicyStageOutcome] = field(default_factory=list)
    result: CapabilityResult | None = None
    error: str | None = None
    side_messages: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None

    @property
    def completed(self) -> bool:
        return self.completed_at is not None

    def record(self, stage: PolicyStage, outcome: str, detail: str | None = None):
        if self.completed:
            raise RuntimeError(f"Invocation record {self.call_id} is already complete")
        self.outcomes.append(PolicyStageOutcome(stage=stage, outcome=outcome, detail=detail))
        span = get_current_span()
        if span is not None:
            span.add_event(stage.value, outcome=outcome, attempt=self.attempt, detail=detail)

    def complete(self, result: CapabilityResult | None = None, error: str | None = None):
        if self.completed:
            raise RuntimeError(f"Invocation record {self.call_id} is already complete")
        self.result = result
        self.error = error
        self.completed_at = datetime.now()

    def outcome_of(self, stage: PolicyStage) -> str | None:
        for outcome in reversed(self.outcomes):
            if outcome.stage == stage:
                return outcome.outcome
        return None


@dataclass
class AgentRun:
    """Record of one plan agent's execution"""
    agent: PlanAgent
    invocations: list[CapabilityInvocationRecord] = field(default_factory=list)
    reasoning_calls: int = 0
    result: str | None = None
    error: BaseException | None = None
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None

    def add(self, record: CapabilityInvocationRecord):
        self.invocations.append(record)

    def finish(self, result: str | None = None, error: BaseException | None = None):
        self.result = result
        self.error = error
        self.completed_at = datetime.now()


@dataclass
class TaskChain:
    """Record of a whole task: the plan and every agent run in completion order"""
    task_prompt: str
    plan: Plan | None = None
    agent_runs: list[AgentRun] = field(default_factory=list)

    def add(self, run: AgentRun):
        self.agent_runs.append(run)
