"""Policy hooks and their decision types.

Every hook is optional.  A missing hook means "no policy" which is not the
same as a hook returning its default: for example an escalation without an
``on_approval_required`` hook tells the model to ask a human instead of
waiting for an approval.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from pydantic import BaseModel, Field
from typing_extensions import Annotated

from agentloom.capability.types import CapabilityResult

if TYPE_CHECKING:
    from agentloom.runtime.context import AgentContext, TaskContext
    from agentloom.runtime.executor import TaskResult


class PreInvocationDecision(BaseModel):
    allow: Annotated[bool, Field(description="Whether the invocation may proceed", default=True)]
    reason: Annotated[str | None, Field(description="Why the invocation was not allowed", default=None)]
    modified_arguments: Annotated[dict[str, Any] | None, Field(
        description="Replacement arguments for an allowed invocation",
        default=None,
    )]
    escalate: Annotated[bool, Field(description="Ask for human approval instead of blocking", default=False)]
    skip: Annotated[bool, Field(description="Skip the invocation without reporting an error", default=False)]


class ApprovalRequest(BaseModel):
    type: str = "capability_invocation"
    description: str
    context: dict[str, Any] = Field(default_factory=dict)


class ApprovalResult(BaseModel):
    approved: bool
    feedback: str | None = None
    approver: str | None = None


class AgentHookResult(BaseModel):
    block: bool = False
    reason: str | None = None
    retry: bool = False


class ExceptionAction(str, Enum):
    RETRY = "retry"
    SKIP = "skip"
    ABORT = "abort"
    ESCALATE = "escalate"
    CONTINUE = "continue"


@dataclass
class PolicyHooks:
    before_agent_start: Callable[['AgentContext'], Awaitable[AgentHookResult | None]] | None = None
    after_agent_complete: Callable[['AgentContext', str], Awaitable[AgentHookResult | None]] | None = None
    on_agent_error: Callable[['AgentContext', BaseException], Awaitable[ExceptionAction]] | None = None

    before_invocation: Callable[['AgentContext', str, dict[str, Any]], Awaitable[PreInvocationDecision]] | None = None
    after_invocation: Callable[
        ['AgentContext', str, dict[str, Any], CapabilityResult], Awaitable[None]
    ] | None = None
    on_exception: Callable[
        ['AgentContext', str, BaseException, dict[str, Any]], Awaitable[ExceptionAction]
    ] | None = None
    on_approval_required: Callable[['AgentContext', ApprovalRequest], Awaitable[ApprovalResult]] | None = None

    check_completion: Callable[['AgentContext', str], Awaitable[bool]] | None = None
    on_stage_complete: Callable[['TaskContext', list[str]], Awaitable[None]] | None = None
    on_task_complete: Callable[['TaskContext', 'TaskResult'], Awaitable[None]] | None = None
