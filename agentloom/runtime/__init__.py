from .callback import (
    AgentResultEvent,
    AgentStartEvent,
    ErrorEvent,
    FinishEvent,
    LifecycleCallback,
    LifecycleEvent,
    LoggingCallback,
    PlanEvent,
    TextEvent,
    ThinkingEvent,
    ToolResultEvent,
    ToolStreamingEvent,
    ToolUseEvent,
)
from .context import AgentContext, TaskContext, VariableStore
from .policy import (
    AgentHookResult,
    ApprovalRequest,
    ApprovalResult,
    ExceptionAction,
    PolicyHooks,
    PreInvocationDecision,
)
from .records import AgentRun, CapabilityInvocationRecord, PolicyStage, PolicyStageOutcome, TaskChain

__all__ = [
    "AgentContext",
    "AgentHookResult",
    "AgentResultEvent",
    "AgentRun",
    "AgentStartEvent",
    "ApprovalRequest",
    "ApprovalResult",
    "CapabilityInvocationRecord",
    "ErrorEvent",
    "ExceptionAction",
    "FinishEvent",
    "LifecycleCallback",
    "LifecycleEvent",
    "LoggingCallback",
    "PlanEvent",
    "PolicyHooks",
    "PolicyStage",
    "PolicyStageOutcome",
    "PreInvocationDecision",
    "TaskChain",
    "TaskContext",
    "TextEvent",
    "ThinkingEvent",
    "ToolResultEvent",
    "ToolStreamingEvent",
    "ToolUseEvent",
    "VariableStore",
]
