from agentloom.app import build_executor
from agentloom.cancellation import CancellationToken
from agentloom.config import AgentLoomConfig, RuntimeConfig, load_config
from agentloom.plan import Plan, PlanAgent, build_simple_plan, compile_plan, parse_plan, serialize_plan
from agentloom.runtime.agent import Agent
from agentloom.runtime.executor import TaskExecutor, TaskResult

__all__ = [
    "Agent",
    "AgentLoomConfig",
    "CancellationToken",
    "Plan",
    "PlanAgent",
    "RuntimeConfig",
    "TaskExecutor",
    "TaskResult",
    "build_executor",
    "build_simple_plan",
    "compile_plan",
    "load_config",
    "parse_plan",
    "serialize_plan",
]
