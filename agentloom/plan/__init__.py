from .codec import (
    build_agent_prompt_markup,
    build_simple_plan,
    extract_node,
    parse_plan,
    repair_partial_markup,
    serialize_plan,
)
from .tree import build_execution_tree, compile_plan, describe_stage, describe_tree, mark_parallel, repair_dependencies
from .types import (
    AgentStatus,
    ExecutionStage,
    ForEachNode,
    NormalStage,
    ParallelStage,
    Plan,
    PlanAgent,
    PlanNode,
    StepNode,
    WatchNode,
    format_agent_id,
    iter_stages,
)

__all__ = [
    "AgentStatus",
    "ExecutionStage",
    "ForEachNode",
    "NormalStage",
    "ParallelStage",
    "Plan",
    "PlanAgent",
    "PlanNode",
    "StepNode",
    "WatchNode",
    "format_agent_id",
    "iter_stages",
    "build_execution_tree",
    "compile_plan",
    "describe_stage",
    "describe_tree",
    "mark_parallel",
    "repair_dependencies",
    "build_agent_prompt_markup",
    "build_simple_plan",
    "extract_node",
    "parse_plan",
    "repair_partial_markup",
    "serialize_plan",
]
