"""Graph compiler: flat, dependency annotated agents to an execution stage list.

Agents that share a level (all of their dependencies completed by earlier
levels) are grouped into a :class:`ParallelStage`; a level holding a single
agent becomes a :class:`NormalStage`.  Cyclic dependency lists are repaired
before the levels are computed, so compilation always terminates and every
agent appears exactly once.
"""

import logging
from collections import deque

from agentloom.exceptions import NoExecutableAgentError
from agentloom.plan.types import ExecutionStage, NormalStage, ParallelStage, Plan, PlanAgent, iter_stages

logger = logging.getLogger(__name__)


def repair_dependencies(agents: list[PlanAgent]) -> list[PlanAgent]:
    """Drop dangling dependencies and break dependency cycles in place."""
    known = {agent.id for agent in agents}
    in_degree = {agent.id: 0 for agent in agents}
    dependents: dict[str, list[str]] = {agent.id: [] for agent in agents}
    for agent in agents:
        for dep_id in agent.depends_on:
            if dep_id in known:
                dependents[dep_id].append(agent.id)
                in_degree[agent.id] += 1

    queue = deque(agent_id for agent_id, degree in in_degree.items() if degree == 0)
    processed = 0
    while queue:
        current = queue.popleft()
        processed += 1
        for neighbor in dependents[current]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    cyclic: set[str] = set()
    if processed < len(agents):
        cyclic = {agent_id for agent_id, degree in in_degree.items() if degree > 0}
        logger.warning("Detected circular dependency between agents %s, disconnecting", sorted(cyclic))

    for agent in agents:
        existing = [dep_id for dep_id in agent.depends_on if dep_id in known]
        if agent.id in cyclic:
            kept = [dep_id for dep_id in existing if dep_id not in cyclic]
            if not kept and existing and existing[0] not in cyclic:
                kept.append(existing[0])
            if len(kept) != len(existing):
                logger.warning("Disconnected cyclic dependencies of agent %s", agent.id)
            agent.depends_on = kept
        else:
            agent.depends_on = existing
    return agents


def build_execution_tree(agents: list[PlanAgent]) -> ExecutionStage:
    agents = repair_dependencies(agents)
    if not agents:
        raise NoExecutableAgentError()

    dependents: dict[str, list[PlanAgent]] = {agent.id: [] for agent in agents}
    for agent in agents:
        for dep_id in agent.depends_on:
            dependents[dep_id].append(agent)

    level = [agent for agent in agents if not agent.depends_on]
    if not level:
        # Plans sometimes hang every agent off a virtual root such as "plan-00"
        level = [
            agent for agent in agents
            if len(agent.depends_on) == 1 and agent.depends_on[0].endswith("00")
        ]

    processed: set[str] = set()
    levels: list[list[PlanAgent]] = []
    while level:
        levels.append(level)
        processed.update(agent.id for agent in level)
        next_level: list[PlanAgent] = []
        seen: set[str] = set()
        for agent in level:
            for dependent in dependents[agent.id]:
                if dependent.id in seen or dependent.id in processed:
                    continue
                if all(dep_id in processed for dep_id in dependent.depends_on):
                    next_level.append(dependent)
                    seen.add(dependent.id)
        level = next_level

    if not levels:
        raise NoExecutableAgentError("Unable to build execution tree")

    root: ExecutionStage | None = None
    for members in reversed(levels):
        stage: ExecutionStage
        if len(members) == 1:
            stage = NormalStage(agent=members[0], next=root)
        else:
            stage = ParallelStage(stages=[NormalStage(agent=agent) for agent in members], next=root)
        root = stage
    assert root is not None
    return root


def mark_parallel(root: ExecutionStage):
    for stage in iter_stages(root):
        if isinstance(stage, NormalStage):
            stage.agent.parallel = False
        else:
            for agent in stage.agents:
                agent.parallel = True


def compile_plan(plan: Plan) -> ExecutionStage:
    root = build_execution_tree(plan.agents)
    mark_parallel(root)
    return root


def describe_stage(stage: ExecutionStage) -> str:
    if isinstance(stage, NormalStage):
        return f"Normal({stage.agent.id})"
    return f"Parallel({', '.join(agent.id for agent in stage.agents)})"


def describe_tree(root: ExecutionStage | None) -> str:
    return " -> ".join(describe_stage(stage) for stage in iter_stages(root))
