"""Plan data model.

A plan is produced by a planning step as markup (see :mod:`agentloom.plan.codec`)
and describes a flat list of agents annotated with dependencies.  The graph
compiler in :mod:`agentloom.plan.tree` turns that list into a linked list of
execution stages.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator


class AgentStatus(str, Enum):
    INIT = "init"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class StepNode:
    text: str
    input: str | None = None
    output: str | None = None


DEFAULT_FOREACH_ITEMS = "list"
DEFAULT_WATCH_EVENT = "dom"


@dataclass(frozen=True)
class ForEachNode:
    items: str
    nodes: tuple['PlanNode', ...] = ()

    def __post_init__(self):
        # An empty items attribute means the default, so parsing and serializing agree
        if not self.items:
            object.__setattr__(self, "items", DEFAULT_FOREACH_ITEMS)


@dataclass(frozen=True)
class WatchNode:
    event: str
    loop: bool
    description: str
    trigger_nodes: tuple['PlanNode', ...] = ()

    def __post_init__(self):
        if not self.event:
            object.__setattr__(self, "event", DEFAULT_WATCH_EVENT)


PlanNode = StepNode | ForEachNode | WatchNode


@dataclass
class PlanAgent:
    id: str
    name: str
    task: str
    depends_on: list[str] = field(default_factory=list)
    nodes: list[PlanNode] = field(default_factory=list)
    status: AgentStatus = AgentStatus.INIT
    parallel: bool | None = None
    markup: str = ""

    @property
    def ordinal(self) -> str:
        """The part of the id after the plan id, e.g. ``"03"`` for ``"plan-03"``."""
        return self.id.rsplit("-", 1)[-1]

    def iter_nodes(self) -> Iterator[PlanNode]:
        """All nodes of the agent, depth first, including those nested in forEach and watch."""
        stack = list(reversed(self.nodes))
        while stack:
            node = stack.pop()
            yield node
            if isinstance(node, ForEachNode):
                stack.extend(reversed(node.nodes))
            elif isinstance(node, WatchNode):
                stack.extend(reversed(node.trigger_nodes))

    def has_node_type(self, node_type: type) -> bool:
        return any(isinstance(node, node_type) for node in self.iter_nodes())

    def uses_variables(self) -> bool:
        return any(isinstance(node, StepNode) and (node.input or node.output) for node in self.iter_nodes())


@dataclass
class Plan:
    id: str
    name: str
    rationale: str
    agents: list[PlanAgent] = field(default_factory=list)
    markup: str = ""
    task_prompt: str | None = None
    modified: bool = False

    def get_agent(self, agent_id: str) -> PlanAgent | None:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    def set_status(self, agent_id: str, status: AgentStatus):
        agent = self.get_agent(agent_id)
        if agent is None:
            raise KeyError(agent_id)
        agent.status = status

    def pending_agents(self) -> list[PlanAgent]:
        return [agent for agent in self.agents if agent.status == AgentStatus.INIT]


@dataclass
class NormalStage:
    agent: PlanAgent
    next: 'ExecutionStage | None' = None
    result: Any = None


@dataclass
class ParallelStage:
    stages: list[NormalStage]
    next: 'ExecutionStage | None' = None
    result: Any = None

    @property
    def agents(self) -> list[PlanAgent]:
        return [stage.agent for stage in self.stages]


ExecutionStage = NormalStage | ParallelStage


def iter_stages(root: ExecutionStage | None) -> Iterator[ExecutionStage]:
    stage = root
    while stage is not None:
        yield stage
        stage = stage.next


def format_agent_id(plan_id: str, ordinal: int | str) -> str:
    """Build an agent id, zero padding ordinals below ten."""
    if isinstance(ordinal, str):
        if not ordinal.isdigit():
            return ordinal if ordinal.startswith(f"{plan_id}-") else f"{plan_id}-{ordinal}"
        ordinal = int(ordinal)
    return f"{plan_id}-{ordinal:02d}"
