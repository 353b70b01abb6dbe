"""Plan markup codec.

The planner emits plans as a small XML dialect::

    <root>
      <name>...</name>
      <thought>...</thought>
      <agents>
        <agent name="Browser" id="0" dependsOn="">
          <task>...</task>
          <nodes>
            <node input="x" output="y">...</node>
            <forEach items="list"><node>...</node></forEach>
            <watch event="dom" loop="false">
              <description>...</description>
              <trigger><node>...</node></trigger>
            </watch>
          </nodes>
        </agent>
      </agents>
    </root>

Plans are parsed while they are still being streamed, so :func:`parse_plan`
accepts truncated documents when ``is_final`` is false and repairs them with
:func:`repair_partial_markup` before parsing.
"""

import logging
import re
import xml.etree.ElementTree as ET
from xml.sax.saxutils import escape

from agentloom.exceptions import PlanParseError
from agentloom.plan.tree import compile_plan
from agentloom.plan.types import (
    DEFAULT_FOREACH_ITEMS,
    DEFAULT_WATCH_EVENT,
    ForEachNode,
    Plan,
    PlanAgent,
    PlanNode,
    StepNode,
    WatchNode,
    format_agent_id,
)

logger = logging.getLogger(__name__)

_BARE_AMPERSAND = re.compile(r"&(?![a-zA-Z0-9#]+;)")
_TRAILING_CLOSE_TAG = re.compile(r"</[\w.-]*$")
_TRAILING_ATTR_NAME = re.compile(r"\s([A-Za-z_][\w.-]*)$")
_TAG = re.compile(r"<(/?)([A-Za-z_][\w.-]*)[^<>]*?(/?)>")


def _escape_attr(value: str) -> str:
    return escape(value, {'"': "&quot;"})


def _text(element: ET.Element | None) -> str:
    if element is None:
        return ""
    return "".join(element.itertext())


def _outer_markup(element: ET.Element) -> str:
    tail, element.tail = element.tail, None
    try:
        return ET.tostring(element, encoding="unicode")
    finally:
        element.tail = tail


def repair_partial_markup(text: str) -> str:
    """Close a truncated markup document so that it can be parsed."""
    text = text.strip()
    if text.endswith("<"):
        text = text[:-1]
    text = _TRAILING_CLOSE_TAG.sub("", text)

    open_idx = text.rfind("<")
    in_tag = open_idx > text.rfind(">")
    if in_tag:
        fragment = text[open_idx:]
        balanced_quotes = fragment.count('"') % 2 == 0
        if balanced_quotes and text.endswith("="):
            text += '""'
        elif balanced_quotes and " " in fragment and _TRAILING_ATTR_NAME.search(fragment):
            text += '=""'
        if text[open_idx:].count('"') % 2 == 1:
            text += '"'
        text += ">"

    stack: list[str] = []
    for match in _TAG.finditer(text):
        closing, name, self_closing = match.groups()
        if self_closing:
            continue
        if closing:
            if name in stack:
                while stack and stack.pop() != name:
                    pass
        else:
            stack.append(name)
    return text + "".join(f"</{name}>" for name in reversed(stack))


def _parse_nodes(elements) -> list[PlanNode]:
    nodes: list[PlanNode] = []
    for element in elements:
        if element.tag == "node":
            nodes.append(StepNode(
                text=_text(element),
                input=element.get("input") or None,
                output=element.get("output") or None,
            ))
        elif element.tag == "forEach":
            nodes.append(ForEachNode(
                items=element.get("items") or DEFAULT_FOREACH_ITEMS,
                nodes=tuple(_parse_nodes(element.iter("node"))),
            ))
        elif element.tag == "watch":
            trigger = element.find("trigger")
            nodes.append(WatchNode(
                event=element.get("event") or DEFAULT_WATCH_EVENT,
                loop=element.get("loop") == "true",
                description=_text(element.find("description")),
                trigger_nodes=tuple(_parse_nodes(list(trigger) if trigger is not None else [])),
            ))
    return nodes


def _parse_document(plan_id: str, markup: str, rationale: str | None) -> Plan | None:
    root = ET.fromstring(markup)
    if root.tag != "root":
        return None
    thought = _text(root.find(".//thought"))
    if rationale and thought:
        thought = rationale + "\n" + thought
    elif rationale:
        thought = rationale
    plan = Plan(
        id=plan_id,
        name=_text(root.find(".//name")),
        rationale=thought,
        markup=markup,
    )
    agents_element = root.find(".//agents")
    if agents_element is None:
        return plan
    for idx, element in enumerate(agents_element.iter("agent")):
        name = element.get("name")
        if not name:
            break
        depends_on = [
            format_agent_id(plan_id, dep.strip())
            for dep in (element.get("dependsOn") or "").split(",")
            if dep.strip()
        ]
        nodes_element = element.find("nodes")
        plan.agents.append(PlanAgent(
            id=format_agent_id(plan_id, element.get("id") or idx),
            name=name,
            task=_text(element.find("task")),
            depends_on=depends_on,
            nodes=_parse_nodes(list(nodes_element)) if nodes_element is not None else [],
            markup=_outer_markup(element),
        ))
    return plan


def parse_plan(plan_id: str, text: str, is_final: bool, rationale: str | None = None) -> Plan | None:
    """Parse plan markup.

    A non-final parse never raises: on any failure the rationale-only plan
    (or ``None``) is returned.  A final parse raises :class:`PlanParseError`
    on malformed markup and sets the ``parallel`` flag of every agent.
    """
    fallback = Plan(id=plan_id, name="", rationale=rationale, markup=text) if rationale else None
    start = text.find("<root>")
    if start == -1:
        return fallback
    markup = text[start:]
    end = markup.find("</root>")
    if end > -1:
        markup = markup[:end + len("</root>")]
    markup = _BARE_AMPERSAND.sub("&amp;", markup)

    if not is_final:
        try:
            return _parse_document(plan_id, repair_partial_markup(markup), rationale) or fallback
        except Exception as e:
            logger.debug("Partial plan not parseable yet: %s", e)
            return fallback

    try:
        plan = _parse_document(plan_id, markup, rationale)
    except ET.ParseError as e:
        raise PlanParseError(f"Malformed plan markup: {e}", markup=markup) from e
    if plan is None:
        return fallback
    compile_plan(plan)
    return plan


def _serialize_step(node: StepNode, indent: str) -> str:
    attrs = ""
    if node.input:
        attrs += f' input="{_escape_attr(node.input)}"'
    if node.output:
        attrs += f' output="{_escape_attr(node.output)}"'
    return f"{indent}<node{attrs}>{escape(node.text)}</node>"


def _serialize_node(node: PlanNode, indent: str) -> str:
    if isinstance(node, ForEachNode):
        inner = "\n".join(_serialize_node(child, indent + "  ") for child in node.nodes)
        return (
            f'{indent}<forEach items="{_escape_attr(node.items)}">\n'
            f"{inner}\n"
            f"{indent}</forEach>"
        )
    if isinstance(node, WatchNode):
        inner = "\n".join(_serialize_node(child, indent + "    ") for child in node.trigger_nodes)
        return (
            f'{indent}<watch event="{_escape_attr(node.event)}" loop="{"true" if node.loop else "false"}">\n'
            f"{indent}  <description>{escape(node.description)}</description>\n"
            f"{indent}  <trigger>\n"
            f"{inner}\n"
            f"{indent}  </trigger>\n"
            f"{indent}</watch>"
        )
    return _serialize_step(node, indent)


def serialize_plan(plan: Plan) -> str:
    """Render *plan* as markup, refreshing ``plan.markup`` and every ``agent.markup``."""
    agents = []
    for agent in plan.agents:
        depends_on = ",".join(dep.rsplit("-", 1)[-1] for dep in agent.depends_on)
        nodes = "\n".join(_serialize_node(node, "        ") for node in agent.nodes)
        agent.markup = (
            f'    <agent name="{_escape_attr(agent.name)}" id="{_escape_attr(agent.ordinal)}" '
            f'dependsOn="{_escape_attr(depends_on)}">\n'
            f"      <task>{escape(agent.task)}</task>\n"
            f"      <nodes>\n"
            f"{nodes}\n"
            f"      </nodes>\n"
            f"    </agent>"
        )
        agents.append(agent.markup)
    agents_markup = "\n".join(agents)
    plan.markup = (
        "<root>\n"
        f"  <name>{escape(plan.name)}</name>\n"
        f"  <thought>{escape(plan.rationale)}</thought>\n"
        "  <agents>\n"
        f"{agents_markup}\n"
        "  </agents>\n"
        "</root>"
    )
    return plan.markup


def extract_node(agent_markup: str, node_id: int | str) -> PlanNode | None:
    """Find a node of an agent by its explicit ``id`` attribute or its position."""
    element = ET.fromstring(agent_markup.strip())
    nodes_element = element.find(".//nodes")
    if nodes_element is None:
        return None
    for position, child in enumerate(nodes_element):
        if (child.get("id") or str(position)) == str(node_id):
            return _parse_nodes([child])[0] if child.tag in ("node", "forEach", "watch") else None
    return None


def build_agent_prompt_markup(agent_markup: str, main_task: str) -> str:
    """Render the document an agent receives: its nodes numbered, with the overall task."""
    agent = ET.fromstring(agent_markup.strip())
    nodes_element = agent.find("nodes")
    if nodes_element is not None:
        for position, child in enumerate(nodes_element):
            child.set("id", str(position))

    root = ET.Element("root")
    main = ET.Element("mainTask")
    main.text = main_task
    children = list(agent)
    task_index = next((i for i, child in enumerate(children) if child.tag == "task"), 0)
    for i, child in enumerate(children):
        if i == task_index:
            root.append(main)
        if child.tag == "task":
            child.tag = "currentTask"
        root.append(child)
    if not children:
        root.append(main)
    ET.indent(root, space="  ")
    return ET.tostring(root, encoding="unicode")


def build_simple_plan(
        plan_id: str,
        name: str,
        agent_name: str,
        task: str,
        steps: list[str] | None = None,
) -> Plan:
    """Build a single agent plan without going through the planner."""
    plan = Plan(
        id=plan_id,
        name=name,
        rationale="",
        agents=[PlanAgent(
            id=format_agent_id(plan_id, 0),
            name=agent_name,
            task=task,
            nodes=[StepNode(text=step) for step in (steps or [task])],
            parallel=False,
        )],
        task_prompt=task,
    )
    serialize_plan(plan)
    return plan
