"""Capabilities every agent may receive without a provider."""

import json
import logging
from typing import TYPE_CHECKING, Any

from agentloom.capability.base import BaseCapability
from agentloom.capability.types import CapabilityResult
from agentloom.plan.codec import extract_node
from agentloom.plan.types import ForEachNode, PlanAgent, WatchNode

if TYPE_CHECKING:
    from agentloom.runtime.context import AgentContext

logger = logging.getLogger(__name__)

VARIABLE_STORAGE = "variable_storage"
FOREACH_TASK = "foreach_task"
WATCH_TRIGGER = "watch_trigger"
HUMAN_INTERACT = "human_interact"


class VariableStorageCapability(BaseCapability):
    """Read and write the variables shared by the agents of a task."""

    @property
    def name(self):
        return VARIABLE_STORAGE

    @property
    def description(self):
        return "Used for storing, reading, and retrieving variable data, and maintaining input/output variables " \
               "in task nodes. When the same variable is stored repeatedly, it will overwrite the previous value."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "operation": {
                    "type": "string",
                    "description": "variable storage operation type.",
                    "enum": ["read_variable", "write_variable", "list_all_variable"],
                },
                "name": {
                    "type": "string",
                    "description": "variable name, required when reading and writing variables. "
                                   "Multiple variables can be read at once, separated by commas.",
                },
                "value": {
                    "type": "string",
                    "description": "variable value, required when writing variables",
                },
            },
            "required": ["operation"],
        }

    async def invoke(self, arguments: dict[str, Any], ctx: 'AgentContext') -> CapabilityResult:
        variables = ctx.task.variables
        operation = arguments.get("operation")
        name = arguments.get("name")
        if operation == "read_variable":
            if not name:
                return self.result("Error: name is required")
            keys = [key.strip() for key in str(name).split(",")]
            return self.result(json.dumps({key: variables.get(key) for key in keys}, ensure_ascii=False))
        if operation == "write_variable":
            if not name:
                return self.result("Error: name is required")
            value = arguments.get("value")
            if value is None or value == "":
                return self.result("Error: value is required")
            variables.set(str(name).strip(), value)
            return self.result("success")
        if operation == "list_all_variable":
            return self.result(json.dumps(variables.keys(), ensure_ascii=False))
        return self.error(f"Error: Unsupported {operation} operation")


class ForeachTaskCapability(BaseCapability):
    """Progress marker for ``forEach`` nodes, called once per iteration."""

    @property
    def name(self):
        return FOREACH_TASK

    @property
    def description(self):
        return "When executing a `forEach` node, use this tool to record progress so that items are processed " \
               "one by one. Call it on every iteration."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "nodeId": {"type": "number", "description": "forEach node ID."},
                "progress": {"type": "string", "description": "Current execution progress."},
                "next_step": {"type": "string", "description": "Next task description."},
            },
            "required": ["nodeId", "progress", "next_step"],
        }

    async def invoke(self, arguments: dict[str, Any], ctx: 'AgentContext') -> CapabilityResult:
        node_id = arguments.get("nodeId")
        node = extract_node(ctx.agent.markup, int(node_id)) if node_id is not None else None
        if not isinstance(node, ForEachNode):
            return self.error(f"Node ID is not a forEach node: {node_id}")
        ctx.variables.set(f"foreach:{node_id}", arguments.get("progress"))
        text = "Recorded"
        if node.items and node.items != "list":
            value = ctx.task.variables.get(node.items.strip())
            if value:
                text += f"\n{node.items}: {value}"
        return self.result(text)


class WatchTriggerCapability(BaseCapability):
    """Block until the event a ``watch`` node listens for is delivered to the task."""

    def __init__(self, default_timeout: float = 300.0):
        self.default_timeout = default_timeout

    @property
    def name(self):
        return WATCH_TRIGGER

    @property
    def description(self):
        return "When executing a `watch` node, use this tool to wait for its event. Returns the event payload " \
               "once it arrives, or a timeout notice."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "nodeId": {"type": "number", "description": "watch node ID."},
                "timeout": {"type": "number", "description": "Seconds to wait before giving up, default 300."},
            },
            "required": ["nodeId"],
        }

    async def invoke(self, arguments: dict[str, Any], ctx: 'AgentContext') -> CapabilityResult:
        node_id = arguments.get("nodeId")
        node = extract_node(ctx.agent.markup, int(node_id)) if node_id is not None else None
        if not isinstance(node, WatchNode):
            return self.error(f"Node ID is not a watch node: {node_id}")
        timeout = float(arguments.get("timeout") or self.default_timeout)
        logger.info("Agent %s watching for %s", ctx.agent_name, node.event)
        payload = await ctx.task.wait_for_trigger(node.event, timeout)
        if payload is None:
            return self.result(f"Timeout reached, no {node.event} event was triggered")
        text = f"Triggered: {node.event}"
        if payload:
            text += f"\n{payload}"
        if node.loop:
            text += f"\nAfter executing the trigger nodes, call {WATCH_TRIGGER} again to keep watching."
        return self.result(text)


class HumanInteractCapability(BaseCapability):
    """Route confirmation, input, selection and help requests to the user through the lifecycle callback."""

    @property
    def name(self):
        return HUMAN_INTERACT

    @property
    def description(self):
        return "AI interacts with humans:\n" \
               "confirm: Ask the user to confirm whether to execute an operation, especially a dangerous one; " \
               "the user chooses Yes or No.\n" \
               "input: Prompt the user to enter text, for example when a task is ambiguous.\n" \
               "select: Let the user choose between options.\n" \
               "request_help: Ask the user for assistance when an operation is blocked, for example login, " \
               "CAPTCHA or verification codes."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "interactType": {
                    "type": "string",
                    "description": "The type of interaction with users.",
                    "enum": ["confirm", "input", "select", "request_help"],
                },
                "prompt": {"type": "string", "description": "Display prompts to users"},
                "selectOptions": {
                    "type": "array",
                    "description": "Options provided to users, required when interactType is select.",
                    "items": {"type": "string"},
                },
                "selectMultiple": {"type": "boolean", "description": "isMultiple, used when interactType is select"},
                "helpType": {
                    "type": "string",
                    "description": "Help type, required when interactType is request_help.",
                    "enum": ["request_login", "request_assistance"],
                },
            },
            "required": ["interactType", "prompt"],
        }

    async def invoke(self, arguments: dict[str, Any], ctx: 'AgentContext') -> CapabilityResult:
        callback = ctx.task.callback
        interact_type = arguments.get("interactType")
        prompt = str(arguments.get("prompt") or "")
        match interact_type:
            case "confirm":
                confirmed = await callback.confirm(ctx, prompt)
                return self.result(f"confirm result: {'Yes' if confirmed else 'No'}")
            case "input":
                text = await callback.request(ctx, prompt)
                return self.result(f"input result: {text}")
            case "select":
                selected = await callback.select(
                    ctx, prompt, list(arguments.get("selectOptions") or []), bool(arguments.get("selectMultiple")))
                return self.result(f"select result: {json.dumps(selected, ensure_ascii=False)}")
            case "request_help":
                solved = await callback.help(ctx, arguments.get("helpType") or "request_assistance", prompt)
                return self.result(f"request_help result: {'Solved' if solved else 'Unresolved'}")
        return self.error(f"Error: Unsupported {interact_type} interaction operation")


def builtin_capabilities(agent: PlanAgent) -> list[BaseCapability]:
    """The built-in capabilities the nodes of a plan agent need."""
    capabilities: list[BaseCapability] = []
    if agent.uses_variables():
        capabilities.append(VariableStorageCapability())
    if agent.has_node_type(ForEachNode):
        capabilities.append(ForeachTaskCapability())
    if agent.has_node_type(WatchNode):
        capabilities.append(WatchTriggerCapability())
    capabilities.append(HumanInteractCapability())
    return capabilities
