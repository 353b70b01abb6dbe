"""Test cases for the built-in capabilities."""

import asyncio
import json
import unittest

from agentloom.capability.builtin import (
    FOREACH_TASK,
    HUMAN_INTERACT,
    VARIABLE_STORAGE,
    WATCH_TRIGGER,
    ForeachTaskCapability,
    HumanInteractCapability,
    VariableStorageCapability,
    WatchTriggerCapability,
    builtin_capabilities,
)
from agentloom.plan.codec import parse_plan
from agentloom.runtime.callback import LifecycleCallback
from agentloom.runtime.context import AgentContext, TaskContext

PLAN = """<root><name>Shops</name><agents>
  <agent name="Browser" id="0">
    <task>Visit every shop</task>
    <nodes>
      <node output="shops">List shops</node>
      <forEach items="shops"><node>Visit shop</node></forEach>
      <watch event="price_drop" loop="true">
        <description>A price drops</description>
        <trigger><node>Buy</node></trigger>
      </watch>
    </nodes>
  </agent>
</agents></root>"""


class ScriptedCallback(LifecycleCallback):
    def __init__(self):
        self.prompts = []

    async def on_event(self, event, agent_ctx=None):
        pass

    async def confirm(self, agent_ctx, prompt):
        self.prompts.append(prompt)
        return True

    async def request(self, agent_ctx, prompt):
        self.prompts.append(prompt)
        return "42"

    async def select(self, agent_ctx, prompt, options, multiple=False):
        self.prompts.append(prompt)
        return options[:2] if multiple else options[:1]

    async def help(self, agent_ctx, help_type, prompt):
        self.prompts.append(help_type)
        return help_type == "request_login"


class BuiltinTestBase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.callback = ScriptedCallback()
        self.task = TaskContext("t1", callback=self.callback)
        self.plan_agent = parse_plan("t1", PLAN, is_final=True).agents[0]
        self.ctx = AgentContext(self.task, self.plan_agent)


def builtin_names(plan_text):
    agent = parse_plan("t1", plan_text, is_final=True).agents[0]
    return [capability.name for capability in builtin_capabilities(agent)]


class TestBuiltinSelection(unittest.TestCase):
    def test_plain_agent_only_gets_human_interact(self):
        plan = '<root><agents><agent name="Writer" id="0"><task>Write</task>' \
               '<nodes><node>Write it</node></nodes></agent></agents></root>'
        self.assertEqual(builtin_names(plan), [HUMAN_INTERACT])

    def test_full_agent(self):
        self.assertEqual(builtin_names(PLAN), [VARIABLE_STORAGE, FOREACH_TASK, WATCH_TRIGGER, HUMAN_INTERACT])

    def test_self_closing_elements_are_detected(self):
        plan = '<root><agents><agent name="Browser" id="0"><task>Watch</task><nodes>' \
               '<forEach items="shops"/><watch event="dom" loop="false"/>' \
               '</nodes></agent></agents></root>'
        self.assertEqual(builtin_names(plan), [FOREACH_TASK, WATCH_TRIGGER, HUMAN_INTERACT])

    def test_nested_variables_are_detected(self):
        plan = '<root><agents><agent name="Browser" id="0"><task>Visit</task><nodes>' \
               '<forEach items="list"><node input="shop">Visit shop</node></forEach>' \
               '</nodes></agent></agents></root>'
        self.assertEqual(builtin_names(plan), [VARIABLE_STORAGE, FOREACH_TASK, HUMAN_INTERACT])


class TestVariableStorage(BuiltinTestBase):
    async def test_write_then_read(self):
        capability = VariableStorageCapability()

        written = await capability.invoke({"operation": "write_variable", "name": "shops", "value": "a,b"}, self.ctx)
        read = await capability.invoke({"operation": "read_variable", "name": "shops, missing"}, self.ctx)
        listed = await capability.invoke({"operation": "list_all_variable"}, self.ctx)

        self.assertEqual(written.text_content(), "success")
        self.assertEqual(json.loads(read.text_content()), {"shops": "a,b", "missing": None})
        self.assertEqual(json.loads(listed.text_content()), ["shops"])

    async def test_missing_arguments(self):
        capability = VariableStorageCapability()

        no_name = await capability.invoke({"operation": "read_variable"}, self.ctx)
        no_value = await capability.invoke({"operation": "write_variable", "name": "x"}, self.ctx)
        unknown = await capability.invoke({"operation": "drop"}, self.ctx)

        self.assertEqual(no_name.text_content(), "Error: name is required")
        self.assertEqual(no_value.text_content(), "Error: value is required")
        self.assertTrue(unknown.is_error)

    async def test_variables_are_shared_by_the_task(self):
        await VariableStorageCapability().invoke(
            {"operation": "write_variable", "name": "token", "value": "abc"}, self.ctx)
        self.assertEqual(self.task.variables.get("token"), "abc")


class TestForeachTask(BuiltinTestBase):
    async def test_records_progress_and_returns_items(self):
        self.task.variables.set("shops", '["a", "b"]')

        result = await ForeachTaskCapability().invoke(
            {"nodeId": 1, "progress": "1/2", "next_step": "visit b"}, self.ctx)

        self.assertEqual(result.text_content(), 'Recorded\nshops: ["a", "b"]')
        self.assertEqual(self.ctx.variables.get("foreach:1"), "1/2")

    async def test_wrong_node(self):
        result = await ForeachTaskCapability().invoke({"nodeId": 0, "progress": "", "next_step": ""}, self.ctx)
        self.assertTrue(result.is_error)


class TestWatchTrigger(BuiltinTestBase):
    async def test_triggered(self):
        asyncio.get_running_loop().call_later(0.01, self.task.trigger, "price_drop", "Shop A: 399")

        result = await WatchTriggerCapability().invoke({"nodeId": 2, "timeout": 1}, self.ctx)

        text = result.text_content()
        self.assertTrue(text.startswith("Triggered: price_drop\nShop A: 399"))
        self.assertIn(f"call {WATCH_TRIGGER} again", text)

    async def test_timeout(self):
        result = await WatchTriggerCapability().invoke({"nodeId": 2, "timeout": 0.01}, self.ctx)
        self.assertEqual(result.text_content(), "Timeout reached, no price_drop event was triggered")


class TestHumanInteract(BuiltinTestBase):
    async def test_interactions(self):
        capability = HumanInteractCapability()

        confirm = await capability.invoke({"interactType": "confirm", "prompt": "Delete?"}, self.ctx)
        answer = await capability.invoke({"interactType": "input", "prompt": "Budget?"}, self.ctx)
        selected = await capability.invoke({"interactType": "select", "prompt": "Shop?",
                                             "selectOptions": ["A", "B", "C"], "selectMultiple": True}, self.ctx)
        helped = await capability.invoke({"interactType": "request_help", "prompt": "Log in",
                                          "helpType": "request_login"}, self.ctx)

        self.assertEqual(confirm.text_content(), "confirm result: Yes")
        self.assertEqual(answer.text_content(), "input result: 42")
        self.assertEqual(selected.text_content(), 'select result: ["A", "B"]')
        self.assertEqual(helped.text_content(), "request_help result: Solved")
        self.assertEqual(self.callback.prompts, ["Delete?", "Budget?", "Shop?", "request_login"])

    async def test_unsupported(self):
        result = await HumanInteractCapability().invoke({"interactType": "wave", "prompt": "hi"}, self.ctx)
        self.assertEqual(result.text_content(), "Error: Unsupported wave interaction operation")
        self.assertTrue(result.is_error)


if __name__ == '__main__':
    unittest.main()
