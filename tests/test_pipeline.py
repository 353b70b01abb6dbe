"""Tests for the policy pipeline wrapped around capability invocations."""

import unittest
from unittest.mock import AsyncMock

from agentloom.capability.base import FunctionCapability
from agentloom.capability.registry import CapabilityTable
from agentloom.capability.types import CapabilityResult, ImageContent, TextContent
from agentloom.config.runtime import RuntimeConfig
from agentloom.exceptions import CircuitBreakerTrippedError
from agentloom.plan.types import PlanAgent
from agentloom.reasoning.messages import ToolCallPart
from agentloom.runtime.callback import LifecycleCallback, ToolResultEvent
from agentloom.runtime.context import AgentContext, TaskContext
from agentloom.runtime.pipeline import PolicyPipeline, render_result
from agentloom.runtime.policy import (
    ApprovalResult,
    ExceptionAction,
    PolicyHooks,
    PreInvocationDecision,
)
from agentloom.runtime.records import PolicyStage


class RecordingCallback(LifecycleCallback):
    def __init__(self):
        self.events = []

    async def on_event(self, event, agent_ctx=None):
        self.events.append(event)


class PolicyPipelineTestBase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.config = RuntimeConfig(invocation_retry_delay=0)
        self.callback = RecordingCallback()
        task = TaskContext("t1", config=self.config, callback=self.callback)
        self.ctx = AgentContext(task, PlanAgent(id="t1-00", name="Browser", task="Compare prices"))
        self.func = AsyncMock(return_value="echoed")
        self.table = CapabilityTable([FunctionCapability("echo", self.func)])
        self.call = ToolCallPart(tool_call_id="c1", tool_name="echo", input={"text": "hi"})

    def pipeline(self, **hooks) -> PolicyPipeline:
        return PolicyPipeline(PolicyHooks(**hooks), self.config)


class TestInvocation(PolicyPipelineTestBase):
    async def test_success(self):
        result = await self.pipeline().invoke(self.ctx, self.call, self.table)

        self.assertEqual(result.output, "echoed")
        self.assertFalse(result.is_error)
        self.assertEqual(result.tool_call_id, "c1")
        self.func.assert_awaited_once_with({"text": "hi"}, self.ctx)
        record = self.ctx.run.invocations[0]
        self.assertEqual(record.outcome_of(PolicyStage.INVOCATION), "success")
        self.assertTrue(record.completed)
        event = self.callback.events[-1]
        self.assertIsInstance(event, ToolResultEvent)
        self.assertEqual(event.tool_name, "echo")

    async def test_unknown_capability(self):
        call = ToolCallPart(tool_call_id="c2", tool_name="web_search", input={})

        result = await self.pipeline().invoke(self.ctx, call, self.table)

        self.assertTrue(result.is_error)
        self.assertEqual(result.output, "web_search tool does not exist")
        self.assertEqual(self.ctx.consecutive_errors, 1)

    async def test_success_resets_error_counter(self):
        self.ctx.consecutive_errors = 4
        await self.pipeline().invoke(self.ctx, self.call, self.table)
        self.assertEqual(self.ctx.consecutive_errors, 0)

    async def test_after_invocation_receives_result(self):
        after = AsyncMock()
        await self.pipeline(after_invocation=after).invoke(self.ctx, self.call, self.table)

        after.assert_awaited_once()
        name, arguments, result = after.await_args.args[1:]
        self.assertEqual((name, arguments), ("echo", {"text": "hi"}))
        self.assertEqual(result.text_content(), "echoed")

    def test_render_result(self):
        result = CapabilityResult(content=[TextContent(text="shot taken"), ImageContent(data="AAAA")])
        self.assertEqual(render_result(result), "shot taken\n[image: image/png]")


class TestPreInvocation(PolicyPipelineTestBase):
    async def test_block(self):
        hook = AsyncMock(return_value=PreInvocationDecision(allow=False, reason="dangerous"))

        result = await self.pipeline(before_invocation=hook).invoke(self.ctx, self.call, self.table)

        self.assertEqual(result.output, "Blocked: dangerous")
        self.assertTrue(result.is_error)
        self.func.assert_not_awaited()
        self.assertEqual(self.ctx.run.invocations[0].outcome_of(PolicyStage.PRE_INVOCATION), "block")

    async def test_skip(self):
        hook = AsyncMock(return_value=PreInvocationDecision(skip=True, reason="already done"))

        result = await self.pipeline(before_invocation=hook).invoke(self.ctx, self.call, self.table)

        self.assertEqual(result.output, "Skipped: already done")
        self.assertFalse(result.is_error)
        self.func.assert_not_awaited()

    async def test_modified_arguments(self):
        hook = AsyncMock(return_value=PreInvocationDecision(modified_arguments={"text": "safe"}))

        await self.pipeline(before_invocation=hook).invoke(self.ctx, self.call, self.table)

        self.func.assert_awaited_once_with({"text": "safe"}, self.ctx)
        self.assertEqual(self.callback.events[-1].params, {"text": "safe"})

    async def test_failing_hook_allows(self):
        hook = AsyncMock(side_effect=RuntimeError("policy service down"))

        result = await self.pipeline(before_invocation=hook).invoke(self.ctx, self.call, self.table)

        self.assertEqual(result.output, "echoed")

    async def test_escalate_without_approval_hook(self):
        hook = AsyncMock(return_value=PreInvocationDecision(escalate=True, reason="payment"))

        result = await self.pipeline(before_invocation=hook).invoke(self.ctx, self.call, self.table)

        self.assertEqual(result.output, "Action requires human approval: payment. Please request human assistance.")
        self.func.assert_not_awaited()

    async def test_escalate_approved(self):
        hook = AsyncMock(return_value=PreInvocationDecision(escalate=True, reason="payment"))
        approval = AsyncMock(return_value=ApprovalResult(approved=True, approver="alice"))

        result = await self.pipeline(before_invocation=hook, on_approval_required=approval).invoke(
            self.ctx, self.call, self.table)

        self.assertEqual(result.output, "echoed")
        request = approval.await_args.args[1]
        self.assertEqual(request.context["capability"], "echo")
        self.assertEqual(self.ctx.run.invocations[0].outcome_of(PolicyStage.APPROVAL), "approved")

    async def test_escalate_denied(self):
        hook = AsyncMock(return_value=PreInvocationDecision(escalate=True, reason="payment"))
        approval = AsyncMock(return_value=ApprovalResult(approved=False, feedback="too expensive"))

        result = await self.pipeline(before_invocation=hook, on_approval_required=approval).invoke(
            self.ctx, self.call, self.table)

        self.assertEqual(result.output, "Action rejected: too expensive")
        self.func.assert_not_awaited()


class TestOnException(PolicyPipelineTestBase):
    async def test_retry_then_success(self):
        self.func.side_effect = [RuntimeError("flaky"), "echoed"]
        on_exception = AsyncMock(return_value=ExceptionAction.RETRY)

        result = await self.pipeline(on_exception=on_exception).invoke(self.ctx, self.call, self.table)

        self.assertEqual(result.output, "echoed")
        self.assertEqual([record.attempt for record in self.ctx.run.invocations], [0, 1])
        self.assertEqual(self.ctx.run.invocations[0].outcome_of(PolicyStage.ON_EXCEPTION), "retry")
        self.assertEqual(self.ctx.consecutive_errors, 0)

    async def test_retries_exhausted(self):
        self.config.max_invocation_retries = 2
        self.func.side_effect = RuntimeError("boom")
        on_exception = AsyncMock(return_value=ExceptionAction.RETRY)

        result = await self.pipeline(on_exception=on_exception).invoke(self.ctx, self.call, self.table)

        self.assertEqual(result.output, "Error after 2 retries: boom")
        self.assertTrue(result.is_error)
        self.assertEqual(self.func.await_count, 3)

    async def test_skip(self):
        self.func.side_effect = RuntimeError("boom")
        on_exception = AsyncMock(return_value=ExceptionAction.SKIP)

        result = await self.pipeline(on_exception=on_exception).invoke(self.ctx, self.call, self.table)

        self.assertEqual(result.output, "Skipped due to error: boom")
        self.assertFalse(result.is_error)

    async def test_abort(self):
        self.func.side_effect = RuntimeError("boom")
        on_exception = AsyncMock(return_value=ExceptionAction.ABORT)

        with self.assertRaisesRegex(RuntimeError, "boom"):
            await self.pipeline(on_exception=on_exception).invoke(self.ctx, self.call, self.table)

    async def test_escalate(self):
        self.func.side_effect = RuntimeError("boom")
        on_exception = AsyncMock(return_value=ExceptionAction.ESCALATE)

        result = await self.pipeline(on_exception=on_exception).invoke(self.ctx, self.call, self.table)

        self.assertEqual(result.output, "Error requires human assistance: boom.")

    async def test_without_hook_error_goes_to_model(self):
        self.func.side_effect = RuntimeError("boom")

        result = await self.pipeline().invoke(self.ctx, self.call, self.table)

        self.assertEqual(result.output, "boom")
        self.assertTrue(result.is_error)

    async def test_circuit_breaker(self):
        self.func.side_effect = RuntimeError("boom")
        pipeline = self.pipeline()

        for _ in range(9):
            result = await pipeline.invoke(self.ctx, self.call, self.table)
            self.assertTrue(result.is_error)
        with self.assertRaises(CircuitBreakerTrippedError) as info:
            await pipeline.invoke(self.ctx, self.call, self.table)
        self.assertEqual(info.exception.consecutive_errors, 10)


if __name__ == '__main__':
    unittest.main()
