"""Policy pipeline around every capability invocation.

Stages run in order: pre-invocation (with optional approval), invocation,
exception handling and post-invocation.  Each stage records its outcome on
the invocation record of the attempt; a retry starts a new record.
"""

import asyncio
import logging
from typing import Any

from agentloom.capability.registry import CapabilityTable
from agentloom.capability.types import CapabilityResult, ImageContent
from agentloom.config.runtime import RuntimeConfig
from agentloom.exceptions import CircuitBreakerTrippedError, TaskCancelledError
from agentloom.reasoning.messages import ToolCallPart, ToolResultPart
from agentloom.runtime.callback import ToolResultEvent
from agentloom.runtime.context import AgentContext
from agentloom.runtime.policy import ApprovalRequest, ExceptionAction, PolicyHooks
from agentloom.runtime.records import CapabilityInvocationRecord, PolicyStage
from agentloom.tracer import trace_invocation

logger = logging.getLogger(__name__)


def render_result(result: CapabilityResult) -> str:
    """Text handed back to the model for a capability result."""
    chunks = []
    for part in result.content:
        if isinstance(part, ImageContent):
            chunks.append(f"[image: {part.mime_type}]")
        else:
            chunks.append(part.text)
    return "\n".join(chunks)


class PolicyPipeline:
    def __init__(self, hooks: PolicyHooks | None = None, config: RuntimeConfig | None = None):
        self.hooks = hooks or PolicyHooks()
        self.config = config or RuntimeConfig()

    @trace_invocation(name_getter=lambda self, agent_ctx, call, *args, **kwargs: call.tool_name)
    async def invoke(self, agent_ctx: AgentContext, call: ToolCallPart, table: CapabilityTable) -> ToolResultPart:
        record = self._new_record(agent_ctx, call.tool_call_id, call.tool_name, dict(call.input), 0)
        result = await self._pre_invocation(agent_ctx, record)
        if result is not None:
            record.complete(result=result)
        else:
            result = await self._invoke(agent_ctx, record, table)

        await agent_ctx.emit(ToolResultEvent(
            **agent_ctx.event_fields(),
            tool_id=call.tool_call_id,
            tool_name=call.tool_name,
            params=record.arguments,
            result=result,
        ))
        return ToolResultPart(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            output=render_result(result),
            is_error=result.is_error,
        )

    @staticmethod
    def _new_record(agent_ctx: AgentContext, call_id: str, name: str, arguments: dict[str, Any],
                    attempt: int) -> CapabilityInvocationRecord:
        record = CapabilityInvocationRecord(call_id=call_id, name=name, arguments=arguments, attempt=attempt)
        agent_ctx.run.add(record)
        return record

    async def _pre_invocation(self, agent_ctx: AgentContext,
                              record: CapabilityInvocationRecord) -> CapabilityResult | None:
        """Returns the final result when the invocation must not run."""
        if self.hooks.before_invocation is None:
            return None
        try:
            decision = await self.hooks.before_invocation(agent_ctx, record.name, record.arguments)
        except TaskCancelledError:
            raise
        except Exception as e:
            logger.error("before_invocation hook failed for %s, allowing: %s", record.name, e)
            record.record(PolicyStage.PRE_INVOCATION, "error", str(e))
            return None
        if decision is None:
            record.record(PolicyStage.PRE_INVOCATION, "allow")
            return None

        reason = decision.reason or ""
        if decision.skip:
            record.record(PolicyStage.PRE_INVOCATION, "skip", reason)
            return CapabilityResult.text(f"Skipped: {reason}")
        if decision.escalate:
            record.record(PolicyStage.PRE_INVOCATION, "escalate", reason)
            rejection = await self._request_approval(agent_ctx, record, reason)
            if rejection is not None:
                return rejection
        elif not decision.allow:
            record.record(PolicyStage.PRE_INVOCATION, "block", reason)
            return CapabilityResult.error(f"Blocked: {reason}")

        if decision.modified_arguments is not None:
            record.arguments = dict(decision.modified_arguments)
            record.record(PolicyStage.PRE_INVOCATION, "modify")
        elif not decision.escalate:
            record.record(PolicyStage.PRE_INVOCATION, "allow")
        return None

    async def _request_approval(self, agent_ctx: AgentContext, record: CapabilityInvocationRecord,
                                reason: str) -> CapabilityResult | None:
        if self.hooks.on_approval_required is None:
            record.record(PolicyStage.APPROVAL, "unavailable")
            return CapabilityResult.text(
                f"Action requires human approval: {reason}. Please request human assistance.")
        request = ApprovalRequest(
            description=f"{record.name}: {reason}",
            context={"capability": record.name, "arguments": record.arguments, "reason": reason},
        )
        try:
            approval = await self.hooks.on_approval_required(agent_ctx, request)
        except TaskCancelledError:
            raise
        except Exception as e:
            logger.error("on_approval_required hook failed for %s, rejecting: %s", record.name, e)
            record.record(PolicyStage.APPROVAL, "error", str(e))
            return CapabilityResult.text(f"Action rejected: {reason}")
        if not approval.approved:
            record.record(PolicyStage.APPROVAL, "denied", approval.feedback)
            return CapabilityResult.text(f"Action rejected: {approval.feedback or reason}")
        record.record(PolicyStage.APPROVAL, "approved", approval.approver)
        return None

    async def _invoke(self, agent_ctx: AgentContext, record: CapabilityInvocationRecord,
                      table: CapabilityTable) -> CapabilityResult:
        task = agent_ctx.task
        while True:
            try:
                capability = table.resolve(record.name)
                with task.call_token() as token:
                    result = await token.run(capability.invoke(record.arguments, agent_ctx))
            except TaskCancelledError:
                # Raises when the task is cancelled, waits while it is paused
                await task.check_cancelled()
                record.record(PolicyStage.INVOCATION, "aborted", "Pause")
                record.complete(error="Pause")
                record = self._new_record(agent_ctx, record.call_id, record.name, record.arguments, record.attempt)
                continue
            except Exception as e:
                record.record(PolicyStage.INVOCATION, "error", str(e))
                agent_ctx.consecutive_errors += 1
                result = await self._on_exception(agent_ctx, record, e)
                if result is None:
                    delay = self.config.invocation_retry_delay * (record.attempt + 1)
                    logger.info("Retrying %s in %.1fs (attempt %d)", record.name, delay, record.attempt + 1)
                    record.complete(error=str(e))
                    await asyncio.sleep(delay)
                    record = self._new_record(agent_ctx, record.call_id, record.name, record.arguments,
                                              record.attempt + 1)
                    continue
                record.complete(result=result, error=str(e))
                if agent_ctx.consecutive_errors >= self.config.circuit_breaker_threshold:
                    raise CircuitBreakerTrippedError(agent_ctx.consecutive_errors, e) from e
                return result

            record.record(PolicyStage.INVOCATION, "success")
            agent_ctx.consecutive_errors = 0
            record.complete(result=result)
            await self._post_invocation(agent_ctx, record, result)
            return result

    async def _on_exception(self, agent_ctx: AgentContext, record: CapabilityInvocationRecord,
                            error: Exception) -> CapabilityResult | None:
        """Resolve a failed attempt into its final result; ``None`` requests a retry."""
        logger.error("Capability %s failed: %s", record.name, error)
        if self.hooks.on_exception is None:
            record.record(PolicyStage.ON_EXCEPTION, "error")
            return CapabilityResult.error(str(error))
        try:
            action = await self.hooks.on_exception(agent_ctx, record.name, error, record.arguments)
        except TaskCancelledError:
            raise
        except Exception as e:
            logger.error("on_exception hook failed for %s: %s", record.name, e)
            record.record(PolicyStage.ON_EXCEPTION, "hook_error", str(e))
            return CapabilityResult.error(str(error))

        match action:
            case ExceptionAction.RETRY:
                if record.attempt < self.config.max_invocation_retries:
                    record.record(PolicyStage.ON_EXCEPTION, "retry")
                    return None
                record.record(PolicyStage.ON_EXCEPTION, "retry_exhausted")
                return CapabilityResult.error(
                    f"Error after {self.config.max_invocation_retries} retries: {error}")
            case ExceptionAction.SKIP:
                record.record(PolicyStage.ON_EXCEPTION, "skip")
                return CapabilityResult.text(f"Skipped due to error: {error}")
            case ExceptionAction.ABORT:
                record.record(PolicyStage.ON_EXCEPTION, "abort")
                record.complete(error=str(error))
                raise error
            case ExceptionAction.ESCALATE:
                record.record(PolicyStage.ON_EXCEPTION, "escalate")
                return CapabilityResult.error(f"Error requires human assistance: {error}.")
        record.record(PolicyStage.ON_EXCEPTION, "continue")
        return CapabilityResult.error(str(error))

    async def _post_invocation(self, agent_ctx: AgentContext, record: CapabilityInvocationRecord,
                               result: CapabilityResult):
        if self.hooks.after_invocation is None:
            return
        try:
            await self.hooks.after_invocation(agent_ctx, record.name, record.arguments, result)
        except TaskCancelledError:
            raise
        except Exception as e:
            logger.error("after_invocation hook failed for %s: %s", record.name, e)
