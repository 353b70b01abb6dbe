"""Task executor: walks the compiled stage list of a plan and runs its agents."""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Literal

from agentloom.config.runtime import RuntimeConfig
from agentloom.exceptions import TaskCancelledError, UnknownAgentError
from agentloom.plan.tree import build_execution_tree, compile_plan, describe_stage, mark_parallel
from agentloom.plan.types import AgentStatus, ExecutionStage, NormalStage, Plan, PlanAgent
from agentloom.runtime.agent import Agent
from agentloom.runtime.callback import AgentResultEvent, AgentStartEvent, LifecycleCallback, PlanEvent
from agentloom.runtime.context import AgentContext, TaskContext
from agentloom.runtime.policy import ExceptionAction, PolicyHooks
from agentloom.tracer import trace_stage, trace_task

logger = logging.getLogger(__name__)


@dataclass
class TaskResult:
    task_id: str
    success: bool
    stop_reason: Literal["done", "abort", "error"]
    result: str
    error: BaseException | None = None


class TaskExecutor:
    """Runs plans with a fixed set of agents and keeps the contexts of its tasks for control calls"""

    def __init__(
            self,
            agents: list[Agent],
            config: RuntimeConfig | None = None,
            hooks: PolicyHooks | None = None,
            callback: LifecycleCallback | None = None,
    ):
        self.agents: dict[str, Agent] = {agent.name: agent for agent in agents}
        self.config = config or RuntimeConfig()
        self.hooks = hooks or PolicyHooks()
        self.callback = callback
        self.tasks: dict[str, TaskContext] = {}

    def create_context(self, plan: Plan, task_id: str | None = None,
                       variables: dict[str, Any] | None = None) -> TaskContext:
        task_ctx = TaskContext(
            task_id=task_id or plan.id or uuid.uuid4().hex,
            config=self.config,
            plan=plan,
            callback=self.callback,
            hooks=self.hooks,
            variables=variables,
        )
        self.tasks[task_ctx.task_id] = task_ctx
        return task_ctx

    async def run_plan(self, plan: Plan, task_id: str | None = None,
                       variables: dict[str, Any] | None = None) -> TaskResult:
        return await self.execute(self.create_context(plan, task_id, variables))

    @trace_task(name_getter=lambda self, task_ctx: task_ctx.task_id)
    async def execute(self, task_ctx: TaskContext) -> TaskResult:
        """Run every stage of the task's plan; errors end up in the result, never raised."""
        self.tasks[task_ctx.task_id] = task_ctx
        if task_ctx.paused:
            task_ctx.resume()
        if task_ctx.cancelled:
            task_ctx.reset()
        try:
            last = await self._run_stages(task_ctx)
        except Exception as e:
            logger.error("Task %s failed: %s", task_ctx.task_id, e)
            return TaskResult(
                task_id=task_ctx.task_id,
                success=False,
                stop_reason="abort" if isinstance(e, TaskCancelledError) else "error",
                result=f"{type(e).__name__}: {e}",
                error=e,
            )

        result = TaskResult(task_id=task_ctx.task_id, success=True, stop_reason="done", result=last)
        if task_ctx.hooks.on_task_complete is not None:
            try:
                await task_ctx.hooks.on_task_complete(task_ctx, result)
            except Exception as e:
                logger.error("on_task_complete hook failed for %s: %s", task_ctx.task_id, e)
        return result

    async def _run_stages(self, task_ctx: TaskContext) -> str:
        plan = task_ctx.plan
        if plan is None:
            raise ValueError(f"Task {task_ctx.task_id} has no plan")
        await task_ctx.emit(PlanEvent(task_id=task_ctx.task_id, markup=plan.markup))
        stage: ExecutionStage | None = compile_plan(plan)
        last = ""
        while stage is not None:
            await task_ctx.check_cancelled()
            results = await self.run_stage(task_ctx, stage)
            stage.result = "\n\n".join(results)
            last = stage.result
            task_ctx.take_interventions()
            if task_ctx.hooks.on_stage_complete is not None:
                try:
                    await task_ctx.hooks.on_stage_complete(task_ctx, results)
                except TaskCancelledError:
                    raise
                except Exception as e:
                    logger.error("on_stage_complete hook failed for %s: %s", task_ctx.task_id, e)
            if plan.modified:
                plan.modified = False
                stage = self._rebuild_stages(plan)
            else:
                stage = stage.next
        return last

    @staticmethod
    def _rebuild_stages(plan: Plan) -> ExecutionStage | None:
        pending = plan.pending_agents()
        if not pending:
            return None
        pending_ids = {agent.id for agent in pending}
        declared = {agent.id: list(agent.depends_on) for agent in pending}
        root = build_execution_tree(pending)
        mark_parallel(root)
        # Keep the dependencies on finished agents that compiling the remainder dropped
        for agent in pending:
            repaired = set(agent.depends_on)
            agent.depends_on = [dep_id for dep_id in declared[agent.id]
                                if dep_id not in pending_ids or dep_id in repaired]
        logger.info("Plan %s modified, continuing with %d pending agents", plan.id, len(pending))
        return root

    def _agent_parallel(self, task_ctx: TaskContext) -> bool:
        override = task_ctx.variables.get("agentParallel")
        if override is None:
            return task_ctx.config.agent_parallel
        if isinstance(override, str):
            return override.strip().lower() == "true"
        return bool(override)

    @trace_stage(name_getter=lambda self, task_ctx, stage: describe_stage(stage))
    async def run_stage(self, task_ctx: TaskContext, stage: ExecutionStage) -> list[str]:
        if isinstance(stage, NormalStage):
            stage.result = await self.run_agent(task_ctx, stage.agent)
            return [stage.result]

        if self._agent_parallel(task_ctx):
            outcomes = await asyncio.gather(
                *(self.run_agent(task_ctx, member.agent) for member in stage.stages),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            for member, outcome in zip(stage.stages, outcomes):
                member.result = outcome
        else:
            for member in stage.stages:
                member.result = await self.run_agent(task_ctx, member.agent)
        return [member.result for member in stage.stages]

    async def run_agent(self, task_ctx: TaskContext, plan_agent: PlanAgent) -> str:
        agent = self.agents.get(plan_agent.name)
        if agent is None:
            raise UnknownAgentError(plan_agent.name)
        retries = 0
        while True:
            agent_ctx = AgentContext(task_ctx, plan_agent)
            plan_agent.status = AgentStatus.RUNNING
            await agent_ctx.emit(AgentStartEvent(**agent_ctx.event_fields(), task=plan_agent.task))
            try:
                result = await agent.run(agent_ctx)
            except Exception as e:
                plan_agent.status = AgentStatus.ERROR
                agent_ctx.run.finish(error=e)
                action = await self._on_agent_error(agent_ctx, e)
                if action == ExceptionAction.RETRY and retries < task_ctx.config.agent_retries:
                    retries += 1
                    plan_agent.status = AgentStatus.INIT
                    logger.info("Retrying agent %s (attempt %d)", plan_agent.id, retries)
                    continue
                task_ctx.chain.add(agent_ctx.run)
                if action == ExceptionAction.SKIP:
                    result = f"Skipped due to error: {e}"
                    plan_agent.status = AgentStatus.DONE
                    agent_ctx.run.result = result
                    await agent_ctx.emit(AgentResultEvent(**agent_ctx.event_fields(), result=result))
                    return result
                await agent_ctx.emit(AgentResultEvent(**agent_ctx.event_fields(), error=str(e)))
                raise

            plan_agent.status = AgentStatus.DONE
            if await self._should_retry(agent_ctx, result) and retries < task_ctx.config.agent_retries:
                retries += 1
                plan_agent.status = AgentStatus.INIT
                logger.info("Rerunning agent %s on request of after_agent_complete", plan_agent.id)
                continue
            agent_ctx.run.finish(result=result)
            task_ctx.chain.add(agent_ctx.run)
            await agent_ctx.emit(AgentResultEvent(**agent_ctx.event_fields(), result=result))
            return result

    async def _on_agent_error(self, agent_ctx: AgentContext, error: Exception) -> ExceptionAction | None:
        hook = agent_ctx.task.hooks.on_agent_error
        if hook is None or isinstance(error, TaskCancelledError):
            return None
        try:
            return await hook(agent_ctx, error)
        except TaskCancelledError:
            raise
        except Exception as e:
            logger.error("on_agent_error hook failed for %s: %s", agent_ctx.agent.id, e)
            return None

    async def _should_retry(self, agent_ctx: AgentContext, result: str) -> bool:
        hook = agent_ctx.task.hooks.after_agent_complete
        if hook is None:
            return False
        try:
            decision = await hook(agent_ctx, result)
        except TaskCancelledError:
            raise
        except Exception as e:
            logger.error("after_agent_complete hook failed for %s: %s", agent_ctx.agent.id, e)
            return False
        return decision is not None and decision.retry

    def get_task(self, task_id: str) -> TaskContext | None:
        return self.tasks.get(task_id)

    def delete_task(self, task_id: str) -> bool:
        return self.tasks.pop(task_id, None) is not None

    def cancel(self, task_id: str, reason: str | None = None) -> bool:
        task_ctx = self.tasks.get(task_id)
        if task_ctx is None:
            return False
        task_ctx.cancel(reason)
        return True

    def pause(self, task_id: str, abort_current_step: bool = False) -> bool:
        task_ctx = self.tasks.get(task_id)
        if task_ctx is None:
            return False
        task_ctx.pause(abort_current_step)
        return True

    def resume(self, task_id: str) -> bool:
        task_ctx = self.tasks.get(task_id)
        if task_ctx is None:
            return False
        task_ctx.resume()
        return True

    def add_intervention(self, task_id: str, text: str) -> bool:
        task_ctx = self.tasks.get(task_id)
        if task_ctx is None:
            return False
        task_ctx.add_intervention(text)
        return True
