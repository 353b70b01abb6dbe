"""The agent loop: reason, invoke capabilities, repeat until a final answer."""

import asyncio
import logging
from datetime import datetime

from agentloom.capability.base import BaseCapability
from agentloom.capability.builtin import builtin_capabilities
from agentloom.capability.registry import CapabilityTable, merge_capabilities
from agentloom.exceptions import AgentLoomError, PolicyBlockedError, ProtocolError, TaskCancelledError
from agentloom.llm.logger import LLMLogger
from agentloom.llm.types import ChatLLM
from agentloom.plan.codec import build_agent_prompt_markup
from agentloom.plan.types import ForEachNode, WatchNode
from agentloom.protocol.base import CapabilityProviderClient
from agentloom.protocol.remote import RemoteCapability
from agentloom.reasoning.compression import HistoryCompressor
from agentloom.reasoning.gateway import ReasoningGateway
from agentloom.reasoning.messages import Message, TextPart, ToolCallPart, ToolResultPart, used_tool_names
from agentloom.runtime.context import AgentContext
from agentloom.runtime.pipeline import PolicyPipeline
from agentloom.runtime.policy import PolicyHooks
from agentloom.template import TemplateEnvironment
from agentloom.tracer import trace_agent

logger = logging.getLogger(__name__)

UNFINISHED = "Unfinished"
CONTINUE_PROMPT = "The task is not complete yet. Continue with the remaining steps, then give the final answer."


class Agent:
    """A named worker that carries out the plan agents assigned to it.

    Capabilities come from three places: the static ones given here, the
    built-in ones the plan markup asks for, and the ones discovered from the
    provider client at the start of a run.
    """

    def __init__(
            self,
            name: str,
            llm: ChatLLM,
            description: str = "",
            capabilities: list[BaseCapability] | None = None,
            provider_client: CapabilityProviderClient | None = None,
            hooks: PolicyHooks | None = None,
            compressor: HistoryCompressor | None = None,
            llm_logger: LLMLogger | None = None,
            template_env: TemplateEnvironment | None = None,
            lang: str | None = None,
            extra_prompt: str | None = None,
    ):
        self.name = name
        self.description = description
        self.capabilities = list(capabilities or [])
        self.provider_client = provider_client
        self.hooks = hooks
        self.gateway = ReasoningGateway(llm, compressor=compressor, llm_logger=llm_logger)
        self.template_env = template_env or TemplateEnvironment(package_name="agentloom", default_lang=lang)
        self.lang = lang
        self.extra_prompt = extra_prompt
        self._discovered: dict[str, BaseCapability] = {}
        self._active_runs = 0

    def policy_hooks(self, agent_ctx: AgentContext) -> PolicyHooks:
        return self.hooks or agent_ctx.task.hooks

    @trace_agent(name_getter=lambda self, agent_ctx: f"{self.name}:{agent_ctx.agent.id}")
    async def run(self, agent_ctx: AgentContext) -> str:
        """Run one plan agent to completion and return its answer."""
        await self._before_start(agent_ctx)
        llm_logger = self.gateway.llm_logger
        if llm_logger is not None:
            llm_logger.start_run(agent_ctx.task_id, agent_ctx.agent.id, self.name)
        self._active_runs += 1
        try:
            await self._connect(agent_ctx)
            agent_ctx.messages = self.build_messages(agent_ctx)
            return await self.run_loop(agent_ctx, agent_ctx.config.max_iterations)
        finally:
            self._active_runs -= 1
            # Parallel plan agents of the same agent share its provider client
            if self.provider_client is not None and self._active_runs == 0:
                await self.provider_client.close()
            if llm_logger is not None:
                llm_logger.complete_run(agent_ctx.task_id, agent_ctx.agent.id)

    async def _before_start(self, agent_ctx: AgentContext):
        hook = self.policy_hooks(agent_ctx).before_agent_start
        if hook is None:
            return
        try:
            decision = await hook(agent_ctx)
        except TaskCancelledError:
            raise
        except Exception as e:
            logger.error("before_agent_start hook failed for %s: %s", agent_ctx.agent.id, e)
            return
        if decision is not None and decision.block:
            raise PolicyBlockedError(decision.reason or "")

    async def _connect(self, agent_ctx: AgentContext):
        if self.provider_client is None or self.provider_client.is_connected():
            return
        try:
            with agent_ctx.task.call_token() as token:
                await self.provider_client.connect(token)
        except ProtocolError as e:
            logger.warning("Capability provider of %s unavailable: %s", self.name, e)

    def base_capabilities(self, agent_ctx: AgentContext) -> list[BaseCapability]:
        """Static capabilities plus the built-in ones the plan nodes need, static names winning."""
        static_names = {capability.name for capability in self.capabilities}
        builtins = [capability for capability in builtin_capabilities(agent_ctx.agent)
                    if capability.name not in static_names]
        return self.capabilities + builtins

    def build_messages(self, agent_ctx: AgentContext) -> list[Message]:
        agent = agent_ctx.agent
        system_prompt = self.template_env.load_template("agent_system.jinja2", lang=self.lang).render(
            agent_name=self.name,
            agent_description=self.description,
            datetime=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            has_variables=agent.uses_variables(),
            has_foreach=agent.has_node_type(ForEachNode),
            has_watch=agent.has_node_type(WatchNode),
            tools=self.base_capabilities(agent_ctx),
            extra=self.extra_prompt,
        )
        chain = agent_ctx.task.chain
        if agent.markup:
            task_markup = build_agent_prompt_markup(agent.markup, chain.task_prompt or agent.task)
        else:
            task_markup = agent.task
        previous_results = [
            f"{run.agent.name}: {run.result}"
            for run in chain.agent_runs
            if run.agent.id in agent.depends_on and run.result
        ]
        user_prompt = self.template_env.load_template("agent_user.jinja2", lang=self.lang).render(
            task_markup=task_markup,
            previous_results=previous_results,
        )
        return [Message.system(system_prompt), Message.user(user_prompt)]

    def should_refresh_capabilities(self, agent_ctx: AgentContext, loop_num: int) -> bool:
        return loop_num == 0

    async def discover_capabilities(self, agent_ctx: AgentContext) -> list[BaseCapability]:
        if self.provider_client is None:
            return []
        task = agent_ctx.task
        try:
            with task.call_token() as token:
                descriptors = await self.provider_client.list_capabilities(
                    {**agent_ctx.ext_info(), "prompt": agent_ctx.agent.task}, token)
        except TaskCancelledError:
            await task.check_cancelled()
            return []
        except AgentLoomError as e:
            logger.error("Capability discovery for %s failed: %s", self.name, e)
            return []
        capabilities: list[BaseCapability] = [RemoteCapability(descriptor, self.provider_client)
                                              for descriptor in descriptors]
        for capability in capabilities:
            self._discovered[capability.name] = capability
        logger.info("Discovered %d capabilities for %s", len(capabilities), self.name)
        return capabilities

    def build_table(self, agent_ctx: AgentContext, discovered: list[BaseCapability]) -> CapabilityTable:
        used = [self._discovered[name] for name in used_tool_names(agent_ctx.messages) if name in self._discovered]
        merged = merge_capabilities(merge_capabilities(self.base_capabilities(agent_ctx), used), discovered)
        return CapabilityTable(merged)

    async def run_loop(self, agent_ctx: AgentContext, max_iterations: int) -> str:
        task = agent_ctx.task
        pipeline = PolicyPipeline(self.policy_hooks(agent_ctx), agent_ctx.config)
        discovered: list[BaseCapability] = []
        checked = False
        for loop_num in range(max_iterations):
            await task.check_cancelled()
            if self.should_refresh_capabilities(agent_ctx, loop_num):
                discovered = await self.discover_capabilities(agent_ctx)
            table = self.build_table(agent_ctx, discovered)

            parts = await self.gateway.generate_step(agent_ctx, agent_ctx.messages, table.descriptors())
            force_stop = agent_ctx.variables.get("forceStop")
            if force_stop:
                return force_stop if isinstance(force_stop, str) else "Stopped"

            answer = await self.handle_step(agent_ctx, parts, table, pipeline)
            if answer is None:
                continue
            if agent_ctx.config.expert_mode and not checked:
                checked = True
                if not await self.check_completion(agent_ctx, answer):
                    agent_ctx.messages.append(Message.user(CONTINUE_PROMPT))
                    continue
            return answer
        logger.warning("Agent %s reached %d iterations without an answer", agent_ctx.agent.id, max_iterations)
        return UNFINISHED

    async def handle_step(self, agent_ctx: AgentContext, parts: list[TextPart | ToolCallPart],
                          table: CapabilityTable, pipeline: PolicyPipeline) -> str | None:
        """Record a reasoning step; returns the final answer or ``None`` to keep going."""
        if not parts:
            return None
        agent_ctx.messages.append(Message.assistant(parts))
        calls = [part for part in parts if isinstance(part, ToolCallPart)]
        if not calls:
            return "\n\n".join(part.text for part in parts if isinstance(part, TextPart))
        results = await self.invoke_all(agent_ctx, calls, table, pipeline)
        agent_ctx.messages.append(Message.tool(results))
        return None

    async def invoke_all(self, agent_ctx: AgentContext, calls: list[ToolCallPart], table: CapabilityTable,
                         pipeline: PolicyPipeline) -> list[ToolResultPart]:
        """Invoke the calls of one step; results come back in request order.

        Calls of concurrency safe capabilities run together first, the rest
        one after another.
        """
        results: list[ToolResultPart | None] = [None] * len(calls)
        concurrent: list[int] = []
        if agent_ctx.config.parallel_tool_calls:
            for index, call in enumerate(calls):
                capability = table.get(call.tool_name)
                if capability is not None and capability.supports_concurrency:
                    concurrent.append(index)
        if len(concurrent) > 1:
            outcomes = await asyncio.gather(
                *(pipeline.invoke(agent_ctx, calls[index], table) for index in concurrent),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            for index, outcome in zip(concurrent, outcomes):
                results[index] = outcome
        else:
            concurrent = []
        for index, call in enumerate(calls):
            if index not in concurrent:
                results[index] = await pipeline.invoke(agent_ctx, call, table)
        return [result for result in results if result is not None]

    async def check_completion(self, agent_ctx: AgentContext, answer: str) -> bool:
        hook = self.policy_hooks(agent_ctx).check_completion
        try:
            if hook is not None:
                return await hook(agent_ctx, answer)
            prompt = self.template_env.load_template("check_completion.jinja2", lang=self.lang).render(
                task=agent_ctx.agent.task,
                answer=answer,
            )
            reply = await self.gateway.chat_llm.chat([{"role": "user", "content": prompt}])
        except TaskCancelledError:
            raise
        except Exception as e:
            logger.error("Completion check of %s failed, accepting the answer: %s", agent_ctx.agent.id, e)
            return True
        return "incomplete" not in reply.lower()
