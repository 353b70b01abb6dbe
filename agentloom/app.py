"""Wiring of a :class:`TaskExecutor` from an :class:`AgentLoomConfig`."""

import logging
import os

from jinja2 import FileSystemLoader

from agentloom.config.agentloom import AgentLoomConfig
from agentloom.llm.factory import ChatLLMFactory
from agentloom.llm.logger import LLMLogger
from agentloom.protocol.factory import build_provider_client
from agentloom.runtime.agent import Agent
from agentloom.runtime.callback import LifecycleCallback
from agentloom.runtime.executor import TaskExecutor
from agentloom.runtime.policy import PolicyHooks
from agentloom.template import TemplateEnvironment

logger = logging.getLogger(__name__)


def build_agents(config: AgentLoomConfig, llm_logger: LLMLogger | None = None) -> list[Agent]:
    factory = ChatLLMFactory(ChatLLMFactory.build(config.chat_llm) if config.chat_llm else None)
    template_env = TemplateEnvironment(package_name="agentloom", default_lang=config.template_lang)
    if config.template_directory:
        lang = config.template_lang or "en"
        template_env.add_loaders(**{lang: FileSystemLoader(os.path.join(config.template_directory, lang))})
    agents = []
    for agent_config in config.agents:
        agents.append(Agent(
            agent_config.name,
            factory.get(agent_config.chat_llm),
            description=agent_config.description,
            provider_client=build_provider_client(agent_config.provider) if agent_config.provider else None,
            llm_logger=llm_logger,
            template_env=template_env,
            lang=config.template_lang,
            extra_prompt=agent_config.extra_prompt,
        ))
        logger.debug("Built agent %s", agent_config.name)
    return agents


def build_executor(
        config: AgentLoomConfig,
        hooks: PolicyHooks | None = None,
        callback: LifecycleCallback | None = None,
        llm_logger: LLMLogger | None = None,
) -> TaskExecutor:
    if llm_logger is None and config.log_directory:
        llm_logger = LLMLogger(config.log_directory)
    return TaskExecutor(build_agents(config, llm_logger), config=config.runtime, hooks=hooks, callback=callback)
