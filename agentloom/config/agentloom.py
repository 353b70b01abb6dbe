import logging

from pyaml_env import parse_config as parse_config_with_env
from pydantic import BaseModel, Field
from typing_extensions import Annotated

from agentloom.config.capability import ProviderConfig
from agentloom.config.llm import ChatConfig
from agentloom.config.runtime import RuntimeConfig

logger = logging.getLogger(__name__)


class AgentConfig(BaseModel):
    name: Annotated[str, Field(description="Agent name referenced by the plan's agent elements")]
    description: Annotated[str, Field(description="What the agent is good at", default="")]
    provider: Annotated[ProviderConfig | None, Field(
        description="Capability provider the agent discovers its capabilities from",
        default=None,
    )]
    chat_llm: Annotated[ChatConfig | None, Field(
        description="Reasoning engine of this agent, defaults to the top level one",
        default=None,
    )]
    extra_prompt: Annotated[str | None, Field(
        description="Additional instructions appended to the agent's system prompt",
        default=None,
    )]


class AgentLoomConfig(BaseModel):
    chat_llm: Annotated[ChatConfig | None, Field(default=None)]
    runtime: Annotated[RuntimeConfig, Field(default_factory=RuntimeConfig)]
    agents: Annotated[list[AgentConfig], Field(description="Agents available to plans", default_factory=list)]
    template_lang: Annotated[str | None, Field(default=None)]
    template_directory: Annotated[str | None, Field(
        description="Directory of prompt templates overriding the packaged ones, laid out as <lang>/<name>",
        default=None,
    )]
    log_directory: Annotated[str | None, Field(
        description="Directory of the reasoning call logs, disabled when not set",
        default=None,
    )]
    trace_directory: Annotated[str | None, Field(
        description="Directory of the exported traces, disabled when not set",
        default=None,
    )]


def load_config(path: str) -> AgentLoomConfig:
    """Load a YAML configuration file, substituting ``${ENV_VAR}`` references."""
    with open(path, 'r', encoding='utf-8') as f:
        config = parse_config_with_env(data=f, tag=None)
    config = AgentLoomConfig.model_validate(config)
    logger.debug(f"Loaded config: {config}")
    return config
