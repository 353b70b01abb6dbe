import importlib.util

from agentloom.config.llm import AzureOpenAIChatConfig, ChatConfig, DeepSeekChatConfig, OpenAIChatConfig
from agentloom.exceptions import NoChatLLMConfigError
from .types import ChatLLM


class ChatLLMFactory:
    def __init__(self, default: ChatLLM | None = None):
        self.default = default

    @classmethod
    def build(cls, config: ChatConfig) -> ChatLLM:
        if not importlib.util.find_spec('openai'):
            raise Exception('No AI SDK found: please install openai')
        if isinstance(config, AzureOpenAIChatConfig | OpenAIChatConfig | DeepSeekChatConfig):
            from .oai import OpenAIChatLLM
            return OpenAIChatLLM.from_config(config)
        raise Exception(f'Unexpected Config: {config}')

    def get(self, config: ChatConfig | None = None) -> ChatLLM:
        if config:
            return self.build(config)
        if self.default:
            return self.default
        raise NoChatLLMConfigError()
