from .agentloom import AgentConfig, AgentLoomConfig, load_config
from .capability import ProviderConfig, SseProviderConfig, StdioProviderConfig, validate_provider_config
from .llm import AzureOpenAIChatConfig, ChatConfig, DeepSeekChatConfig, OpenAIChatConfig, validate_chat_config
from .runtime import RuntimeConfig

__all__ = [
    "AgentConfig",
    "AgentLoomConfig",
    "AzureOpenAIChatConfig",
    "ChatConfig",
    "DeepSeekChatConfig",
    "OpenAIChatConfig",
    "ProviderConfig",
    "RuntimeConfig",
    "SseProviderConfig",
    "StdioProviderConfig",
    "load_config",
    "validate_chat_config",
    "validate_provider_config",
]
