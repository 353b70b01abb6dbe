from agentloom.config.capability import SseProviderConfig, StdioProviderConfig
from .base import CapabilityProviderClient
from .sse import SseCapabilityClient
from .stdio import StdioCapabilityClient


def build_provider_client(config: SseProviderConfig | StdioProviderConfig,
                          client_name: str = "agentloom") -> CapabilityProviderClient:
    if isinstance(config, SseProviderConfig):
        return SseCapabilityClient(
            config.url,
            client_name=client_name,
            headers=config.headers,
            connect_timeout=config.connect_timeout,
            request_timeout=config.request_timeout,
            heartbeat_interval=config.heartbeat_interval,
            reconnect_delay=config.reconnect_delay,
        )
    if isinstance(config, StdioProviderConfig):
        return StdioCapabilityClient(
            config.command,
            config.args,
            env=config.env,
            cwd=config.cwd,
            client_name=client_name,
            request_timeout=config.request_timeout,
        )
    raise Exception(f'Unexpected Config: {config}')
