from .base import CapabilityProviderClient, JsonRpcClient, check_response
from .factory import build_provider_client
from .remote import RemoteCapability
from .sse import EventStreamParser, ServerEvent, SseCapabilityClient
from .stdio import StdioCapabilityClient

__all__ = [
    "CapabilityProviderClient",
    "EventStreamParser",
    "JsonRpcClient",
    "RemoteCapability",
    "ServerEvent",
    "SseCapabilityClient",
    "StdioCapabilityClient",
    "build_provider_client",
    "check_response",
]
