from typing import TYPE_CHECKING, Any

from agentloom.capability.base import BaseCapability
from agentloom.capability.types import CapabilityDescriptor, CapabilityResult
from .base import CapabilityProviderClient

if TYPE_CHECKING:
    from agentloom.runtime.context import AgentContext


class RemoteCapability(BaseCapability):
    """Capability discovered from a provider, invoked through its client"""

    def __init__(self, descriptor: CapabilityDescriptor, client: CapabilityProviderClient):
        self.descriptor = descriptor
        self.client = client

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def description(self) -> str:
        return self.descriptor.description

    @property
    def input_schema(self) -> dict[str, Any]:
        return self.descriptor.input_schema

    def describe(self) -> CapabilityDescriptor:
        return self.descriptor

    async def invoke(self, arguments: dict[str, Any], ctx: 'AgentContext') -> CapabilityResult:
        with ctx.task.call_token() as token:
            return await self.client.invoke(self.name, arguments, token, ctx.ext_info())
