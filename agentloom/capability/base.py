from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from agentloom.capability.types import CapabilityDescriptor, CapabilityResult

if TYPE_CHECKING:
    from agentloom.runtime.context import AgentContext


class BaseCapability(ABC):
    """Abstract base class for all capabilities an agent may invoke"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the capability, used for dispatch"""
        pass

    @property
    def description(self) -> str:
        return ""

    @property
    def input_schema(self) -> dict[str, Any]:
        """JSON schema of the arguments"""
        return {"type": "object", "properties": {}}

    @property
    def supports_concurrency(self) -> bool:
        """Whether invocations may run concurrently with other concurrent capabilities"""
        return False

    def describe(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(name=self.name, description=self.description, input_schema=self.input_schema)

    @abstractmethod
    async def invoke(self, arguments: dict[str, Any], ctx: 'AgentContext') -> CapabilityResult:
        pass

    @staticmethod
    def result(text: str) -> CapabilityResult:
        return CapabilityResult.text(text)

    @staticmethod
    def error(text: str) -> CapabilityResult:
        return CapabilityResult.error(text)


class FunctionCapability(BaseCapability):
    """Capability backed by an async function of ``(arguments, ctx)``"""

    def __init__(
            self,
            name: str,
            func: Callable[[dict[str, Any], 'AgentContext'], Awaitable[CapabilityResult | str]],
            description: str = "",
            input_schema: dict[str, Any] | None = None,
            supports_concurrency: bool = False,
    ):
        self._name = name
        self._func = func
        self._description = description
        self._input_schema = input_schema or {"type": "object", "properties": {}}
        self._supports_concurrency = supports_concurrency

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._input_schema

    @property
    def supports_concurrency(self) -> bool:
        return self._supports_concurrency

    async def invoke(self, arguments: dict[str, Any], ctx: 'AgentContext') -> CapabilityResult:
        result = await self._func(arguments, ctx)
        if isinstance(result, str):
            return self.result(result)
        return result
