from typing import Iterable, Iterator

from agentloom.capability.base import BaseCapability
from agentloom.capability.types import CapabilityDescriptor
from agentloom.exceptions import CapabilityNotFoundError


def merge_capabilities(
        first: Iterable[BaseCapability],
        second: Iterable[BaseCapability],
) -> list[BaseCapability]:
    """Merge two capability lists by name; entries of *second* replace same-named entries of *first*."""
    merged: dict[str, BaseCapability] = {}
    for capability in first:
        merged[capability.name] = capability
    for capability in second:
        merged[capability.name] = capability
    return list(merged.values())


class CapabilityTable:
    """Name keyed table of the capabilities available to one agent run"""

    def __init__(self, capabilities: Iterable[BaseCapability] = ()):
        self._capabilities: dict[str, BaseCapability] = {}
        for capability in capabilities:
            self.add(capability)

    def add(self, capability: BaseCapability):
        self._capabilities[capability.name] = capability

    def get(self, name: str) -> BaseCapability | None:
        return self._capabilities.get(name)

    def resolve(self, name: str) -> BaseCapability:
        capability = self._capabilities.get(name)
        if capability is None:
            raise CapabilityNotFoundError(name, self.names())
        return capability

    def names(self) -> list[str]:
        return list(self._capabilities.keys())

    def descriptors(self) -> list[CapabilityDescriptor]:
        return [capability.describe() for capability in self._capabilities.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._capabilities

    def __iter__(self) -> Iterator[BaseCapability]:
        return iter(self._capabilities.values())

    def __len__(self) -> int:
        return len(self._capabilities)
