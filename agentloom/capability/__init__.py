from .base import BaseCapability, FunctionCapability
from .builtin import (
    ForeachTaskCapability,
    HumanInteractCapability,
    VariableStorageCapability,
    WatchTriggerCapability,
    builtin_capabilities,
)
from .registry import CapabilityTable, merge_capabilities
from .types import CapabilityDescriptor, CapabilityResult, ImageContent, TextContent

__all__ = [
    "BaseCapability",
    "CapabilityDescriptor",
    "CapabilityResult",
    "CapabilityTable",
    "ForeachTaskCapability",
    "FunctionCapability",
    "HumanInteractCapability",
    "ImageContent",
    "TextContent",
    "VariableStorageCapability",
    "WatchTriggerCapability",
    "builtin_capabilities",
    "merge_capabilities",
]
