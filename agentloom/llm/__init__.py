from .factory import ChatLLMFactory
from .logger import LLMLogger, ReasoningCall
from .types import ChatLLM, FinishPart, ReasoningRequest, StreamPart, Usage

__all__ = [
    "ChatLLM",
    "ChatLLMFactory",
    "FinishPart",
    "LLMLogger",
    "ReasoningCall",
    "ReasoningRequest",
    "StreamPart",
    "Usage",
]
