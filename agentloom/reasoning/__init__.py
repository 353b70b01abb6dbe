from .messages import ImagePart, Message, MessagePart, TextPart, ToolCallPart, ToolResultPart, used_tool_names
from .tokens import estimate_prompt_tokens, estimate_tokens

__all__ = [
    "ImagePart",
    "Message",
    "MessagePart",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "estimate_prompt_tokens",
    "estimate_tokens",
    "used_tool_names",
]
