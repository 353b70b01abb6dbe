"""Cheap prompt size heuristics used to decide when to compress a transcript."""

import json
import math
import re

from agentloom.capability.types import CapabilityDescriptor
from agentloom.reasoning.messages import Message

_CJK_RANGES = (
    (0x4E00, 0x9FFF),
    (0x3400, 0x4DBF),
    (0x3040, 0x309F),
    (0x30A0, 0x30FF),
    (0xAC00, 0xD7AF),
)
_TOKEN = re.compile(r"[A-Za-z]+|[0-9]+|\S")


def _is_cjk(char: str) -> bool:
    code = ord(char)
    return any(low <= code <= high for low, high in _CJK_RANGES)


def estimate_tokens(text: str) -> int:
    """Estimate the token count of *text*.

    CJK characters count two tokens, ASCII words up to four letters one token
    and longer words one token per four letters, digit runs one token per
    three digits, any other visible character one token.
    """
    if not text:
        return 0
    count = 0
    for match in _TOKEN.finditer(text):
        token = match.group()
        if len(token) == 1 and _is_cjk(token):
            count += 2
        elif token[0].isascii() and token[0].isalpha():
            count += 1 if len(token) <= 4 else math.ceil(len(token) / 4)
        elif token[0].isascii() and token[0].isdigit():
            count += max(1, math.ceil(len(token) / 3))
        else:
            count += 1
    return max(1, count)


def estimate_prompt_tokens(messages: list[Message], tools: list[CapabilityDescriptor] | None = None) -> int:
    tokens = sum(estimate_tokens(message.flatten()) for message in messages)
    for tool in tools or []:
        tokens += estimate_tokens(json.dumps(tool.model_dump(by_alias=True), ensure_ascii=False))
    return tokens
