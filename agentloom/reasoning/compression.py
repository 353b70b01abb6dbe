"""History compression strategies.

The reasoning gateway calls :meth:`HistoryCompressor.compress` when a
transcript grows beyond the configured thresholds.  Compressors rewrite the
transcript in place; the system prompt and the first user message (the task)
are always kept.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from agentloom.capability.types import CapabilityDescriptor
from agentloom.llm.types import ChatLLM
from agentloom.reasoning.messages import Message, TextPart, ToolResultPart
from agentloom.template import TemplateEnvironment

if TYPE_CHECKING:
    from agentloom.runtime.context import AgentContext

logger = logging.getLogger(__name__)


class HistoryCompressor(ABC):
    @abstractmethod
    async def compress(
            self,
            agent_ctx: 'AgentContext',
            messages: list[Message],
            capabilities: list[CapabilityDescriptor],
    ) -> None:
        """Shrink *messages* in place."""
        pass


def _head_length(messages: list[Message]) -> int:
    """Number of leading messages that are never compressed: the system prompt and the task."""
    head = 0
    if messages and messages[0].role == "system":
        head = 1
    if len(messages) > head and messages[head].role == "user":
        head += 1
    return head


def _tail_start(messages: list[Message], head: int, keep_recent: int) -> int:
    start = max(head, len(messages) - keep_recent)
    # A tool message must follow the assistant message carrying its calls
    while start < len(messages) and messages[start].role == "tool":
        start += 1
    return start


def truncate_large_parts(messages: list[Message], max_length: int):
    for message in messages:
        for idx, part in enumerate(message.content):
            if isinstance(part, TextPart) and len(part.text) > max_length:
                message.content[idx] = TextPart(text=part.text[:max_length] + "...[truncated]")
            elif isinstance(part, ToolResultPart) and len(part.output) > max_length:
                message.content[idx] = part.model_copy(update={"output": part.output[:max_length] + "...[truncated]"})


class TruncatingCompressor(HistoryCompressor):
    """Drops the middle of the transcript, keeping the task and the most recent messages"""

    def __init__(self, keep_recent: int = 20, max_part_length: int | None = None):
        self.keep_recent = keep_recent
        self.max_part_length = max_part_length

    async def compress(self, agent_ctx: 'AgentContext', messages: list[Message],
                       capabilities: list[CapabilityDescriptor]) -> None:
        head = _head_length(messages)
        start = _tail_start(messages, head, self.keep_recent)
        dropped = start - head
        if dropped > 0:
            messages[head:start] = [Message.user(f"[{dropped} earlier messages omitted to save context]")]
            logger.info("Compressed transcript of %s: dropped %d messages", agent_ctx.agent.id, dropped)
        truncate_large_parts(messages, self.max_part_length or agent_ctx.config.large_text_length)


class SummarizingCompressor(HistoryCompressor):
    """Replaces the middle of the transcript with a model written summary"""

    def __init__(self, chat_llm: ChatLLM, template_env: TemplateEnvironment, keep_recent: int = 10,
                 max_part_length: int | None = None, lang: str | None = None):
        self.chat_llm = chat_llm
        self.template = template_env.load_template("compress_history.jinja2", lang=lang)
        self.keep_recent = keep_recent
        self.max_part_length = max_part_length

    async def compress(self, agent_ctx: 'AgentContext', messages: list[Message],
                       capabilities: list[CapabilityDescriptor]) -> None:
        head = _head_length(messages)
        start = _tail_start(messages, head, self.keep_recent)
        if start <= head:
            truncate_large_parts(messages, self.max_part_length or agent_ctx.config.large_text_length)
            return
        prompt = self.template.render(
            task=messages[head - 1].text() if head else "",
            messages=[(message.role, message.flatten()) for message in messages[head:start]],
            capabilities=[capability.name for capability in capabilities],
        )
        summary = await self.chat_llm.chat([{"role": "user", "content": prompt}])
        messages[head:start] = [Message.user(f"Summary of the progress so far:\n{summary}")]
        logger.info("Summarized %d messages of %s", start - head, agent_ctx.agent.id)
        truncate_large_parts(messages, self.max_part_length or agent_ctx.config.large_text_length)
