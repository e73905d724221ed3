"""Continuation summaries for compacted conversation history.

The summarizer renders the messages selected for compaction into a
role-tagged transcript, asks an injected LLM provider for a structured
continuation summary and extracts the ``<summary>`` block from the reply.
Failures never escape: the caller gets ``SummaryResult(ok=False)`` and the
message store is never touched here.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from session_compaction.context.tokens import TokenUsage
from session_compaction.llm.base import Message, MessageRole
from session_compaction.observability import get_logger

if TYPE_CHECKING:
    from session_compaction.llm.base import LLMProvider

logger = get_logger(__name__)

DEFAULT_SUMMARY_TEMPLATE = """You have been working on the task described in the conversation below but have not yet completed it. Write a continuation summary that will allow you (or another instance of yourself) to resume work efficiently in a future context window where the conversation history will be replaced with this summary.

<conversation_history>
{conversation}
</conversation_history>

Your summary should be structured, concise, and actionable. Include:

1. Task Overview
   - The user's core request and success criteria
   - Any clarifications or constraints they specified

2. Current State
   - What has been completed so far
   - Files created, modified, or analyzed (with paths if relevant)
   - Key outputs or artifacts produced

3. Important Discoveries
   - Technical constraints or requirements uncovered
   - Decisions made and their rationale
   - Errors encountered and how they were resolved
   - What approaches were tried that didn't work (and why)

4. Next Steps
   - Specific actions needed to complete the task
   - Any blockers or open questions to resolve
   - Priority order if multiple steps remain

5. Context to Preserve
   - User preferences or style requirements
   - Domain-specific details that aren't obvious
   - Any promises made to the user

Be concise but complete. Err on the side of including information that would prevent duplicate work or repeated mistakes. Write in a way that enables immediate resumption of the task.

Wrap your summary in <summary></summary> tags."""


class SummaryPrompt(BaseModel):
    """Configuration for the continuation-summary request."""

    template: str = Field(
        default=DEFAULT_SUMMARY_TEMPLATE,
        description="Request text; must contain a {conversation} placeholder",
    )
    open_tag: str = Field(default="<summary>", description="Start of the summary block")
    close_tag: str = Field(default="</summary>", description="End of the summary block")
    role_tags: Dict[str, str] = Field(
        default_factory=lambda: {
            "user": "user_message",
            "assistant": "assistant_message",
            "system": "system_message",
        },
        description="Transcript tag used for each message role",
    )

    def render(self, conversation: str) -> str:
        return self.template.format(conversation=conversation)


@dataclass(frozen=True)
class SummaryResult:
    """Outcome of a summarization attempt."""

    ok: bool
    summary: Optional[str] = None
    usage: Optional[TokenUsage] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "SummaryResult":
        return cls(ok=False, error=error)


def _role_of(message: Any) -> str:
    role = message.get("role", "") if isinstance(message, dict) else getattr(message, "role", "")
    if hasattr(role, "value"):
        return role.value
    return str(role)


def _content_of(message: Any) -> str:
    if isinstance(message, dict):
        return message.get("content", "") or ""
    return getattr(message, "content", "") or ""


def extract_summary(text: str, open_tag: str = "<summary>", close_tag: str = "</summary>") -> str:
    """Return the text between the first tag pair, or the whole reply trimmed."""
    pattern = re.escape(open_tag) + r"(.*?)" + re.escape(close_tag)
    match = re.search(pattern, text, flags=re.DOTALL)
    if match:
        return match.group(1).strip()
    return text.strip()


class SummarizerAdapter:
    """Produces continuation summaries through an injected LLM provider."""

    def __init__(
        self,
        provider: LLMProvider,
        prompt: Optional[SummaryPrompt] = None,
        timeout: float = 120.0,
    ):
        """Initialize the summarizer.

        Args:
            provider: Summarization capability (anything with an async
                ``generate(messages)`` returning an ``LLMResponse``).
            prompt: Summary request configuration.
            timeout: Seconds before the call is abandoned and treated as a
                failure.
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be > 0, got: {timeout}")
        self._provider = provider
        self._prompt = prompt or SummaryPrompt()
        self._timeout = timeout

    @property
    def prompt(self) -> SummaryPrompt:
        return self._prompt

    @property
    def timeout(self) -> float:
        return self._timeout

    def format_transcript(self, messages: Sequence[Any]) -> str:
        """Render messages as role-tagged blocks separated by blank lines."""
        blocks: List[str] = []
        for message in messages:
            content = _content_of(message)
            tag = self._prompt.role_tags.get(_role_of(message))
            if tag:
                blocks.append(f"<{tag}>\n{content}\n</{tag}>")
            else:
                blocks.append(content)
        return "\n\n".join(blocks)

    def build_prompt(self, messages: Sequence[Any]) -> str:
        return self._prompt.render(self.format_transcript(messages))

    async def summarize(self, messages: Sequence[Any]) -> SummaryResult:
        """Summarize the messages selected for compaction.

        Args:
            messages: Messages ordered oldest to newest.

        Returns:
            SummaryResult; ``ok`` is false on transport errors, timeouts,
            malformed responses and empty replies.
        """
        if not messages:
            return SummaryResult.failed("no messages to summarize")

        request = [Message(role=MessageRole.USER, content=self.build_prompt(messages))]
        try:
            response = await asyncio.wait_for(
                self._provider.generate(request), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "summarizer.timeout", timeout=self._timeout, messages=len(messages)
            )
            return SummaryResult.failed(f"summarization timed out after {self._timeout}s")
        except Exception as e:
            logger.error("summarizer.failed", error=str(e), error_type=type(e).__name__)
            return SummaryResult.failed(f"{type(e).__name__}: {e}")

        text = getattr(response, "content", None)
        if not isinstance(text, str):
            logger.error("summarizer.malformed_response", response_type=type(response).__name__)
            return SummaryResult.failed("summarization response has no text content")

        summary = extract_summary(text, self._prompt.open_tag, self._prompt.close_tag)
        if not summary:
            logger.error("summarizer.empty_summary")
            return SummaryResult.failed("summarization returned an empty summary")

        try:
            usage = TokenUsage.from_mapping(getattr(response, "usage", None))
        except ValueError as e:
            logger.error("summarizer.malformed_usage", error=str(e))
            return SummaryResult.failed(f"summarization response has malformed usage: {e}")

        logger.debug(
            "summarizer.completed",
            messages=len(messages),
            summary_chars=len(summary),
            input_tokens=usage.input_tokens if usage else None,
            output_tokens=usage.output_tokens if usage else None,
        )
        return SummaryResult(ok=True, summary=summary, usage=usage)
