"""Apply a compaction to the message store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from session_compaction.context.compactor import CompactionConfig, RetentionPlan
from session_compaction.context.tokens import estimate_tokens
from session_compaction.observability import get_logger

if TYPE_CHECKING:
    from session_compaction.sessions.base import StoredMessage
    from session_compaction.sessions.store import MessageStore

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CommitResult:
    """What a committed compaction changed."""

    summary_message: StoredMessage
    tokens_before: int
    tokens_after: int
    messages_retired: int
    compacted_at: datetime

    @property
    def tokens_freed(self) -> int:
        return self.tokens_before - self.tokens_after


class CompactionCommitter:
    """Retires the compacted messages and inserts their summary.

    Everything happens in one ``MessageStore.commit_compaction`` call, so a
    failure leaves the session exactly as it was. Storage errors are not
    caught here.
    """

    def __init__(
        self,
        store: MessageStore,
        config: Optional[CompactionConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.config = config or CompactionConfig()
        self._clock = clock or _utcnow

    def summary_content(self, summary: str) -> str:
        """Stored form of a summary: prefix, blank line, summary text."""
        return f"{self.config.summary_prefix}\n\n{summary}"

    async def commit(
        self, session_id: str, plan: RetentionPlan, summary: str
    ) -> CommitResult:
        """Commit a compaction.

        Args:
            session_id: Session being compacted.
            plan: Selection whose ``compact`` set is retired.
            summary: Summary text (without prefix).

        Returns:
            CommitResult with the inserted summary message and token figures.

        Raises:
            StaleCompactionError: A message of the compact set is no longer active.
            StoreError: The store failed; nothing was changed.
        """
        content = self.summary_content(summary)
        tokens_after = plan.keep_tokens + estimate_tokens(content)
        compacted_at = self._clock()

        message = await self.store.commit_compaction(
            session_id,
            [m.id for m in plan.compact],
            content,
            tokens_after,
            compacted_at,
        )

        result = CommitResult(
            summary_message=message,
            tokens_before=plan.tokens_before,
            tokens_after=tokens_after,
            messages_retired=len(plan.compact),
            compacted_at=compacted_at,
        )
        logger.debug(
            "compaction.committed",
            session_id=session_id,
            summary_message_id=message.id,
            messages_retired=result.messages_retired,
            tokens_before=result.tokens_before,
            tokens_after=result.tokens_after,
        )
        return result
