"""Session and message records.

A session is one long-running conversation. Messages are appended for
every user input, assistant output, system directive and compaction
summary, and are retired in place (never deleted) once folded into a
summary.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from session_compaction.context.tokens import EstimatedCount, ExactCount, TokenCount
from session_compaction.llm.base import MessageRole


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class MessageKind(str, Enum):
    """What produced a stored message."""

    TURN = "turn"  # user input, assistant output or system directive
    SUMMARY = "summary"  # continuation summary written by compaction


@dataclass
class Session:
    """Conversation session record.

    Attributes:
        session_id: Unique identifier.
        created_at: Creation time.
        updated_at: Last turn or compaction time.
        cumulative_token_count: Cached estimate of the current context usage,
            set at turn-processing or compaction time.
        last_compacted_at: Time of the last successful compaction, if any.
    """

    session_id: str
    created_at: datetime
    updated_at: datetime
    cumulative_token_count: int = 0
    last_compacted_at: Optional[datetime] = None

    @classmethod
    def create(cls, session_id: str, now: Optional[datetime] = None) -> "Session":
        if not session_id:
            raise ValueError("session_id is required")
        now = now or utcnow()
        return cls(session_id=session_id, created_at=now, updated_at=now)

    def seconds_since_compaction(self, now: Optional[datetime] = None) -> float:
        """Elapsed seconds since the last compaction (infinite if none)."""
        if self.last_compacted_at is None:
            return float("inf")
        now = now or utcnow()
        return (now - self.last_compacted_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "cumulative_token_count": self.cumulative_token_count,
            "last_compacted_at": (
                self.last_compacted_at.isoformat() if self.last_compacted_at else None
            ),
        }


@dataclass(frozen=True)
class StoredMessage:
    """A persisted conversation message.

    ``seq`` is the canonical per-session order key; ``created_at`` is for
    display only. ``token_count`` is set only when a model call reported an
    exact figure for this message.
    """

    id: int
    session_id: str
    seq: int
    role: MessageRole
    content: str
    created_at: datetime
    retired: bool = False
    token_count: Optional[int] = None
    kind: MessageKind = MessageKind.TURN

    @property
    def tokens(self) -> TokenCount:
        """Exact count when known, otherwise the heuristic estimate."""
        if self.token_count is not None:
            return ExactCount(self.token_count)
        return EstimatedCount.of(self.content)

    @property
    def is_summary(self) -> bool:
        return self.kind == MessageKind.SUMMARY

    def retire(self) -> "StoredMessage":
        return replace(self, retired=True)

    def to_context(self) -> Dict[str, str]:
        """The ``{role, content}`` form fed to a generation call."""
        return {"role": self.role.value, "content": self.content}
