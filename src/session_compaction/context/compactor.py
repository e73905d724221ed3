"""Compaction policy: when to compact and what to keep.

This module provides the decision half of context compaction:
- CompactionConfig: trigger/target ratios, cooldown and size guards
- TriggerEvaluator: decides whether a session should be compacted now
- RetentionSelector: splits active messages into keep and compact sets
- CompactionResult: tagged outcome reported to callers

The gap between the trigger ratio (0.75) and the target ratio (0.20) gives
hysteresis, so a freshly compacted session does not immediately qualify
again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from session_compaction.context.tokens import TokenUsage, total_tokens
from session_compaction.context.windows import ContextWindowRegistry
from session_compaction.observability import get_logger

if TYPE_CHECKING:
    from session_compaction.sessions.base import Session, StoredMessage

logger = get_logger(__name__)

TRIGGER_RATIO = 0.75
TARGET_RATIO = 0.20
MIN_MESSAGES = 5
COOLDOWN_SECONDS = 60.0
SUMMARY_PREFIX = "[Continuation Summary - Previous Context]"
SYSTEM_SEPARATOR = "\n\n---\n\n"


@dataclass
class CompactionConfig:
    """Configuration for compaction behavior."""

    trigger_ratio: float = TRIGGER_RATIO  # Compact when usage reaches this share of the window
    target_ratio: float = TARGET_RATIO  # Budget for the verbatim tail after compaction
    min_messages: int = MIN_MESSAGES
    cooldown_seconds: float = COOLDOWN_SECONDS
    summary_timeout_seconds: float = 120.0
    summary_prefix: str = SUMMARY_PREFIX
    system_separator: str = SYSTEM_SEPARATOR

    def __post_init__(self) -> None:
        if not 0 < self.trigger_ratio <= 1:
            raise ValueError(f"trigger_ratio must be in (0, 1], got: {self.trigger_ratio}")
        if not 0 < self.target_ratio < self.trigger_ratio:
            raise ValueError(
                f"target_ratio must be in (0, trigger_ratio), got: {self.target_ratio}"
            )
        if self.min_messages < 1:
            raise ValueError(f"min_messages must be >= 1, got: {self.min_messages}")
        if self.cooldown_seconds < 0:
            raise ValueError(f"cooldown_seconds must be >= 0, got: {self.cooldown_seconds}")
        if self.summary_timeout_seconds <= 0:
            raise ValueError(
                f"summary_timeout_seconds must be > 0, got: {self.summary_timeout_seconds}"
            )


class TriggerReason(str, Enum):
    """Why the trigger evaluator decided the way it did."""

    TRIGGERED = "triggered"
    BELOW_THRESHOLD = "below_threshold"
    COOLDOWN = "cooldown"
    TOO_FEW_MESSAGES = "too_few_messages"


@dataclass(frozen=True)
class TriggerDecision:
    """Result of a trigger evaluation."""

    reason: TriggerReason
    current_tokens: int
    trigger_limit: float
    context_window: int
    active_messages: int
    cooldown_remaining: float = 0.0

    @property
    def should_compact(self) -> bool:
        return self.reason == TriggerReason.TRIGGERED

    @property
    def over_threshold(self) -> bool:
        return self.current_tokens >= self.trigger_limit


class TriggerEvaluator:
    """Decides whether a session should be compacted before the next turn.

    Read-only and side-effect free apart from logging; safe to call every turn.
    """

    def __init__(
        self,
        config: Optional[CompactionConfig] = None,
        registry: Optional[ContextWindowRegistry] = None,
    ):
        self.config = config or CompactionConfig()
        self.registry = registry or ContextWindowRegistry()

    def evaluate(
        self,
        session: Session,
        model: str,
        current_tokens: int,
        active_message_count: int,
        now: Optional[datetime] = None,
    ) -> TriggerDecision:
        """Evaluate the compaction trigger.

        Args:
            session: Session being processed.
            model: Model identifier used for the window size.
            current_tokens: Best-known current context usage.
            active_message_count: Number of non-retired messages.
            now: Evaluation time (defaults to the current UTC time).

        Returns:
            TriggerDecision; ``should_compact`` is true only when the usage is
            over the trigger limit, the cooldown has elapsed and there are
            enough active messages.
        """
        now = now or datetime.now(timezone.utc)
        window = self.registry.window_size(model)
        trigger_limit = window * self.config.trigger_ratio
        elapsed = session.seconds_since_compaction(now)
        cooldown_remaining = max(0.0, self.config.cooldown_seconds - elapsed)

        if current_tokens < trigger_limit:
            reason = TriggerReason.BELOW_THRESHOLD
        elif cooldown_remaining > 0:
            reason = TriggerReason.COOLDOWN
        elif active_message_count < self.config.min_messages:
            reason = TriggerReason.TOO_FEW_MESSAGES
        else:
            reason = TriggerReason.TRIGGERED

        decision = TriggerDecision(
            reason=reason,
            current_tokens=current_tokens,
            trigger_limit=trigger_limit,
            context_window=window,
            active_messages=active_message_count,
            cooldown_remaining=cooldown_remaining,
        )

        log = logger.info if decision.over_threshold else logger.debug
        log(
            "compaction.check",
            session_id=session.session_id,
            current_tokens=current_tokens,
            trigger_limit=trigger_limit,
            context_window=window,
            active_messages=active_message_count,
            min_messages=self.config.min_messages,
            cooldown_remaining=round(cooldown_remaining, 1),
            decision=reason.value,
        )
        return decision

    def should_compact(
        self,
        session: Session,
        model: str,
        current_tokens: int,
        active_message_count: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """Boolean form of :meth:`evaluate`."""
        return self.evaluate(
            session, model, current_tokens, active_message_count, now
        ).should_compact


@dataclass
class RetentionPlan:
    """Partition of the active messages produced by the selector.

    Both ``keep`` and ``compact`` are ordered oldest to newest.
    """

    keep: List[StoredMessage]
    compact: List[StoredMessage]
    target_budget: float
    keep_tokens: int = 0
    compact_tokens: int = 0
    exact_tokens: int = 0
    estimated_tokens: int = 0
    abort_reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.abort_reason is not None

    @property
    def tokens_before(self) -> int:
        return self.keep_tokens + self.compact_tokens

    def role_counts(self) -> Dict[str, int]:
        """Compact-set message counts per role, for logging."""
        counts: Dict[str, int] = {}
        for message in self.compact:
            counts[message.role.value] = counts.get(message.role.value, 0) + 1
        return counts


class RetentionSelector:
    """Greedy suffix selection of the messages kept verbatim.

    Scans newest to oldest and keeps messages while the running total stays
    within the target budget. The first message that would overflow it, and
    everything older, is compacted. The newest message is always kept, even
    when it alone exceeds the budget.
    """

    def __init__(self, config: Optional[CompactionConfig] = None):
        self.config = config or CompactionConfig()

    def select(
        self, messages: Sequence[StoredMessage], target_budget: float
    ) -> RetentionPlan:
        """Split active messages into keep and compact sets.

        Args:
            messages: Active messages ordered oldest to newest.
            target_budget: Token budget for the kept tail.

        Returns:
            RetentionPlan, aborted when the compact set is empty or smaller
            than ``min_messages``.
        """
        exact = 0
        estimated = 0
        for message in messages:
            count = message.tokens
            if count.exact:
                exact += count.value
            else:
                estimated += count.value

        keep_tokens = 0
        split = len(messages)
        for index in range(len(messages) - 1, -1, -1):
            tokens = messages[index].tokens.value
            if keep_tokens + tokens > target_budget and split < len(messages):
                break
            keep_tokens += tokens
            split = index
            if keep_tokens > target_budget:
                # newest message alone exceeds the budget
                break

        keep = list(messages[split:])
        compact = list(messages[:split])
        plan = RetentionPlan(
            keep=keep,
            compact=compact,
            target_budget=target_budget,
            keep_tokens=keep_tokens,
            compact_tokens=total_tokens(m.tokens for m in compact),
            exact_tokens=exact,
            estimated_tokens=estimated,
        )

        if not compact:
            plan.abort_reason = "nothing to compact"
        elif len(compact) < self.config.min_messages:
            plan.abort_reason = (
                f"only {len(compact)} messages to compact "
                f"(min: {self.config.min_messages})"
            )
        return plan


class CompactionOutcome(str, Enum):
    """Tagged outcome of a compaction attempt."""

    COMPACTED = "compacted"
    NOT_TRIGGERED = "not_triggered"
    COOLDOWN = "cooldown"
    TOO_FEW_MESSAGES = "too_few_messages"
    NOTHING_TO_COMPACT = "nothing_to_compact"
    NOTHING_NEW = "nothing_new"
    SUMMARIZER_FAILED = "summarizer_failed"


@dataclass
class CompactionResult:
    """Result of a compaction attempt."""

    outcome: CompactionOutcome
    session_id: str
    tokens_before: int = 0
    tokens_after: int = 0
    messages_retired: int = 0
    messages_kept: int = 0
    summary: Optional[str] = None
    summary_message_id: Optional[int] = None
    summary_usage: Optional[TokenUsage] = None
    trigger: Optional[TriggerDecision] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def compacted(self) -> bool:
        return self.outcome == CompactionOutcome.COMPACTED

    @property
    def tokens_freed(self) -> int:
        if not self.compacted:
            return 0
        return self.tokens_before - self.tokens_after

    @property
    def compression_ratio(self) -> float:
        """Calculate compression ratio achieved."""
        if not self.compacted or self.tokens_before == 0:
            return 0.0
        return 1.0 - (self.tokens_after / self.tokens_before)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "session_id": self.session_id,
            "compacted": self.compacted,
            "tokens_before": self.tokens_before,
            "tokens_after": self.tokens_after,
            "tokens_freed": self.tokens_freed,
            "messages_retired": self.messages_retired,
            "messages_kept": self.messages_kept,
            "error": self.error,
        }
