"""Compaction orchestration.

The engine ties the pieces together for one session at a time:

    trigger -> select -> summarize -> commit

Each step runs under a per-session ``asyncio.Lock`` so two turns of the same
session can never compact the same history twice. Different sessions
compact concurrently.
"""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Deque, Dict, List, Optional, Sequence

from session_compaction.context.committer import Clock, CompactionCommitter
from session_compaction.context.compactor import (
    CompactionConfig,
    CompactionOutcome,
    CompactionResult,
    RetentionSelector,
    TriggerDecision,
    TriggerEvaluator,
    TriggerReason,
)
from session_compaction.context.summarizer import SummarizerAdapter
from session_compaction.context.windows import ContextWindowRegistry
from session_compaction.observability import get_logger

if TYPE_CHECKING:
    from session_compaction.sessions.base import Session, StoredMessage
    from session_compaction.sessions.store import MessageStore

logger = get_logger(__name__)

_SKIP_OUTCOMES: Dict[TriggerReason, CompactionOutcome] = {
    TriggerReason.BELOW_THRESHOLD: CompactionOutcome.NOT_TRIGGERED,
    TriggerReason.COOLDOWN: CompactionOutcome.COOLDOWN,
    TriggerReason.TOO_FEW_MESSAGES: CompactionOutcome.TOO_FEW_MESSAGES,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CompactionEngine:
    """Decides on and performs context compaction for sessions.

    Example:
        engine = CompactionEngine(store, SummarizerAdapter(provider))
        result = await engine.maybe_compact("default", "claude-sonnet-4-5")
        if result.compacted:
            print(f"freed {result.tokens_freed} tokens")
    """

    def __init__(
        self,
        store: MessageStore,
        summarizer: SummarizerAdapter,
        config: Optional[CompactionConfig] = None,
        registry: Optional[ContextWindowRegistry] = None,
        clock: Optional[Clock] = None,
        max_history: int = 100,
    ):
        """Initialize the engine.

        Args:
            store: Message store holding the sessions.
            summarizer: Produces the continuation summaries.
            config: Compaction thresholds and guards.
            registry: Model context window sizes.
            clock: Returns the current time; injectable for tests.
            max_history: Number of compaction results kept in ``history``.
        """
        self.store = store
        self.summarizer = summarizer
        self.config = config or CompactionConfig()
        self.registry = registry or ContextWindowRegistry()
        self._clock = clock or _utcnow
        self.evaluator = TriggerEvaluator(self.config, self.registry)
        self.selector = RetentionSelector(self.config)
        self.committer = CompactionCommitter(store, self.config, self._clock)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._history: Deque[CompactionResult] = deque(maxlen=max_history)

    @property
    def history(self) -> List[CompactionResult]:
        """Results of attempts that got past the trigger, oldest first."""
        return list(self._history)

    def _get_lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def target_budget(self, model: str) -> float:
        """Token budget for the verbatim tail after compaction."""
        return self.registry.window_size(model) * self.config.target_ratio

    async def maybe_compact(
        self, session_id: str, model: str, current_tokens: Optional[int] = None
    ) -> CompactionResult:
        """Compact the session if the trigger fires.

        Args:
            session_id: Session to check.
            model: Model the next turn will use.
            current_tokens: Current context usage; the session's cached count
                is used when omitted.

        Returns:
            CompactionResult. Skips are reported through ``outcome``.

        Raises:
            SessionNotFoundError: The session does not exist.
            StoreError: The store failed while committing.
        """
        async with self._get_lock(session_id):
            session = await self.store.require_session(session_id)
            active = await self.store.list_active_messages(session_id)
            tokens = (
                session.cumulative_token_count if current_tokens is None else current_tokens
            )
            now = self._clock()
            decision = self.evaluator.evaluate(session, model, tokens, len(active), now)
            if not decision.should_compact:
                return CompactionResult(
                    outcome=_SKIP_OUTCOMES[decision.reason],
                    session_id=session_id,
                    tokens_before=tokens,
                    trigger=decision,
                )
            return await self._compact(session, model, active, now, decision)

    async def compact(self, session_id: str, model: str) -> CompactionResult:
        """Compact the session now, bypassing the token threshold.

        The cooldown and size guards still apply, and a session whose newest
        active message is already a summary is left alone.
        """
        async with self._get_lock(session_id):
            session = await self.store.require_session(session_id)
            active = await self.store.list_active_messages(session_id)
            return await self._compact(session, model, active, self._clock())

    async def _compact(
        self,
        session: Session,
        model: str,
        active: Sequence[StoredMessage],
        now: datetime,
        decision: Optional[TriggerDecision] = None,
    ) -> CompactionResult:
        session_id = session.session_id

        if session.seconds_since_compaction(now) < self.config.cooldown_seconds:
            return self._skip(session_id, CompactionOutcome.COOLDOWN, "cooldown active", decision)
        if active and active[-1].is_summary:
            return self._skip(
                session_id,
                CompactionOutcome.NOTHING_NEW,
                "no messages since last compaction",
                decision,
            )

        plan = self.selector.select(active, self.target_budget(model))
        if plan.aborted:
            outcome = (
                CompactionOutcome.NOTHING_TO_COMPACT
                if not plan.compact
                else CompactionOutcome.TOO_FEW_MESSAGES
            )
            return self._skip(session_id, outcome, plan.abort_reason, decision, plan.tokens_before)

        logger.info(
            "compaction.started",
            session_id=session_id,
            model=model,
            messages_to_compact=len(plan.compact),
            messages_to_keep=len(plan.keep),
            roles=plan.role_counts(),
            tokens_before=plan.tokens_before,
            exact_tokens=plan.exact_tokens,
            estimated_tokens=plan.estimated_tokens,
            target_budget=plan.target_budget,
        )

        summary = await self.summarizer.summarize(plan.compact)
        if not summary.ok:
            logger.error(
                "compaction.failed",
                session_id=session_id,
                error=summary.error,
                messages_to_compact=len(plan.compact),
            )
            return self._record(
                CompactionResult(
                    outcome=CompactionOutcome.SUMMARIZER_FAILED,
                    session_id=session_id,
                    tokens_before=plan.tokens_before,
                    tokens_after=plan.tokens_before,
                    messages_kept=len(active),
                    trigger=decision,
                    error=summary.error,
                )
            )

        committed = await self.committer.commit(session_id, plan, summary.summary or "")
        result = CompactionResult(
            outcome=CompactionOutcome.COMPACTED,
            session_id=session_id,
            tokens_before=committed.tokens_before,
            tokens_after=committed.tokens_after,
            messages_retired=committed.messages_retired,
            messages_kept=len(plan.keep),
            summary=summary.summary,
            summary_message_id=committed.summary_message.id,
            summary_usage=summary.usage,
            trigger=decision,
            timestamp=committed.compacted_at,
        )
        logger.info(
            "compaction.completed",
            session_id=session_id,
            messages_retired=result.messages_retired,
            messages_kept=result.messages_kept,
            tokens_before=result.tokens_before,
            tokens_after=result.tokens_after,
            tokens_freed=result.tokens_freed,
            compression_ratio=round(result.compression_ratio, 3),
            summary_input_tokens=summary.usage.input_tokens if summary.usage else None,
            summary_output_tokens=summary.usage.output_tokens if summary.usage else None,
        )
        return self._record(result)

    def _skip(
        self,
        session_id: str,
        outcome: CompactionOutcome,
        reason: Optional[str],
        decision: Optional[TriggerDecision],
        tokens_before: int = 0,
    ) -> CompactionResult:
        logger.info(
            "compaction.skipped", session_id=session_id, outcome=outcome.value, reason=reason
        )
        return self._record(
            CompactionResult(
                outcome=outcome,
                session_id=session_id,
                tokens_before=tokens_before,
                tokens_after=tokens_before,
                trigger=decision,
                error=reason,
            )
        )

    def _record(self, result: CompactionResult) -> CompactionResult:
        self._history.append(result)
        return result
