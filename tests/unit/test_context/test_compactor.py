"""Tests for the compaction policy.

Tests cover:
- CompactionConfig defaults and validation
- TriggerEvaluator - threshold, cooldown and minimum-message guards
- RetentionSelector - greedy suffix selection and abort rules
- CompactionResult - derived figures
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from session_compaction.context.compactor import (
    CompactionConfig,
    CompactionOutcome,
    CompactionResult,
    RetentionSelector,
    TriggerEvaluator,
    TriggerReason,
)
from session_compaction.llm.base import MessageRole

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# CompactionConfig Tests
# ============================================================================


class TestCompactionConfig:
    """Tests for CompactionConfig dataclass."""

    def test_default_values(self):
        """Test default configuration values."""
        config = CompactionConfig()
        assert config.trigger_ratio == 0.75
        assert config.target_ratio == 0.20
        assert config.min_messages == 5
        assert config.cooldown_seconds == 60.0
        assert config.summary_prefix == "[Continuation Summary - Previous Context]"
        assert config.system_separator == "\n\n---\n\n"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"trigger_ratio": 0},
            {"trigger_ratio": 1.5},
            {"target_ratio": 0},
            {"target_ratio": 0.8},
            {"min_messages": 0},
            {"cooldown_seconds": -1},
            {"summary_timeout_seconds": 0},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        """Test that invalid values raise ValueError."""
        with pytest.raises(ValueError):
            CompactionConfig(**kwargs)


# ============================================================================
# TriggerEvaluator Tests
# ============================================================================


class TestTriggerEvaluator:
    """Tests for TriggerEvaluator decisions."""

    def test_triggers_over_threshold(self, registry, model, fresh_session):
        """Scenario A: 3,000 tokens against a 2,500 window triggers."""
        evaluator = TriggerEvaluator(registry=registry)
        decision = evaluator.evaluate(fresh_session, model, 3_000, 10, now=T0)

        assert decision.should_compact is True
        assert decision.reason == TriggerReason.TRIGGERED
        assert decision.context_window == 2_500
        assert decision.trigger_limit == 1_875

    def test_threshold_is_inclusive(self, registry, model, fresh_session):
        evaluator = TriggerEvaluator(registry=registry)
        assert evaluator.should_compact(fresh_session, model, 1_875, 10, now=T0) is True
        decision = evaluator.evaluate(fresh_session, model, 1_874, 10, now=T0)
        assert decision.reason == TriggerReason.BELOW_THRESHOLD

    def test_cooldown_blocks(self, registry, model, recently_compacted_session):
        """Scenario B: compacted 10 seconds ago, blocked regardless of usage."""
        evaluator = TriggerEvaluator(registry=registry)
        now = T0 + timedelta(seconds=10)
        decision = evaluator.evaluate(recently_compacted_session, model, 100_000, 50, now=now)

        assert decision.should_compact is False
        assert decision.reason == TriggerReason.COOLDOWN
        assert decision.cooldown_remaining == pytest.approx(50.0)

    def test_cooldown_elapsed(self, registry, model, recently_compacted_session):
        evaluator = TriggerEvaluator(registry=registry)
        now = T0 + timedelta(seconds=60)
        assert evaluator.should_compact(recently_compacted_session, model, 3_000, 10, now=now)

    def test_too_few_messages(self, registry, model, fresh_session):
        """Scenario C: over threshold but fewer than 5 active messages."""
        evaluator = TriggerEvaluator(registry=registry)
        decision = evaluator.evaluate(fresh_session, model, 3_000, 4, now=T0)

        assert decision.should_compact is False
        assert decision.reason == TriggerReason.TOO_FEW_MESSAGES
        assert decision.over_threshold is True

    def test_unknown_model_uses_default_window(self, fresh_session):
        evaluator = TriggerEvaluator()
        decision = evaluator.evaluate(fresh_session, "mystery-model", 3_000, 10, now=T0)
        assert decision.context_window == 200_000
        assert decision.reason == TriggerReason.BELOW_THRESHOLD

    def test_custom_ratio(self, registry, model, fresh_session):
        evaluator = TriggerEvaluator(
            CompactionConfig(trigger_ratio=0.5, target_ratio=0.1), registry
        )
        assert evaluator.should_compact(fresh_session, model, 1_250, 10, now=T0)


# ============================================================================
# RetentionSelector Tests
# ============================================================================


class TestRetentionSelector:
    """Tests for greedy suffix selection."""

    def test_scenario_a_split(self, sized_messages):
        """Ten 300-token messages with a 500-token budget keep only the newest."""
        messages = sized_messages([300] * 10)
        plan = RetentionSelector().select(messages, 500)

        assert not plan.aborted
        assert [m.seq for m in plan.keep] == [10]
        assert [m.seq for m in plan.compact] == list(range(1, 10))
        assert plan.keep_tokens == 300
        assert plan.compact_tokens == 2_700
        assert plan.tokens_before == 3_000

    def test_keep_stays_within_budget(self, sized_messages):
        messages = sized_messages([100] * 10)
        plan = RetentionSelector().select(messages, 500)

        assert len(plan.keep) == 5
        assert plan.keep_tokens == 500
        assert plan.keep_tokens <= plan.target_budget

    def test_keep_is_contiguous_suffix(self, sized_messages):
        """Selection stops at the first overflow even if older messages would fit."""
        messages = sized_messages([10, 10, 10, 10, 10, 10, 400, 200])
        plan = RetentionSelector().select(messages, 500)

        assert [m.seq for m in plan.keep] == [8]
        assert [m.seq for m in plan.compact] == [1, 2, 3, 4, 5, 6, 7]

    def test_newest_kept_even_when_over_budget(self, sized_messages):
        messages = sized_messages([100] * 6 + [900])
        plan = RetentionSelector().select(messages, 500)

        assert [m.seq for m in plan.keep] == [7]
        assert plan.keep_tokens == 900
        assert len(plan.compact) == 6

    def test_abort_when_compact_set_too_small(self, sized_messages):
        messages = sized_messages([100] * 7)
        plan = RetentionSelector().select(messages, 500)

        assert plan.aborted
        assert len(plan.compact) == 2
        assert plan.abort_reason == "only 2 messages to compact (min: 5)"

    def test_abort_when_nothing_to_compact(self, sized_messages):
        plan = RetentionSelector().select(sized_messages([10, 10, 10]), 500)
        assert plan.aborted
        assert plan.compact == []
        assert plan.abort_reason == "nothing to compact"

    def test_exact_and_estimated_totals(self, message_factory):
        messages = [
            message_factory(1, "x" * 400),
            message_factory(2, "short", role=MessageRole.ASSISTANT, token_count=250),
        ]
        plan = RetentionSelector().select(messages, 10_000)

        assert plan.exact_tokens == 250
        assert plan.estimated_tokens == 100
        assert plan.keep_tokens == 350

    def test_role_counts(self, sized_messages):
        plan = RetentionSelector().select(sized_messages([300] * 10), 500)
        assert plan.role_counts() == {"user": 5, "assistant": 4}


# ============================================================================
# CompactionResult Tests
# ============================================================================


class TestCompactionResult:
    """Tests for CompactionResult."""

    def test_tokens_freed_when_compacted(self):
        result = CompactionResult(
            outcome=CompactionOutcome.COMPACTED,
            session_id="s1",
            tokens_before=3_000,
            tokens_after=330,
        )
        assert result.compacted is True
        assert result.tokens_freed == 2_670
        assert result.compression_ratio == pytest.approx(0.89)

    def test_tokens_freed_zero_when_not_compacted(self):
        result = CompactionResult(
            outcome=CompactionOutcome.SUMMARIZER_FAILED,
            session_id="s1",
            tokens_before=3_000,
            tokens_after=3_000,
            error="boom",
        )
        assert result.compacted is False
        assert result.tokens_freed == 0
        assert result.compression_ratio == 0.0

    def test_to_dict(self):
        result = CompactionResult(outcome=CompactionOutcome.COOLDOWN, session_id="s1")
        data = result.to_dict()
        assert data["outcome"] == "cooldown"
        assert data["compacted"] is False
        assert data["tokens_freed"] == 0
