"""Context compaction for long-running conversations.

This module provides:
- Token estimation with exact/estimated tagged counts
- Model context window sizes
- Trigger evaluation and retention selection
- Continuation summaries through an injected LLM provider
- Atomic commit of a compaction and context assembly
- CompactionEngine tying it all together per session

Example:
    from session_compaction.context import CompactionEngine, SummarizerAdapter

    engine = CompactionEngine(store, SummarizerAdapter(provider))
    result = await engine.maybe_compact("default", "claude-sonnet-4-5")
    if result.compacted:
        print(result.tokens_freed)
"""

from .tokens import (
    CHARS_PER_TOKEN,
    EstimatedCount,
    ExactCount,
    TokenCount,
    TokenUsage,
    estimate_messages_tokens,
    estimate_tokens,
    total_tokens,
)

from .windows import (
    DEFAULT_CONTEXT_WINDOW,
    MODEL_CONTEXT_WINDOWS,
    ContextWindowRegistry,
    get_compaction_threshold,
    get_context_window,
)

from .compactor import (
    COOLDOWN_SECONDS,
    MIN_MESSAGES,
    SUMMARY_PREFIX,
    SYSTEM_SEPARATOR,
    TARGET_RATIO,
    TRIGGER_RATIO,
    CompactionConfig,
    CompactionOutcome,
    CompactionResult,
    RetentionPlan,
    RetentionSelector,
    TriggerDecision,
    TriggerEvaluator,
    TriggerReason,
)

from .summarizer import (
    DEFAULT_SUMMARY_TEMPLATE,
    SummarizerAdapter,
    SummaryPrompt,
    SummaryResult,
    extract_summary,
)

from .committer import CommitResult, CompactionCommitter
from .assembler import ContextAssembler, merge_system_messages
from .engine import CompactionEngine

__all__ = [
    # Tokens
    "CHARS_PER_TOKEN",
    "EstimatedCount",
    "ExactCount",
    "TokenCount",
    "TokenUsage",
    "estimate_messages_tokens",
    "estimate_tokens",
    "total_tokens",
    # Windows
    "DEFAULT_CONTEXT_WINDOW",
    "MODEL_CONTEXT_WINDOWS",
    "ContextWindowRegistry",
    "get_compaction_threshold",
    "get_context_window",
    # Policy
    "COOLDOWN_SECONDS",
    "MIN_MESSAGES",
    "SUMMARY_PREFIX",
    "SYSTEM_SEPARATOR",
    "TARGET_RATIO",
    "TRIGGER_RATIO",
    "CompactionConfig",
    "CompactionOutcome",
    "CompactionResult",
    "RetentionPlan",
    "RetentionSelector",
    "TriggerDecision",
    "TriggerEvaluator",
    "TriggerReason",
    # Summarization
    "DEFAULT_SUMMARY_TEMPLATE",
    "SummarizerAdapter",
    "SummaryPrompt",
    "SummaryResult",
    "extract_summary",
    # Commit / assembly
    "CommitResult",
    "CompactionCommitter",
    "ContextAssembler",
    "merge_system_messages",
    # Engine
    "CompactionEngine",
]
