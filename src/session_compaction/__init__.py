"""Session Compaction - context compaction for long-running conversations.

This package provides building blocks for keeping a conversation inside the
model's context window:
- Message store with retire-in-place history (in-memory, SQLite)
- Trigger/retention policy with hysteresis and cooldown
- Continuation summaries through an injected LLM provider
- Atomic compaction commits and context assembly
- Turn-processing manager for interactive loops

Example:
    from session_compaction import (
        CompactionEngine,
        ConversationManager,
        LLMConfig,
        SQLiteMessageStore,
        SummarizerAdapter,
    )
    from session_compaction.llm.providers import AnthropicProvider

    provider = AnthropicProvider(LLMConfig(model="claude-sonnet-4-5"))
    store = SQLiteMessageStore("./data/sessions.db")
    engine = CompactionEngine(store, SummarizerAdapter(provider))
    manager = ConversationManager(store, engine, model="claude-sonnet-4-5")

    history = await manager.process_turn("default", "What changed?")
"""

__version__ = "0.1.0"

# Re-export main components for convenience
from .llm import (
    LLMConfig,
    LLMProvider,
    LLMResponse,
    Message,
    MessageRole,
)
from .context import (
    CompactionConfig,
    CompactionEngine,
    CompactionOutcome,
    CompactionResult,
    ContextAssembler,
    ContextWindowRegistry,
    SummarizerAdapter,
    SummaryPrompt,
    estimate_tokens,
)
from .sessions import (
    ConversationManager,
    InMemoryMessageStore,
    MessageStore,
    SQLiteMessageStore,
    Session,
    StoredMessage,
)
from .observability import (
    LogConfig,
    configure_logging,
    get_logger,
)

__all__ = [
    "__version__",
    # LLM
    "LLMConfig",
    "LLMProvider",
    "LLMResponse",
    "Message",
    "MessageRole",
    # Context
    "CompactionConfig",
    "CompactionEngine",
    "CompactionOutcome",
    "CompactionResult",
    "ContextAssembler",
    "ContextWindowRegistry",
    "SummarizerAdapter",
    "SummaryPrompt",
    "estimate_tokens",
    # Sessions
    "ConversationManager",
    "InMemoryMessageStore",
    "MessageStore",
    "SQLiteMessageStore",
    "Session",
    "StoredMessage",
    # Observability
    "LogConfig",
    "configure_logging",
    "get_logger",
]
