"""
Session persistence and turn processing.

- Session / StoredMessage: records kept per conversation
- MessageStore: protocol and implementations
- ConversationManager: per-turn path (record, account tokens, compact, assemble)

Available stores:
- InMemoryMessageStore: process memory (development, testing)
- SQLiteMessageStore: SQLite file with connection pooling (production)

Example:
    ```python
    from session_compaction.sessions import ConversationManager, SQLiteMessageStore

    async with SQLiteMessageStore("./data/sessions.db") as store:
        manager = ConversationManager(store, engine, model="claude-sonnet-4-5")
        history = await manager.process_turn("default", "hello")
    ```
"""

from .base import (
    MessageKind,
    Session,
    StoredMessage,
    utcnow,
)

from .store import (
    InMemoryMessageStore,
    MessageStore,
    SQLiteMessageStore,
    SessionNotFoundError,
    StaleCompactionError,
    StoreError,
)

from .manager import ConversationManager

__all__ = [
    # Records
    "MessageKind",
    "Session",
    "StoredMessage",
    "utcnow",
    # Stores
    "InMemoryMessageStore",
    "MessageStore",
    "SQLiteMessageStore",
    "SessionNotFoundError",
    "StaleCompactionError",
    "StoreError",
    # Manager
    "ConversationManager",
]
