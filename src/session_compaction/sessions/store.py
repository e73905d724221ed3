"""Message store protocol and implementations.

The store is an ordered, append-only record of turns per session. Messages
are never deleted; compaction retires them in place and inserts a summary
in the same atomic unit (``commit_compaction``).

Includes:
- MessageStore: protocol every backend implements
- InMemoryMessageStore: process-local store (tests, development)
- SQLiteMessageStore: persistent store, one transaction per compaction
"""

from __future__ import annotations

import asyncio
import sqlite3
from abc import abstractmethod
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import (
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
    Union,
    runtime_checkable,
)

import aiofiles.os

from session_compaction.llm.base import MessageRole
from session_compaction.observability import get_logger

from .base import MessageKind, Session, StoredMessage, utcnow

logger = get_logger(__name__)

T = TypeVar("T")


class StoreError(Exception):
    """Raised when the underlying storage fails."""


class SessionNotFoundError(StoreError):
    """Raised when an operation needs a session that does not exist."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class StaleCompactionError(StoreError):
    """Raised when a compaction would retire messages that are no longer active."""

    def __init__(self, session_id: str, message_ids: Sequence[int]):
        super().__init__(
            f"Messages no longer active in session {session_id}: {list(message_ids)}"
        )
        self.session_id = session_id
        self.message_ids = list(message_ids)


@runtime_checkable
class MessageStore(Protocol):
    """Interface for session and message persistence.

    Only the turn-processing path and the compaction committer mutate a
    store.
    """

    @abstractmethod
    async def ensure_session(
        self, session_id: str, now: Optional[datetime] = None
    ) -> Session:
        """Create the session on first contact, otherwise touch ``updated_at``."""
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[Session]:
        """Load a session, or None if unknown."""
        ...

    @abstractmethod
    async def require_session(self, session_id: str) -> Session:
        """Load a session.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        ...

    @abstractmethod
    async def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        token_count: Optional[int] = None,
        kind: MessageKind = MessageKind.TURN,
        now: Optional[datetime] = None,
    ) -> StoredMessage:
        """Append a message with the next sequence number of the session."""
        ...

    @abstractmethod
    async def list_active_messages(self, session_id: str) -> List[StoredMessage]:
        """Non-retired messages ordered by sequence number."""
        ...

    @abstractmethod
    async def count_active_messages(self, session_id: str) -> int:
        """Number of non-retired messages."""
        ...

    @abstractmethod
    async def list_messages(self, session_id: str) -> List[StoredMessage]:
        """All messages, retired included, ordered by sequence number."""
        ...

    @abstractmethod
    async def update_token_count(
        self, session_id: str, tokens: int, now: Optional[datetime] = None
    ) -> None:
        """Set the session's cumulative token count and touch ``updated_at``."""
        ...

    @abstractmethod
    async def commit_compaction(
        self,
        session_id: str,
        retire_ids: Sequence[int],
        summary_content: str,
        cumulative_token_count: int,
        compacted_at: datetime,
    ) -> StoredMessage:
        """Atomically retire messages, insert the summary and update the session.

        Raises:
            StaleCompactionError: If any message is missing or already retired;
                nothing is changed in that case.
        """
        ...

    async def close(self) -> None:
        """Release resources."""
        ...


class InMemoryMessageStore:
    """Message store kept in process memory.

    Suitable for tests and ephemeral sessions. Every method completes
    without awaiting, so each call is atomic with respect to other
    coroutines.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._messages: Dict[str, List[StoredMessage]] = {}
        self._next_id = 1

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def ensure_session(
        self, session_id: str, now: Optional[datetime] = None
    ) -> Session:
        now = now or utcnow()
        session = self._sessions.get(session_id)
        if session is None:
            session = Session.create(session_id, now)
            self._sessions[session_id] = session
            self._messages[session_id] = []
        else:
            session.updated_at = now
        return replace(session)

    async def get_session(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return replace(session) if session else None

    async def require_session(self, session_id: str) -> Session:
        return replace(self._require(session_id))

    async def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        token_count: Optional[int] = None,
        kind: MessageKind = MessageKind.TURN,
        now: Optional[datetime] = None,
    ) -> StoredMessage:
        self._require(session_id)
        messages = self._messages[session_id]
        message = StoredMessage(
            id=self._next_id,
            session_id=session_id,
            seq=messages[-1].seq + 1 if messages else 1,
            role=MessageRole(role),
            content=content,
            created_at=now or utcnow(),
            token_count=token_count,
            kind=kind,
        )
        self._next_id += 1
        messages.append(message)
        return message

    async def list_active_messages(self, session_id: str) -> List[StoredMessage]:
        return [m for m in self._messages.get(session_id, []) if not m.retired]

    async def count_active_messages(self, session_id: str) -> int:
        return sum(1 for m in self._messages.get(session_id, []) if not m.retired)

    async def list_messages(self, session_id: str) -> List[StoredMessage]:
        return list(self._messages.get(session_id, []))

    async def update_token_count(
        self, session_id: str, tokens: int, now: Optional[datetime] = None
    ) -> None:
        session = self._require(session_id)
        session.cumulative_token_count = tokens
        session.updated_at = now or utcnow()

    async def commit_compaction(
        self,
        session_id: str,
        retire_ids: Sequence[int],
        summary_content: str,
        cumulative_token_count: int,
        compacted_at: datetime,
    ) -> StoredMessage:
        session = self._require(session_id)
        messages = self._messages[session_id]
        active_ids = {m.id for m in messages if not m.retired}
        wanted = set(retire_ids)
        if not wanted.issubset(active_ids):
            raise StaleCompactionError(session_id, sorted(wanted - active_ids))

        # All checks done; nothing below can fail halfway.
        self._messages[session_id] = [
            m.retire() if m.id in wanted else m for m in messages
        ]
        summary = await self.append_message(
            session_id,
            MessageRole.SYSTEM,
            summary_content,
            kind=MessageKind.SUMMARY,
            now=compacted_at,
        )
        session.cumulative_token_count = cumulative_token_count
        session.last_compacted_at = compacted_at
        session.updated_at = compacted_at
        return summary

    async def close(self) -> None:
        pass


class SQLiteMessageStore:
    """Message store persisted in SQLite.

    Queries run in the default executor so the event loop is never blocked.
    Multi-statement operations (appending with the next sequence number,
    committing a compaction) run inside one ``BEGIN IMMEDIATE`` transaction
    and are rolled back as a whole on any error.
    """

    _CREATE_SESSIONS_TABLE = """
        CREATE TABLE IF NOT EXISTS sessions (
            session_id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            cumulative_token_count INTEGER NOT NULL DEFAULT 0,
            last_compacted_at TEXT
        )
    """

    _CREATE_MESSAGES_TABLE = """
        CREATE TABLE IF NOT EXISTS messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            seq INTEGER NOT NULL,
            role TEXT NOT NULL CHECK(role IN ('user', 'assistant', 'system')),
            content TEXT NOT NULL,
            created_at TEXT NOT NULL,
            retired INTEGER NOT NULL DEFAULT 0,
            token_count INTEGER,
            kind TEXT NOT NULL DEFAULT 'turn',
            FOREIGN KEY (session_id) REFERENCES sessions(session_id)
        )
    """

    _CREATE_MESSAGES_SEQ_INDEX = """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_session_seq
        ON messages(session_id, seq)
    """

    _CREATE_MESSAGES_ACTIVE_INDEX = """
        CREATE INDEX IF NOT EXISTS idx_messages_session_active
        ON messages(session_id, retired, seq)
    """

    # Columns added after the first schema version: name -> column definition
    _MIGRATIONS: Dict[str, Dict[str, str]] = {
        "sessions": {
            "cumulative_token_count": "INTEGER NOT NULL DEFAULT 0",
            "last_compacted_at": "TEXT",
        },
        "messages": {
            "token_count": "INTEGER",
            "kind": "TEXT NOT NULL DEFAULT 'turn'",
        },
    }

    def __init__(
        self,
        db_path: Union[str, Path],
        pool_size: int = 5,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
            pool_size: Number of pooled connections.
            timeout: Seconds to wait on a locked database.
        """
        self._db_path = Path(db_path)
        self._pool_size = pool_size
        self._timeout = timeout
        self._pool: List[sqlite3.Connection] = []
        self._pool_lock = asyncio.Lock()
        self._executor_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Create the database file, schema, indexes and connection pool."""
        if self._initialized:
            return

        if not self._db_path.parent.exists():
            await aiofiles.os.makedirs(str(self._db_path.parent), exist_ok=True)

        conn = await self._create_connection()
        try:
            await asyncio.get_running_loop().run_in_executor(
                None, self._create_schema, conn
            )
        finally:
            conn.close()

        for _ in range(self._pool_size):
            self._pool.append(await self._create_connection())

        self._initialized = True
        logger.debug("store.initialized", db_path=str(self._db_path))

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(self._CREATE_SESSIONS_TABLE)
        conn.execute(self._CREATE_MESSAGES_TABLE)
        for table, columns in self._MIGRATIONS.items():
            existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
            for name, definition in columns.items():
                if name not in existing:
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {definition}")
                    logger.info("store.column_added", table=table, column=name)
        conn.execute(self._CREATE_MESSAGES_SEQ_INDEX)
        conn.execute(self._CREATE_MESSAGES_ACTIVE_INDEX)

    async def _create_connection(self) -> sqlite3.Connection:
        def _connect() -> sqlite3.Connection:
            conn = sqlite3.connect(
                str(self._db_path),
                timeout=self._timeout,
                check_same_thread=False,
                isolation_level=None,  # transactions are explicit
            )
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={int(self._timeout * 1000)}")
            conn.row_factory = sqlite3.Row
            return conn

        return await asyncio.get_running_loop().run_in_executor(None, _connect)

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[sqlite3.Connection]:
        """Borrow a pooled connection, returning it when done."""
        async with self._pool_lock:
            if not self._pool:
                conn = await self._create_connection()
            else:
                conn = self._pool.pop()

        try:
            yield conn
        finally:
            async with self._pool_lock:
                if len(self._pool) < self._pool_size:
                    self._pool.append(conn)
                else:
                    conn.close()

    async def _run(
        self, work: Callable[[sqlite3.Connection], T], transaction: bool = False
    ) -> T:
        """Run ``work`` on a pooled connection in the executor.

        With ``transaction`` the work is wrapped in BEGIN IMMEDIATE / COMMIT
        and rolled back on any exception. ``sqlite3.Error`` is re-raised as
        ``StoreError``.
        """
        if not self._initialized:
            await self.initialize()

        def _execute(conn: sqlite3.Connection) -> T:
            if not transaction:
                return work(conn)
            conn.execute("BEGIN IMMEDIATE")
            try:
                result = work(conn)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            return result

        loop = asyncio.get_running_loop()
        async with self._get_connection() as conn:
            async with self._executor_lock:
                future = loop.run_in_executor(None, _execute, conn)
                try:
                    return await asyncio.shield(future)
                except asyncio.CancelledError:
                    # The connection and lock stay held until the thread has
                    # committed or rolled back.
                    await asyncio.wait({future})
                    if future.exception() is not None:
                        logger.warning(
                            "store.cancelled_work_failed", error=str(future.exception())
                        )
                    raise
                except sqlite3.Error as e:
                    raise StoreError(str(e)) from e

    @staticmethod
    def _load_session(conn: sqlite3.Connection, session_id: str) -> Optional[Session]:
        row = conn.execute(
            "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
        ).fetchone()
        return SQLiteMessageStore._row_to_session(row) if row else None

    async def ensure_session(
        self, session_id: str, now: Optional[datetime] = None
    ) -> Session:
        stamp = (now or utcnow()).isoformat()

        def _work(conn: sqlite3.Connection) -> Session:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO sessions (session_id, created_at, updated_at) "
                "VALUES (?, ?, ?)",
                (session_id, stamp, stamp),
            )
            if cursor.rowcount == 0:
                conn.execute(
                    "UPDATE sessions SET updated_at = ? WHERE session_id = ?",
                    (stamp, session_id),
                )
            session = self._load_session(conn, session_id)
            if session is None:
                raise StoreError(f"session {session_id} vanished after insert")
            return session

        return await self._run(_work, transaction=True)

    async def get_session(self, session_id: str) -> Optional[Session]:
        return await self._run(lambda conn: self._load_session(conn, session_id))

    async def require_session(self, session_id: str) -> Session:
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    @staticmethod
    def _insert_message(
        conn: sqlite3.Connection,
        session_id: str,
        role: MessageRole,
        content: str,
        token_count: Optional[int],
        kind: MessageKind,
        created_at: datetime,
    ) -> StoredMessage:
        if conn.execute(
            "SELECT 1 FROM sessions WHERE session_id = ?", (session_id,)
        ).fetchone() is None:
            raise SessionNotFoundError(session_id)
        seq = conn.execute(
            "SELECT COALESCE(MAX(seq), 0) + 1 FROM messages WHERE session_id = ?",
            (session_id,),
        ).fetchone()[0]
        cursor = conn.execute(
            """
            INSERT INTO messages
            (session_id, seq, role, content, created_at, retired, token_count, kind)
            VALUES (?, ?, ?, ?, ?, 0, ?, ?)
            """,
            (
                session_id,
                seq,
                MessageRole(role).value,
                content,
                created_at.isoformat(),
                token_count,
                kind.value,
            ),
        )
        return StoredMessage(
            id=cursor.lastrowid,
            session_id=session_id,
            seq=seq,
            role=MessageRole(role),
            content=content,
            created_at=created_at,
            token_count=token_count,
            kind=kind,
        )

    async def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        token_count: Optional[int] = None,
        kind: MessageKind = MessageKind.TURN,
        now: Optional[datetime] = None,
    ) -> StoredMessage:
        created_at = now or utcnow()
        return await self._run(
            lambda conn: self._insert_message(
                conn, session_id, role, content, token_count, kind, created_at
            ),
            transaction=True,
        )

    async def list_active_messages(self, session_id: str) -> List[StoredMessage]:
        def _work(conn: sqlite3.Connection) -> List[StoredMessage]:
            rows = conn.execute(
                "SELECT * FROM messages WHERE session_id = ? AND retired = 0 ORDER BY seq",
                (session_id,),
            ).fetchall()
            return [self._row_to_message(row) for row in rows]

        return await self._run(_work)

    async def count_active_messages(self, session_id: str) -> int:
        def _work(conn: sqlite3.Connection) -> int:
            return conn.execute(
                "SELECT COUNT(*) FROM messages WHERE session_id = ? AND retired = 0",
                (session_id,),
            ).fetchone()[0]

        return await self._run(_work)

    async def list_messages(self, session_id: str) -> List[StoredMessage]:
        def _work(conn: sqlite3.Connection) -> List[StoredMessage]:
            rows = conn.execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY seq",
                (session_id,),
            ).fetchall()
            return [self._row_to_message(row) for row in rows]

        return await self._run(_work)

    async def update_token_count(
        self, session_id: str, tokens: int, now: Optional[datetime] = None
    ) -> None:
        stamp = (now or utcnow()).isoformat()

        def _work(conn: sqlite3.Connection) -> None:
            cursor = conn.execute(
                "UPDATE sessions SET cumulative_token_count = ?, updated_at = ? "
                "WHERE session_id = ?",
                (tokens, stamp, session_id),
            )
            if cursor.rowcount == 0:
                raise SessionNotFoundError(session_id)

        await self._run(_work)

    async def commit_compaction(
        self,
        session_id: str,
        retire_ids: Sequence[int],
        summary_content: str,
        cumulative_token_count: int,
        compacted_at: datetime,
    ) -> StoredMessage:
        ids = list(dict.fromkeys(retire_ids))
        stamp = compacted_at.isoformat()

        def _work(conn: sqlite3.Connection) -> StoredMessage:
            if ids:
                placeholders = ", ".join("?" for _ in ids)
                active = {
                    row[0]
                    for row in conn.execute(
                        f"SELECT id FROM messages WHERE session_id = ? "
                        f"AND retired = 0 AND id IN ({placeholders})",
                        (session_id, *ids),
                    )
                }
                stale = [i for i in ids if i not in active]
                if stale:
                    raise StaleCompactionError(session_id, stale)
                conn.execute(
                    f"UPDATE messages SET retired = 1 WHERE session_id = ? "
                    f"AND id IN ({placeholders})",
                    (session_id, *ids),
                )

            summary = self._insert_message(
                conn,
                session_id,
                MessageRole.SYSTEM,
                summary_content,
                None,
                MessageKind.SUMMARY,
                compacted_at,
            )
            conn.execute(
                "UPDATE sessions SET cumulative_token_count = ?, last_compacted_at = ?, "
                "updated_at = ? WHERE session_id = ?",
                (cumulative_token_count, stamp, stamp, session_id),
            )
            return summary

        return await self._run(_work, transaction=True)

    async def close(self) -> None:
        """Close all pooled connections."""
        async with self._pool_lock:
            for conn in self._pool:
                conn.close()
            self._pool.clear()
            self._initialized = False

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            session_id=row["session_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            cumulative_token_count=row["cumulative_token_count"] or 0,
            last_compacted_at=(
                datetime.fromisoformat(row["last_compacted_at"])
                if row["last_compacted_at"]
                else None
            ),
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> StoredMessage:
        return StoredMessage(
            id=row["id"],
            session_id=row["session_id"],
            seq=row["seq"],
            role=MessageRole(row["role"]),
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
            retired=bool(row["retired"]),
            token_count=row["token_count"],
            kind=MessageKind(row["kind"]),
        )

    async def __aenter__(self) -> "SQLiteMessageStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
