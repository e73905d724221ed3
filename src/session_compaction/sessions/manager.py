"""Turn processing for compacted conversations.

ConversationManager is the path an interactive loop drives on every turn:
store the user input, keep the session's token cache current, give the
compaction engine a chance to run and hand back the history to send to
the model.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, List, Mapping, Optional

from session_compaction.context.assembler import ContextAssembler
from session_compaction.context.compactor import CompactionResult
from session_compaction.context.engine import CompactionEngine
from session_compaction.context.tokens import (
    TokenUsage,
    estimate_messages_tokens,
    estimate_tokens,
)
from session_compaction.llm.base import MessageRole
from session_compaction.observability import get_logger, log_context

from .base import Session, StoredMessage
from .store import MessageStore

logger = get_logger(__name__)


class ConversationManager:
    """Runs the turn-processing path for conversation sessions.

    Whole turns are serialized per session, so a user turn and the
    compaction it may trigger never interleave with another turn of the
    same session.

    Example:
        ```python
        store = SQLiteMessageStore("./data/sessions.db")
        engine = CompactionEngine(store, SummarizerAdapter(provider))
        manager = ConversationManager(store, engine, model="claude-sonnet-4-5")

        history = await manager.process_turn("default", "list the files")
        response = await provider.generate(history)
        await manager.record_response("default", response.content, response.usage)
        ```
    """

    def __init__(
        self,
        store: MessageStore,
        engine: CompactionEngine,
        model: str,
        system_prompt: Optional[str] = None,
    ) -> None:
        """
        Args:
            store: Message store shared with the engine.
            engine: Compaction engine consulted after every user turn.
            model: Default model identifier for turns.
            system_prompt: Directive stored as the first system message of
                a session whose active context has none.
        """
        self._store = store
        self._engine = engine
        self._model = model
        self._system_prompt = system_prompt
        self._assembler = ContextAssembler(store, engine.config.system_separator)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_compaction: Dict[str, CompactionResult] = {}

    @property
    def store(self) -> MessageStore:
        return self._store

    @property
    def engine(self) -> CompactionEngine:
        return self._engine

    @property
    def model(self) -> str:
        return self._model

    def _get_lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def last_compaction(self, session_id: str) -> Optional[CompactionResult]:
        """Result of the compaction check made by the latest turn, if any."""
        return self._last_compaction.get(session_id)

    async def ensure_session(self, session_id: str) -> Session:
        return await self._store.ensure_session(session_id)

    async def ensure_system_prompt(self, session_id: str) -> Optional[StoredMessage]:
        """Store the system directive if the active context has no system message.

        Returns:
            The appended message, or None when nothing was added.
        """
        async with self._get_lock(session_id):
            await self._store.ensure_session(session_id)
            return await self._ensure_system_prompt(session_id)

    async def _ensure_system_prompt(self, session_id: str) -> Optional[StoredMessage]:
        if not self._system_prompt:
            return None
        active = await self._store.list_active_messages(session_id)
        if any(m.role == MessageRole.SYSTEM for m in active):
            return None
        message = await self._store.append_message(
            session_id, MessageRole.SYSTEM, self._system_prompt
        )
        logger.debug("session.system_prompt_added", session_id=session_id)
        return message

    async def get_messages_for_context(self, session_id: str) -> List[Dict[str, str]]:
        """Active history shaped for a generation call (system message first)."""
        return await self._assembler.assemble(session_id)

    async def refresh_token_count(self, session_id: str) -> int:
        """Recompute the session's token cache from the assembled context."""
        context = await self._assembler.assemble(session_id)
        tokens = estimate_messages_tokens(context)
        await self._store.update_token_count(session_id, tokens)
        return tokens

    async def process_turn(
        self, session_id: str, user_text: str, model: Optional[str] = None
    ) -> List[Dict[str, str]]:
        """Record a user turn and return the history for the model call.

        Args:
            session_id: Session the turn belongs to (created on first use).
            user_text: User input.
            model: Model for this turn; defaults to the manager's model.

        Returns:
            Assembled context, compacted first when the trigger fired.
        """
        model = model or self._model
        async with self._get_lock(session_id):
            with log_context(
                session_id=session_id, model=model, correlation_id=uuid.uuid4().hex[:12]
            ):
                session = await self._store.ensure_session(session_id)
                await self._ensure_system_prompt(session_id)
                await self._store.append_message(session_id, MessageRole.USER, user_text)

                if session.cumulative_token_count == 0:
                    tokens = await self.refresh_token_count(session_id)
                else:
                    tokens = session.cumulative_token_count + estimate_tokens(user_text)
                    await self._store.update_token_count(session_id, tokens)
                logger.debug("turn.user_recorded", tokens=tokens)

                result = await self._engine.maybe_compact(session_id, model)
                self._last_compaction[session_id] = result
                return await self._assembler.assemble(session_id)

    async def record_response(
        self,
        session_id: str,
        response_text: str,
        usage: Optional[Mapping[str, Any]] = None,
    ) -> Optional[StoredMessage]:
        """Record the assistant's reply to the latest turn.

        Blank replies are ignored. When the call reported usage the reply is
        stored with its exact output token count and the session cache
        becomes input + output tokens; otherwise, or when the reported usage
        is malformed, the cache is re-estimated.

        Returns:
            The stored message, or None for a blank reply.
        """
        if not response_text or not response_text.strip():
            logger.debug("turn.blank_response_ignored", session_id=session_id)
            return None

        try:
            reported = TokenUsage.from_mapping(usage)
        except ValueError as e:
            logger.warning("turn.malformed_usage_ignored", session_id=session_id, error=str(e))
            reported = None

        async with self._get_lock(session_id):
            message = await self._store.append_message(
                session_id,
                MessageRole.ASSISTANT,
                response_text,
                token_count=reported.output_tokens if reported and reported.output_tokens else None,
            )
            if reported and reported.context_tokens:
                await self._store.update_token_count(session_id, reported.context_tokens)
                tokens = reported.context_tokens
            else:
                tokens = await self.refresh_token_count(session_id)
            logger.debug(
                "turn.response_recorded",
                session_id=session_id,
                tokens=tokens,
                exact=message.token_count is not None,
            )
            return message
