"""Build the message list sent to the model."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Sequence

from session_compaction.context.compactor import SYSTEM_SEPARATOR

if TYPE_CHECKING:
    from session_compaction.sessions.base import StoredMessage
    from session_compaction.sessions.store import MessageStore


def merge_system_messages(
    messages: Sequence[StoredMessage], separator: str = SYSTEM_SEPARATOR
) -> List[Dict[str, str]]:
    """Collapse system messages into one leading message.

    Args:
        messages: Active messages ordered by sequence number.
        separator: Joins the contents of multiple system messages.

    Returns:
        ``{role, content}`` dicts: the (merged) system message first, if any,
        then the other messages in their original order.
    """
    system = [m.content for m in messages if m.role.value == "system"]
    rest = [m.to_context() for m in messages if m.role.value != "system"]
    if not system:
        return rest
    return [{"role": "system", "content": separator.join(system)}] + rest


class ContextAssembler:
    """Reads a session's active messages and shapes them for a generation call."""

    def __init__(self, store: MessageStore, separator: str = SYSTEM_SEPARATOR):
        self.store = store
        self.separator = separator

    async def assemble(self, session_id: str) -> List[Dict[str, str]]:
        messages = await self.store.list_active_messages(session_id)
        return merge_system_messages(messages, self.separator)
