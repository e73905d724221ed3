#!/usr/bin/env python3
"""Example 1: Chat Session - interactive loop with context compaction.

Every turn goes through ConversationManager.process_turn, so long sessions
are summarized automatically once they reach 75% of the model's window.

Environment:
    AI_GATEWAY_API_KEY   API key for the gateway
    AI_GATEWAY_BASE_URL  Gateway URL (``/v1`` is appended when missing)
    SESSION_ID           Session to resume (default: "default")
"""

import asyncio
import os

from session_compaction.context import CompactionEngine, SummarizerAdapter
from session_compaction.llm.base import LLMConfig, LLMProviderError, Message
from session_compaction.llm.providers import AnthropicProvider
from session_compaction.observability import LogConfig, configure_logging
from session_compaction.sessions import ConversationManager, SQLiteMessageStore


# ============================================================================
# Configuration
# ============================================================================

MODEL = "claude-sonnet-4-5"
DB_PATH = "./data/sessions.db"
SYSTEM_PROMPT = "You are a helpful assistant working in the user's terminal."

LLM_CONFIG = LLMConfig(
    model=MODEL,
    api_key=os.environ.get("AI_GATEWAY_API_KEY"),
    base_url=os.environ.get("AI_GATEWAY_BASE_URL"),
    max_tokens=4096,
)


# ============================================================================
# Chat Loop
# ============================================================================

async def run_chat_session():
    """Read user input until EOF or 'exit', answering each turn."""
    configure_logging(LogConfig(file_path="./data/compaction.log"))

    provider = AnthropicProvider(LLM_CONFIG)
    session_id = os.environ.get("SESSION_ID", "default")

    async with SQLiteMessageStore(DB_PATH) as store:
        engine = CompactionEngine(store, SummarizerAdapter(provider))
        manager = ConversationManager(store, engine, model=MODEL, system_prompt=SYSTEM_PROMPT)

        print(f"Session '{session_id}' - type 'exit' to quit.")
        while True:
            try:
                user_text = (await asyncio.to_thread(input, "\nYou: ")).strip()
            except EOFError:
                break
            if not user_text:
                continue
            if user_text.lower() in ("exit", "quit"):
                break

            history = await manager.process_turn(session_id, user_text)
            result = manager.last_compaction(session_id)
            if result is not None and result.compacted:
                print(
                    f"[compacted {result.messages_retired} messages, "
                    f"{result.tokens_before} -> {result.tokens_after} tokens]"
                )

            try:
                response = await provider.generate([Message.from_dict(m) for m in history])
            except LLMProviderError as e:
                # the user turn stays recorded and is answered with the next one
                print(f"\n[error] {e}")
                continue
            print(f"\nAssistant: {response.content}")
            await manager.record_response(session_id, response.content, response.usage)


if __name__ == "__main__":
    asyncio.run(run_chat_session())
