"""
Memory manager for Botrelay.

Applies the memory configuration (history limit, working memory scope,
enable flags) on top of a MemoryStore, and enforces the best-effort policy:
writes that fail are logged and swallowed so they never block a reply.
"""

import logging
from typing import Any

from botrelay.config.schema import MemoryConfig
from botrelay.memory.models import ConversationMeta, HistoryEntry, TurnRole
from botrelay.memory.store import FileMemoryStore, InMemoryStore, MemoryStore

logger = logging.getLogger(__name__)


def create_store(config: MemoryConfig) -> MemoryStore:
    """
    Create the memory store selected by configuration.

    Args:
        config: Memory configuration.

    Returns:
        An InMemoryStore or FileMemoryStore.
    """
    if config.backend == "file":
        return FileMemoryStore(config.path, capacity=config.history.limit)
    return InMemoryStore(capacity=config.history.limit)


class MemoryManager:
    """Configured access to conversation memory.

    Reads return empty results when a feature is disabled or the store
    fails; writes never raise.
    """

    def __init__(self, store: MemoryStore | None = None, config: MemoryConfig | None = None):
        """Initialize the memory manager.

        Args:
            store: Backing store. Created from config when omitted.
            config: Memory configuration. Defaults are used when omitted.
        """
        self.config = config or MemoryConfig()
        self.store = store or create_store(self.config)

    @property
    def history_limit(self) -> int:
        return self.config.history.limit

    def working_memory_scope(self, user_id: str, conversation_key: str) -> str:
        """Scope id for working memory under the configured scope."""
        if self.config.working_memory.scope == "conversation":
            return f"conversation:{conversation_key}"
        return f"user:{user_id}"

    # =========================================================================
    # History
    # =========================================================================

    async def load_history(self, conversation_key: str) -> list[HistoryEntry]:
        """Get recent history, most recent last."""
        if not self.config.history.enabled:
            return []
        try:
            return await self.store.get_history(conversation_key, self.history_limit)
        except Exception as e:
            logger.warning(f"Failed to load history for {conversation_key}: {e}")
            return []

    async def record_exchange(
        self,
        conversation_key: str,
        user_text: str,
        assistant_text: str | None,
    ) -> None:
        """Append a user message and the reply to history."""
        if not self.config.history.enabled:
            return
        try:
            await self.store.append_history(conversation_key, TurnRole.USER, user_text)
            if assistant_text:
                await self.store.append_history(
                    conversation_key, TurnRole.ASSISTANT, assistant_text
                )
        except Exception as e:
            logger.error(f"Failed to save history for {conversation_key}: {e}", exc_info=True)

    # =========================================================================
    # Working memory
    # =========================================================================

    async def load_working_memory(self, user_id: str, conversation_key: str) -> dict[str, Any]:
        if not self.config.working_memory.enabled:
            return {}
        scope_id = self.working_memory_scope(user_id, conversation_key)
        try:
            return await self.store.get_working_memory(scope_id)
        except Exception as e:
            logger.warning(f"Failed to load working memory for {scope_id}: {e}")
            return {}

    async def remember(self, user_id: str, conversation_key: str, key: str, value: Any) -> None:
        """Store one working memory value."""
        if not self.config.working_memory.enabled:
            return
        scope_id = self.working_memory_scope(user_id, conversation_key)
        try:
            await self.store.set_working_memory(scope_id, key, value)
        except Exception as e:
            logger.error(f"Failed to save working memory for {scope_id}: {e}", exc_info=True)

    # =========================================================================
    # Conversation metadata
    # =========================================================================

    async def get_meta(self, conversation_key: str) -> ConversationMeta:
        try:
            return await self.store.get_meta(conversation_key)
        except Exception as e:
            logger.warning(f"Failed to load metadata for {conversation_key}: {e}")
            return ConversationMeta()

    async def set_title(self, conversation_key: str, title: str) -> bool:
        """Set the title once. Returns True only when it was stored."""
        try:
            return await self.store.set_title(conversation_key, title)
        except Exception as e:
            logger.error(f"Failed to save title for {conversation_key}: {e}")
            return False

    async def set_suggestions(self, conversation_key: str, suggestions: list[str]) -> None:
        try:
            await self.store.set_suggestions(conversation_key, suggestions)
        except Exception as e:
            logger.error(f"Failed to save suggestions for {conversation_key}: {e}")

    async def close(self) -> None:
        """Close the backing store."""
        try:
            await self.store.close()
        except Exception as e:
            logger.warning(f"Error closing memory store: {e}")
