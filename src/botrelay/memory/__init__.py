"""
Conversation memory for Botrelay.

Bounded history, scoped working memory and generated metadata behind a
pluggable store.
"""

from botrelay.memory.manager import MemoryManager, create_store
from botrelay.memory.models import ConversationMeta, HistoryEntry, TurnRole
from botrelay.memory.store import FileMemoryStore, InMemoryStore, MemoryStore

__all__ = [
    "ConversationMeta",
    "FileMemoryStore",
    "HistoryEntry",
    "InMemoryStore",
    "MemoryManager",
    "MemoryStore",
    "TurnRole",
    "create_store",
]
