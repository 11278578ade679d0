"""
Memory stores for Botrelay.

A MemoryStore holds bounded conversation history, scoped working memory
and generated conversation metadata. The in-memory store is the default;
the file store persists the same data as JSON under the memory directory.
"""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from collections import deque
from pathlib import Path
from typing import Any

from botrelay.memory.models import ConversationMeta, HistoryEntry, TurnRole
from botrelay.storage.paths import get_memory_dir

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20


class MemoryStore(ABC):
    """Interface for conversation memory backends."""

    @abstractmethod
    async def append_history(self, conversation_key: str, role: TurnRole, content: str) -> None:
        """Append a message to a conversation's history."""
        ...

    @abstractmethod
    async def get_history(
        self, conversation_key: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[HistoryEntry]:
        """Get the most recent `limit` entries, most recent last."""
        ...

    @abstractmethod
    async def get_working_memory(self, scope_id: str) -> dict[str, Any]:
        """Get the working memory mapping for a user or conversation."""
        ...

    @abstractmethod
    async def set_working_memory(self, scope_id: str, key: str, value: Any) -> None:
        """Set one working memory value."""
        ...

    @abstractmethod
    async def get_meta(self, conversation_key: str) -> ConversationMeta:
        """Get generated metadata for a conversation."""
        ...

    @abstractmethod
    async def set_title(self, conversation_key: str, title: str) -> bool:
        """Set the conversation title unless it already has one.

        Returns:
            True if the title was set, False if one already existed.
        """
        ...

    @abstractmethod
    async def set_suggestions(self, conversation_key: str, suggestions: list[str]) -> None:
        """Replace the follow-up suggestions of a conversation."""
        ...

    async def close(self) -> None:
        """Release resources held by the store."""
        pass


class InMemoryStore(MemoryStore):
    """Process-lifetime memory store. Cleared on restart."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_LIMIT):
        """Initialize the store.

        Args:
            capacity: Maximum history entries kept per conversation
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._history: dict[str, deque[HistoryEntry]] = {}
        self._working: dict[str, dict[str, Any]] = {}
        self._meta: dict[str, ConversationMeta] = {}

    def _ring(self, conversation_key: str) -> deque[HistoryEntry]:
        ring = self._history.get(conversation_key)
        if ring is None:
            ring = deque(maxlen=self.capacity)
            self._history[conversation_key] = ring
        return ring

    async def append_history(self, conversation_key: str, role: TurnRole, content: str) -> None:
        self._ring(conversation_key).append(HistoryEntry(role=role, content=content))

    async def get_history(
        self, conversation_key: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[HistoryEntry]:
        if limit <= 0:
            return []
        entries = list(self._history.get(conversation_key, ()))
        return entries[-limit:]

    async def get_working_memory(self, scope_id: str) -> dict[str, Any]:
        return dict(self._working.get(scope_id, {}))

    async def set_working_memory(self, scope_id: str, key: str, value: Any) -> None:
        self._working.setdefault(scope_id, {})[key] = value

    async def get_meta(self, conversation_key: str) -> ConversationMeta:
        meta = self._meta.get(conversation_key)
        return meta.model_copy(deep=True) if meta else ConversationMeta()

    async def set_title(self, conversation_key: str, title: str) -> bool:
        meta = self._meta.setdefault(conversation_key, ConversationMeta())
        if meta.title:
            return False
        meta.title = title
        return True

    async def set_suggestions(self, conversation_key: str, suggestions: list[str]) -> None:
        meta = self._meta.setdefault(conversation_key, ConversationMeta())
        meta.suggestions = list(suggestions)

    def stats(self) -> dict[str, int]:
        """Get store statistics."""
        return {
            "conversations": len(self._history),
            "entries": sum(len(ring) for ring in self._history.values()),
            "working_memory_scopes": len(self._working),
        }


class FileMemoryStore(InMemoryStore):
    """JSON-file backed memory store.

    Layout under the base path:
        conversations/<key>.json   history + metadata per conversation
        working_memory.json        all working memory scopes
    """

    def __init__(
        self,
        base_path: Path | str | None = None,
        capacity: int = DEFAULT_HISTORY_LIMIT,
    ):
        """Initialize the file store.

        Args:
            base_path: Base directory. Defaults to ~/.botrelay/memory.
            capacity: Maximum history entries kept per conversation
        """
        super().__init__(capacity)
        if base_path is None:
            self.base_path = get_memory_dir()
        else:
            self.base_path = Path(base_path).expanduser().resolve()

        self.conversations_path = self.base_path / "conversations"
        self.working_memory_file = self.base_path / "working_memory.json"
        self.conversations_path.mkdir(parents=True, exist_ok=True)

        self._loaded: set[str] = set()
        self._working_lock = asyncio.Lock()
        self._load_working_memory()

    def _conversation_file(self, conversation_key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", conversation_key)
        return self.conversations_path / f"{safe}.json"

    def _load_working_memory(self) -> None:
        if not self.working_memory_file.exists():
            return
        try:
            self._working = json.loads(self.working_memory_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable working memory file: {e}")

    def _load_conversation(self, conversation_key: str) -> None:
        if conversation_key in self._loaded:
            return
        self._loaded.add(conversation_key)

        path = self._conversation_file(conversation_key)
        if not path.exists():
            return
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable memory file {path}: {e}")
            return

        ring = self._ring(conversation_key)
        for item in data.get("history", []):
            ring.append(HistoryEntry.model_validate(item))
        if data.get("meta"):
            self._meta[conversation_key] = ConversationMeta.model_validate(data["meta"])

    def _write_json(self, path: Path, data: Any) -> None:
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    async def _save_conversation(self, conversation_key: str) -> None:
        data = {
            "key": conversation_key,
            "history": [e.model_dump(mode="json") for e in self._ring(conversation_key)],
            "meta": self._meta[conversation_key].model_dump(mode="json")
            if conversation_key in self._meta
            else None,
        }
        await asyncio.to_thread(self._write_json, self._conversation_file(conversation_key), data)

    async def append_history(self, conversation_key: str, role: TurnRole, content: str) -> None:
        self._load_conversation(conversation_key)
        await super().append_history(conversation_key, role, content)
        await self._save_conversation(conversation_key)

    async def get_history(
        self, conversation_key: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[HistoryEntry]:
        self._load_conversation(conversation_key)
        return await super().get_history(conversation_key, limit)

    async def set_working_memory(self, scope_id: str, key: str, value: Any) -> None:
        async with self._working_lock:
            await super().set_working_memory(scope_id, key, value)
            snapshot = json.loads(json.dumps(self._working, default=str))
            await asyncio.to_thread(self._write_json, self.working_memory_file, snapshot)

    async def get_meta(self, conversation_key: str) -> ConversationMeta:
        self._load_conversation(conversation_key)
        return await super().get_meta(conversation_key)

    async def set_title(self, conversation_key: str, title: str) -> bool:
        self._load_conversation(conversation_key)
        changed = await super().set_title(conversation_key, title)
        if changed:
            await self._save_conversation(conversation_key)
        return changed

    async def set_suggestions(self, conversation_key: str, suggestions: list[str]) -> None:
        self._load_conversation(conversation_key)
        await super().set_suggestions(conversation_key, suggestions)
        await self._save_conversation(conversation_key)
