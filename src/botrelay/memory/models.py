"""
Memory models for Botrelay.

Defines history entries and per-conversation metadata.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TurnRole(str, Enum):
    """Role in a conversation turn."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class HistoryEntry(BaseModel):
    """A single message in a conversation's history."""

    model_config = ConfigDict(use_enum_values=True)

    role: TurnRole
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_message_dict(self) -> dict[str, Any]:
        """Convert to LiteLLM-compatible message dict."""
        return {"role": self.role, "content": self.content}


class ConversationMeta(BaseModel):
    """Metadata generated about a conversation."""

    title: str | None = None
    suggestions: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=_utcnow)
