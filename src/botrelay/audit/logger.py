"""
Audit logging for Botrelay gateway events.

Writes one JSON object per line for message flow and adapter lifecycle
events. Audit writes are best-effort and never interrupt message handling.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from botrelay.storage.paths import get_audit_log_path

logger = logging.getLogger(__name__)


class AuditEventType(str, Enum):
    """Types of audit events."""

    MESSAGE_RECEIVED = "message_received"
    MESSAGE_DROPPED = "message_dropped"
    REPLY_SENT = "reply_sent"
    DELIVERY_FAILED = "delivery_failed"
    AGENT_ERROR = "agent_error"
    RATE_LIMITED = "rate_limited"

    ADAPTER_STARTED = "adapter_started"
    ADAPTER_STOPPED = "adapter_stopped"
    ADAPTER_ERROR = "adapter_error"


class AuditLogger:
    """
    JSON Lines audit logger.

    Events are buffered and appended to the log file on flush.
    """

    def __init__(
        self,
        log_path: str | Path,
        enable: bool = True,
        include_messages: bool = False,
        buffer_size: int = 20,
    ) -> None:
        """
        Initialize audit logger.

        Args:
            log_path: Path to audit log file
            enable: Whether logging is enabled
            include_messages: Log message text instead of its SHA256 hash
            buffer_size: Number of events to buffer before flush
        """
        self.log_path = Path(log_path).expanduser()
        self.enable = enable
        self.include_messages = include_messages
        self.buffer_size = buffer_size
        self._buffer: list[dict[str, Any]] = []

    @classmethod
    def from_config(cls, config: Any) -> "AuditLogger":
        """Create audit logger from an AuditConfig."""
        return cls(
            log_path=config.path or get_audit_log_path(),
            enable=config.enable,
            include_messages=config.include_messages,
        )

    def _text_field(self, text: str) -> dict[str, Any]:
        if self.include_messages:
            return {"text": text}
        return {"text_sha256": hashlib.sha256(text.encode()).hexdigest()}

    def _write_event(self, event_type: AuditEventType, data: dict[str, Any]) -> None:
        if not self.enable:
            return

        self._buffer.append(
            {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "event_type": event_type.value,
                **data,
            }
        )
        if len(self._buffer) >= self.buffer_size:
            self.flush()

    def flush(self) -> None:
        """Flush buffered events to disk."""
        if not self.enable or not self._buffer:
            return

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with self.log_path.open("a", encoding="utf-8") as f:
                for event in self._buffer:
                    f.write(json.dumps(event, default=str) + "\n")
        except OSError as e:
            logger.warning(f"Failed to write audit log {self.log_path}: {e}")
        finally:
            self._buffer.clear()

    # Convenience methods for logging specific events

    def log_message_received(self, platform: str, chat_id: str, user_id: str, text: str) -> None:
        self._write_event(
            AuditEventType.MESSAGE_RECEIVED,
            {"platform": platform, "chat_id": chat_id, "user_id": user_id, **self._text_field(text)},
        )

    def log_message_dropped(self, platform: str, reason: str, chat_id: str | None = None) -> None:
        self._write_event(
            AuditEventType.MESSAGE_DROPPED,
            {"platform": platform, "chat_id": chat_id, "reason": reason},
        )

    def log_reply_sent(self, platform: str, chat_id: str, replies: int, text: str) -> None:
        self._write_event(
            AuditEventType.REPLY_SENT,
            {"platform": platform, "chat_id": chat_id, "replies": replies, **self._text_field(text)},
        )

    def log_delivery_failed(self, platform: str, chat_id: str, failed: int) -> None:
        self._write_event(
            AuditEventType.DELIVERY_FAILED,
            {"platform": platform, "chat_id": chat_id, "failed": failed},
        )

    def log_agent_error(self, platform: str, chat_id: str, error: str | None) -> None:
        self._write_event(
            AuditEventType.AGENT_ERROR,
            {"platform": platform, "chat_id": chat_id, "error": error},
        )

    def log_rate_limited(self, platform: str, user_id: str, retry_after: float) -> None:
        self._write_event(
            AuditEventType.RATE_LIMITED,
            {"platform": platform, "user_id": user_id, "retry_after": round(retry_after, 1)},
        )

    def log_adapter_started(self, platform: str) -> None:
        self._write_event(AuditEventType.ADAPTER_STARTED, {"platform": platform})

    def log_adapter_stopped(self, platform: str) -> None:
        self._write_event(AuditEventType.ADAPTER_STOPPED, {"platform": platform})

    def log_adapter_error(self, platform: str, error: str) -> None:
        self._write_event(AuditEventType.ADAPTER_ERROR, {"platform": platform, "error": error})

    def close(self) -> None:
        """Flush remaining events."""
        self.flush()
