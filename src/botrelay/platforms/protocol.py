"""Platform adapter protocol definition."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Optional

from botrelay.platforms.models import (
    OutboundAction,
    PlatformCapabilities,
    PlatformType,
    RawInboundEvent,
)

RawEventHandler = Callable[[RawInboundEvent], Awaitable[None]]


class PlatformAdapter(ABC):
    """Abstract base class for platform adapters.

    Each platform (Telegram, Discord, WhatsApp) implements this capability
    set. The orchestrator only talks to adapters through it, so a new
    platform is added by writing an adapter, never by touching the
    orchestrator.
    """

    def __init__(self) -> None:
        """Initialize the platform adapter."""
        self._running = False
        self._on_raw_event: Optional[RawEventHandler] = None

    @property
    @abstractmethod
    def platform_type(self) -> PlatformType:
        """The type of platform this adapter handles."""
        ...

    @property
    @abstractmethod
    def capabilities(self) -> PlatformCapabilities:
        """The capabilities supported by this platform."""
        ...

    @property
    def is_running(self) -> bool:
        """Check if the adapter is currently running."""
        return self._running

    def register_handlers(self, on_raw_event: RawEventHandler) -> None:
        """Subscribe the gateway to this adapter's inbound events.

        Args:
            on_raw_event: Coroutine called with every RawInboundEvent the
                platform transport delivers.
        """
        self._on_raw_event = on_raw_event

    async def _emit(self, event: RawInboundEvent) -> None:
        """Forward an extracted event to the registered handler."""
        if self._on_raw_event is None:
            return
        await self._on_raw_event(event)

    @abstractmethod
    async def start(self) -> None:
        """Start the platform adapter.

        This method should:
        1. Validate credentials (raise AuthError when they are rejected)
        2. Connect to the platform transport
        3. Set self._running = True

        Raises:
            AuthError: If the platform rejects the credentials
        """
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the platform adapter and release its connections."""
        ...

    @abstractmethod
    async def send(self, chat_id: str, action: OutboundAction) -> None:
        """Perform an outbound action in a chat.

        Args:
            chat_id: Platform-specific chat/channel identifier
            action: The action to perform

        Raises:
            AuthError: Credentials rejected
            RateLimited: Platform throttled the request
            TransientNetworkError: Connection failure, timeout or 5xx
            DeliveryError: Any other rejected request
        """
        ...

    async def send_typing(self, chat_id: str) -> None:
        """Show a typing indicator in a chat (if supported).

        Args:
            chat_id: Platform-specific chat/channel identifier

        Default implementation does nothing. Callers treat this as
        best-effort and ignore failures.
        """
        pass

    async def health_check(self) -> bool:
        """Check if the platform connection is healthy.

        Returns:
            True if healthy, False otherwise
        """
        return self._running
