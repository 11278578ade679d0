"""Outbound delivery: turns AgentEvents into platform reply calls.

Policy:
- text deltas are buffered, never sent per token
- at a step boundary the buffered text is sealed; it is sent as its own
  reply once more activity follows, while the text of the last step is
  superseded by `done.final_text`, so a one-step answer is one reply
- markdown only where the platform supports it, plain text elsewhere
- an error produces one generic fallback reply and silences the rest
- the typing indicator is sent once, before the first event
"""

import asyncio
import logging
from collections.abc import AsyncIterable, Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Optional

from botrelay.agent.models import (
    AgentEvent,
    Done,
    ErrorEvent,
    StepComplete,
    TextDelta,
    ToolCall,
)
from botrelay.exceptions import RateLimited, classify_delivery_error, should_retry
from botrelay.platforms.formatting import chunk_text, strip_markdown
from botrelay.platforms.models import (
    OutboundAction,
    OutboundKind,
    PlatformCapabilities,
    TextFormat,
)
from botrelay.platforms.protocol import PlatformAdapter

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_MESSAGE = "Sorry, something went wrong while answering. Please try again."


@dataclass
class RetryPolicy:
    """Bounded exponential backoff for platform sends."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay_for(self, attempt: int, error: Exception) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        if isinstance(error, RateLimited) and error.retry_after is not None:
            return max(0.0, float(error.retry_after))
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


class ReplyRenderer:
    """Incremental AgentEvent -> OutboundAction renderer for one run."""

    def __init__(
        self,
        capabilities: PlatformCapabilities,
        fallback_message: str = DEFAULT_FALLBACK_MESSAGE,
        reply_to_message_id: Optional[str] = None,
    ):
        self.capabilities = capabilities
        self.fallback_message = fallback_message
        self.reply_to_message_id = reply_to_message_id
        self._buffer: list[str] = []
        self._pending: Optional[str] = None
        self._errored = False
        self._done = False

    @property
    def errored(self) -> bool:
        return self._errored

    def feed(self, event: AgentEvent) -> list[OutboundAction]:
        """Consume one event and return the actions it releases."""
        if self._done or (self._errored and not isinstance(event, Done)):
            return []

        if isinstance(event, ErrorEvent):
            logger.warning(f"Agent error ({event.kind}) replaced by fallback reply: {event.message}")
            self._errored = True
            self._buffer.clear()
            self._pending = None
            return [self._plain_reply(self.fallback_message)]

        if isinstance(event, Done):
            self._done = True
            if self._errored:
                return []
            text = event.final_text or self._pending or "".join(self._buffer)
            self._pending = None
            self._buffer.clear()
            return self.reply_actions(text)

        # Any other event means the previous step wasn't the last one
        actions = self._flush_pending()

        if isinstance(event, TextDelta):
            self._buffer.append(event.text)
        elif isinstance(event, StepComplete):
            text = "".join(self._buffer)
            self._buffer.clear()
            if text.strip():
                self._pending = text
        elif isinstance(event, ToolCall):
            logger.debug(f"Agent called tool {event.name}")

        return actions

    def _flush_pending(self) -> list[OutboundAction]:
        if self._pending is None:
            return []
        text, self._pending = self._pending, None
        return self.reply_actions(text)

    def reply_actions(self, text: str) -> list[OutboundAction]:
        """Format and chunk text into reply actions for this platform."""
        if not text or not text.strip():
            return []
        if self.capabilities.supports_markdown:
            formatting = TextFormat.MARKDOWN
            body = text.strip()
        else:
            formatting = TextFormat.PLAIN
            body = strip_markdown(text).strip()

        return [
            OutboundAction.reply(chunk, formatting, self.reply_to_message_id)
            for chunk in chunk_text(body, self.capabilities.max_message_length)
        ]

    def _plain_reply(self, text: str) -> OutboundAction:
        return OutboundAction.reply(text, TextFormat.PLAIN, self.reply_to_message_id)


def render(
    events: Iterable[AgentEvent],
    capabilities: PlatformCapabilities,
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE,
    include_typing: bool = True,
) -> list[OutboundAction]:
    """Render a complete event sequence into outbound actions.

    Args:
        events: AgentEvents of one run, in order
        capabilities: Capabilities of the target platform
        fallback_message: Text sent instead of internal error details
        include_typing: Lead with a typing indicator if supported

    Returns:
        Outbound actions in send order
    """
    actions: list[OutboundAction] = []
    if include_typing and capabilities.supports_typing_indicator:
        actions.append(OutboundAction.typing())

    renderer = ReplyRenderer(capabilities, fallback_message)
    for event in events:
        actions.extend(renderer.feed(event))
    return actions


@dataclass
class DeliveryReport:
    """What happened while delivering one run."""

    replies_sent: int = 0
    replies_failed: int = 0
    errored: bool = False
    final_text: str = ""


class OutboundDelivery:
    """Sends rendered actions through an adapter with retry."""

    def __init__(
        self,
        retry: Optional[RetryPolicy] = None,
        fallback_message: str = DEFAULT_FALLBACK_MESSAGE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize delivery.

        Args:
            retry: Retry policy for failed sends
            fallback_message: Reply used when the agent fails
            sleep: Backoff sleep (replaceable in tests)
        """
        self.retry = retry or RetryPolicy()
        self.fallback_message = fallback_message
        self._sleep = sleep

    async def send_typing(self, adapter: PlatformAdapter, chat_id: str) -> None:
        """Best-effort typing indicator. Failures are ignored."""
        if not adapter.capabilities.supports_typing_indicator:
            return
        try:
            await adapter.send(chat_id, OutboundAction.typing())
        except Exception as e:
            logger.debug(f"Typing indicator failed for {adapter.platform_type.value}:{chat_id}: {e}")

    async def send(self, adapter: PlatformAdapter, chat_id: str, action: OutboundAction) -> bool:
        """Send one action, retrying transient failures.

        Returns:
            True if the platform accepted the action, False if it was dropped
        """
        platform = adapter.platform_type.value
        attempt = 0
        while True:
            attempt += 1
            try:
                await adapter.send(chat_id, action)
                return True
            except Exception as e:
                failure = classify_delivery_error(e)
                if not should_retry(failure) or attempt >= self.retry.max_attempts:
                    logger.error(
                        f"Dropping {action.kind.value} to {platform}:{chat_id} after "
                        f"{attempt} attempt(s) ({failure.value}): {e}"
                    )
                    return False

                delay = self.retry.delay_for(attempt, e)
                logger.warning(
                    f"Send to {platform}:{chat_id} failed ({failure.value}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await self._sleep(delay)

    async def deliver(
        self,
        adapter: PlatformAdapter,
        chat_id: str,
        events: AsyncIterable[AgentEvent],
        reply_to_message_id: Optional[str] = None,
    ) -> DeliveryReport:
        """Consume a run's events and send the resulting replies.

        The typing indicator goes out before the first event is requested.

        Args:
            adapter: Adapter the message came from
            chat_id: Chat to reply in
            events: The run's event stream (consumed exactly once)
            reply_to_message_id: Thread replies to this message if set

        Returns:
            DeliveryReport for the run
        """
        report = DeliveryReport()
        renderer = ReplyRenderer(adapter.capabilities, self.fallback_message, reply_to_message_id)

        await self.send_typing(adapter, chat_id)

        async for event in events:
            if isinstance(event, Done):
                report.final_text = event.final_text
            for action in renderer.feed(event):
                if action.kind != OutboundKind.REPLY:
                    continue
                if await self.send(adapter, chat_id, action):
                    report.replies_sent += 1
                else:
                    report.replies_failed += 1

        report.errored = renderer.errored
        return report
