"""Conversation registry with per-conversation serial dispatch.

Each conversation key ("provider:chat_id") owns a FIFO queue and at most
one worker task. Mutations of a conversation's queue and run state happen
under that conversation's own lock, so unrelated conversations never wait
on each other.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Optional

from botrelay.exceptions import RegistryClosedError
from botrelay.platforms.models import InboundMessage, PlatformType

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Dispatch state of a conversation."""

    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"


class Conversation:
    """Serialization unit for one (provider, chat) pair.

    History and working memory live in the memory store under `key`;
    the registry only tracks the pending queue and run state.
    """

    def __init__(self, provider: PlatformType, chat_id: str):
        self.provider = provider
        self.chat_id = chat_id
        self.queue: deque[InboundMessage] = deque()
        self.run_state = RunState.IDLE
        self.lock = asyncio.Lock()
        self.created_at = time.monotonic()
        self.last_active = self.created_at
        self.runs_completed = 0
        self.runs_failed = 0

    @property
    def key(self) -> str:
        return make_key(self.provider, self.chat_id)

    @property
    def pending(self) -> int:
        """Number of queued messages not yet handed to a run."""
        return len(self.queue)

    def __repr__(self) -> str:
        return f"Conversation({self.key}, state={self.run_state.value}, pending={self.pending})"


MessageHandler = Callable[[Conversation, InboundMessage], Awaitable[None]]


def make_key(provider: PlatformType, chat_id: str) -> str:
    """Build the conversation key for a provider and chat."""
    return f"{provider.value}:{chat_id}"


class ConversationRegistry:
    """Maps conversation keys to Conversation state and runs their queues.

    Features:
    - Lazy get-or-create of conversations
    - Strict FIFO per conversation, at most one active run each
    - Independent progress across conversations
    - Drain on shutdown (finish accepted work, reject new messages)
    - Optional eviction of idle conversations
    """

    def __init__(self, handler: Optional[MessageHandler] = None):
        """Initialize the registry.

        Args:
            handler: Coroutine run for each dequeued message. It receives the
                conversation and the message.
        """
        self._handler = handler
        self._conversations: dict[str, Conversation] = {}
        self._workers: set[asyncio.Task] = set()
        self._closed = False

    def set_handler(self, handler: MessageHandler) -> None:
        """Set the coroutine that processes dequeued messages."""
        self._handler = handler

    @property
    def is_closed(self) -> bool:
        """True once shutdown has started."""
        return self._closed

    def resolve(self, provider: PlatformType, chat_id: str) -> Conversation:
        """Get or create the conversation for a provider and chat.

        Idempotent; never suspends, so concurrent callers on the event loop
        always see the same Conversation object for a key.

        Args:
            provider: Platform of the chat
            chat_id: Platform-specific chat identifier

        Returns:
            The conversation for this key
        """
        if not chat_id:
            raise ValueError("chat_id must be non-empty")

        key = make_key(provider, chat_id)
        conversation = self._conversations.get(key)
        if conversation is None:
            conversation = Conversation(provider, chat_id)
            self._conversations[key] = conversation
            logger.debug(f"Created conversation {key}")
        return conversation

    def get(self, key: str) -> Optional[Conversation]:
        """Look up a conversation without creating it."""
        return self._conversations.get(key)

    async def enqueue(self, conversation: Conversation, message: InboundMessage) -> None:
        """Queue a message and start the conversation worker if it is idle.

        Args:
            conversation: Target conversation (from resolve)
            message: Message to process

        Raises:
            RegistryClosedError: If the registry is draining for shutdown
        """
        if self._closed:
            raise RegistryClosedError("Registry is shutting down, message rejected")
        if self._handler is None:
            raise RuntimeError("No message handler registered")

        async with conversation.lock:
            # Re-register if evicted between resolve() and here
            current = self._conversations.setdefault(conversation.key, conversation)
            if current is conversation:
                conversation.queue.append(message)
                conversation.last_active = time.monotonic()

                if conversation.run_state != RunState.IDLE:
                    logger.debug(
                        f"Queued message for busy conversation {conversation.key} "
                        f"({conversation.pending} pending)"
                    )
                    return

                conversation.run_state = RunState.RUNNING
                worker = asyncio.create_task(
                    self._run_worker(conversation),
                    name=f"conversation:{conversation.key}",
                )
                self._workers.add(worker)
                worker.add_done_callback(self._workers.discard)
                return

        await self.enqueue(current, message)

    async def _run_worker(self, conversation: Conversation) -> None:
        """Process a conversation's queue until it is empty."""
        assert self._handler is not None
        try:
            while True:
                async with conversation.lock:
                    if not conversation.queue:
                        conversation.run_state = RunState.IDLE
                        return
                    message = conversation.queue.popleft()

                try:
                    await self._handler(conversation, message)
                    conversation.runs_completed += 1
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    # One failed run must not stall the queue or other conversations
                    conversation.runs_failed += 1
                    logger.error(
                        f"Handler failed for conversation {conversation.key}: {e}",
                        exc_info=True,
                    )
                finally:
                    conversation.last_active = time.monotonic()
        except asyncio.CancelledError:
            conversation.run_state = RunState.IDLE
            logger.warning(
                f"Conversation {conversation.key} cancelled with {conversation.pending} pending"
            )
            raise

    async def join(self) -> None:
        """Wait until every conversation worker has finished."""
        while self._workers:
            await asyncio.gather(*list(self._workers), return_exceptions=True)

    async def shutdown(self, timeout: float = 30.0) -> bool:
        """Drain the registry.

        New enqueues are rejected from this point. Accepted messages keep
        being processed until `timeout`, after which remaining workers are
        cancelled.

        Args:
            timeout: Seconds to wait for in-flight work

        Returns:
            True if all work finished, False if workers had to be cancelled
        """
        self._closed = True

        for conversation in list(self._conversations.values()):
            async with conversation.lock:
                if conversation.run_state == RunState.RUNNING:
                    conversation.run_state = RunState.DRAINING

        workers = list(self._workers)
        if not workers:
            return True

        logger.info(f"Draining {len(workers)} active conversation(s)")
        _, still_running = await asyncio.wait(workers, timeout=timeout)
        if not still_running:
            return True

        logger.warning(f"Cancelling {len(still_running)} conversation(s) after {timeout}s drain")
        for worker in still_running:
            worker.cancel()
        await asyncio.gather(*still_running, return_exceptions=True)
        return False

    def evict_idle(self, max_idle: float) -> int:
        """Remove idle conversations untouched for longer than max_idle.

        Args:
            max_idle: Idle time in seconds

        Returns:
            Number of conversations evicted
        """
        now = time.monotonic()
        evicted = [
            key
            for key, conversation in self._conversations.items()
            if conversation.run_state == RunState.IDLE
            and not conversation.queue
            and not conversation.lock.locked()
            and now - conversation.last_active > max_idle
        ]
        for key in evicted:
            del self._conversations[key]

        if evicted:
            logger.info(f"Evicted {len(evicted)} idle conversation(s)")
        return len(evicted)

    def stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        conversations = list(self._conversations.values())
        return {
            "conversations": len(conversations),
            "active": sum(1 for c in conversations if c.run_state != RunState.IDLE),
            "queued": sum(c.pending for c in conversations),
            "workers": len(self._workers),
            "closed": self._closed,
        }

    def __len__(self) -> int:
        return len(self._conversations)
