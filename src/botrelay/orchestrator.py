"""Bot orchestrator: wires adapters, normalizer, registry, agent and delivery.

Inbound path:
    adapter -> normalizer -> rate limiter -> registry.enqueue
Per-conversation worker:
    memory -> agent run -> outbound delivery -> memory
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional, Union

from botrelay.agent.models import RunStatus, build_app_context
from botrelay.config.schema import Config
from botrelay.exceptions import AuthError, NormalizationError, RegistryClosedError
from botrelay.platforms.formatting import chunk_text, strip_markdown
from botrelay.platforms.models import (
    InboundMessage,
    OutboundAction,
    PlatformType,
    RawInboundEvent,
    TextFormat,
)
from botrelay.platforms.protocol import PlatformAdapter, RawEventHandler
from botrelay.platforms.rate_limiter import RateLimitExceeded
from botrelay.platforms.registry import Conversation
from botrelay.state import GatewayState

logger = logging.getLogger(__name__)

# Context keys an embedding app may put in message metadata
_CONTEXT_KEYS = ("current_page", "attached_pages", "timezone", "locale")


@dataclass(frozen=True)
class Channel:
    """Chat a message arrived in."""

    id: str


def _wants_markdown(parse_mode: Union[str, TextFormat, None]) -> bool:
    if parse_mode is None:
        return False
    value = parse_mode.value if isinstance(parse_mode, TextFormat) else str(parse_mode)
    return value.lower().startswith("markdown")


class MessageContext:
    """What a message handler sees for one inbound message."""

    def __init__(
        self,
        message: InboundMessage,
        adapter: PlatformAdapter,
        state: GatewayState,
        conversation: Optional[Conversation] = None,
    ):
        self.message = message
        self.adapter = adapter
        self.conversation = conversation
        self._state = state

    @property
    def provider(self) -> PlatformType:
        return self.message.provider

    @property
    def channel(self) -> Channel:
        return Channel(id=self.message.chat_id)

    async def send_typing(self) -> None:
        """Best-effort typing indicator."""
        await self._state.delivery.send_typing(self.adapter, self.message.chat_id)

    async def reply(
        self,
        text: str,
        parse_mode: Union[str, TextFormat, None] = None,
    ) -> bool:
        """Reply in the message's chat.

        Markdown is only passed through when the platform renders it;
        elsewhere it is stripped to plain text.

        Args:
            text: Reply text
            parse_mode: "markdown" to request markdown formatting

        Returns:
            True if every chunk was delivered
        """
        capabilities = self.adapter.capabilities
        formatting = TextFormat.PLAIN
        if _wants_markdown(parse_mode):
            if capabilities.supports_markdown:
                formatting = TextFormat.MARKDOWN
            else:
                text = strip_markdown(text)

        delivered = True
        for chunk in chunk_text(text.strip(), capabilities.max_message_length):
            action = OutboundAction.reply(chunk, formatting)
            if not await self._state.delivery.send(self.adapter, self.message.chat_id, action):
                delivered = False
        return delivered


MessageHandler = Callable[[MessageContext], Awaitable[None]]


class BotOrchestrator:
    """Owns adapter lifecycle and the per-message pipeline.

    The orchestrator only talks to adapters through PlatformAdapter, so
    platforms are added by registering another adapter.
    """

    def __init__(self, state: GatewayState):
        """Initialize the orchestrator.

        Args:
            state: Shared gateway services
        """
        self.state = state
        self._adapters: dict[str, PlatformAdapter] = {}
        self._handler: Optional[MessageHandler] = None
        self._eviction_task: Optional[asyncio.Task] = None
        self._running = False
        state.registry.set_handler(self._process)

    @property
    def adapters(self) -> dict[str, PlatformAdapter]:
        return dict(self._adapters)

    @property
    def is_running(self) -> bool:
        return self._running

    def register_adapter(self, adapter: PlatformAdapter) -> None:
        """Register a platform adapter and subscribe to its events.

        Raises:
            ValueError: If an adapter for this platform is already registered
        """
        platform_name = adapter.platform_type.value
        if platform_name in self._adapters:
            raise ValueError(f"Adapter for {platform_name} already registered")

        self._adapters[platform_name] = adapter
        adapter.register_handlers(self._raw_event_handler(adapter))
        logger.info(f"Registered adapter for platform: {platform_name}")

    def unregister_adapter(self, platform_name: str) -> None:
        if self._adapters.pop(platform_name, None) is not None:
            logger.info(f"Unregistered adapter for platform: {platform_name}")

    def on_message(self, handler: MessageHandler) -> None:
        """Replace the default agent pipeline with a custom handler.

        The handler still runs on the conversation's serial queue.
        """
        self._handler = handler

    def _raw_event_handler(self, adapter: PlatformAdapter) -> RawEventHandler:
        async def on_raw_event(event: RawInboundEvent) -> None:
            await self.handle_raw_event(adapter, event)

        return on_raw_event

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> list[str]:
        """Start every registered adapter.

        An adapter that fails to start is unregistered; the others are
        unaffected.

        Returns:
            Names of the platforms that started
        """
        if self._running:
            logger.warning("Orchestrator is already running")
            return list(self._adapters)

        audit = self.state.audit
        for platform_name, adapter in list(self._adapters.items()):
            try:
                await adapter.start()
            except AuthError as e:
                logger.error(f"Adapter {platform_name} refused to start: {e}")
                audit.log_adapter_error(platform_name, f"auth: {e}")
                self.unregister_adapter(platform_name)
                continue
            except Exception as e:
                logger.error(f"Failed to start adapter for {platform_name}: {e}", exc_info=True)
                audit.log_adapter_error(platform_name, str(e))
                self.unregister_adapter(platform_name)
                continue

            audit.log_adapter_started(platform_name)
            logger.info(f"Started adapter for {platform_name}")

        self._running = True
        idle_ttl = self.state.config.registry.idle_ttl
        if idle_ttl:
            self._eviction_task = asyncio.create_task(
                self._evict_periodically(idle_ttl), name="conversation-eviction"
            )

        logger.info(f"Orchestrator started with {len(self._adapters)} adapter(s)")
        return list(self._adapters)

    async def stop(self) -> bool:
        """Drain conversations, stop adapters and close shared state.

        Returns:
            True if all accepted messages were processed before the timeout
        """
        drained = await self.state.registry.shutdown(self.state.config.registry.drain_timeout)

        if self._eviction_task is not None:
            self._eviction_task.cancel()
            await asyncio.gather(self._eviction_task, return_exceptions=True)
            self._eviction_task = None

        for platform_name, adapter in self._adapters.items():
            try:
                await adapter.stop()
                self.state.audit.log_adapter_stopped(platform_name)
                logger.info(f"Stopped adapter for {platform_name}")
            except Exception as e:
                logger.error(f"Failed to stop adapter for {platform_name}: {e}")
                self.state.audit.log_adapter_error(platform_name, str(e))

        await self.state.close()
        self._running = False
        logger.info("Orchestrator stopped")
        return drained

    async def _evict_periodically(self, idle_ttl: float) -> None:
        interval = max(idle_ttl / 2, 1.0)
        while True:
            await asyncio.sleep(interval)
            self.state.registry.evict_idle(idle_ttl)
            if self.state.rate_limiter is not None:
                self.state.rate_limiter.cleanup(max_age=idle_ttl)

    # =========================================================================
    # Inbound
    # =========================================================================

    async def handle_raw_event(self, adapter: PlatformAdapter, event: RawInboundEvent) -> None:
        """Normalize an adapter event and queue it on its conversation."""
        state = self.state
        platform = adapter.platform_type

        try:
            message = state.normalizer_for(platform).normalize(platform, event)
        except NormalizationError as e:
            logger.warning(f"Dropped {platform.value} payload: {e}")
            state.audit.log_message_dropped(platform.value, e.reason, event.channel_id)
            return

        if message is None:
            state.audit.log_message_dropped(platform.value, f"filtered ({event.kind})", event.channel_id)
            return

        state.audit.log_message_received(
            platform.value, message.chat_id, message.author_id, message.text
        )

        if state.rate_limiter is not None:
            try:
                state.rate_limiter.check_limit(message.author)
            except RateLimitExceeded as e:
                logger.info(str(e))
                state.audit.log_rate_limited(platform.value, message.author_id, e.retry_after)
                if e.notify:
                    await state.delivery.send(
                        adapter,
                        message.chat_id,
                        OutboundAction.reply(
                            state.config.agent.rate_limit_message,
                            TextFormat.PLAIN,
                            message.message_id,
                        ),
                    )
                return

        conversation = state.registry.resolve(message.provider, message.chat_id)
        try:
            await state.registry.enqueue(conversation, message)
        except RegistryClosedError as e:
            logger.warning(f"Rejected message for {conversation.key}: {e}")
            state.audit.log_message_dropped(platform.value, "shutting down", message.chat_id)

    async def _process(self, conversation: Conversation, message: InboundMessage) -> None:
        adapter = self._adapters.get(message.provider.value)
        if adapter is None:
            logger.error(f"No adapter registered for {message.provider.value}, dropping message")
            return

        ctx = MessageContext(message, adapter, self.state, conversation)
        if self._handler is not None:
            await self._handler(ctx)
        else:
            await self.run_agent(ctx)

    async def run_agent(self, ctx: MessageContext) -> None:
        """Default pipeline: answer a message with the agent."""
        state = self.state
        message = ctx.message
        key = message.conversation_key
        platform = message.provider.value

        overrides = {k: message.metadata[k] for k in _CONTEXT_KEYS if k in message.metadata}
        context = build_app_context(message, **overrides)
        history = await state.memory.load_history(key)
        working_memory = await state.memory.load_working_memory(message.author_id, key)

        run = state.runner.run(key, message, context, history=history, working_memory=working_memory)
        report = await state.delivery.deliver(
            ctx.adapter,
            message.chat_id,
            run,
            reply_to_message_id=message.message_id if message.is_group else None,
        )

        outcome = run.outcome
        if outcome is not None and outcome.status == RunStatus.FAILED:
            state.audit.log_agent_error(platform, message.chat_id, outcome.error)

        if report.replies_sent:
            state.audit.log_reply_sent(platform, message.chat_id, report.replies_sent, report.final_text)
        if report.replies_failed:
            state.audit.log_delivery_failed(platform, message.chat_id, report.replies_failed)

        await state.memory.record_exchange(
            key, message.text, None if report.errored else report.final_text
        )

    # =========================================================================
    # Introspection
    # =========================================================================

    async def health_check(self) -> dict[str, bool]:
        """Health of every registered adapter."""
        results = {}
        for platform_name, adapter in self._adapters.items():
            try:
                results[platform_name] = await adapter.health_check()
            except Exception as e:
                logger.error(f"Health check failed for {platform_name}: {e}")
                results[platform_name] = False
        return results

    def stats(self) -> dict[str, Any]:
        """Registry statistics plus the registered adapters."""
        return {"adapters": list(self._adapters), **self.state.registry.stats()}


def create_adapters(config: Config, platform_filter: Optional[str] = None) -> list[PlatformAdapter]:
    """Create adapters for the enabled platforms.

    Client libraries are imported only for the platforms being created.

    Args:
        config: Loaded configuration
        platform_filter: Only create this platform

    Returns:
        Adapters in telegram, discord, whatsapp order
    """
    platforms = config.platforms
    adapters: list[PlatformAdapter] = []

    for name in config.enabled_platforms():
        if platform_filter and name != platform_filter:
            continue

        if name == "telegram":
            from botrelay.platforms.adapters.telegram import TelegramAdapter

            adapters.append(
                TelegramAdapter(
                    bot_token=platforms.telegram.bot_token,
                    bot_username=platforms.telegram.bot_username,
                    allowed_users=platforms.telegram.allowed_users,
                    polling_interval=platforms.telegram.polling_interval,
                )
            )
        elif name == "discord":
            from botrelay.platforms.adapters.discord import DiscordAdapter

            adapters.append(
                DiscordAdapter(
                    bot_token=platforms.discord.bot_token,
                    allowed_guilds=platforms.discord.allowed_guilds,
                    allowed_channels=platforms.discord.allowed_channels,
                )
            )
        elif name == "whatsapp":
            from botrelay.platforms.adapters.whatsapp import WhatsAppAdapter

            adapters.append(
                WhatsAppAdapter(
                    phone_number_id=platforms.whatsapp.phone_number_id,
                    access_token=platforms.whatsapp.access_token,
                    api_version=platforms.whatsapp.api_version,
                    base_url=platforms.whatsapp.base_url,
                    timeout=platforms.whatsapp.timeout,
                )
            )

    return adapters
