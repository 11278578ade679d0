"""Discord bot platform adapter using Gateway WebSocket."""

import asyncio
import logging
from typing import Any, Optional

import discord

from botrelay.exceptions import (
    AuthError,
    DeliveryError,
    RateLimited,
    TransientNetworkError,
)
from botrelay.platforms.models import (
    AttachmentKind,
    OutboundAction,
    OutboundKind,
    PlatformCapabilities,
    PlatformType,
    RawAttachment,
    RawAuthor,
    RawInboundEvent,
)
from botrelay.platforms.protocol import PlatformAdapter

logger = logging.getLogger(__name__)

PLATFORM = PlatformType.DISCORD.value


def _retry_after(response: Any) -> Optional[float]:
    headers = getattr(response, "headers", None) or {}
    for header in ("Retry-After", "X-RateLimit-Reset-After"):
        value = headers.get(header)
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


def map_discord_error(error: Exception) -> DeliveryError:
    """Translate a discord.py (or transport) error into the gateway taxonomy."""
    if isinstance(error, discord.RateLimited):
        return RateLimited(str(error), PLATFORM, retry_after=error.retry_after)
    if isinstance(error, discord.LoginFailure):
        return AuthError(str(error), PLATFORM)
    if isinstance(error, discord.HTTPException):
        if error.status == 429:
            return RateLimited(str(error), PLATFORM, retry_after=_retry_after(error.response))
        if error.status == 401:
            return AuthError(str(error), PLATFORM)
        if error.status >= 500:
            return TransientNetworkError(str(error), PLATFORM)
        return DeliveryError(str(error), PLATFORM)
    if isinstance(error, (discord.ConnectionClosed, discord.GatewayNotFound, OSError, asyncio.TimeoutError)):
        return TransientNetworkError(str(error), PLATFORM)
    return DeliveryError(str(error), PLATFORM)


def _attachment_kind(content_type: Optional[str]) -> AttachmentKind:
    major = (content_type or "").split("/", 1)[0]
    return {
        "image": AttachmentKind.IMAGE,
        "video": AttachmentKind.VIDEO,
        "audio": AttachmentKind.AUDIO,
    }.get(major, AttachmentKind.DOCUMENT)


class DiscordAdapter(PlatformAdapter):
    """Discord bot adapter using Gateway WebSocket.

    Maintains a persistent WebSocket to Discord; no webhook required.
    Replies are plain text (markdown is stripped by delivery).

    Configuration:
        - bot_token: Discord bot token
        - allowed_guilds: Allowed guild (server) IDs (empty = all guilds)
        - allowed_channels: Allowed channel IDs (empty = all channels)
    """

    def __init__(
        self,
        bot_token: str,
        allowed_guilds: Optional[list[str]] = None,
        allowed_channels: Optional[list[str]] = None,
        ready_timeout: float = 30.0,
    ):
        super().__init__()

        self._bot_token = bot_token
        self._allowed_guilds = set(allowed_guilds) if allowed_guilds else None
        self._allowed_channels = set(allowed_channels) if allowed_channels else None
        self._ready_timeout = ready_timeout

        # Message content is a privileged intent; enable it in the developer portal
        intents = discord.Intents.default()
        intents.message_content = True
        intents.messages = True
        intents.guilds = True

        self._client = discord.Client(intents=intents)
        self._ready_event = asyncio.Event()
        self._connect_task: Optional[asyncio.Task] = None

        self._client.event(self.on_ready)
        self._client.event(self.on_message)

        self._capabilities = PlatformCapabilities(
            supports_markdown=False,
            supports_attachments=True,
            supports_threads=True,
            supports_typing_indicator=True,
            supports_message_editing=True,
            max_message_length=2000,
        )

    @property
    def platform_type(self) -> PlatformType:
        return PlatformType.DISCORD

    @property
    def capabilities(self) -> PlatformCapabilities:
        return self._capabilities

    async def start(self) -> None:
        """Log in and connect to the Gateway.

        Raises:
            AuthError: If the bot token is missing or rejected
            TransientNetworkError: If the Gateway doesn't become ready in time
        """
        if self._running:
            logger.warning("Discord adapter already running")
            return
        if not self._bot_token:
            raise AuthError("Discord bot token is not configured", PLATFORM)

        logger.info("Starting Discord bot adapter (Gateway WebSocket)")

        try:
            await self._client.login(self._bot_token)
        except discord.LoginFailure as e:
            await self._client.close()
            raise AuthError(f"Discord rejected the bot token: {e}", PLATFORM) from e

        self._connect_task = asyncio.create_task(self._connect(), name="discord-gateway")
        try:
            await asyncio.wait_for(self._ready_event.wait(), timeout=self._ready_timeout)
        except asyncio.TimeoutError as e:
            await self._client.close()
            raise TransientNetworkError("Discord gateway did not become ready", PLATFORM) from e

        self._running = True
        logger.info(f"Discord bot logged in as {self._client.user}")

    async def _connect(self) -> None:
        try:
            await self._client.connect(reconnect=True)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Discord gateway connection ended: {e}", exc_info=True)
        finally:
            self._running = False

    async def on_ready(self) -> None:
        self._ready_event.set()

    async def on_message(self, message: discord.Message) -> None:
        event = self.extract_event(message)
        if event is not None:
            await self._emit(event)

    def extract_event(self, message: discord.Message) -> Optional[RawInboundEvent]:
        """Project a Discord message onto the abstract inbound shape.

        Returns:
            The event, or None for our own messages and disallowed
            guilds/channels
        """
        me = self._client.user
        if me is not None and message.author.id == me.id:
            return None

        guild_id = str(message.guild.id) if message.guild else None
        if guild_id and self._allowed_guilds and guild_id not in self._allowed_guilds:
            logger.warning(f"Rejected message from unauthorized guild: {guild_id}")
            return None

        channel_id = str(message.channel.id)
        if self._allowed_channels and channel_id not in self._allowed_channels:
            logger.warning(f"Rejected message from unauthorized channel: {channel_id}")
            return None

        is_group = message.guild is not None
        is_mentioned = not is_group or (me is not None and me in message.mentions)
        reference = message.reference

        return RawInboundEvent(
            platform=PlatformType.DISCORD,
            kind="message",
            message_id=str(message.id),
            author=RawAuthor(
                id=str(message.author.id),
                name=message.author.display_name,
                username=message.author.name,
                is_bot=message.author.bot,
            ),
            channel_id=channel_id,
            text=self._strip_self_mention(message.content),
            attachments=[
                RawAttachment(
                    uri=a.url,
                    kind=_attachment_kind(a.content_type),
                    mime_type=a.content_type,
                )
                for a in message.attachments
            ],
            is_group=is_group,
            is_mentioned=is_mentioned,
            reply_to_message_id=str(reference.message_id) if reference and reference.message_id else None,
            metadata={
                "guild_id": guild_id,
                "is_thread": isinstance(message.channel, discord.Thread),
            },
            raw=message,
        )

    def _strip_self_mention(self, content: str) -> str:
        me = self._client.user
        if not content or me is None:
            return content
        for token in (f"<@{me.id}>", f"<@!{me.id}>"):
            content = content.replace(token, "")
        return content.strip()

    async def _get_channel(self, chat_id: str) -> discord.abc.Messageable:
        channel = self._client.get_channel(int(chat_id))
        if channel is None:
            channel = await self._client.fetch_channel(int(chat_id))
        return channel

    async def send(self, chat_id: str, action: OutboundAction) -> None:
        try:
            channel = await self._get_channel(chat_id)

            if action.kind == OutboundKind.TYPING_INDICATOR:
                await channel.typing()
                return

            reference = None
            if action.reply_to_message_id:
                reference = discord.MessageReference(
                    message_id=int(action.reply_to_message_id),
                    channel_id=int(chat_id),
                    fail_if_not_exists=False,
                )
            await channel.send(action.text or "", reference=reference)
        except (discord.DiscordException, OSError, asyncio.TimeoutError) as e:
            raise map_discord_error(e) from e

    async def send_typing(self, chat_id: str) -> None:
        await self.send(chat_id, OutboundAction.typing())

    async def stop(self) -> None:
        if not self._running and self._connect_task is None:
            return

        logger.info("Stopping Discord bot adapter")
        await self._client.close()
        if self._connect_task is not None:
            self._connect_task.cancel()
            await asyncio.gather(self._connect_task, return_exceptions=True)
            self._connect_task = None

        self._running = False
        logger.info("Discord bot stopped")

    async def health_check(self) -> bool:
        if not self._running:
            return False
        return self._client.is_ready() and not self._client.is_closed()
