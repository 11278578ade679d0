"""Telegram bot platform adapter using long polling."""

import logging
import re
from datetime import timedelta
from typing import Any, Optional

from telegram import Bot, Message, Update
from telegram.constants import ChatAction, ChatType, ParseMode
from telegram.error import (
    BadRequest,
    Forbidden,
    InvalidToken,
    NetworkError,
    RetryAfter,
    TelegramError,
    TimedOut,
)
from telegram.ext import Application, ContextTypes, TypeHandler
from telegram.helpers import escape_markdown

from botrelay.exceptions import (
    AuthError,
    DeliveryError,
    RateLimited,
    TransientNetworkError,
)
from botrelay.platforms.formatting import strip_markdown
from botrelay.platforms.models import (
    AttachmentKind,
    OutboundAction,
    OutboundKind,
    PlatformCapabilities,
    PlatformType,
    RawAttachment,
    RawAuthor,
    RawInboundEvent,
    TextFormat,
)
from botrelay.platforms.protocol import PlatformAdapter

logger = logging.getLogger(__name__)

PLATFORM = PlatformType.TELEGRAM.value

_MARKDOWN_TOKEN = re.compile(
    r"```(?P<lang>[^\n`]*)\n?(?P<fence>.*?)```"
    r"|`(?P<code>[^`\n]+)`"
    r"|^[ ]{0,3}#{1,6}[ \t]+(?P<heading>[^\n]+)"
    r"|\[(?P<label>[^\]\n]+)\]\((?P<url>[^)\s]+)\)"
    r"|\*\*(?P<bold>.+?)\*\*"
    r"|__(?P<bold_alt>.+?)__"
    r"|~~(?P<strike>.+?)~~"
    r"|(?<![\w*])\*(?![\s*])(?P<italic>[^*\n]+?)(?<!\s)\*(?![\w*])"
    r"|(?<![\w_])_(?![\s_])(?P<italic_alt>[^_\n]+?)(?<!\s)_(?![\w_])",
    re.DOTALL | re.MULTILINE,
)


def to_markdown_v2(text: str) -> str:
    """Convert agent markdown into Telegram MarkdownV2.

    Formatting entities (bold, italic, strikethrough, code, links) are
    rewritten in MarkdownV2 syntax and everything else is escaped, so the
    result always parses. Headings become bold lines.

    Args:
        text: Markdown produced by the agent

    Returns:
        Text safe to send with ParseMode.MARKDOWN_V2
    """
    parts = []
    pos = 0
    for match in _MARKDOWN_TOKEN.finditer(text):
        parts.append(escape_markdown(text[pos : match.start()], version=2))
        parts.append(_render_entity(match))
        pos = match.end()
    parts.append(escape_markdown(text[pos:], version=2))
    return "".join(parts)


def _render_entity(match: re.Match) -> str:
    groups = match.groupdict()
    if groups["fence"] is not None:
        code = escape_markdown(groups["fence"].rstrip("\n"), version=2, entity_type="pre")
        return f"```{groups['lang'].strip()}\n{code}\n```"
    if groups["code"] is not None:
        return f"`{escape_markdown(groups['code'], version=2, entity_type='code')}`"
    if groups["label"] is not None:
        url = escape_markdown(groups["url"], version=2, entity_type="text_link")
        return f"[{to_markdown_v2(groups['label'])}]({url})"
    if groups["strike"] is not None:
        return f"~{to_markdown_v2(groups['strike'])}~"
    for name in ("italic", "italic_alt"):
        if groups[name] is not None:
            return f"_{to_markdown_v2(groups[name])}_"
    if groups["heading"] is not None:
        return f"*{escape_markdown(strip_markdown(groups['heading']).strip(), version=2)}*"
    return f"*{to_markdown_v2(groups['bold'] or groups['bold_alt'])}*"


def map_telegram_error(error: TelegramError) -> DeliveryError:
    """Translate a python-telegram-bot error into the gateway taxonomy."""
    if isinstance(error, RetryAfter):
        retry_after = error.retry_after
        if isinstance(retry_after, timedelta):
            retry_after = retry_after.total_seconds()
        return RateLimited(str(error), PLATFORM, retry_after=float(retry_after))
    if isinstance(error, InvalidToken):
        return AuthError(str(error), PLATFORM)
    # BadRequest subclasses NetworkError but will fail the same way again
    if isinstance(error, (BadRequest, Forbidden)):
        return DeliveryError(str(error), PLATFORM)
    if isinstance(error, (TimedOut, NetworkError)):
        return TransientNetworkError(str(error), PLATFORM)
    return DeliveryError(str(error), PLATFORM)


def _update_kind(update: Update) -> str:
    if update.message is not None:
        return "message"
    for kind in ("edited_message", "channel_post", "callback_query", "inline_query", "poll"):
        if getattr(update, kind, None) is not None:
            return kind
    return "other"


def _extract_attachments(message: Message) -> list[RawAttachment]:
    attachments = []
    if message.photo:
        # Sizes are ascending; the last one is the original
        attachments.append(RawAttachment(uri=message.photo[-1].file_id, kind=AttachmentKind.IMAGE))
    if message.document:
        attachments.append(
            RawAttachment(
                uri=message.document.file_id,
                kind=AttachmentKind.DOCUMENT,
                mime_type=message.document.mime_type,
            )
        )
    if message.audio:
        attachments.append(
            RawAttachment(
                uri=message.audio.file_id,
                kind=AttachmentKind.AUDIO,
                mime_type=message.audio.mime_type,
            )
        )
    if message.voice:
        attachments.append(
            RawAttachment(
                uri=message.voice.file_id,
                kind=AttachmentKind.AUDIO,
                mime_type=message.voice.mime_type or "audio/ogg",
            )
        )
    if message.video:
        attachments.append(
            RawAttachment(
                uri=message.video.file_id,
                kind=AttachmentKind.VIDEO,
                mime_type=message.video.mime_type,
            )
        )
    if message.sticker:
        attachments.append(RawAttachment(uri=message.sticker.file_id, kind=AttachmentKind.STICKER))
    return attachments


class TelegramAdapter(PlatformAdapter):
    """Telegram bot adapter using long polling.

    Uses python-telegram-bot with polling mode, so no webhook setup or
    public URL is needed.

    Configuration:
        - bot_token: Telegram bot token from @BotFather
        - bot_username: Handle used for @mention detection (read from
          getMe when omitted)
        - allowed_users: Allowed Telegram user IDs (empty = all users)
        - polling_interval: Seconds between poll requests
    """

    def __init__(
        self,
        bot_token: str,
        bot_username: Optional[str] = None,
        allowed_users: Optional[list[str]] = None,
        polling_interval: float = 2.0,
    ):
        super().__init__()

        self._bot_token = bot_token
        self._bot_username = bot_username.lstrip("@") if bot_username else None
        self._bot_id: Optional[int] = None
        self._allowed_users = set(allowed_users) if allowed_users else None
        self._polling_interval = polling_interval

        self._application: Optional[Application] = None
        self._bot: Optional[Bot] = None

        self._capabilities = PlatformCapabilities(
            supports_markdown=True,
            supports_attachments=True,
            supports_threads=False,
            supports_typing_indicator=True,
            supports_message_editing=True,
            markdown_flavor="MarkdownV2",
            max_message_length=4096,
        )

    @property
    def platform_type(self) -> PlatformType:
        return PlatformType.TELEGRAM

    @property
    def capabilities(self) -> PlatformCapabilities:
        return self._capabilities

    async def start(self) -> None:
        """Start the Telegram bot with long polling.

        Raises:
            AuthError: If the bot token is missing or rejected
        """
        if self._running:
            logger.warning("Telegram adapter already running")
            return
        if not self._bot_token:
            raise AuthError("Telegram bot token is not configured", PLATFORM)

        logger.info("Starting Telegram bot adapter (polling mode)")

        self._application = Application.builder().token(self._bot_token).build()
        self._bot = self._application.bot
        self._application.add_handler(TypeHandler(Update, self._on_update))

        try:
            # initialize() calls getMe, which validates the token
            await self._application.initialize()
        except (InvalidToken, Forbidden) as e:
            raise AuthError(f"Telegram rejected the bot token: {e}", PLATFORM) from e
        except TelegramError as e:
            raise map_telegram_error(e) from e

        self._bot_id = self._bot.id
        self._bot_username = self._bot_username or self._bot.username

        await self._application.start()
        await self._application.updater.start_polling(
            poll_interval=self._polling_interval,
            allowed_updates=Update.ALL_TYPES,
        )

        self._running = True
        logger.info(f"Telegram bot @{self._bot_username} started")

    async def stop(self) -> None:
        if not self._running:
            return

        logger.info("Stopping Telegram bot adapter")
        if self._application:
            await self._application.updater.stop()
            await self._application.stop()
            await self._application.shutdown()

        self._running = False
        logger.info("Telegram bot stopped")

    async def _on_update(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        event = self.extract_event(update)
        if event is None:
            return
        await self._emit(event)

    def extract_event(self, update: Update) -> Optional[RawInboundEvent]:
        """Project a Telegram update onto the abstract inbound shape.

        Returns:
            The event, or None if the author is not on the allow-list
        """
        kind = _update_kind(update)
        message = update.message
        if kind != "message" or message is None:
            return RawInboundEvent(platform=PlatformType.TELEGRAM, kind=kind, raw=update)

        user = message.from_user
        author = RawAuthor()
        if user is not None:
            author = RawAuthor(
                id=str(user.id),
                name=user.full_name,
                username=user.username,
                is_bot=user.is_bot,
            )

        if self._allowed_users and author.id not in self._allowed_users:
            logger.warning(f"Rejected message from unauthorized Telegram user: {author.id}")
            return None

        text = message.text or message.caption
        is_group = message.chat.type in (ChatType.GROUP, ChatType.SUPERGROUP)
        reply_to = message.reply_to_message

        return RawInboundEvent(
            platform=PlatformType.TELEGRAM,
            kind="message",
            message_id=str(message.message_id),
            author=author,
            channel_id=str(message.chat_id),
            text=text,
            attachments=_extract_attachments(message),
            is_group=is_group,
            is_mentioned=not is_group or self._is_mentioned(message, text),
            reply_to_message_id=str(reply_to.message_id) if reply_to else None,
            metadata={"chat_type": message.chat.type},
            raw=update,
        )

    def _is_mentioned(self, message: Message, text: Optional[str]) -> bool:
        if self._bot_username and text and f"@{self._bot_username}".lower() in text.lower():
            return True
        reply_to = message.reply_to_message
        return bool(
            reply_to
            and reply_to.from_user
            and self._bot_id is not None
            and reply_to.from_user.id == self._bot_id
        )

    async def send(self, chat_id: str, action: OutboundAction) -> None:
        if not self._bot:
            raise DeliveryError("Telegram bot not initialized", PLATFORM)

        try:
            if action.kind == OutboundKind.TYPING_INDICATOR:
                await self._bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
                return

            text = action.text or ""
            kwargs: dict[str, Any] = {"chat_id": chat_id}
            if action.reply_to_message_id:
                kwargs["reply_to_message_id"] = int(action.reply_to_message_id)

            if action.formatting == TextFormat.MARKDOWN:
                try:
                    await self._bot.send_message(
                        text=to_markdown_v2(text), parse_mode=ParseMode.MARKDOWN_V2, **kwargs
                    )
                    return
                except BadRequest as e:
                    logger.warning(f"Telegram rejected MarkdownV2, resending as plain text: {e}")
                    text = strip_markdown(text)

            await self._bot.send_message(text=text, **kwargs)
        except TelegramError as e:
            raise map_telegram_error(e) from e

    async def send_typing(self, chat_id: str) -> None:
        await self.send(chat_id, OutboundAction.typing())

    async def health_check(self) -> bool:
        if not self._running or not self._bot:
            return False
        try:
            await self._bot.get_me()
            return True
        except TelegramError as e:
            logger.error(f"Telegram health check failed: {e}")
            return False
