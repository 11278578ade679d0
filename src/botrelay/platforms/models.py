"""Data models for multi-platform messaging."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlatformType(str, Enum):
    """Supported messaging platforms."""

    TELEGRAM = "telegram"
    DISCORD = "discord"
    WHATSAPP = "whatsapp"
    WEBSITE = "website"


class PlatformUser(BaseModel):
    """Represents a message author on a specific platform."""

    platform: PlatformType
    platform_user_id: str  # Platform-specific user identifier
    username: Optional[str] = None
    display_name: Optional[str] = None
    is_bot: bool = False

    def __str__(self) -> str:
        """String representation for logging."""
        return f"{self.platform.value}:{self.platform_user_id}"


class PlatformCapabilities(BaseModel):
    """Describes what features a platform supports."""

    supports_markdown: bool = False
    supports_attachments: bool = False
    supports_threads: bool = False
    supports_typing_indicator: bool = False
    supports_message_editing: bool = False
    markdown_flavor: Optional[str] = None  # e.g., "MarkdownV2", "standard"
    max_message_length: Optional[int] = None


# =============================================================================
# Message Content
# =============================================================================


class AttachmentKind(str, Enum):
    """Kinds of media an inbound message can carry."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"


class TextContent(BaseModel):
    """Plain text message body."""

    type: Literal["text"] = "text"
    body: str


class AttachmentContent(BaseModel):
    """A media reference (URL, platform file id or data URI)."""

    type: Literal["attachment"] = "attachment"
    uri: str
    kind: AttachmentKind
    mime_type: Optional[str] = None
    caption: Optional[str] = None


class MixedContent(BaseModel):
    """Text and attachments sent together."""

    type: Literal["mixed"] = "mixed"
    parts: list[Union[TextContent, AttachmentContent]] = Field(default_factory=list)


MessageContent = Annotated[
    Union[TextContent, AttachmentContent, MixedContent],
    Field(discriminator="type"),
]


# =============================================================================
# Inbound
# =============================================================================


class RawAuthor(BaseModel):
    """Author fields every adapter extracts from its native payload."""

    id: Optional[str] = None
    name: Optional[str] = None
    username: Optional[str] = None
    is_bot: bool = False


class RawAttachment(BaseModel):
    """Attachment reference as extracted by an adapter."""

    uri: str
    kind: AttachmentKind = AttachmentKind.DOCUMENT
    mime_type: Optional[str] = None


class RawInboundEvent(BaseModel):
    """Abstract inbound payload shape produced by every adapter.

    The normalizer depends only on these fields, never on the full native
    payload, which is kept in `raw` for debugging.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    platform: PlatformType
    kind: str = "message"  # "message" or a platform-specific interaction type
    message_id: Optional[str] = None
    author: RawAuthor = Field(default_factory=RawAuthor)
    channel_id: Optional[str] = None
    text: Optional[str] = None
    attachments: list[RawAttachment] = Field(default_factory=list)
    is_group: bool = False
    is_mentioned: bool = True
    reply_to_message_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    raw: Any = None


class InboundMessage(BaseModel):
    """Platform-independent message handed to the conversation registry."""

    provider: PlatformType
    chat_id: str
    author_id: str
    content: MessageContent
    message_id: Optional[str] = None
    author_name: Optional[str] = None
    is_group: bool = False
    is_mentioned: bool = True
    reply_to_message_id: Optional[str] = None
    received_at: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def conversation_key(self) -> str:
        """Key that scopes serialization and memory."""
        return f"{self.provider.value}:{self.chat_id}"

    @property
    def author(self) -> PlatformUser:
        """Author as a platform user (for rate limiting and logging)."""
        return PlatformUser(
            platform=self.provider,
            platform_user_id=self.author_id,
            display_name=self.author_name,
        )

    @property
    def text(self) -> str:
        """All text carried by the message, joined by newlines."""
        content = self.content
        if isinstance(content, TextContent):
            return content.body
        if isinstance(content, AttachmentContent):
            return content.caption or ""
        texts = []
        for part in content.parts:
            if isinstance(part, TextContent):
                texts.append(part.body)
            elif part.caption:
                texts.append(part.caption)
        return "\n".join(texts)

    @property
    def command(self) -> Optional[tuple[str, list[str]]]:
        """(name, params) when the text is a slash command, else None."""
        text = self.text.strip()
        if not text.startswith("/") or len(text) == 1:
            return None
        head, *params = text[1:].split()
        # Telegram appends the bot handle in groups: /start@my_bot
        name = head.split("@", 1)[0]
        return name, params

    def __str__(self) -> str:
        """String representation for logging."""
        return f"[{self.provider.value}] {self.chat_id}/{self.author_id}: {self.text[:50]}"


# =============================================================================
# Outbound
# =============================================================================


class OutboundKind(str, Enum):
    """Kinds of outbound actions."""

    REPLY = "reply"
    TYPING_INDICATOR = "typing_indicator"


class TextFormat(str, Enum):
    """Formatting applied to outbound text."""

    PLAIN = "plain"
    MARKDOWN = "markdown"


class OutboundAction(BaseModel):
    """An action for the originating adapter's send primitive."""

    kind: OutboundKind
    text: Optional[str] = None
    formatting: TextFormat = TextFormat.PLAIN
    reply_to_message_id: Optional[str] = None

    @classmethod
    def reply(
        cls,
        text: str,
        formatting: TextFormat = TextFormat.PLAIN,
        reply_to_message_id: Optional[str] = None,
    ) -> "OutboundAction":
        return cls(
            kind=OutboundKind.REPLY,
            text=text,
            formatting=formatting,
            reply_to_message_id=reply_to_message_id,
        )

    @classmethod
    def typing(cls) -> "OutboundAction":
        return cls(kind=OutboundKind.TYPING_INDICATOR)
