"""Inbound normalizer.

Projects the abstract payload extracted by an adapter (RawInboundEvent)
into the canonical InboundMessage handed to the conversation registry.
"""

import logging
from typing import Iterable, Optional, Union

from botrelay.exceptions import NormalizationError
from botrelay.platforms.models import (
    AttachmentContent,
    InboundMessage,
    MixedContent,
    PlatformType,
    RawInboundEvent,
    TextContent,
)

logger = logging.getLogger(__name__)

MESSAGE_KIND = "message"


class InboundNormalizer:
    """Validates raw adapter payloads and builds InboundMessages.

    Three outcomes are possible for every payload:
    - an InboundMessage, for a well-formed message the bot should answer
    - None, for payloads filtered on purpose (non-message interactions,
      bot authors, unmentioned group chatter)
    - NormalizationError, for payloads missing a required field
    """

    def __init__(
        self,
        allowed_bot_ids: Optional[Iterable[str]] = None,
        require_mention: bool = True,
    ):
        """Initialize normalizer.

        Args:
            allowed_bot_ids: Bot author IDs that are still accepted
            require_mention: Drop group messages that don't address the bot
        """
        self.allowed_bot_ids = set(allowed_bot_ids or [])
        self.require_mention = require_mention

    def normalize(
        self,
        platform: PlatformType,
        raw: RawInboundEvent,
    ) -> Optional[InboundMessage]:
        """Normalize a raw payload.

        Args:
            platform: Platform the payload was received on
            raw: Payload extracted by the platform adapter

        Returns:
            InboundMessage, or None if the payload is filtered out

        Raises:
            NormalizationError: If a required field is missing
        """
        if raw.platform != platform:
            raise NormalizationError(
                f"payload from {raw.platform.value} received on {platform.value}",
                platform.value,
            )

        if raw.kind != MESSAGE_KIND:
            logger.debug(f"Dropping {platform.value} interaction of kind '{raw.kind}'")
            return None

        author_id = raw.author.id
        if not author_id:
            raise NormalizationError("missing author", platform.value)

        if raw.author.is_bot and author_id not in self.allowed_bot_ids:
            logger.debug(f"Dropping message from bot author {platform.value}:{author_id}")
            return None

        if not raw.channel_id:
            raise NormalizationError("missing chat/channel id", platform.value)

        if not raw.message_id:
            raise NormalizationError("missing message id", platform.value)

        content = self._build_content(raw)
        if content is None:
            raise NormalizationError("missing content body or attachment", platform.value)

        is_command = bool(raw.text and raw.text.lstrip().startswith("/"))
        if raw.is_group and self.require_mention and not (raw.is_mentioned or is_command):
            logger.debug(f"Dropping unmentioned group message in {platform.value}:{raw.channel_id}")
            return None

        return InboundMessage(
            provider=platform,
            chat_id=raw.channel_id,
            author_id=author_id,
            author_name=raw.author.name or raw.author.username,
            content=content,
            message_id=raw.message_id,
            is_group=raw.is_group,
            is_mentioned=raw.is_mentioned or is_command,
            reply_to_message_id=raw.reply_to_message_id,
            metadata=dict(raw.metadata),
        )

    def _build_content(
        self,
        raw: RawInboundEvent,
    ) -> Optional[Union[TextContent, AttachmentContent, MixedContent]]:
        text = raw.text if raw.text and raw.text.strip() else None
        attachments = [
            AttachmentContent(uri=a.uri, kind=a.kind, mime_type=a.mime_type)
            for a in raw.attachments
            if a.uri
        ]

        if not attachments:
            return TextContent(body=text) if text else None

        if len(attachments) == 1:
            attachments[0].caption = text
            return attachments[0]

        parts: list[Union[TextContent, AttachmentContent]] = []
        if text:
            parts.append(TextContent(body=text))
        parts.extend(attachments)
        return MixedContent(parts=parts)
