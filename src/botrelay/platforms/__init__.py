"""Multi-platform messaging: models, adapter protocol and gateway pipeline pieces."""

from botrelay.platforms.models import (
    AttachmentContent,
    InboundMessage,
    MixedContent,
    OutboundAction,
    PlatformCapabilities,
    PlatformType,
    PlatformUser,
    RawInboundEvent,
    TextContent,
    TextFormat,
)
from botrelay.platforms.protocol import PlatformAdapter

__all__ = [
    "AttachmentContent",
    "InboundMessage",
    "MixedContent",
    "OutboundAction",
    "PlatformAdapter",
    "PlatformCapabilities",
    "PlatformType",
    "PlatformUser",
    "RawInboundEvent",
    "TextContent",
    "TextFormat",
]
