"""WhatsApp Cloud API platform adapter.

Inbound messages arrive as webhook payloads that the hosting web app hands
to `handle_webhook()` (signature verification happens before that).
Outbound actions are Graph API calls made with httpx.
"""

import logging
from typing import Any, Optional

import httpx

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

PLATFORM = PlatformType.WHATSAPP.value

_MEDIA_KINDS = {
    "image": AttachmentKind.IMAGE,
    "video": AttachmentKind.VIDEO,
    "audio": AttachmentKind.AUDIO,
    "document": AttachmentKind.DOCUMENT,
    "sticker": AttachmentKind.STICKER,
}


def map_whatsapp_response(response: httpx.Response) -> Optional[DeliveryError]:
    """Return the error for a failed Graph API response, or None on success."""
    if response.is_success:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and body.get("error"):
            return DeliveryError(f"WhatsApp API error: {body['error']}", PLATFORM)
        return None

    try:
        detail = response.json().get("error", {}).get("message", response.reason_phrase)
    except (ValueError, AttributeError):
        detail = response.reason_phrase
    message = f"WhatsApp API error {response.status_code}: {detail}"

    if response.status_code in (401, 403):
        return AuthError(message, PLATFORM)
    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After")
        try:
            seconds = float(retry_after) if retry_after is not None else None
        except ValueError:
            seconds = None
        return RateLimited(message, PLATFORM, retry_after=seconds)
    if response.status_code >= 500:
        return TransientNetworkError(message, PLATFORM)
    return DeliveryError(message, PLATFORM)


class WhatsAppAdapter(PlatformAdapter):
    """WhatsApp Business (Cloud API) adapter.

    Configuration:
        - phone_number_id: Business phone number ID
        - access_token: Graph API access token
        - api_version: Graph API version (default v22.0)
        - handle: Name used for mention detection in groups
    """

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        api_version: str = "v22.0",
        base_url: str = "https://graph.facebook.com",
        timeout: float = 30.0,
        handle: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()

        self._phone_number_id = phone_number_id
        self._access_token = access_token
        self._api_url = f"{base_url.rstrip('/')}/{api_version}/{phone_number_id}"
        self._timeout = timeout
        self._handle = handle.lstrip("@").lower() if handle else None
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        self._capabilities = PlatformCapabilities(
            supports_markdown=False,
            supports_attachments=True,
            supports_threads=False,
            supports_typing_indicator=True,
            supports_message_editing=False,
            max_message_length=4096,
        )

    @property
    def platform_type(self) -> PlatformType:
        return PlatformType.WHATSAPP

    @property
    def capabilities(self) -> PlatformCapabilities:
        return self._capabilities

    async def start(self) -> None:
        """Create the HTTP client and verify the credentials.

        Raises:
            AuthError: If the token or phone number ID is rejected
        """
        if self._running:
            logger.warning("WhatsApp adapter already running")
            return
        if not self._access_token or not self._phone_number_id:
            raise AuthError("WhatsApp phone_number_id and access_token are required", PLATFORM)

        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            headers={"Authorization": f"Bearer {self._access_token}"},
            timeout=self._timeout,
            transport=self._transport,
        )

        try:
            response = await self._client.get("")
        except httpx.TransportError as e:
            await self._close_client()
            raise TransientNetworkError(f"WhatsApp API unreachable: {e}", PLATFORM) from e

        error = map_whatsapp_response(response)
        if error is not None:
            await self._close_client()
            raise error

        self._running = True
        logger.info(f"WhatsApp adapter started for phone number {self._phone_number_id}")

    async def stop(self) -> None:
        await self._close_client()
        self._running = False
        logger.info("WhatsApp adapter stopped")

    async def _close_client(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Inbound
    # =========================================================================

    async def handle_webhook(self, payload: dict[str, Any]) -> int:
        """Process a verified webhook payload.

        Args:
            payload: Parsed JSON body of the webhook request

        Returns:
            Number of events forwarded to the gateway
        """
        events = self.extract_events(payload)
        for event in events:
            await self._emit(event)
        return len(events)

    def extract_events(self, payload: dict[str, Any]) -> list[RawInboundEvent]:
        """Project every message in a webhook payload onto the abstract shape.

        Status-only updates (delivered/read receipts) produce no events.
        """
        events = []
        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                value = change.get("value") or {}
                names = {
                    c.get("wa_id"): (c.get("profile") or {}).get("name")
                    for c in value.get("contacts") or []
                }
                for message in value.get("messages") or []:
                    events.append(self._extract_message(message, names))
        return events

    def _extract_message(
        self, message: dict[str, Any], names: dict[Optional[str], Optional[str]]
    ) -> RawInboundEvent:
        msg_type = message.get("type", "unknown")
        sender = message.get("from")
        # Group messages carry the group JID; direct chats are keyed by sender
        channel_id = message.get("group_id") or sender
        is_group = bool(channel_id and channel_id.endswith("@g.us"))

        text: Optional[str] = None
        attachments: list[RawAttachment] = []
        if msg_type == "text":
            text = (message.get("text") or {}).get("body")
        elif msg_type in _MEDIA_KINDS:
            media = message.get(msg_type) or {}
            if media.get("id") or media.get("link"):
                attachments.append(
                    RawAttachment(
                        uri=media.get("link") or media["id"],
                        kind=_MEDIA_KINDS[msg_type],
                        mime_type=media.get("mime_type"),
                    )
                )
            text = media.get("caption")

        kind = "message" if msg_type == "text" or msg_type in _MEDIA_KINDS else msg_type
        is_mentioned = not is_group or bool(
            self._handle and text and f"@{self._handle}" in text.lower()
        )
        context = message.get("context") or {}

        return RawInboundEvent(
            platform=PlatformType.WHATSAPP,
            kind=kind,
            message_id=message.get("id"),
            author=RawAuthor(id=sender, name=names.get(sender), username=sender),
            channel_id=channel_id,
            text=text,
            attachments=attachments,
            is_group=is_group,
            is_mentioned=is_mentioned,
            reply_to_message_id=context.get("id"),
            metadata={"type": msg_type, "timestamp": message.get("timestamp")},
            raw=message,
        )

    # =========================================================================
    # Outbound
    # =========================================================================

    async def _post_message(self, body: dict[str, Any]) -> dict[str, Any]:
        if self._client is None:
            raise DeliveryError("WhatsApp client not started", PLATFORM)
        try:
            response = await self._client.post("/messages", json=body)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"WhatsApp request failed: {e}", PLATFORM) from e

        error = map_whatsapp_response(response)
        if error is not None:
            raise error
        return response.json()

    async def send(self, chat_id: str, action: OutboundAction) -> None:
        if action.kind == OutboundKind.TYPING_INDICATOR:
            await self._post_message(
                {
                    "messaging_product": "whatsapp",
                    "to": chat_id,
                    "type": "typing",
                    "action": "typing",
                }
            )
            return

        body: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "group" if chat_id.endswith("@g.us") else "individual",
            "to": chat_id,
            "type": "text",
            "text": {"body": action.text or "", "preview_url": False},
        }
        if action.reply_to_message_id:
            body["context"] = {"message_id": action.reply_to_message_id}
        await self._post_message(body)

    async def send_typing(self, chat_id: str) -> None:
        await self.send(chat_id, OutboundAction.typing())

    async def health_check(self) -> bool:
        if not self._running or self._client is None:
            return False
        try:
            response = await self._client.get("")
        except httpx.TransportError as e:
            logger.error(f"WhatsApp health check failed: {e}")
            return False
        return response.is_success
