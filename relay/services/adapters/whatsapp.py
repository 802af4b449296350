"""WhatsApp Cloud API: outbound delivery, webhook signatures, message parsing."""

import hashlib
import hmac
from typing import Any, Optional

import httpx

from relay.config import settings
from relay.logging_config import get_logger
from relay.services.adapters.base import OutboundChannel
from relay.services.config_store import (
    SEND_MODE,
    TEMPLATE_LANGUAGE,
    TEMPLATE_NAME,
    WHATSAPP_ACCESS_TOKEN,
    WHATSAPP_PHONE_NUMBER_ID,
    ConfigStore,
)
from relay.services.result import CONFIG_ERROR, NETWORK_ERROR, UPSTREAM_ERROR, Result

logger = get_logger("adapters.whatsapp")

SIGNATURE_PREFIX = "sha256="


def build_text_payload(to: str, text: str) -> dict:
    return {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "text",
        "text": {"body": text},
    }


def build_template_payload(to: str, text: str, template_name: str, language: str) -> dict:
    return {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "template",
        "template": {
            "name": template_name,
            "language": {"code": language or "en"},
            "components": [
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": text}],
                }
            ],
        },
    }


class WhatsAppSender(OutboundChannel):
    """Sends replies through the Graph API messages endpoint."""

    def __init__(
        self,
        config: ConfigStore,
        *,
        graph_url: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.config = config
        self.graph_url = (graph_url or settings.whatsapp_graph_url).rstrip("/")
        self.api_version = api_version or settings.whatsapp_api_version
        self.timeout = timeout_seconds if timeout_seconds is not None else settings.http_timeout_seconds

    def _messages_url(self, phone_number_id: str) -> str:
        return f"{self.graph_url}/{self.api_version}/{phone_number_id}/messages"

    def build_payload(self, to: str, text: str) -> dict:
        send_mode = (self.config.get(SEND_MODE) or "text").strip().lower()
        template_name = self.config.get(TEMPLATE_NAME)
        if send_mode == "template" and template_name:
            language = self.config.get(TEMPLATE_LANGUAGE) or "en"
            return build_template_payload(to, text, template_name, language)
        return build_text_payload(to, text)

    async def send_text(self, to: str, text: str) -> Result[str]:
        phone_number_id = self.config.get(WHATSAPP_PHONE_NUMBER_ID)
        access_token = self.config.get(WHATSAPP_ACCESS_TOKEN)
        if not phone_number_id or not access_token:
            logger.error("WhatsApp credentials are missing")
            return Result.failure("WhatsApp credentials not configured", CONFIG_ERROR)

        payload = self.build_payload(to, text)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self._messages_url(phone_number_id),
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as exc:
            logger.error(f"Error sending WhatsApp message: {exc}")
            return Result.failure(str(exc) or exc.__class__.__name__, NETWORK_ERROR)

        logger.info(
            f"WhatsApp response: status={response.status_code}, to={to}, type={payload['type']}",
        )
        if response.status_code >= 400:
            return Result.failure(f"WhatsApp API error: {response.status_code} - {response.text[:300]}", UPSTREAM_ERROR)

        try:
            data = response.json()
        except ValueError:
            data = {}
        messages = (data.get("messages") if isinstance(data, dict) else None) or [{}]
        return Result.success(messages[0].get("id", ""))

    async def mark_as_read(self, message_id: str) -> bool:
        """Best effort read receipt; failures are only logged."""
        phone_number_id = self.config.get(WHATSAPP_PHONE_NUMBER_ID)
        access_token = self.config.get(WHATSAPP_ACCESS_TOKEN)
        if not phone_number_id or not access_token or not message_id:
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self._messages_url(phone_number_id),
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Content-Type": "application/json",
                    },
                    json={"messaging_product": "whatsapp", "status": "read", "message_id": message_id},
                )
            return response.status_code < 400
        except httpx.HTTPError as exc:
            logger.warning(f"Mark read failed: {exc}")
            return False


def verify_signature(app_secret: Optional[str], signature_header: Optional[str], body: bytes) -> bool:
    """Check X-Hub-Signature-256 against the app secret.

    Without a configured app secret there is nothing to verify against and the
    request is accepted.
    """
    if not app_secret:
        logger.warning("WhatsApp app secret not configured, skipping signature check")
        return True
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header[len(SIGNATURE_PREFIX) :])


def extract_message_content(message: Any) -> str:
    """Turn an inbound WhatsApp message into the text sent to the AI."""
    message_type = getattr(message, "type", None) or "unknown"

    if message_type == "text":
        return message.text.body if message.text and message.text.body else ""
    if message_type == "image":
        return (message.image.caption if message.image else None) or "[Image received]"
    if message_type == "audio":
        return "[Audio message received]"
    if message_type == "video":
        return "[Video received]"
    if message_type == "document":
        filename = message.document.filename if message.document else None
        return f"[Document: {filename or 'unknown'}]"
    if message_type == "location":
        location = message.location
        if location and location.name:
            return f"[Location: {location.name}]"
        latitude = location.latitude if location else None
        longitude = location.longitude if location else None
        return f"[Location: {latitude}, {longitude}]"
    if message_type == "interactive":
        interactive = message.interactive
        if interactive and interactive.button_reply and interactive.button_reply.title:
            return interactive.button_reply.title
        if interactive and interactive.list_reply and interactive.list_reply.title:
            return interactive.list_reply.title
        return "[Interactive response]"
    return f"[{message_type} message]"
