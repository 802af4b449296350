from relay.services.adapters.base import (
    AdapterError,
    AIQueryAdapter,
    AIReply,
    ConfigurationError,
    OutboundChannel,
    UpstreamError,
)
from relay.services.adapters.chatbase import ChatbaseClient, extract_reply_text
from relay.services.adapters.whatsapp import WhatsAppSender, extract_message_content, verify_signature

__all__ = [
    "AdapterError",
    "AIQueryAdapter",
    "AIReply",
    "ChatbaseClient",
    "ConfigurationError",
    "OutboundChannel",
    "UpstreamError",
    "WhatsAppSender",
    "extract_message_content",
    "extract_reply_text",
    "verify_signature",
]
