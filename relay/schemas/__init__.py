from relay.schemas.webhook import InboundMessage, WhatsAppWebhook

__all__ = ["InboundMessage", "WhatsAppWebhook"]
