"""Shared service instances and their FastAPI dependency providers."""

from typing import Optional

from relay.database import SessionLocal
from relay.services.adapters import ChatbaseClient, WhatsAppSender
from relay.services.config_store import ConfigStore
from relay.services.job_queue import JobQueue

_config_store: Optional[ConfigStore] = None


def get_config_store() -> ConfigStore:
    """Process-wide config store; its cache is shared by every request."""
    global _config_store
    if _config_store is None:
        _config_store = ConfigStore(SessionLocal)
    return _config_store


def get_whatsapp_sender() -> WhatsAppSender:
    return WhatsAppSender(get_config_store())


def build_job_queue(config_store: Optional[ConfigStore] = None) -> JobQueue:
    config_store = config_store or get_config_store()
    return JobQueue(ChatbaseClient(config_store), WhatsAppSender(config_store), config_store)


def get_job_queue() -> JobQueue:
    return build_job_queue()
