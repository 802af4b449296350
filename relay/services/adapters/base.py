from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from relay.services.result import Result


class AdapterError(Exception):
    """Base error for calls to external services."""

    code = "adapter_error"


class ConfigurationError(AdapterError):
    """Raised when credentials for an external service are missing."""

    code = "config_error"


class UpstreamError(AdapterError):
    """Raised when an external service answers with an error or is unreachable."""

    code = "upstream_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class AIReply:
    text: str
    conversation_id: Optional[str] = None


class AIQueryAdapter(ABC):
    """Conversational AI backend."""

    @abstractmethod
    async def query(
        self,
        content: str,
        conversation_id: Optional[str],
        user_id: str,
        history: Optional[list[dict]] = None,
    ) -> AIReply:
        """Send accumulated user text after the earlier turns, return the reply and conversation id."""

    @abstractmethod
    async def resolve_conversation_id(self, user_id: str) -> str:
        """Find the remote conversation for a user or mint a new identifier."""


class OutboundChannel(ABC):
    """Messaging platform used to deliver replies."""

    @abstractmethod
    async def send_text(self, to: str, text: str) -> Result[str]:
        """Deliver text to a user. Result value is the platform message id."""
