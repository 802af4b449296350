import time
from typing import Any, Optional

import httpx

from relay.config import settings
from relay.logging_config import get_logger
from relay.services.adapters.base import AIQueryAdapter, AIReply, ConfigurationError, UpstreamError
from relay.services.config_store import CHATBASE_API_KEY, CHATBASE_CHATBOT_ID, ConfigStore

logger = get_logger("adapters.chatbase")

REPLY_FIELDS = ("text", "message", "answer")
FALLBACK_REPLY = "No response"
CONVERSATION_SEARCH_SIZE = 100


def extract_reply_text(data: Any) -> str:
    """Pick the reply out of a Chatbase response; never returns an empty string."""
    if isinstance(data, dict):
        for field in REPLY_FIELDS:
            value = data.get(field)
            if isinstance(value, str) and value.strip():
                return value
    return FALLBACK_REPLY


def conversation_prefix(user_id: str) -> str:
    return f"wa_{user_id}_"


class ChatbaseClient(AIQueryAdapter):
    """Chatbase chat API."""

    def __init__(
        self,
        config: ConfigStore,
        *,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.config = config
        self.base_url = (base_url or settings.chatbase_api_url).rstrip("/")
        self.timeout = timeout_seconds if timeout_seconds is not None else settings.http_timeout_seconds

    def _credentials(self) -> tuple[str, str]:
        chatbot_id = self.config.get(CHATBASE_CHATBOT_ID)
        api_key = self.config.get(CHATBASE_API_KEY)
        if not chatbot_id or not api_key:
            raise ConfigurationError("Chatbase credentials not configured")
        return chatbot_id, api_key

    async def query(
        self,
        content: str,
        conversation_id: Optional[str],
        user_id: str,
        history: Optional[list[dict]] = None,
    ) -> AIReply:
        chatbot_id, api_key = self._credentials()

        messages = [*(history or []), {"role": "user", "content": content}]
        payload: dict[str, Any] = {
            "chatbotId": chatbot_id,
            "messages": messages,
            "stream": False,
        }
        # Chatbase only stores the exchange when a conversationId is given.
        if conversation_id:
            payload["conversationId"] = conversation_id
        if user_id:
            payload["contactId"] = user_id

        logger.debug(
            f"Chatbase request: conversation_id={conversation_id}, messages={len(messages)}, chars={len(content)}"
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat",
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Chatbase request failed: {exc}") from exc

        if response.status_code != 200:
            logger.error(f"Chatbase error: status={response.status_code}, body={response.text[:500]}")
            raise UpstreamError(f"Chatbase API error: {response.status_code}", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError("Chatbase returned invalid JSON", status_code=response.status_code) from exc

        reply = AIReply(
            text=extract_reply_text(data),
            conversation_id=(data.get("conversationId") if isinstance(data, dict) else None) or conversation_id,
        )
        logger.info(
            "Chatbase reply received",
            extra={"context": {"conversation_id": reply.conversation_id, "response_length": len(reply.text)}},
        )
        return reply

    async def find_existing_conversation(self, user_id: str) -> Optional[str]:
        """Search recent Chatbase conversations for one started for this user."""
        try:
            chatbot_id, api_key = self._credentials()
        except ConfigurationError:
            return None

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/get-conversations",
                    params={"chatbotId": chatbot_id, "size": str(CONVERSATION_SEARCH_SIZE)},
                    headers={"Authorization": f"Bearer {api_key}"},
                )
        except httpx.HTTPError as exc:
            logger.warning(f"Chatbase conversation search failed: {exc}")
            return None

        if response.status_code != 200:
            logger.warning(f"Chatbase conversation search error: status={response.status_code}")
            return None

        try:
            conversations = response.json().get("data") or []
        except (ValueError, AttributeError):
            return None

        prefix = conversation_prefix(user_id)
        for conversation in conversations:
            conversation_id = conversation.get("id") if isinstance(conversation, dict) else None
            if conversation_id and conversation_id.startswith(prefix):
                logger.info(f"Found existing Chatbase conversation {conversation_id} for {user_id}")
                return conversation_id
        return None

    async def resolve_conversation_id(self, user_id: str) -> str:
        existing = await self.find_existing_conversation(user_id)
        if existing:
            return existing
        return f"{conversation_prefix(user_id)}{int(time.time() * 1000)}"
