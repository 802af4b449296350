"""Operator alerts delivered to a Telegram chat."""

from typing import Optional

import httpx

from relay.config import settings
from relay.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = settings.alert_bot_token
ALERT_CHAT_ID = settings.alert_chat_id

LEVEL_EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_EMOJI.get(level, '📢')} *{level}*\n\n{message}"
    if context:
        context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
        text += f"\n\n```\n{context_str}\n```"
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send alert to Telegram.

    Args:
        level: INFO, WARNING, ERROR, CRITICAL
        message: Alert message
        context: Optional context dict

    Returns:
        True if sent successfully
    """
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(f"Alert not configured: {level} - {message}")
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"https://api.telegram.org/bot{ALERT_BOT_TOKEN}/sendMessage",
                json={"chat_id": ALERT_CHAT_ID, "text": format_alert(level, message, context), "parse_mode": "Markdown"},
            )
            return response.status_code == 200
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_job_failed(job_id, user_id: str, attempts: int, error: Optional[str]) -> bool:
    """A job ran out of attempts; the user will not get a reply."""
    return send_alert(
        "ERROR",
        "Reply delivery failed permanently",
        {"job_id": str(job_id), "user_id": user_id, "attempts": attempts, "error": (error or "")[:200]},
    )
