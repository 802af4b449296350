"""Runtime configuration backed by the `config` table.

Credentials and queue settings are editable at runtime through the admin API,
so adapters read them through a ConfigStore instead of module constants. Reads
are cached for `ttl_seconds`; an empty DB value falls back to the settings
attribute of the same name.
"""

import time
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from relay.config import Settings
from relay.config import settings as default_settings
from relay.logging_config import get_logger
from relay.models import ConfigEntry
from relay.models.types import utcnow

logger = get_logger("config_store")

CHATBASE_CHATBOT_ID = "chatbase_chatbot_id"
CHATBASE_API_KEY = "chatbase_api_key"
WHATSAPP_ACCESS_TOKEN = "whatsapp_access_token"
WHATSAPP_PHONE_NUMBER_ID = "whatsapp_phone_number_id"
WHATSAPP_VERIFY_TOKEN = "whatsapp_verify_token"
WHATSAPP_APP_SECRET = "whatsapp_app_secret"
WHATSAPP_BUSINESS_ACCOUNT_ID = "whatsapp_business_account_id"
SEND_MODE = "send_mode"
TEMPLATE_NAME = "template_name"
TEMPLATE_LANGUAGE = "template_language"
DEBOUNCE_MS = "debounce_ms"

VALID_CONFIG_KEYS = (
    WHATSAPP_PHONE_NUMBER_ID,
    WHATSAPP_ACCESS_TOKEN,
    WHATSAPP_VERIFY_TOKEN,
    WHATSAPP_APP_SECRET,
    WHATSAPP_BUSINESS_ACCOUNT_ID,
    CHATBASE_CHATBOT_ID,
    CHATBASE_API_KEY,
    SEND_MODE,
    TEMPLATE_NAME,
    TEMPLATE_LANGUAGE,
    DEBOUNCE_MS,
)
SENSITIVE_KEYS = frozenset({WHATSAPP_ACCESS_TOKEN, CHATBASE_API_KEY, WHATSAPP_APP_SECRET})


def mask_value(key: str, value: Optional[str]) -> Optional[str]:
    if key not in SENSITIVE_KEYS or not value:
        return value
    return "••••••••" + value[-4:]


class ConfigStore:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        ttl_seconds: Optional[float] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self._settings = settings or default_settings
        self._ttl = self._settings.config_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cache: dict[str, str] = {}
        self._loaded_at: Optional[float] = None

    def _fallback(self, key: str) -> Optional[str]:
        value = getattr(self._settings, key, None)
        if value is None or value == "":
            return None
        return str(value)

    def _is_fresh(self) -> bool:
        if self._loaded_at is None:
            return False
        return (self._clock() - self._loaded_at) < self._ttl

    def _reload(self) -> None:
        db = self._session_factory()
        try:
            rows = db.query(ConfigEntry.key, ConfigEntry.value).all()
        finally:
            db.close()
        self._cache = {key: value for key, value in rows}
        self._loaded_at = self._clock()

    def invalidate(self) -> None:
        self._loaded_at = None

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if not self._is_fresh():
            try:
                self._reload()
            except SQLAlchemyError as exc:
                # Keep serving the last snapshot; settings cover an empty one.
                logger.warning(
                    "Config reload failed",
                    extra={"context": {"key": key, "error": str(exc)}},
                )
        value = self._cache.get(key)
        if value:
            return value
        fallback = self._fallback(key)
        return fallback if fallback is not None else default

    def get_int(self, key: str, default: int) -> int:
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return int(float(raw))
        except (TypeError, ValueError):
            logger.warning(f"Config {key} is not a number: {raw!r}, using {default}")
            return default

    def put(self, key: str, value: str) -> None:
        if key not in VALID_CONFIG_KEYS:
            raise KeyError(key)
        db = self._session_factory()
        try:
            entry = db.query(ConfigEntry).filter(ConfigEntry.key == key).first()
            if entry is None:
                db.add(ConfigEntry(key=key, value=value))
            else:
                entry.value = value
                entry.updated_at = utcnow()
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()
        self.invalidate()

    def items(self) -> list[dict]:
        db = self._session_factory()
        try:
            rows = db.query(ConfigEntry).order_by(ConfigEntry.key).all()
            return [
                {
                    "key": row.key,
                    "value": mask_value(row.key, row.value),
                    "masked": row.key in SENSITIVE_KEYS,
                    "updated_at": row.updated_at.isoformat() if row.updated_at else None,
                }
                for row in rows
            ]
        finally:
            db.close()
