import json

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.requests import ClientDisconnect

from relay.database import get_db
from relay.dependencies import get_config_store, get_job_queue, get_whatsapp_sender
from relay.logging_config import get_logger
from relay.schemas.webhook import Contact, InboundMessage, StatusUpdate, WhatsAppWebhook
from relay.services.adapters import WhatsAppSender, extract_message_content, verify_signature
from relay.services.config_store import WHATSAPP_APP_SECRET, WHATSAPP_VERIFY_TOKEN, ConfigStore
from relay.services.event_log import EventType, log_event
from relay.services.identity_service import get_or_create_mapping
from relay.services.job_queue import JobQueue

logger = get_logger("webhook")

router = APIRouter(tags=["webhook"])

CONTENT_PREVIEW_CHARS = 100


@router.get("/webhook/whatsapp")
async def verify_webhook(request: Request, config: ConfigStore = Depends(get_config_store)):
    """Meta subscription handshake: echo hub.challenge when the token matches."""
    params = request.query_params
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")
    challenge = params.get("hub.challenge") or ""

    verify_token = config.get(WHATSAPP_VERIFY_TOKEN)
    if mode == "subscribe" and token and verify_token and token == verify_token:
        logger.info("Webhook verified")
        return PlainTextResponse(challenge, status_code=status.HTTP_200_OK)

    logger.warning("Webhook verification rejected", extra={"context": {"mode": mode}})
    return PlainTextResponse("Forbidden", status_code=status.HTTP_403_FORBIDDEN)


@router.post("/webhook/whatsapp")
async def receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    config: ConfigStore = Depends(get_config_store),
    queue: JobQueue = Depends(get_job_queue),
    sender: WhatsAppSender = Depends(get_whatsapp_sender),
):
    try:
        raw = await request.body()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during body read")
        return PlainTextResponse("OK")

    signature = request.headers.get("X-Hub-Signature-256")
    if not verify_signature(config.get(WHATSAPP_APP_SECRET), signature, raw):
        log_event(db, EventType.WEBHOOK_SIGNATURE_INVALID, error="Invalid signature")
        logger.warning("Webhook signature invalid")
        return PlainTextResponse("Unauthorized", status_code=status.HTTP_401_UNAUTHORIZED)

    try:
        payload = json.loads(raw)
    except ValueError as exc:
        logger.warning(
            "Webhook payload is not valid JSON",
            extra={"context": {"error": str(exc), "body_preview": raw[:200].decode("utf-8", "ignore")}},
        )
        return PlainTextResponse("Invalid JSON", status_code=status.HTTP_400_BAD_REQUEST)

    log_event(db, EventType.WEBHOOK_RECEIVED, payload=payload if isinstance(payload, dict) else {"raw": payload})

    try:
        webhook = WhatsAppWebhook.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Webhook payload has unexpected shape", extra={"context": {"error": str(exc)[:300]}})
        return PlainTextResponse("OK")

    for value in webhook.message_changes():
        for status_update in value.statuses:
            _record_status(db, status_update)
        for index, message in enumerate(value.messages):
            contact = _contact_for(value.contacts, index)
            await _handle_message(db, queue, sender, message, contact)

    return PlainTextResponse("OK")


def _contact_for(contacts: list[Contact], index: int) -> Contact | None:
    if not contacts:
        return None
    return contacts[index] if index < len(contacts) else contacts[0]


def _record_status(db: Session, status_update: StatusUpdate) -> None:
    log_event(
        db,
        EventType.STATUS_UPDATE,
        payload={
            "wa_message_id": status_update.id,
            "status": status_update.status,
            "recipient_id": status_update.recipient_id,
        },
    )


async def _handle_message(
    db: Session,
    queue: JobQueue,
    sender: WhatsAppSender,
    message: InboundMessage,
    contact: Contact | None,
) -> None:
    user_id = message.from_
    display_name = contact.profile.name if contact and contact.profile else None

    try:
        get_or_create_mapping(db, user_id, display_name=display_name)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "Failed to create identity mapping",
            extra={"context": {"user_id": user_id, "error": str(exc)}},
        )
        log_event(db, EventType.MAPPING_CREATE_ERROR, user_id=user_id, payload={"user_id": user_id}, error=str(exc))
        return

    content = extract_message_content(message)

    await sender.mark_as_read(message.id)

    log_event(
        db,
        EventType.MESSAGE_RECEIVED,
        user_id=user_id,
        payload={
            "type": message.type,
            "content": content[:CONTENT_PREVIEW_CHARS],
            "wa_message_id": message.id,
        },
    )

    queue.enqueue_or_debounce(db, user_id, content)
    logger.info(
        "Inbound message queued",
        extra={"context": {"user_id": user_id, "type": message.type, "chars": len(content)}},
    )
