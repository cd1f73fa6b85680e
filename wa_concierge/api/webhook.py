"""
WA Sender webhook handler.
Acknowledges immediately, then runs inbound processing in the background.
"""
import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..core.dependencies import Services, get_services
from ..core.logger import mask_phone
from ..core.models import InboundMessage
from ..core.phone import jid_to_phone
from ..models.webhook import WAMessage, WAWebhookPayload, WebhookResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_signature(signature: Optional[str], secret: str) -> bool:
    if not signature or not secret:
        return False
    return hmac.compare_digest(signature.encode(), secret.encode())


def to_inbound_message(message: WAMessage) -> InboundMessage:
    timestamp = message.message_timestamp or 0
    return InboundMessage(
        phone=jid_to_phone(message.key.remote_jid),
        text=(message.text or "").strip(),
        message_id=message.event_id or "",
        sender_name=message.push_name,
        message_type=message.message_type,
        media_url=message.media_url,
        # WA Sender sends seconds
        timestamp=timestamp * 1000 if timestamp else 0,
    )


async def process_webhook(body: Dict[str, Any], services: Services):
    """Filter, deduplicate and hand a single inbound message to the pipeline."""
    try:
        try:
            payload = WAWebhookPayload.model_validate(body)
        except ValidationError as e:
            logger.debug("WEBHOOK|skip|reason=unparseable|errors=%d", e.error_count())
            return

        if not payload.is_message_event:
            return

        message = payload.data.messages
        if message.key.from_me:
            logger.debug("WEBHOOK|skip|from_me=true")
            return

        event_id = message.event_id
        if event_id and not services.dedup.admit_once(event_id):
            logger.info("WEBHOOK|duplicate|message_id=%s", event_id)
            return

        inbound = to_inbound_message(message)
        logger.info(
            "WEBHOOK|received|message_id=%s|phone=%s|type=%s",
            event_id, mask_phone(inbound.phone), inbound.message_type,
        )
        outcome = await services.inbound.process(inbound)
        logger.info("WEBHOOK|processed|message_id=%s|outcome=%s", event_id, outcome)

    except Exception:
        logger.error("WEBHOOK|processing_failed", exc_info=True)


async def _handle(request: Request, background_tasks: BackgroundTasks, services: Services):
    signature = request.headers.get("x-webhook-signature")
    if not signature:
        logger.warning("WEBHOOK|rejected|reason=missing_signature")
        return JSONResponse(status_code=401, content={"error": "Missing signature"})

    if not verify_signature(signature, services.config.WA_SENDER_WEBHOOK_SECRET):
        if services.config.SKIP_WEBHOOK_VERIFICATION:
            logger.warning("WEBHOOK|invalid_signature|verification_skipped=true")
        else:
            logger.error("WEBHOOK|rejected|reason=invalid_signature")
            return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    try:
        body = await request.json()
    except ValueError:
        # Still 200 so the provider does not retry
        logger.error("WEBHOOK|invalid_json")
        return {"success": True}

    if isinstance(body, dict):
        background_tasks.add_task(process_webhook, body, services)
    return {"success": True}


@router.post("", response_model=WebhookResponse)
async def webhook(
    request: Request, background_tasks: BackgroundTasks, services: Services = Depends(get_services)
):
    return await _handle(request, background_tasks, services)


@router.post("/whatsapp", response_model=WebhookResponse)
async def whatsapp_webhook(
    request: Request, background_tasks: BackgroundTasks, services: Services = Depends(get_services)
):
    return await _handle(request, background_tasks, services)
