"""
Opt-Out Manager - Redis-based subscription status and the two-state
consent machine applied to every inbound message.

Subscribed <-> OptedOut, keyed per phone. Any inbound message re-engages an
opted-out customer before that same message is checked for a new opt-out.
"""

import logging
from typing import Awaitable, Callable, Optional

from ..cache_manager import RedisProvider, get_redis
from ..config import settings
from ..errors import MalformedRecordError
from ..logger import mask_phone
from ..models import InboundMessage, now_ms
from .detector import OptOutDetector
from .types import OptOutStatus

logger = logging.getLogger(__name__)

OPT_OUT_ACK_TEXT = (
    "Understood, you've been removed from our mailing list. "
    "If you'd like to chat again, just send me a message any time!"
)

SendText = Callable[[str, str], Awaitable[bool]]


def opt_out_key(phone: str) -> str:
    return f"customer:{phone}.optOut"


class OptOutManager:
    """Storage side of the consent state. Storage errors never block the pipeline."""

    def __init__(self, redis_provider: RedisProvider = get_redis, ttl_seconds: Optional[int] = None):
        self._redis = redis_provider
        self.ttl_seconds = ttl_seconds or settings.chat_ttl_seconds

    async def get_status(self, phone: str) -> Optional[OptOutStatus]:
        redis = self._redis()
        if redis is None:
            return None

        try:
            raw = await redis.get(opt_out_key(phone))
            if not raw:
                return None
            return OptOutStatus.from_json(raw)
        except MalformedRecordError as e:
            logger.warning("OPTOUT|malformed_status|phone=%s|error=%s", mask_phone(phone), e)
            return None
        except Exception as e:
            logger.error("OPTOUT|status_check_failed|phone=%s|error=%s", mask_phone(phone), e)
            return None

    async def is_opted_out(self, phone: str) -> bool:
        """On error or without Redis nobody is blocked."""
        status = await self.get_status(phone)
        return bool(status and status.unsubscribed)

    async def set_opt_out(self, phone: str, reason: Optional[str] = None) -> bool:
        redis = self._redis()
        if redis is None:
            logger.warning("OPTOUT|redis_unavailable|cannot_save|phone=%s", mask_phone(phone))
            return False

        status = OptOutStatus(phone=phone, timestamp=now_ms(), reason=reason)
        try:
            await redis.setex(opt_out_key(phone), self.ttl_seconds, status.to_json())
        except Exception as e:
            logger.error("OPTOUT|save_failed|phone=%s|error=%s", mask_phone(phone), e)
            return False

        logger.info(
            "OPTOUT|set|phone=%s|reason=%s|ttl_s=%d",
            mask_phone(phone), reason or "not specified", self.ttl_seconds,
        )
        return True

    async def clear_opt_out(self, phone: str) -> bool:
        redis = self._redis()
        if redis is None:
            return False

        try:
            deleted = await redis.delete(opt_out_key(phone))
        except Exception as e:
            logger.error("OPTOUT|clear_failed|phone=%s|error=%s", mask_phone(phone), e)
            return False

        if deleted:
            logger.info("OPTOUT|re_engaged|phone=%s", mask_phone(phone))
        return bool(deleted)


class OptOutStateMachine:
    """Applies the consent transitions for one inbound message."""

    def __init__(
        self,
        manager: OptOutManager,
        detector: OptOutDetector,
        send_text: SendText,
        ack_text: str = OPT_OUT_ACK_TEXT,
    ):
        self.manager = manager
        self.detector = detector
        self.send_text = send_text
        self.ack_text = ack_text

    async def is_opted_out(self, phone: str) -> bool:
        return await self.manager.is_opted_out(phone)

    async def on_inbound(self, message: InboundMessage) -> bool:
        """
        Run the transitions for an inbound message.

        Returns:
            True when the message opted the customer out and must not be
            processed further
        """
        phone = message.phone

        # Liveness re-engages, before this message is evaluated
        if await self.manager.is_opted_out(phone):
            await self.manager.clear_opt_out(phone)

        if not message.has_text:
            return False

        detection = await self.detector.detect(message.text)
        if not detection.actionable:
            return False

        await self.manager.set_opt_out(phone, detection.detected_phrase)
        sent = await self.send_text(phone, self.ack_text)
        logger.info("OPTOUT|ack|phone=%s|sent=%s", mask_phone(phone), sent)
        return True
