"""
Summary Tracker
Records when each customer last wrote, so quiet conversations can be summarized
"""

import logging
from typing import List, Optional, Tuple

from ..core.cache_manager import RedisProvider, get_redis
from ..core.config import settings
from ..core.errors import MalformedRecordError, StoreUnavailableError
from ..core.logger import mask_phone
from ..core.models import now_ms
from .models import SummaryMeta

logger = logging.getLogger(__name__)

SUMMARY_META_PREFIX = "summary:meta:"


def summary_meta_key(phone: str) -> str:
    return f"{SUMMARY_META_PREFIX}{phone}"


class SummaryTracker:
    """Redis-only; tracking is skipped while Redis is unavailable"""

    def __init__(self, redis_provider: RedisProvider = get_redis, ttl_seconds: Optional[int] = None):
        self._redis = redis_provider
        self.ttl_seconds = ttl_seconds or settings.summary_meta_ttl_seconds

    def _client(self):
        redis = self._redis()
        if redis is None:
            raise StoreUnavailableError("Redis not available")
        return redis

    async def track_user_message(self, phone: str, customer_name: str = "", at_ms: Optional[int] = None) -> bool:
        """
        Stamp the latest user message and re-arm the summary.

        The first known customer name is kept.
        """
        try:
            redis = self._client()
            existing = await self.get(phone)
            meta = SummaryMeta(
                customer_name=(existing.customer_name if existing else "") or customer_name,
                last_user_message_at=now_ms() if at_ms is None else at_ms,
                summary_sent=False,
            )
            await redis.setex(summary_meta_key(phone), self.ttl_seconds, meta.to_json())
        except Exception as e:
            logger.warning("SUMMARY|track_failed|phone=%s|error=%s", mask_phone(phone), e)
            return False

        logger.debug("SUMMARY|tracked|phone=%s", mask_phone(phone))
        return True

    async def get(self, phone: str) -> Optional[SummaryMeta]:
        raw = await self._client().get(summary_meta_key(phone))
        if not raw:
            return None
        try:
            return SummaryMeta.from_json(raw)
        except MalformedRecordError as e:
            logger.warning("SUMMARY|malformed|phone=%s|error=%s", mask_phone(phone), e)
            return None

    async def mark_sent(self, phone: str, last_user_message_at: Optional[int] = None) -> bool:
        """
        Flag the summary as delivered, keeping the remaining TTL.

        With ``last_user_message_at``, nothing is marked when the customer
        wrote again after the summarized message.
        """
        try:
            redis = self._client()
            meta = await self.get(phone)
            if meta is None:
                return False
            if last_user_message_at is not None and meta.last_user_message_at != last_user_message_at:
                logger.info("SUMMARY|rearmed|phone=%s", mask_phone(phone))
                return False
            meta.summary_sent = True
            await redis.set(summary_meta_key(phone), meta.to_json(), keepttl=True, xx=True)
        except Exception as e:
            logger.error("SUMMARY|mark_sent_failed|phone=%s|error=%s", mask_phone(phone), e)
            return False
        return True

    async def list_pending(self) -> List[Tuple[str, SummaryMeta]]:
        """
        Conversations whose summary has not been sent yet.

        Raises:
            StoreUnavailableError: when Redis is missing or the scan fails
        """
        redis = self._client()
        try:
            keys = await redis.keys(f"{SUMMARY_META_PREFIX}*")
        except Exception as e:
            raise StoreUnavailableError(f"summary scan failed: {e}") from e

        pending: List[Tuple[str, SummaryMeta]] = []
        for key in sorted(keys):
            try:
                raw = await redis.get(key)
            except Exception as e:
                logger.error("SUMMARY|read_failed|key=%s|error=%s", key, e)
                continue
            if not raw:
                continue
            try:
                meta = SummaryMeta.from_json(raw)
            except MalformedRecordError as e:
                logger.warning("SUMMARY|malformed|key=%s|error=%s", key, e)
                continue
            if not meta.summary_sent:
                pending.append((key[len(SUMMARY_META_PREFIX):], meta))
        return pending
