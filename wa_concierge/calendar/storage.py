"""
Meeting Storage
Saves and retrieves meetings from Redis
"""

import logging
from typing import List, Optional, Tuple

from ..core.cache_manager import RedisProvider, get_redis
from ..core.config import settings
from ..core.errors import MalformedRecordError, StoreUnavailableError
from ..core.logger import mask_phone
from .models import Meeting, ReminderFlags

logger = logging.getLogger(__name__)

MEETING_PREFIX = "meeting:"


def meeting_key(phone: str) -> str:
    return f"{MEETING_PREFIX}{phone}"


class MeetingStore:
    """Meetings expire by TTL only; nothing deletes them after reminders are sent"""

    def __init__(self, redis_provider: RedisProvider = get_redis, ttl_seconds: Optional[int] = None):
        self._redis = redis_provider
        self.ttl_seconds = ttl_seconds or settings.meeting_ttl_seconds

    def _client(self):
        redis = self._redis()
        if redis is None:
            raise StoreUnavailableError("Redis not available")
        return redis

    async def save(self, meeting: Meeting) -> bool:
        """Store a new meeting with fresh flags and the full retention TTL."""
        try:
            redis = self._client()
            meeting.flags = ReminderFlags()
            await redis.setex(meeting_key(meeting.phone), self.ttl_seconds, meeting.to_json())
        except Exception as e:
            logger.error("MEETING|save_failed|phone=%s|error=%s", mask_phone(meeting.phone), e)
            return False

        logger.info(
            "MEETING|saved|phone=%s|date=%s|time=%s",
            mask_phone(meeting.phone), meeting.date, meeting.time,
        )
        return True

    async def update_flags(self, key: str, meeting: Meeting) -> bool:
        """Write the whole item back to ``key``, keeping its remaining TTL."""
        try:
            redis = self._client()
            # xx: a record that expired mid-tick is not recreated
            written = await redis.set(key, meeting.to_json(), keepttl=True, xx=True)
            if not written:
                logger.warning("MEETING|flag_write_skipped|key=%s|reason=missing", key)
                return False
        except Exception as e:
            logger.error("MEETING|flag_write_failed|phone=%s|error=%s", mask_phone(meeting.phone), e)
            return False

        logger.debug("MEETING|flags_updated|phone=%s|flags=%s", mask_phone(meeting.phone), meeting.flags)
        return True

    async def get(self, phone: str) -> Optional[Meeting]:
        try:
            raw = await self._client().get(meeting_key(phone))
            if not raw:
                return None
            return Meeting.from_json(raw)
        except MalformedRecordError as e:
            logger.warning("MEETING|malformed|phone=%s|error=%s", mask_phone(phone), e)
            return None
        except Exception as e:
            logger.warning("MEETING|read_failed|phone=%s|error=%s", mask_phone(phone), e)
            return None

    async def delete(self, phone: str) -> bool:
        try:
            await self._client().delete(meeting_key(phone))
        except Exception as e:
            logger.error("MEETING|delete_failed|phone=%s|error=%s", mask_phone(phone), e)
            return False

        logger.info("MEETING|deleted|phone=%s", mask_phone(phone))
        return True

    async def list_all(self) -> List[Tuple[str, Meeting]]:
        """
        All stored meetings with their keys; malformed records are skipped.

        Raises:
            StoreUnavailableError: when Redis is missing or the scan fails
        """
        redis = self._client()
        try:
            keys = await redis.keys(f"{MEETING_PREFIX}*")
        except Exception as e:
            raise StoreUnavailableError(f"meeting scan failed: {e}") from e

        meetings: List[Tuple[str, Meeting]] = []
        for key in sorted(keys):
            try:
                raw = await redis.get(key)
            except Exception as e:
                logger.error("MEETING|read_failed|key=%s|error=%s", key, e)
                continue
            if not raw:
                continue
            try:
                meetings.append((key, Meeting.from_json(raw)))
            except MalformedRecordError as e:
                logger.warning("MEETING|malformed|key=%s|error=%s", key, e)
        return meetings
