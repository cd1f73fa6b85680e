"""
Conversation History Store

- Keeps the last N messages per phone number under ``chat:{phone}``
- Refreshes the full TTL on every write
- Falls back to an in-process map when Redis is disabled or failing
- Pins one backend per turn so a turn never lands half in Redis and half in memory
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple

from .cache_manager import RedisProvider, get_redis
from .config import settings
from .errors import MalformedRecordError
from .logger import mask_phone
from .models import ChatMessage, CustomerProfile, dump_history, load_history, now_ms

logger = logging.getLogger(__name__)

BACKEND_REDIS = "redis"
BACKEND_MEMORY = "memory"


def chat_key(phone: str) -> str:
    return f"chat:{phone}"


def customer_key(phone: str) -> str:
    return f"customer:{phone}"


def trim_history(messages: List[ChatMessage], max_messages: int) -> List[ChatMessage]:
    """Drop the oldest entries until at most ``max_messages`` remain."""
    if len(messages) <= max_messages:
        return messages
    return messages[len(messages) - max_messages:]


class ConversationTurn:
    """
    History snapshot plus the messages a turn adds, bound to the backend
    that served the read.
    """

    def __init__(self, phone: str, backend: str, history: List[ChatMessage]):
        self.phone = phone
        self.backend = backend
        self.history = history
        self.pending: List[ChatMessage] = []

    def append(self, message: ChatMessage):
        self.pending.append(message)

    @property
    def messages(self) -> List[ChatMessage]:
        return self.history + self.pending


class ConversationStore:
    """Redis-backed conversation history with an in-memory fallback"""

    def __init__(
        self,
        redis_provider: RedisProvider = get_redis,
        max_messages: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
        customer_ttl_seconds: Optional[int] = None,
    ):
        self._redis = redis_provider
        self.max_messages = max_messages or settings.MAX_HISTORY_MESSAGES
        self.ttl_seconds = ttl_seconds or settings.chat_ttl_seconds
        self.customer_ttl_seconds = customer_ttl_seconds or settings.customer_ttl_seconds

        # Fallback maps never expire
        self._memory_history: Dict[str, List[ChatMessage]] = {}
        self._memory_profiles: Dict[str, CustomerProfile] = {}

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def turn(self, phone: str) -> AsyncIterator[ConversationTurn]:
        """
        Read history once, collect appends, write them back in one operation
        to the same backend when the block exits cleanly.
        """
        backend, history = await self._load(phone)
        turn = ConversationTurn(phone, backend, history)
        yield turn
        if turn.pending:
            await self._commit(turn)

    async def _read_redis(self, redis, phone: str) -> List[ChatMessage]:
        raw = await redis.get(chat_key(phone))
        if not raw:
            return []
        try:
            return load_history(raw)
        except MalformedRecordError as e:
            logger.warning("HISTORY|malformed|phone=%s|treated_as_empty|error=%s", mask_phone(phone), e)
            return []

    async def _load(self, phone: str) -> Tuple[str, List[ChatMessage]]:
        redis = self._redis()
        if redis is None:
            return BACKEND_MEMORY, list(self._memory_history.get(phone, []))

        try:
            return BACKEND_REDIS, await self._read_redis(redis, phone)
        except Exception as e:
            logger.warning(
                "HISTORY|redis_read_failed|phone=%s|using_memory|error=%s", mask_phone(phone), e
            )
            return BACKEND_MEMORY, list(self._memory_history.get(phone, []))

    def _trimmed(self, phone: str, combined: List[ChatMessage]) -> List[ChatMessage]:
        history = trim_history(combined, self.max_messages)
        if len(history) < len(combined):
            logger.debug(
                "HISTORY|trimmed|phone=%s|removed=%d|remaining=%d",
                mask_phone(phone), len(combined) - len(history), len(history),
            )
        return history

    async def _commit(self, turn: ConversationTurn):
        # Pending messages go on top of the current value, not the snapshot,
        # so a turn that committed in between is kept
        if turn.backend == BACKEND_REDIS:
            redis = self._redis()
            try:
                if redis is None:
                    raise ConnectionError("redis client released")
                current = await self._read_redis(redis, turn.phone)
                history = self._trimmed(turn.phone, current + turn.pending)
                await redis.setex(chat_key(turn.phone), self.ttl_seconds, dump_history(history))
                return
            except Exception as e:
                logger.warning(
                    "HISTORY|redis_write_failed|phone=%s|using_memory|error=%s",
                    mask_phone(turn.phone), e,
                )
            base = self._memory_history.get(turn.phone, turn.history)
        else:
            base = self._memory_history.get(turn.phone, [])

        self._memory_history[turn.phone] = self._trimmed(turn.phone, base + turn.pending)

    # ------------------------------------------------------------------
    # Single operations
    # ------------------------------------------------------------------

    async def read(self, phone: str) -> List[ChatMessage]:
        """Ordered history, empty when absent. Never raises."""
        async with self.turn(phone) as turn:
            return list(turn.history)

    async def append(self, phone: str, message: ChatMessage):
        async with self.turn(phone) as turn:
            turn.append(message)

    async def clear(self, phone: str):
        self._memory_history.pop(phone, None)
        redis = self._redis()
        if redis is None:
            return
        try:
            await redis.delete(chat_key(phone))
            logger.debug("HISTORY|cleared|phone=%s", mask_phone(phone))
        except Exception as e:
            logger.warning("HISTORY|clear_failed|phone=%s|error=%s", mask_phone(phone), e)

    async def add_note(self, phone: str, content: str) -> bool:
        """
        Append a system note to an existing Redis history, keeping the
        remaining TTL. Nothing is written when there is no history yet.
        """
        redis = self._redis()
        if redis is None:
            return False

        key = chat_key(phone)
        try:
            raw = await redis.get(key)
            if not raw:
                return False
            history = load_history(raw)
            history.append(ChatMessage(role="system", content=content, timestamp=now_ms()))
            ttl = await redis.ttl(key)
            if ttl <= 0:
                return False
            await redis.setex(key, ttl, dump_history(trim_history(history, self.max_messages)))
            logger.info("HISTORY|note_added|phone=%s", mask_phone(phone))
            return True
        except Exception as e:
            logger.warning("HISTORY|note_failed|phone=%s|error=%s", mask_phone(phone), e)
            return False

    # ------------------------------------------------------------------
    # Customer profile
    # ------------------------------------------------------------------

    async def save_profile(self, phone: str, profile: CustomerProfile) -> bool:
        """
        Store the profile only when none exists yet.

        Returns:
            True when this call created the profile
        """
        if not profile.saved_at:
            profile.saved_at = now_ms()

        redis = self._redis()
        if redis is not None:
            try:
                created = await redis.set(
                    customer_key(phone),
                    profile.to_json(),
                    ex=self.customer_ttl_seconds,
                    nx=True,
                )
                if created:
                    logger.info("CUSTOMER|saved|phone=%s|gender=%s", mask_phone(phone), profile.gender)
                return bool(created)
            except Exception as e:
                logger.warning("CUSTOMER|redis_write_failed|phone=%s|using_memory|error=%s", mask_phone(phone), e)

        if phone in self._memory_profiles:
            return False
        self._memory_profiles[phone] = profile
        return True

    async def read_profile(self, phone: str) -> Optional[CustomerProfile]:
        redis = self._redis()
        if redis is not None:
            try:
                raw = await redis.get(customer_key(phone))
            except Exception as e:
                logger.warning("CUSTOMER|redis_read_failed|phone=%s|using_memory|error=%s", mask_phone(phone), e)
                return self._memory_profiles.get(phone)

            if not raw:
                return None
            try:
                return CustomerProfile.from_json(raw)
            except MalformedRecordError as e:
                logger.warning("CUSTOMER|malformed|phone=%s|error=%s", mask_phone(phone), e)
                return None

        return self._memory_profiles.get(phone)
