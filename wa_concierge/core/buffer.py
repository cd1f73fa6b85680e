"""
Message Buffer - per-phone debounced batching of inbound messages.

The first message for a phone opens a window; every message that arrives
while the window is open joins the same batch. When the window closes the
whole batch is detached and handed to the consumer in arrival order, and
the next message opens a new, independent window.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Generic, List, Optional, Set, TypeVar

from .logger import mask_phone

logger = logging.getLogger(__name__)

T = TypeVar("T")

BatchConsumer = Callable[[str, List[T]], Awaitable[None]]


@dataclass
class BufferEntry(Generic[T]):
    """Queue and timer handle of one open window"""
    items: List[T] = field(default_factory=list)
    handle: Optional[asyncio.TimerHandle] = None


class MessageBuffer(Generic[T]):
    """
    Owns one timer per phone. ``admit`` never suspends, so checking for a
    running window and appending to it cannot interleave with another
    admission.
    """

    def __init__(self, consumer: BatchConsumer, window_seconds: float):
        self._consumer = consumer
        self.window_seconds = window_seconds
        self._entries: Dict[str, BufferEntry[T]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def admit(self, phone: str, item: T):
        """Add an already-resolved item to the phone's open window."""
        entry = self._entries.get(phone)
        if entry is None:
            loop = asyncio.get_running_loop()
            entry = BufferEntry()
            entry.handle = loop.call_later(self.window_seconds, self._fire, phone)
            self._entries[phone] = entry
            logger.debug("BUFFER|window_open|phone=%s|window_s=%s", mask_phone(phone), self.window_seconds)

        entry.items.append(item)
        logger.debug("BUFFER|admitted|phone=%s|queued=%d", mask_phone(phone), len(entry.items))

    def pending(self, phone: str) -> int:
        entry = self._entries.get(phone)
        return len(entry.items) if entry else 0

    @property
    def active_phones(self) -> List[str]:
        return list(self._entries)

    def _fire(self, phone: str):
        entry = self._entries.pop(phone, None)
        if entry is None or not entry.items:
            return

        logger.info("BUFFER|flush|phone=%s|messages=%d", mask_phone(phone), len(entry.items))
        task = asyncio.ensure_future(self._run_consumer(phone, entry.items))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_consumer(self, phone: str, items: List[T]):
        try:
            await self._consumer(phone, items)
        except Exception:
            logger.error("BUFFER|consumer_failed|phone=%s", mask_phone(phone), exc_info=True)

    async def drain(self):
        """Wait for batches already handed to the consumer."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
