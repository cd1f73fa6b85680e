"""
Conversation Summary Scheduler

Polls the tracked conversations on a fixed interval. Once a customer has
been quiet for ``delay_minutes``, the conversation is summarized, POSTed to
the summary webhook and marked as sent. A new user message re-arms it.

A conversation that could not be summarized or delivered stays pending and
is retried on the next tick.
"""
import asyncio
import logging
from typing import Callable, Optional, Set

from ..core.config import settings
from ..core.errors import StoreUnavailableError
from ..core.logger import mask_phone
from ..core.models import now_ms
from .generator import SummaryGenerator
from .models import SummaryMeta, build_payload
from .tracker import SummaryTracker
from .webhook import SummaryWebhookClient

logger = logging.getLogger(__name__)

ClockMs = Callable[[], int]


class SummaryScheduler:
    """Fixed-rate polling loop with a single-flight guard around each tick."""

    def __init__(
        self,
        tracker: SummaryTracker,
        generator: SummaryGenerator,
        webhook: SummaryWebhookClient,
        delay_minutes: Optional[int] = None,
        interval_seconds: Optional[float] = None,
        clock_ms: Optional[ClockMs] = None,
    ):
        self.tracker = tracker
        self.generator = generator
        self.webhook = webhook
        self.delay_minutes = settings.SUMMARY_DELAY_MINUTES if delay_minutes is None else delay_minutes
        self.interval_seconds = interval_seconds or settings.SUMMARY_CHECK_INTERVAL_SECONDS
        self._clock_ms = clock_ms or now_ms

        self._tick_lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> bool:
        """Start polling; returns False when no webhook is configured."""
        if self.running:
            return True
        if not self.webhook.configured:
            logger.warning("SUMMARY|scheduler_disabled|reason=no_webhook_url")
            return False

        logger.info(
            "SUMMARY|scheduler_started|delay_min=%d|min_messages=%d|interval_s=%s",
            self.delay_minutes, self.generator.min_user_messages, self.interval_seconds,
        )
        self._loop_task = asyncio.ensure_future(self._run())
        return True

    async def stop(self):
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._tick_tasks:
            await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)
        logger.info("SUMMARY|scheduler_stopped")

    async def _run(self):
        while True:
            task = asyncio.ensure_future(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await asyncio.sleep(self.interval_seconds)

    async def tick(self) -> bool:
        """Process every quiet conversation once. Returns False when skipped."""
        if self._tick_lock.locked():
            self.skipped_ticks += 1
            logger.warning("SUMMARY|tick_skipped|reason=previous_tick_running|skipped=%d", self.skipped_ticks)
            return False

        async with self._tick_lock:
            try:
                pending = await self.tracker.list_pending()
            except StoreUnavailableError as e:
                logger.debug("SUMMARY|tick_no_store|error=%s", e)
                return True
            except Exception:
                logger.error("SUMMARY|tick_failed", exc_info=True)
                return True

            now = self._clock_ms()
            for phone, meta in pending:
                if not self.is_due(meta, now):
                    continue
                try:
                    await self.process(phone, meta)
                except Exception:
                    logger.error("SUMMARY|conversation_failed|phone=%s", mask_phone(phone), exc_info=True)
        return True

    def is_due(self, meta: SummaryMeta, now: int) -> bool:
        return now - meta.last_user_message_at >= self.delay_minutes * 60 * 1000

    async def process(self, phone: str, meta: SummaryMeta) -> bool:
        logger.info("SUMMARY|generating|phone=%s", mask_phone(phone))
        summary = await self.generator.generate(phone, meta.customer_name)
        if not summary:
            return False

        payload = build_payload(phone, meta.customer_name, summary)
        if not await self.webhook.send(payload):
            return False

        await self.tracker.mark_sent(phone, meta.last_user_message_at)
        logger.info("SUMMARY|sent|phone=%s|chars=%d", mask_phone(phone), len(summary))
        return True
