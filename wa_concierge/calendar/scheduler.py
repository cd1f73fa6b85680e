"""
Meeting Reminder Scheduler

Polls every stored meeting on a fixed interval and evaluates two
independent reminders per meeting:

- day-of: on the meeting day, within ``window`` minutes of the configured
  time of day (e.g. 09:00)
- lead-time: ``minutes_before`` the meeting, within a ``window``-wide band

Each reminder is sent at most once. Its flag is set only after a successful
send and is never reset, so a failed or skipped send is retried on the next
tick while the window is still open.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Set

from ..core.config import settings
from ..core.delivery import WhatsAppSender
from ..core.errors import StoreUnavailableError
from ..core.logger import mask_phone
from ..core.optout import OptOutManager
from ..core.phone import to_international
from .messages import build_before_reminder, build_day_reminder
from .models import Meeting
from .storage import MeetingStore
from .time_utils import diff_minutes, local_datetime, now_in, parse_time

logger = logging.getLogger(__name__)

REMINDER_DAY = "day"
REMINDER_BEFORE = "before"

Clock = Callable[[], datetime]


class ReminderScheduler:
    """Fixed-rate polling loop with a single-flight guard around each tick."""

    def __init__(
        self,
        store: MeetingStore,
        opt_out: OptOutManager,
        sender: WhatsAppSender,
        day_of_meeting_time: Optional[str] = None,
        minutes_before: Optional[int] = None,
        window_minutes: Optional[int] = None,
        interval_seconds: Optional[float] = None,
        timezone: Optional[str] = None,
        country_code: Optional[str] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.opt_out = opt_out
        self.sender = sender
        self.day_of_meeting_time = parse_time(day_of_meeting_time or settings.REMINDER_DAY_OF_MEETING_TIME)
        self.minutes_before = settings.REMINDER_MINUTES_BEFORE if minutes_before is None else minutes_before
        self.window_minutes = settings.REMINDER_WINDOW_MINUTES if window_minutes is None else window_minutes
        self.interval_seconds = interval_seconds or settings.REMINDER_CHECK_INTERVAL_SECONDS
        self.timezone = timezone or settings.TIMEZONE
        self.country_code = country_code or settings.DEFAULT_COUNTRY_CODE
        self._clock = clock or (lambda: now_in(self.timezone))

        self._tick_lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self):
        if self.running:
            return

        logger.info(
            "REMINDER|scheduler_started|day_time=%s|minutes_before=%d|window=%d|interval_s=%s",
            self.day_of_meeting_time.strftime("%H:%M"), self.minutes_before,
            self.window_minutes, self.interval_seconds,
        )
        self._loop_task = asyncio.ensure_future(self._run())

    async def stop(self):
        """Stop scheduling new ticks and wait for the one in flight."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._tick_tasks:
            await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)
        logger.info("REMINDER|scheduler_stopped")

    async def _run(self):
        # First tick runs immediately, then one per interval regardless of tick duration
        while True:
            task = asyncio.ensure_future(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await asyncio.sleep(self.interval_seconds)

    async def tick(self) -> bool:
        """Evaluate every meeting once. Returns False when skipped because a tick is running."""
        if self._tick_lock.locked():
            self.skipped_ticks += 1
            logger.warning("REMINDER|tick_skipped|reason=previous_tick_running|skipped=%d", self.skipped_ticks)
            return False

        async with self._tick_lock:
            try:
                meetings = await self.store.list_all()
            except StoreUnavailableError as e:
                logger.debug("REMINDER|tick_no_store|error=%s", e)
                return True
            except Exception:
                logger.error("REMINDER|tick_failed", exc_info=True)
                return True

            if meetings:
                logger.debug("REMINDER|checking|meetings=%d", len(meetings))

            for key, meeting in meetings:
                try:
                    await self.process_meeting(key, meeting)
                except Exception:
                    logger.error("REMINDER|meeting_failed|key=%s", key, exc_info=True)
        return True

    def due_reminders(self, meeting: Meeting, now: datetime):
        """Reminder kinds whose window is open now and whose flag is still unset."""
        due = []

        target = local_datetime(meeting.day, self.day_of_meeting_time, self.timezone)
        same_day = now.date() == meeting.day
        day_diff = diff_minutes(now, target)
        if same_day and abs(day_diff) <= self.window_minutes and not meeting.flags.sent_day_reminder:
            due.append(REMINDER_DAY)

        meeting_at = local_datetime(meeting.day, meeting.time_of_day, self.timezone)
        lead = diff_minutes(meeting_at, now)
        if (
            self.minutes_before - self.window_minutes <= lead <= self.minutes_before
            and not meeting.flags.sent_before_reminder
        ):
            due.append(REMINDER_BEFORE)

        return due

    async def process_meeting(self, key: str, meeting: Meeting):
        """Send due reminders; flags are written back to ``key``, the record that was read."""
        now = self._clock()
        due = self.due_reminders(meeting, now)
        if not due:
            return

        phone = to_international(meeting.phone, self.country_code)
        updated = False

        for kind in due:
            # Opted-out customers are skipped with the flag left unset
            if await self.opt_out.is_opted_out(phone):
                logger.info("REMINDER|skipped_opted_out|phone=%s|kind=%s", mask_phone(phone), kind)
                continue

            if kind == REMINDER_DAY:
                text = build_day_reminder(meeting)
            else:
                text = build_before_reminder(meeting, self.minutes_before)

            logger.info(
                "REMINDER|sending|phone=%s|kind=%s|date=%s|time=%s",
                mask_phone(phone), kind, meeting.date, meeting.time,
            )
            if not await self.sender.send_text(phone, text):
                logger.error("REMINDER|send_failed|phone=%s|kind=%s", mask_phone(phone), kind)
                continue

            if kind == REMINDER_DAY:
                meeting.flags.sent_day_reminder = True
            else:
                meeting.flags.sent_before_reminder = True
            updated = True
            logger.info("REMINDER|sent|phone=%s|kind=%s", mask_phone(phone), kind)

            # Persisted per reminder, before the next one is attempted
            await self.store.update_flags(key, meeting)

        if updated:
            logger.debug("REMINDER|flags|phone=%s|flags=%s", mask_phone(phone), meeting.flags)
