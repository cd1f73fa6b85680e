"""
Unit tests for the meeting reminder scheduler: time windows, idempotent
flags, opt-out handling and the single-flight tick guard.
"""
import asyncio
import json

import pytest

from wa_concierge.calendar.messages import build_before_reminder, build_day_reminder
from wa_concierge.calendar.models import Meeting
from wa_concierge.calendar.scheduler import REMINDER_BEFORE, REMINDER_DAY, ReminderScheduler
from wa_concierge.calendar.storage import MeetingStore, meeting_key
from wa_concierge.core.optout import OptOutManager
from tests.utils.fakes import FakeSender

PHONE = "972523006544"
MEETING_TTL = 3 * 24 * 3600
TEST_TZ = "Asia/Jerusalem"


@pytest.fixture
def meetings(redis_provider):
    return MeetingStore(redis_provider=redis_provider, ttl_seconds=MEETING_TTL)


@pytest.fixture
def opt_out(redis_provider):
    return OptOutManager(redis_provider=redis_provider, ttl_seconds=7 * 24 * 3600)


def make_scheduler(meetings, opt_out, sender, clock, **kwargs) -> ReminderScheduler:
    options = dict(
        day_of_meeting_time="09:00",
        minutes_before=45,
        window_minutes=3,
        interval_seconds=60,
        timezone=TEST_TZ,
        country_code="972",
    )
    options.update(kwargs)
    return ReminderScheduler(store=meetings, opt_out=opt_out, sender=sender, clock=clock, **options)


def meeting(phone: str = PHONE, date: str = "2025-12-03", time: str = "15:50") -> Meeting:
    return Meeting(phone=phone, name="Eitan Levi", date=date, time=time, created_at=1)


async def stored_flags(fake_redis, phone: str = PHONE):
    return json.loads(fake_redis.store[meeting_key(phone)])["flags"]


class TestTriggerWindows:
    """Pure window evaluation."""

    @pytest.mark.parametrize(
        "hour, minute, due",
        [
            (9, 2, True),  # diff 2 <= 3
            (9, 3, True),
            (8, 57, True),  # symmetric window
            (9, 4, False),  # diff 4 > 3
            (8, 56, False),
        ],
    )
    def test_day_of_meeting_window(self, meetings, opt_out, sender, clock, hour, minute, due):
        scheduler = make_scheduler(meetings, opt_out, sender, clock)
        clock.set(2025, 12, 3, hour, minute)
        assert (REMINDER_DAY in scheduler.due_reminders(meeting(), clock())) is due

    def test_day_reminder_only_on_meeting_day(self, meetings, opt_out, sender, clock):
        scheduler = make_scheduler(meetings, opt_out, sender, clock)
        clock.set(2025, 12, 2, 9, 0)
        assert scheduler.due_reminders(meeting(), clock()) == []

    @pytest.mark.parametrize(
        "minutes_left, due",
        [
            (46, False),
            (45, True),
            (44, True),  # in [42, 45]
            (42, True),
            (41, False),  # below the band
        ],
    )
    def test_lead_time_band(self, meetings, opt_out, sender, clock, minutes_left, due):
        scheduler = make_scheduler(meetings, opt_out, sender, clock)
        # Meeting at 15:50
        clock.set(2025, 12, 3, 15, 50 - minutes_left)
        assert (REMINDER_BEFORE in scheduler.due_reminders(meeting(), clock())) is due

    def test_sent_flags_suppress(self, meetings, opt_out, sender, clock):
        scheduler = make_scheduler(meetings, opt_out, sender, clock)
        item = meeting(time="09:45")
        clock.set(2025, 12, 3, 9, 0)
        assert scheduler.due_reminders(item, clock()) == [REMINDER_DAY, REMINDER_BEFORE]

        item.flags.sent_day_reminder = True
        item.flags.sent_before_reminder = True
        assert scheduler.due_reminders(item, clock()) == []

    def test_unpadded_date_matches_meeting_day(self, meetings, opt_out, sender, clock):
        scheduler = make_scheduler(meetings, opt_out, sender, clock)
        clock.set(2025, 12, 3, 9, 0)
        assert scheduler.due_reminders(meeting(date="2025-12-3"), clock()) == [REMINDER_DAY]


class TestTick:
    async def test_day_reminder_sent_once(self, meetings, opt_out, sender, clock, fake_redis):
        await meetings.save(meeting())
        scheduler = make_scheduler(meetings, opt_out, sender, clock)

        for minute in (59, 0, 1, 2, 3):
            clock.set(2025, 12, 3, 8 if minute == 59 else 9, minute)
            await scheduler.tick()

        assert sender.texts_to(PHONE) == [build_day_reminder(meeting())]
        assert await stored_flags(fake_redis) == {"sentDayReminder": True, "sentBeforeReminder": False}

    async def test_before_reminder_sent_once(self, meetings, opt_out, sender, clock, fake_redis):
        await meetings.save(meeting())
        scheduler = make_scheduler(meetings, opt_out, sender, clock)

        for minute in (5, 6, 7, 8):
            clock.set(2025, 12, 3, 15, minute)
            await scheduler.tick()

        assert sender.texts_to(PHONE) == [build_before_reminder(meeting(), 45)]
        assert await stored_flags(fake_redis) == {"sentDayReminder": False, "sentBeforeReminder": True}

    async def test_both_triggers_in_same_tick(self, meetings, opt_out, sender, clock, fake_redis):
        await meetings.save(meeting(time="09:45"))
        scheduler = make_scheduler(meetings, opt_out, sender, clock)
        clock.set(2025, 12, 3, 9, 0)

        await scheduler.tick()

        assert len(sender.texts_to(PHONE)) == 2
        assert await stored_flags(fake_redis) == {"sentDayReminder": True, "sentBeforeReminder": True}

    async def test_failed_send_retried_next_tick(self, meetings, opt_out, clock, fake_redis):
        sender = FakeSender(results=[False])
        await meetings.save(meeting())
        scheduler = make_scheduler(meetings, opt_out, sender, clock)

        clock.set(2025, 12, 3, 9, 0)
        await scheduler.tick()
        assert (await stored_flags(fake_redis))["sentDayReminder"] is False

        clock.set(2025, 12, 3, 9, 1)
        await scheduler.tick()
        assert (await stored_flags(fake_redis))["sentDayReminder"] is True
        assert len(sender.sent) == 2

    async def test_missed_window_is_not_caught_up(self, meetings, opt_out, clock, fake_redis):
        sender = FakeSender(default=False)
        await meetings.save(meeting())
        scheduler = make_scheduler(meetings, opt_out, sender, clock)

        clock.set(2025, 12, 3, 9, 3)
        await scheduler.tick()
        sender.default = True
        clock.set(2025, 12, 3, 9, 4)
        await scheduler.tick()

        assert len(sender.sent) == 1
        assert (await stored_flags(fake_redis))["sentDayReminder"] is False

    async def test_opted_out_customer_skipped_flag_left_unset(self, meetings, opt_out, sender, clock, fake_redis):
        await meetings.save(meeting())
        await opt_out.set_opt_out(PHONE, "stop")
        scheduler = make_scheduler(meetings, opt_out, sender, clock)

        clock.set(2025, 12, 3, 9, 0)
        await scheduler.tick()
        assert sender.sent == []
        assert (await stored_flags(fake_redis))["sentDayReminder"] is False

        # Re-subscribing inside the window lets the reminder through
        await opt_out.clear_opt_out(PHONE)
        clock.set(2025, 12, 3, 9, 2)
        await scheduler.tick()
        assert sender.texts_to(PHONE) == [build_day_reminder(meeting())]

    async def test_local_phone_is_sent_in_international_format(self, meetings, opt_out, sender, clock, fake_redis):
        await meetings.save(meeting(phone="0523006544"))
        await opt_out.set_opt_out(PHONE, "stop")
        scheduler = make_scheduler(meetings, opt_out, sender, clock)

        clock.set(2025, 12, 3, 9, 0)
        await scheduler.tick()
        # Opt-out is looked up by the international number
        assert sender.sent == []

        await opt_out.clear_opt_out(PHONE)
        await scheduler.tick()
        assert [item["phone"] for item in sender.sent] == [PHONE]
        assert (await stored_flags(fake_redis, "0523006544"))["sentDayReminder"] is True

    async def test_flag_write_back_keeps_remaining_ttl(self, meetings, opt_out, sender, clock, fake_redis):
        await meetings.save(meeting())
        fake_redis.expiry[meeting_key(PHONE)] = fake_redis.clock() + 1000
        scheduler = make_scheduler(meetings, opt_out, sender, clock)

        clock.set(2025, 12, 3, 9, 0)
        await scheduler.tick()

        assert fake_redis.writes[-1]["keepttl"] is True
        assert 998 <= await fake_redis.ttl(meeting_key(PHONE)) <= 1000

    async def test_stored_unpadded_date_gets_day_reminder(self, meetings, opt_out, sender, clock, fake_redis):
        fake_redis.store[meeting_key(PHONE)] = json.dumps(
            {"phone": PHONE, "name": "Eitan Levi", "date": "2025-12-3", "time": "15:50", "createdAt": 1}
        )
        scheduler = make_scheduler(meetings, opt_out, sender, clock)

        clock.set(2025, 12, 3, 9, 0)
        await scheduler.tick()

        assert sender.texts_to(PHONE) == [build_day_reminder(meeting())]
        stored = json.loads(fake_redis.store[meeting_key(PHONE)])
        assert stored["date"] == "2025-12-03"
        assert stored["flags"]["sentDayReminder"] is True

    async def test_flags_written_to_key_that_was_read(self, meetings, opt_out, sender, clock, fake_redis):
        # Key and phone field disagree: the record was written by another tool
        key = meeting_key(PHONE)
        fake_redis.store[key] = json.dumps(
            {"phone": "+" + PHONE, "name": "Eitan Levi", "date": "2025-12-03", "time": "15:50", "createdAt": 1}
        )
        fake_redis.expiry[key] = fake_redis.clock() + 1000
        scheduler = make_scheduler(meetings, opt_out, sender, clock)

        for minute in (0, 1, 2, 3):
            clock.set(2025, 12, 3, 9, minute)
            await scheduler.tick()

        assert len(sender.texts_to(PHONE)) == 1
        assert list(fake_redis.store) == [key]
        assert (await stored_flags(fake_redis))["sentDayReminder"] is True
        assert 998 <= await fake_redis.ttl(key) <= 1000

    async def test_flag_write_does_not_recreate_expired_record(self, meetings, fake_redis):
        assert await meetings.update_flags(meeting_key(PHONE), meeting()) is False
        assert fake_redis.store == {}

    async def test_malformed_meeting_skipped(self, meetings, opt_out, sender, clock, fake_redis):
        fake_redis.store["meeting:broken"] = "{oops"
        fake_redis.store["meeting:bad-date"] = json.dumps({"phone": "1", "date": "03/12/2025", "time": "09:00"})
        await meetings.save(meeting())
        scheduler = make_scheduler(meetings, opt_out, sender, clock)

        clock.set(2025, 12, 3, 9, 0)
        assert await scheduler.tick() is True
        assert len(sender.sent) == 1

    async def test_store_unavailable_tick_is_noop(self, opt_out, sender, clock):
        scheduler = make_scheduler(MeetingStore(redis_provider=lambda: None), opt_out, sender, clock)
        assert await scheduler.tick() is True
        assert sender.sent == []

    async def test_redis_outage_during_tick(self, meetings, opt_out, sender, clock, fake_redis):
        await meetings.save(meeting())
        fake_redis.fail = True
        scheduler = make_scheduler(meetings, opt_out, sender, clock)
        clock.set(2025, 12, 3, 9, 0)
        assert await scheduler.tick() is True
        assert sender.sent == []


class BlockingSender(FakeSender):
    """Holds every send until released."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def send_text(self, phone, text):
        self.started.set()
        await self.release.wait()
        return await super().send_text(phone, text)


class TestSingleFlight:
    async def test_overlapping_tick_is_skipped(self, meetings, opt_out, clock, fake_redis):
        sender = BlockingSender()
        await meetings.save(meeting())
        scheduler = make_scheduler(meetings, opt_out, sender, clock)
        clock.set(2025, 12, 3, 9, 0)

        first = asyncio.ensure_future(scheduler.tick())
        await asyncio.wait_for(sender.started.wait(), timeout=1)

        # A second tick while the first is still sending would race on the flags
        assert await scheduler.tick() is False
        assert scheduler.skipped_ticks == 1

        sender.release.set()
        assert await first is True
        assert len(sender.sent) == 1

        assert await scheduler.tick() is True
        assert len(sender.sent) == 1

    async def test_loop_runs_and_stops(self, meetings, opt_out, sender, clock):
        await meetings.save(meeting())
        clock.set(2025, 12, 3, 9, 0)
        scheduler = make_scheduler(meetings, opt_out, sender, clock, interval_seconds=0.01)

        scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.running is False
        assert len(sender.sent) == 1

        sent_before = len(sender.sent)
        await asyncio.sleep(0.03)
        assert len(sender.sent) == sent_before
