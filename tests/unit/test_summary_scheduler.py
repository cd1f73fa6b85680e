"""
Unit tests for conversation summaries: tracking, generation, webhook
delivery and the polling scheduler.
"""
import asyncio
import json

import httpx
import pytest

from wa_concierge.core.history import ConversationStore
from wa_concierge.core.models import ChatMessage
from wa_concierge.summary.generator import SummaryGenerator, format_transcript
from wa_concierge.summary.models import build_payload
from wa_concierge.summary.scheduler import SummaryScheduler
from wa_concierge.summary.tracker import SummaryTracker, summary_meta_key
from wa_concierge.summary.webhook import SummaryWebhookClient
from tests.utils.fakes import FakeLLM

PHONE = "972523006544"
META_TTL = 7 * 24 * 3600
MINUTE_MS = 60 * 1000
WEBHOOK_URL = "https://hooks.test/summary"


class WebhookRecorder:
    """Answers with the next scripted status; the last one repeats."""

    def __init__(self, *statuses):
        self.statuses = list(statuses) or [200]
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return httpx.Response(status, json={"ok": status < 300})

    @property
    def payloads(self):
        return [json.loads(request.content) for request in self.requests]


@pytest.fixture
def tracker(redis_provider):
    return SummaryTracker(redis_provider=redis_provider, ttl_seconds=META_TTL)


@pytest.fixture
def store(redis_provider):
    return ConversationStore(redis_provider=redis_provider, max_messages=40, ttl_seconds=3600)


@pytest.fixture
def hook():
    return WebhookRecorder(200)


def webhook_client(hook, url=WEBHOOK_URL) -> SummaryWebhookClient:
    return SummaryWebhookClient(url=url, timeout_seconds=5, transport=httpx.MockTransport(hook))


async def seed_history(store, user_messages=4):
    for i in range(user_messages):
        await store.append(PHONE, ChatMessage(role="user", content=f"question {i}", timestamp=i))
        await store.append(PHONE, ChatMessage(role="assistant", content=f"answer {i}", timestamp=i))


class FixedClock:
    def __init__(self, value: int):
        self.value = value

    def __call__(self) -> int:
        return self.value


def make_scheduler(tracker, store, llm, hook, clock, **kwargs) -> SummaryScheduler:
    generator = SummaryGenerator(store=store, llm=llm, prompt="SUMMARIZE", min_user_messages=4)
    options = dict(delay_minutes=30, interval_seconds=60)
    options.update(kwargs)
    return SummaryScheduler(
        tracker=tracker, generator=generator, webhook=webhook_client(hook), clock_ms=clock, **options
    )


class TestTracker:
    async def test_track_creates_meta_with_ttl(self, tracker, fake_redis):
        assert await tracker.track_user_message(PHONE, "Dana", at_ms=1000) is True

        stored = json.loads(fake_redis.store[summary_meta_key(PHONE)])
        assert stored == {"customerName": "Dana", "lastUserMessageAt": 1000, "summarySent": False}
        assert await fake_redis.ttl(summary_meta_key(PHONE)) > META_TTL - 5

    async def test_first_name_is_kept_and_summary_rearmed(self, tracker):
        await tracker.track_user_message(PHONE, "Dana", at_ms=1000)
        await tracker.mark_sent(PHONE)

        await tracker.track_user_message(PHONE, "Someone Else", at_ms=2000)

        meta = await tracker.get(PHONE)
        assert (meta.customer_name, meta.last_user_message_at, meta.summary_sent) == ("Dana", 2000, False)

    async def test_mark_sent_keeps_remaining_ttl(self, tracker, fake_redis):
        await tracker.track_user_message(PHONE, "Dana", at_ms=1000)
        fake_redis.expiry[summary_meta_key(PHONE)] = fake_redis.clock() + 500

        assert await tracker.mark_sent(PHONE, 1000) is True

        assert (await tracker.get(PHONE)).summary_sent is True
        assert 498 <= await fake_redis.ttl(summary_meta_key(PHONE)) <= 500

    async def test_mark_sent_skipped_when_customer_wrote_again(self, tracker):
        await tracker.track_user_message(PHONE, "Dana", at_ms=2000)

        assert await tracker.mark_sent(PHONE, 1000) is False
        assert (await tracker.get(PHONE)).summary_sent is False

    async def test_list_pending_skips_sent_and_malformed(self, tracker, fake_redis):
        await tracker.track_user_message(PHONE, "Dana", at_ms=1000)
        await tracker.track_user_message("972541112222", "Noa", at_ms=1000)
        await tracker.mark_sent("972541112222")
        fake_redis.store[summary_meta_key("broken")] = "{oops"

        pending = await tracker.list_pending()

        assert [phone for phone, _ in pending] == [PHONE]

    async def test_tracking_without_redis_is_skipped(self):
        tracker = SummaryTracker(redis_provider=lambda: None, ttl_seconds=META_TTL)
        assert await tracker.track_user_message(PHONE, "Dana") is False


class TestGenerator:
    async def test_too_few_user_messages(self, store):
        await seed_history(store, user_messages=3)
        llm = FakeLLM(completions=["summary"])
        generator = SummaryGenerator(store=store, llm=llm, prompt="SUMMARIZE", min_user_messages=4)

        assert await generator.generate(PHONE, "Dana") is None
        assert llm.completed == []

    async def test_prompt_contains_transcript(self, store):
        await seed_history(store)
        llm = FakeLLM(completions=["  Dana asked about pricing.  "])
        generator = SummaryGenerator(store=store, llm=llm, prompt="SUMMARIZE", min_user_messages=4)

        assert await generator.generate(PHONE, "Dana") == "Dana asked about pricing."

        content = llm.completed[0]["messages"][-1]["content"]
        assert content.startswith("SUMMARIZE\n\nCustomer name: Dana")
        assert "Dana: question 0\nAssistant: answer 0" in content

    async def test_no_ai_answer(self, store):
        await seed_history(store)
        generator = SummaryGenerator(store=store, llm=FakeLLM(completions=[None]), prompt="S", min_user_messages=4)
        assert await generator.generate(PHONE, "Dana") is None

    def test_transcript_labels(self):
        history = [
            ChatMessage(role="user", content="hi", timestamp=1),
            ChatMessage(role="system", content="meeting booked", timestamp=2),
            ChatMessage(role="assistant", content="hello", timestamp=3),
        ]
        assert format_transcript(history, "") == "Customer: hi\nNote: meeting booked\nAssistant: hello"


class TestWebhook:
    async def test_payload_posted(self, hook):
        payload = build_payload(PHONE, "Dana", "short summary")

        assert await webhook_client(hook).send(payload) is True

        assert hook.requests[0].url == WEBHOOK_URL
        assert hook.payloads == [payload]
        assert set(payload) == {"customerName", "phone", "timestamp", "summary"}

    @pytest.mark.parametrize("status", [404, 500])
    async def test_error_status(self, status):
        assert await webhook_client(WebhookRecorder(status)).send(build_payload(PHONE, "Dana", "s")) is False

    async def test_transport_error(self):
        hook = WebhookRecorder(httpx.ConnectError("refused"))
        assert await webhook_client(hook).send(build_payload(PHONE, "Dana", "s")) is False

    async def test_not_configured(self, hook):
        assert await webhook_client(hook, url="").send(build_payload(PHONE, "Dana", "s")) is False
        assert hook.requests == []


class TestSummaryScheduler:
    async def test_quiet_conversation_summarized_once(self, tracker, store, hook):
        await seed_history(store)
        await tracker.track_user_message(PHONE, "Dana", at_ms=0)
        clock = FixedClock(30 * MINUTE_MS)
        scheduler = make_scheduler(tracker, store, FakeLLM(completions=["Dana wants a call"]), hook, clock)

        assert await scheduler.tick() is True
        assert await scheduler.tick() is True

        assert [(p["phone"], p["customerName"], p["summary"]) for p in hook.payloads] == [
            (PHONE, "Dana", "Dana wants a call")
        ]
        assert (await tracker.get(PHONE)).summary_sent is True

    async def test_active_conversation_waits(self, tracker, store, hook):
        await seed_history(store)
        await tracker.track_user_message(PHONE, "Dana", at_ms=0)
        llm = FakeLLM(completions=["summary"])
        scheduler = make_scheduler(tracker, store, llm, hook, FixedClock(29 * MINUTE_MS))

        await scheduler.tick()

        assert llm.completed == []
        assert hook.requests == []

    async def test_failed_webhook_retried_next_tick(self, tracker, store):
        hook = WebhookRecorder(500, 200)
        await seed_history(store)
        await tracker.track_user_message(PHONE, "Dana", at_ms=0)
        llm = FakeLLM(completions=["first try", "second try"])
        scheduler = make_scheduler(tracker, store, llm, hook, FixedClock(31 * MINUTE_MS))

        await scheduler.tick()
        assert (await tracker.get(PHONE)).summary_sent is False

        await scheduler.tick()
        assert [p["summary"] for p in hook.payloads] == ["first try", "second try"]
        assert (await tracker.get(PHONE)).summary_sent is True

    async def test_new_message_rearms_summary(self, tracker, store, hook):
        await seed_history(store)
        await tracker.track_user_message(PHONE, "Dana", at_ms=0)
        clock = FixedClock(30 * MINUTE_MS)
        llm = FakeLLM(completions=["first", "second"])
        scheduler = make_scheduler(tracker, store, llm, hook, clock)
        await scheduler.tick()

        await tracker.track_user_message(PHONE, "Dana", at_ms=40 * MINUTE_MS)
        clock.value = 70 * MINUTE_MS
        await scheduler.tick()

        assert [p["summary"] for p in hook.payloads] == ["first", "second"]

    async def test_short_conversation_stays_pending(self, tracker, store, hook):
        await seed_history(store, user_messages=1)
        await tracker.track_user_message(PHONE, "Dana", at_ms=0)
        scheduler = make_scheduler(tracker, store, FakeLLM(), hook, FixedClock(60 * MINUTE_MS))

        await scheduler.tick()

        assert hook.requests == []
        assert (await tracker.get(PHONE)).summary_sent is False

    async def test_store_unavailable_tick_is_noop(self, store, hook):
        tracker = SummaryTracker(redis_provider=lambda: None, ttl_seconds=META_TTL)
        scheduler = make_scheduler(tracker, store, FakeLLM(), hook, FixedClock(0))
        assert await scheduler.tick() is True

    async def test_overlapping_tick_is_skipped(self, tracker, store, hook):
        await seed_history(store)
        await tracker.track_user_message(PHONE, "Dana", at_ms=0)
        scheduler = make_scheduler(tracker, store, FakeLLM(completions=["summary"]), hook, FixedClock(30 * MINUTE_MS))
        started = asyncio.Event()
        release = asyncio.Event()
        generate = scheduler.generator.generate

        async def slow_generate(phone, name):
            started.set()
            await release.wait()
            return await generate(phone, name)

        scheduler.generator.generate = slow_generate
        first = asyncio.ensure_future(scheduler.tick())
        await asyncio.wait_for(started.wait(), timeout=1)

        assert await scheduler.tick() is False
        assert scheduler.skipped_ticks == 1

        release.set()
        assert await first is True
        assert len(hook.requests) == 1

    async def test_start_requires_webhook_url(self, tracker, store, hook):
        generator = SummaryGenerator(store=store, llm=FakeLLM(), prompt="S", min_user_messages=4)
        scheduler = SummaryScheduler(
            tracker=tracker, generator=generator, webhook=webhook_client(hook, url=""), interval_seconds=60
        )

        assert scheduler.start() is False
        assert scheduler.running is False

    async def test_loop_runs_and_stops(self, tracker, store, hook):
        await seed_history(store)
        await tracker.track_user_message(PHONE, "Dana", at_ms=0)
        scheduler = make_scheduler(
            tracker, store, FakeLLM(completions=["summary"]), hook, FixedClock(30 * MINUTE_MS),
            interval_seconds=0.01,
        )

        assert scheduler.start() is True
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.running is False
        assert len(hook.requests) == 1
