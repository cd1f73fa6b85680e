"""
Centralized dependency management for the application.

Holds the service graph built once at startup and shared across requests,
so the buffer, dedup cache and scheduler keep their state between calls.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..calendar.scheduler import ReminderScheduler
from ..calendar.storage import MeetingStore
from ..summary import SummaryGenerator, SummaryScheduler, SummaryTracker, SummaryWebhookClient
from .buffer import MessageBuffer
from .cache_manager import RedisProvider, get_redis
from .config import FALLBACK_SUMMARY_PROMPT, Settings, load_system_prompt, settings
from .conversation import ConversationService, InboundProcessor, MediaResolver
from .dedup import DedupCache
from .delivery import WhatsAppSender
from .history import ConversationStore
from .llm import OpenAIClient
from .optout import AIOptOutClassifier, OptOutDetector, OptOutManager, OptOutStateMachine
from .prompt import PromptBuilder

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the API routes and lifespan need"""
    config: Settings
    sender: WhatsAppSender
    llm: OpenAIClient
    store: ConversationStore
    opt_out_manager: OptOutManager
    opt_out: OptOutStateMachine
    dedup: DedupCache
    buffer: MessageBuffer
    conversation: ConversationService
    inbound: InboundProcessor
    meetings: MeetingStore
    scheduler: ReminderScheduler
    summary_tracker: SummaryTracker
    summary: SummaryScheduler


def build_services(
    config: Settings = settings,
    redis_provider: RedisProvider = get_redis,
    llm: Optional[OpenAIClient] = None,
    sender: Optional[WhatsAppSender] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    media_resolver: Optional[MediaResolver] = None,
) -> Services:
    sender = sender or WhatsAppSender(
        base_url=config.WA_SENDER_BASE_URL,
        api_key=config.WA_SENDER_API_KEY,
        min_delay_ms=config.MIN_RESPONSE_DELAY_MS,
        max_delay_ms=config.MAX_RESPONSE_DELAY_MS,
        max_retries=config.SEND_MAX_RETRIES,
        retry_delay_ms=config.SEND_RETRY_DELAY_MS,
        timeout_seconds=config.SEND_TIMEOUT_SECONDS,
        transport=transport,
    )
    llm = llm or OpenAIClient(
        api_key=config.OPENAI_API_KEY,
        model=config.OPENAI_MODEL,
        max_tokens=config.OPENAI_MAX_TOKENS,
        temperature=config.OPENAI_TEMPERATURE,
        timeout_s=config.OPENAI_TIMEOUT_SECONDS,
    )

    store = ConversationStore(
        redis_provider=redis_provider,
        max_messages=config.MAX_HISTORY_MESSAGES,
        ttl_seconds=config.chat_ttl_seconds,
        customer_ttl_seconds=config.customer_ttl_seconds,
    )
    opt_out_manager = OptOutManager(redis_provider=redis_provider, ttl_seconds=config.chat_ttl_seconds)
    opt_out = OptOutStateMachine(
        manager=opt_out_manager,
        detector=OptOutDetector(classifier=AIOptOutClassifier(llm)),
        send_text=sender.send_text,
    )

    prompt_builder = PromptBuilder(
        system_prompt=load_system_prompt(config.SYSTEM_PROMPT_PATH),
        llm=llm,
        store=store,
        timezone=config.TIMEZONE,
    )
    conversation = ConversationService(store=store, prompt_builder=prompt_builder, llm=llm, sender=sender)
    buffer = MessageBuffer(conversation.flush, window_seconds=config.BATCH_WINDOW_MS / 1000)
    summary_tracker = SummaryTracker(redis_provider=redis_provider, ttl_seconds=config.summary_meta_ttl_seconds)
    inbound = InboundProcessor(
        opt_out=opt_out,
        buffer=buffer,
        sender=sender,
        media_resolver=media_resolver,
        summary_tracker=summary_tracker if config.SUMMARY_ENABLED else None,
    )

    meetings = MeetingStore(redis_provider=redis_provider, ttl_seconds=config.meeting_ttl_seconds)
    scheduler = ReminderScheduler(
        store=meetings,
        opt_out=opt_out_manager,
        sender=sender,
        day_of_meeting_time=config.REMINDER_DAY_OF_MEETING_TIME,
        minutes_before=config.REMINDER_MINUTES_BEFORE,
        window_minutes=config.REMINDER_WINDOW_MINUTES,
        interval_seconds=config.REMINDER_CHECK_INTERVAL_SECONDS,
        timezone=config.TIMEZONE,
        country_code=config.DEFAULT_COUNTRY_CODE,
    )
    summary = SummaryScheduler(
        tracker=summary_tracker,
        generator=SummaryGenerator(
            store=store,
            llm=llm,
            prompt=load_system_prompt(config.SUMMARY_PROMPT_PATH, fallback=FALLBACK_SUMMARY_PROMPT),
            min_user_messages=config.SUMMARY_MIN_MESSAGES,
        ),
        webhook=SummaryWebhookClient(
            url=config.SUMMARY_WEBHOOK_URL,
            timeout_seconds=config.SUMMARY_WEBHOOK_TIMEOUT_SECONDS,
            transport=transport,
        ),
        delay_minutes=config.SUMMARY_DELAY_MINUTES,
        interval_seconds=config.SUMMARY_CHECK_INTERVAL_SECONDS,
    )

    return Services(
        config=config,
        sender=sender,
        llm=llm,
        store=store,
        opt_out_manager=opt_out_manager,
        opt_out=opt_out,
        dedup=DedupCache(
            ttl_seconds=config.DEDUP_TTL_SECONDS,
            max_entries=config.DEDUP_MAX_ENTRIES,
            clear_interval=config.DEDUP_CLEAR_INTERVAL_SECONDS,
        ),
        buffer=buffer,
        conversation=conversation,
        inbound=inbound,
        meetings=meetings,
        scheduler=scheduler,
        summary_tracker=summary_tracker,
        summary=summary,
    )


# Global instance, initialized on startup in main.py
services: Optional[Services] = None


def init_services(**kwargs) -> Services:
    global services
    services = build_services(**kwargs)
    logger.info("DEPS|services_ready")
    return services


def get_services() -> Services:
    """FastAPI dependency; builds the graph lazily when startup did not."""
    if services is None:
        return init_services()
    return services
