"""
FastAPI application for the WhatsApp concierge.
Webhook intake, meeting intake, the reminder scheduler and conversation summaries.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from wa_concierge.api.calendar import router as calendar_router
from wa_concierge.api.health import router as health_router
from wa_concierge.api.webhook import router as webhook_router
from wa_concierge.core import dependencies
from wa_concierge.core.cache_manager import redis_cache
from wa_concierge.core.config import settings
from wa_concierge.core.logger import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    missing = settings.missing_credentials()
    if missing:
        logger.warning("STARTUP|missing_credentials|keys=%s", ",".join(missing))

    redis_client = await redis_cache.connect()
    services = dependencies.init_services()

    if redis_client is not None and settings.REMINDERS_ENABLED:
        services.scheduler.start()
    else:
        logger.info(
            "STARTUP|reminders_disabled|redis=%s|enabled=%s",
            redis_client is not None, settings.REMINDERS_ENABLED,
        )

    if redis_client is not None and settings.SUMMARY_ENABLED:
        services.summary.start()
    else:
        logger.info(
            "STARTUP|summaries_disabled|redis=%s|enabled=%s",
            redis_client is not None, settings.SUMMARY_ENABLED,
        )

    logger.info("STARTUP|ready|port=%d", settings.PORT)
    try:
        yield
    finally:
        await services.scheduler.stop()
        await services.summary.stop()
        await services.buffer.drain()
        await redis_cache.close()
        logger.info("SHUTDOWN|complete")


app = FastAPI(
    title="WhatsApp Concierge",
    description="Batched WhatsApp replies, consent handling and meeting reminders",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(webhook_router, prefix="/webhook")
app.include_router(calendar_router, prefix="/calendar")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
