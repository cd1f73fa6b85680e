"""
Health endpoints
"""
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..core.cache_manager import redis_cache
from ..core.config import settings

router = APIRouter()


async def redis_status() -> str:
    if not settings.REDIS_ENABLED:
        return "disabled"
    return "connected" if await redis_cache.is_connected() else "error"


@router.get("/")
async def root():
    return {"status": "ok", "service": "wa-concierge"}


@router.get("/health")
async def health():
    redis = await redis_status()
    body = {"status": "healthy" if redis != "error" else "degraded", "redis": redis}
    if redis == "error":
        return JSONResponse(status_code=503, content=body)
    return body
