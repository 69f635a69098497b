from fastapi import Request, Response
import redis.asyncio as redis
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter
from core.config import settings

import logging

logger = logging.getLogger(__name__)

async def init_redis():
    try:
        redis_conn = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        # Ping to check connection
        await redis_conn.ping()
        await FastAPILimiter.init(redis_conn, identifier=get_real_ip)
        logger.info("✅ Redis Limiter initialized")
        return redis_conn
    except Exception as e:
        logger.warning(f"⚠️ Redis not available at {settings.REDIS_URL}: {e}. Rate limiting will be disabled.")
        return None

async def get_real_ip(request: Request):
    """Extract real IP even behind a proxy/nginx"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() + ":" + request.scope["path"]
    host = request.client.host if request.client else "unknown"
    return host + ":" + request.scope["path"]

def rate_limit(times: int, seconds: int):
    """RateLimiter dependency that becomes a no-op while Redis is unavailable."""
    limiter = RateLimiter(times=times, seconds=seconds)

    async def dependency(request: Request, response: Response):
        if FastAPILimiter.redis is None:
            return
        await limiter(request, response)

    return dependency
