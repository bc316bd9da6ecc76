"""
Rate Limit Housekeeping
=======================
Background task that purges expired rate-limit windows so the in-process
store stays bounded. Started from the app lifespan and cancelled on shutdown.
"""

import asyncio
from typing import Optional

import structlog

from config import settings
from services.rate_limiter import RateLimiter

logger = structlog.get_logger(component="rate_limit_cleanup")


async def rate_limit_cleanup_loop(limiter: RateLimiter, interval: Optional[float] = None):
    """Run RateLimiter.cleanup() every `interval` seconds until cancelled."""
    interval = interval or settings.RATE_LIMIT_CLEANUP_INTERVAL
    logger.info("cleanup_loop_started", interval=interval)

    try:
        while True:
            await asyncio.sleep(interval)
            try:
                removed = limiter.cleanup()
            except Exception as e:
                # One bad cycle must not kill the loop
                logger.error("cleanup_cycle_failed", error=str(e), exc_info=True)
                continue
            if removed:
                logger.info("cleanup_cycle_complete", removed=removed, tracked=len(limiter))
    except asyncio.CancelledError:
        logger.info("cleanup_loop_stopped")
        raise
