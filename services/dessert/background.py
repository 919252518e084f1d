# services/dessert/background.py
import asyncio
import logging
from typing import Awaitable, Callable

from services.dessert.cache_service import CacheService
from services.dessert.config import (
    CACHE_CLEANUP_INTERVAL_SECONDS,
    RENEWAL_INTERVAL_SECONDS,
    USAGE_LOG_RETENTION_DAYS,
)
from services.dessert.credit_service import CreditLedger
from services.dessert.usage_log import UsageLogStore

logger = logging.getLogger(__name__)

ERROR_RETRY_SECONDS = 60

# Global task references
_background_tasks: set[asyncio.Task] = set()
_shutdown_event = asyncio.Event()


async def _sleep_or_shutdown(seconds: float) -> bool:
    """Sleep for seconds. True when shutdown was requested meanwhile."""
    try:
        await asyncio.wait_for(_shutdown_event.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False


async def run_periodically(name: str, job: Callable[[], Awaitable], interval_seconds: float):
    """Run job every interval_seconds until shutdown; errors are logged and retried sooner"""
    while not _shutdown_event.is_set():
        try:
            result = await job()
            logger.info(f"⏰ BACKGROUND: {name} finished: {result}")
            delay = interval_seconds
        except Exception as e:
            logger.error(f"❌ BACKGROUND: {name} failed: {e}", exc_info=True)
            delay = min(interval_seconds, ERROR_RETRY_SECONDS)

        if await _sleep_or_shutdown(delay):
            break


async def start_background_tasks(
    cache: CacheService, ledger: CreditLedger, usage_log: UsageLogStore
):
    """Start the cache sweep, premium renewal and log retention loops"""
    global _background_tasks

    tasks = [
        asyncio.create_task(
            run_periodically("cache cleanup", cache.cleanup, CACHE_CLEANUP_INTERVAL_SECONDS)
        ),
        asyncio.create_task(
            run_periodically("premium renewal", ledger.renew_all_eligible, RENEWAL_INTERVAL_SECONDS)
        ),
        asyncio.create_task(
            run_periodically(
                "usage log retention",
                lambda: usage_log.clean_old_logs(USAGE_LOG_RETENTION_DAYS),
                RENEWAL_INTERVAL_SECONDS,
            )
        ),
    ]

    _background_tasks = set(tasks)

    for task in tasks:
        task.add_done_callback(_background_tasks.discard)


async def stop_background_tasks():
    """Stop all background tasks gracefully"""
    global _background_tasks

    _shutdown_event.set()

    if _background_tasks:
        await asyncio.gather(*_background_tasks, return_exceptions=True)

    _background_tasks.clear()
    _shutdown_event.clear()
