"""
Background sweeper for abandoned checkouts.

Runs inside the API process (started from the FastAPI lifespan). Each pass
cancels pending orders past their deadline and releases their holds through
checkout_service.expire_stale_orders, the same path a lazy sweep uses. The
conditional status flips there make it safe to run several API processes,
each with its own sweeper.
"""

import asyncio
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import expiry_sweep_failures, expiry_sweep_running
from boxoffice.services import cache_service, checkout_service

logger = get_logger(__name__)


async def sweep_once(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as db:
        expired = await checkout_service.expire_stale_orders(db)
    if expired:
        await cache_service.invalidate_catalog()
    return expired


class ExpiryWorker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self._interval = interval_seconds or get_settings().EXPIRY_SWEEP_INTERVAL_SECONDS
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="expiry-sweeper")
        expiry_sweep_running.set(1)
        logger.info("expiry_sweeper_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        expiry_sweep_running.set(0)
        logger.info("expiry_sweeper_stopped")

    async def _run(self) -> None:
        while True:
            try:
                await sweep_once(self._session_factory)
            except Exception:
                # Retried next interval; CancelledError is not an Exception
                expiry_sweep_failures.inc()
                logger.exception("expiry_sweep_failed")
            await asyncio.sleep(self._interval)
