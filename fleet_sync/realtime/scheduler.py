"""Periodic revalidation for consumers without realtime updates."""

import asyncio
from typing import Dict, List

import structlog

from ..framework.cache import RevalidationStore


logger = structlog.get_logger()


class RevalidationScheduler:
    """Polls resource keys at a fixed interval."""

    def __init__(self, store: RevalidationStore):
        self.store = store
        self.logger = structlog.get_logger("revalidation-scheduler")
        self.scheduled_refreshes: Dict[str, asyncio.Task] = {}
        self.refresh_intervals: Dict[str, float] = {}
        self.ref_counts: Dict[str, int] = {}

    def schedule(self, key: str, interval_seconds: float) -> None:
        """Poll ``key`` every ``interval_seconds``; repeated calls are ref-counted."""
        self.ref_counts[key] = self.ref_counts.get(key, 0) + 1
        if key in self.scheduled_refreshes:
            return

        self.refresh_intervals[key] = interval_seconds

        async def run_periodic_refresh():
            while True:
                await asyncio.sleep(interval_seconds)
                try:
                    await self.store.refresh(key)
                except Exception as e:
                    self.logger.warning("Periodic refresh failed", resource_key=key, error=str(e))

        self.scheduled_refreshes[key] = asyncio.create_task(run_periodic_refresh())
        self.logger.info("Scheduled periodic refresh", resource_key=key, interval_seconds=interval_seconds)

    def cancel(self, key: str) -> None:
        """Drop one reference; the last one stops polling."""
        count = self.ref_counts.get(key, 0) - 1
        if count > 0:
            self.ref_counts[key] = count
            return

        self.ref_counts.pop(key, None)
        self.refresh_intervals.pop(key, None)
        task = self.scheduled_refreshes.pop(key, None)
        if task is not None and not task.done():
            task.cancel()
            self.logger.info("Cancelled periodic refresh", resource_key=key)

    def is_scheduled(self, key: str) -> bool:
        return key in self.scheduled_refreshes

    def get_scheduled_keys(self) -> List[str]:
        return list(self.scheduled_refreshes.keys())

    async def stop(self) -> None:
        """Cancel all periodic refreshes."""
        tasks = list(self.scheduled_refreshes.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.scheduled_refreshes.clear()
        self.refresh_intervals.clear()
        self.ref_counts.clear()
        self.logger.info("Revalidation scheduler stopped")
