"""
Background auto-sync.

Runs smart sync every ``sync_interval`` minutes while auto-sync is enabled
and both the token and the Gist id are set. At most one timer task exists
per scheduler: start() always stops the previous one first.
"""

import asyncio
import logging
from typing import Iterable, Optional

from .file_store import SyncConfigStore
from .sync import SyncReconciler

logger = logging.getLogger(__name__)

# Settings whose change requires a restart
RESTART_KEYS = frozenset({"auto_sync", "sync_interval", "token", "gist_id"})


class AutoSyncScheduler:
    """Two states: stopped (no task) and running (one task)."""

    def __init__(
        self,
        reconciler: SyncReconciler,
        config: SyncConfigStore,
        *,
        unit_seconds: float = 60.0,
    ):
        """
        Args:
            reconciler: Performs each smart sync
            config: Source of auto_sync, sync_interval and credentials
            unit_seconds: Length of one interval unit (a minute, shortened in tests)
        """
        self._reconciler = reconciler
        self._config = config
        self._unit_seconds = unit_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Start the timer if auto-sync is enabled and configured.

        Returns:
            True if a timer is now running
        """
        self.stop()
        config = self._config.config
        if not (config.auto_sync and config.token and config.gist_id):
            logger.info("Auto-sync not enabled or not configured")
            return False

        interval = config.sync_interval * self._unit_seconds
        self._task = asyncio.get_running_loop().create_task(
            self._run(interval), name="bytepad-auto-sync",
        )
        logger.info("Auto-sync started: every %d minutes", config.sync_interval)
        return True

    def stop(self) -> None:
        """Cancel the timer. Safe to call when already stopped."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.info("Auto-sync stopped")

    def reconfigure(self, changed: Iterable[str]) -> bool:
        """Restart if any of the changed settings affects the timer."""
        if RESTART_KEYS.isdisjoint(changed):
            return self.running
        self.stop()
        return self.start()

    async def initialize(self) -> bool:
        """Run one smart sync now, then start the timer."""
        config = self._config.config
        if not (config.auto_sync and config.token and config.gist_id):
            return False
        logger.info("Performing initial sync...")
        await self._tick()
        return self.start()

    async def aclose(self) -> None:
        """Stop and wait for the timer task to finish."""
        task = self._task
        self.stop()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            logger.debug("Running scheduled sync...")
            await self._tick()

    async def _tick(self) -> None:
        try:
            outcome = await self._reconciler.smart_sync()
        except Exception as e:
            # Scheduled failures must not stop the timer
            logger.warning("Auto-sync failed: %s", e)
            return
        logger.info("Auto-sync completed: %s", outcome.action)
