# app/tasks/cleanup.py
"""
Idle-session reaper.

Runs inside the API process because the default session store is process-local;
a separate worker would see an empty store.
"""
import asyncio
from typing import Optional

from app.domains.collaboration.service import SessionLifecycleManager
from app.shared.utils.logger import get_logger

logger = get_logger(__name__)


class SessionReaper:
    def __init__(self, manager: SessionLifecycleManager, interval: float = 3600):
        self.manager = manager
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="session-reaper")
        logger.info(f"Session reaper started (every {self.interval}s)")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Session reaper stopped")

    async def run_once(self) -> list[str]:
        removed = await self.manager.reap_idle_sessions()
        if removed:
            logger.info(f"Reaped {len(removed)} idle session(s)")
        return removed

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Session reaping failed: {e}")
