"""
Delay Scheduler Service
Resumes conversations parked at delay nodes once their timer fires
"""
import logging
import asyncio
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from ..core.config import settings

if TYPE_CHECKING:
    from ..flow.engine import FlowEngine
    from .store import FlowStore

logger = logging.getLogger(__name__)


class DelaySchedulerService:
    """
    Background task polling the store for due delayed states.

    Each due conversation is handed to `FlowEngine.resume`, which takes the
    contact lock, so a resume never overlaps an inbound message.
    """

    def __init__(self, store: "FlowStore", engine: "FlowEngine", check_interval: Optional[int] = None):
        """
        Initialize the delay scheduler.

        Args:
            store: Store holding the execution states
            engine: Engine that continues the conversations
            check_interval: Seconds between checks for due states
        """
        self.store = store
        self.engine = engine
        self.check_interval = check_interval or settings.DELAY_CHECK_INTERVAL_SECONDS
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def process_due_states(self, now: Optional[datetime] = None) -> int:
        """
        Resume every conversation whose delay has elapsed.

        Returns:
            Number of conversations resumed
        """
        due = await self.store.list_due_states(now or datetime.now())
        resumed = 0

        for state in due:
            try:
                result = await self.engine.resume(state.tenant_id, state.contact_id)
                logger.info(f"[{state.contact_id}] delay resume: {result}")
                resumed += 1
            except Exception as e:
                logger.exception(f"[{state.contact_id}] error resuming delayed flow {state.active_flow_id}: {e}")

        return resumed

    async def start_scheduler(self) -> None:
        """Start the background scheduler"""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._scheduler_loop())
        logger.info("Delay scheduler started")

    async def stop_scheduler(self) -> None:
        """Stop the background scheduler"""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Delay scheduler stopped")

    async def _scheduler_loop(self) -> None:
        """Background loop that resumes due conversations"""
        while self._running:
            try:
                processed = await self.process_due_states()
                if processed > 0:
                    logger.debug(f"Resumed {processed} delayed conversation(s)")
            except Exception as e:
                logger.exception(f"Error in delay scheduler loop: {e}")

            await asyncio.sleep(self.check_interval)
