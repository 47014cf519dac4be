"""Cron driven polling of every device session."""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Sequence

from croniter import croniter

from .models import DeviceState
from .session import DeviceSession

logger = logging.getLogger(__name__)


class PollScheduler:
    """
    One timer task per device, firing on a cron expression.

    Ticks of the same device never overlap because each device has a single
    task that awaits its poll before computing the next fire time. Concurrent
    ticks of different devices are serialized by the shared M-Bus master.
    """

    def __init__(
        self,
        sessions: Sequence[DeviceSession],
        schedule: str,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.sessions = list(sessions)
        self.schedule = schedule
        self.clock = clock
        self.tasks: List[asyncio.Task] = []
        self._stop = asyncio.Event()

    @property
    def running(self) -> bool:
        return bool(self.tasks) and not self._stop.is_set()

    def next_delay(self) -> float:
        """Seconds until the next fire time of the schedule."""
        now = self.clock()
        next_fire = croniter(self.schedule, now).get_next(datetime)
        return max(0.0, (next_fire - now).total_seconds())

    def start(self) -> None:
        if self.tasks:
            logger.warning("Scheduler already running")
            return
        self._stop.clear()
        for session in self.sessions:
            self.tasks.append(
                asyncio.create_task(self._run_device(session), name=f"poll-{session.address}")
            )
        logger.info(f"Scheduled {len(self.tasks)} device(s) with '{self.schedule}'")

    async def _run_device(self, session: DeviceSession) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.next_delay())
            except asyncio.TimeoutError:
                pass
            if self._stop.is_set():
                break

            try:
                await session.poll()
            except Exception as e:
                # keep the timer alive, the next tick may succeed
                session.logger.exception(f"Unexpected error while polling: {e}")

    async def stop(self) -> None:
        """Stop scheduling new ticks and wait for in-flight polls to finish."""
        for session in self.sessions:
            session.state = DeviceState.SHUTTING_DOWN
        self._stop.set()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        for session in self.sessions:
            session.state = DeviceState.CLOSED
        logger.info("Scheduler stopped")
