"""Stall watchdog for the Ticketforge scheduler.

The scheduler sweeps for stalled picks at the top of every
``get_next_task`` call. When no consumer is polling, nothing would run that
sweep; the watchdog closes the gap by calling
:meth:`Scheduler.check_for_stalled_tasks` on a fixed interval.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from ticketforge.orchestrator.scheduler import Scheduler

logger = structlog.get_logger(__name__)


class StallWatchdog:
    """Background loop escalating stalled tasks without waiting for a consumer.

    Escalation state is owned by the scheduler, so running the watchdog
    alongside polling consumers never produces a second escalation ticket
    for the same task.
    """

    def __init__(self, scheduler: Scheduler, check_interval: float = 10) -> None:
        """Initialize stall watchdog.

        Args:
            scheduler: Scheduler whose picked tasks are checked
            check_interval: Seconds between checks (default: 10)
        """
        self.scheduler = scheduler
        self.check_interval = check_interval
        self._running = False
        self._watchdog_task: asyncio.Task[None] | None = None
        self._logger = logger.bind(component="StallWatchdog")

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background checking loop.

        If already running, logs a warning and does nothing.
        """
        if self._running:
            self._logger.warning("watchdog_already_running")
            return

        self._running = True
        self._watchdog_task = asyncio.create_task(self._monitoring_loop())
        self._logger.info(
            "watchdog_started",
            check_interval=self.check_interval,
            task_timeout_seconds=self.scheduler.task_timeout_seconds,
        )

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        if not self._running:
            self._logger.warning("watchdog_not_running")
            return

        self._running = False

        if self._watchdog_task is not None:
            self._watchdog_task.cancel()
            try:
                await self._watchdog_task
            except asyncio.CancelledError:
                pass
            self._watchdog_task = None

        self._logger.info("watchdog_stopped")

    async def check_once(self) -> int:
        """Run a single stall sweep.

        Returns:
            Number of escalation tickets created
        """
        escalated = await self.scheduler.check_for_stalled_tasks()
        if escalated:
            self._logger.info("watchdog_escalated_tasks", count=escalated)
        return escalated

    async def _monitoring_loop(self) -> None:
        self._logger.info("watchdog_loop_started")

        while self._running:
            try:
                await self.check_once()
                await asyncio.sleep(self.check_interval)
            except asyncio.CancelledError:
                self._logger.info("watchdog_loop_cancelled")
                break
            except Exception as e:
                self._logger.error(
                    "watchdog_loop_error",
                    error=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(self.check_interval)
