"""Task-queue orchestration for Ticketforge.

Exports the queue model, the scheduler with its process-wide helpers, and
the stall watchdog.
"""

from ticketforge.orchestrator.queue import QueuedTask, TaskQueue
from ticketforge.orchestrator.scheduler import (
    QueueDetails,
    QueueStatus,
    Scheduler,
    SchedulerNotInitializedError,
    TaskUpdateResult,
    get_orchestrator,
    initialize_orchestrator,
    is_p1_blocked,
    reset_orchestrator_for_tests,
    shutdown_orchestrator,
)
from ticketforge.orchestrator.watchdog import StallWatchdog

__all__ = [
    "QueueDetails",
    "QueueStatus",
    "QueuedTask",
    "Scheduler",
    "SchedulerNotInitializedError",
    "StallWatchdog",
    "TaskQueue",
    "TaskUpdateResult",
    "get_orchestrator",
    "initialize_orchestrator",
    "is_p1_blocked",
    "reset_orchestrator_for_tests",
    "shutdown_orchestrator",
]
