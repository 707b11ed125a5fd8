"""Ticket task-queue scheduler for Ticketforge.

The scheduler keeps an in-memory FIFO of workable tickets rebuilt from the
ticket store, hands out one task per :meth:`Scheduler.get_next_task` call,
and escalates picked tasks that sit idle past the configured timeout into
new ``P1 BLOCKED`` tickets.

Key points:

- **Refresh**: every store change notification triggers a full re-list.
  New ``open``/``in-progress`` tickets are appended; tasks whose ticket has
  left those states are evicted. A failed listing leaves state untouched.
- **Atomic pick**: the head task is claimed with a version-checked
  ``compare_and_swap`` on the store. Only a successful swap moves the task
  into the picked set; any failure puts it back at the head.
- **Timeout sweep**: runs before every pick (and from the optional
  :class:`~ticketforge.orchestrator.watchdog.StallWatchdog`). Each stalled
  task is escalated exactly once.
- **Manual gating**: with auto-processing disabled, newly observed ``open``
  tickets of type ``ai_to_human`` are parked in ``pending`` until a human
  promotes them. One that could not be parked is kept out of the queue
  and retried on the next refresh.
- **Store errors** never escape: reads fall back to safe defaults and
  writes on behalf of a consumer return a :class:`TaskUpdateResult`.

All state lives in a single event loop; store calls are the only
suspension points, and in-memory state is changed only after the store
call it depends on has resolved.
"""

from __future__ import annotations

import asyncio
import contextvars
import re
from datetime import datetime, timezone
from typing import Callable, Literal

import structlog
from pydantic import BaseModel, Field

from ticketforge.config import DEFAULT_TASK_TIMEOUT_SECONDS, OrchestratorConfig
from ticketforge.events import ChangeNotifier, Disposable, Listener
from ticketforge.logging import ticket_context
from ticketforge.orchestrator.queue import QueuedTask, TaskQueue
from ticketforge.store.base import (
    ConcurrencyConflictError,
    Ticket,
    TicketCreate,
    TicketStatus,
    TicketStore,
    TicketStoreError,
    TicketType,
)

logger = structlog.get_logger(__name__)

ReportStatus = Literal["done", "failed", "blocked", "partial"]

# Ticket status written for each completion report
REPORT_STATUS_MAP: dict[str, TicketStatus] = {
    "done": TicketStatus.done,
    "failed": TicketStatus.blocked,
    "blocked": TicketStatus.blocked,
    "partial": TicketStatus.in_progress,
}

ESCALATION_TITLE_PREFIX = "P1 BLOCKED: "

_P1_TITLE = re.compile(r"^(p1 blocked|p1:|\[p1\])", re.IGNORECASE)


def is_p1_blocked(ticket: Ticket) -> bool:
    """Return True for blocked tickets whose title starts with a P1 marker."""
    return ticket.status == TicketStatus.blocked and bool(_P1_TITLE.match(ticket.title))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SchedulerNotInitializedError(RuntimeError):
    """Raised when a consumer operation runs before :meth:`Scheduler.initialize`."""

    def __init__(self) -> None:
        super().__init__("Scheduler is not initialized; call initialize() first")


class QueueStatus(BaseModel):
    """Counts describing the current queue.

    Attributes:
        queue_count: Tasks waiting in the pending queue.
        picked_count: Tasks handed out and not yet completed.
        blocked_p1_count: Blocked tickets carrying a P1 title marker.
        last_picked_title: Title of the most recently picked task.
    """

    queue_count: int = Field(default=0, description="Pending tasks")
    picked_count: int = Field(default=0, description="Picked tasks")
    blocked_p1_count: int = Field(default=0, description="Blocked P1 tickets")
    last_picked_title: str | None = Field(default=None, description="Last picked title")


class QueueDetails(BaseModel):
    """Titles behind the counts in :class:`QueueStatus`.

    Attributes:
        queue_titles: Pending task titles in queue order.
        picked_titles: Picked task titles.
        blocked_p1_titles: Titles of blocked P1 tickets.
        last_picked_title: Title of the most recently picked task.
        last_picked_at: When that task was picked.
    """

    queue_titles: list[str] = Field(default_factory=list)
    picked_titles: list[str] = Field(default_factory=list)
    blocked_p1_titles: list[str] = Field(default_factory=list)
    last_picked_title: str | None = None
    last_picked_at: datetime | None = None


class TaskUpdateResult(BaseModel):
    """Outcome of a scheduler write onto a task's ticket.

    Exactly one of three cases holds: ``ticket`` is set (written),
    ``error`` is set (the store failed), or neither is (no such ticket).

    Attributes:
        ticket: The ticket as stored after the write.
        error: Store error message when the write could not be made.
    """

    ticket: Ticket | None = None
    error: str | None = None

    @property
    def found(self) -> bool:
        return self.ticket is not None

    @property
    def failed(self) -> bool:
        return self.error is not None


class Scheduler:
    """Single-consumer task scheduler over a :class:`TicketStore`.

    Construct one per process and pass it to the agent routers. Tests build
    isolated instances with an in-memory store and an injected clock.

    Args:
        store: Ticket store holding the source of truth.
        clock: Callable returning the current aware datetime. Defaults to
            UTC wall-clock time.
    """

    def __init__(
        self,
        store: TicketStore,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or _utcnow
        self._queue = TaskQueue()
        self._inflight: dict[str, QueuedTask] = {}
        self._changes = ChangeNotifier("queue")
        self._refresh_lock = asyncio.Lock()
        self._background: set[asyncio.Task[None]] = set()
        self._store_subscription: Disposable | None = None

        self._initialized = False
        self._task_timeout_seconds = DEFAULT_TASK_TIMEOUT_SECONDS
        self._auto_process_tickets = False
        self._seen_ticket_ids: set[str] = set()
        self._blocked_escalations: set[str] = set()
        self._last_picked_title: str | None = None
        self._last_picked_at: datetime | None = None

        self._logger = logger.bind(component="Scheduler")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def store(self) -> TicketStore:
        return self._store

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def task_timeout_seconds(self) -> float:
        return self._task_timeout_seconds

    @property
    def auto_process_tickets(self) -> bool:
        return self._auto_process_tickets

    @property
    def blocked_escalations(self) -> frozenset[str]:
        return frozenset(self._blocked_escalations)

    async def initialize(self, config: OrchestratorConfig | None = None) -> None:
        """Load the queue from the store and start listening for changes.

        Calling this a second time logs a warning and does nothing. The idle
        timeout is read here once; a non-positive value is replaced by the
        default.

        Args:
            config: Orchestrator settings. Defaults to ``OrchestratorConfig()``.
        """
        if self._initialized:
            self._logger.warning("scheduler_already_initialized")
            return
        self._initialized = True

        config = config or OrchestratorConfig()
        timeout = config.task_timeout_seconds
        if timeout <= 0:
            self._logger.warning(
                "invalid_task_timeout",
                configured=timeout,
                using=DEFAULT_TASK_TIMEOUT_SECONDS,
            )
            timeout = DEFAULT_TASK_TIMEOUT_SECONDS
        self._task_timeout_seconds = timeout
        self._auto_process_tickets = config.auto_process_tickets

        try:
            tickets = await self._store.list_tickets()
        except TicketStoreError as e:
            self._logger.error("initial_ticket_load_failed", error=str(e))
            tickets = []

        self._seen_ticket_ids = {ticket.id for ticket in tickets}
        async with self._refresh_lock:
            self._queue.load(tickets)

        self._store_subscription = self._store.on_change(self._on_store_change)

        self._logger.info(
            "scheduler_initialized",
            queue_count=len(self._queue),
            task_timeout_seconds=self._task_timeout_seconds,
            auto_process_tickets=self._auto_process_tickets,
        )
        if len(self._queue):
            self._changes.notify()

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise SchedulerNotInitializedError()

    async def wait_for_pending_refreshes(self) -> None:
        """Wait until every change-triggered refresh has finished.

        Refreshes may schedule further refreshes (gating updates the store),
        so this loops until no background work remains.
        """
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """Stop listening to the store and cancel in-flight refreshes."""
        if self._store_subscription is not None:
            self._store_subscription.dispose()
            self._store_subscription = None

        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)
        self._background.clear()

    async def reset_for_tests(self) -> None:
        """Drop all in-memory state and detach from the store."""
        await self.close()

        self._queue.clear()
        self._inflight.clear()
        self._changes.clear()
        self._seen_ticket_ids.clear()
        self._blocked_escalations.clear()
        self._last_picked_title = None
        self._last_picked_at = None
        self._task_timeout_seconds = DEFAULT_TASK_TIMEOUT_SECONDS
        self._auto_process_tickets = False
        self._initialized = False

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def on_queue_change(self, listener: Listener) -> Disposable:
        """Subscribe to queue composition changes."""
        return self._changes.subscribe(listener)

    def _on_store_change(self) -> None:
        # Fresh context so refresh logs do not inherit the writer's ticket_id
        task = asyncio.get_running_loop().create_task(
            self._handle_store_change(), context=contextvars.Context()
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _handle_store_change(self) -> None:
        async with self._refresh_lock:
            await self._gate_and_refresh_locked()

    async def _gate_and_refresh_locked(self) -> bool:
        if not self._auto_process_tickets:
            await self._gate_new_tickets()
        return await self._refresh_locked()

    def _awaiting_gate(self, ticket: Ticket) -> bool:
        # A gating write that failed leaves the ticket unseen; it must not
        # be queued before a later pass parks it.
        return (
            not self._auto_process_tickets
            and ticket.id not in self._seen_ticket_ids
            and ticket.status == TicketStatus.open
            and ticket.type == TicketType.ai_to_human
        )

    async def _gate_new_tickets(self) -> None:
        """Park newly observed ``ai_to_human`` tickets in ``pending``."""
        try:
            tickets = await self._store.list_tickets()
        except TicketStoreError as e:
            self._logger.error("manual_gating_list_failed", error=str(e))
            return

        for ticket in tickets:
            if ticket.id in self._seen_ticket_ids:
                continue
            if ticket.status != TicketStatus.open or ticket.type != TicketType.ai_to_human:
                self._seen_ticket_ids.add(ticket.id)
                continue

            try:
                await self._store.update_ticket(ticket.id, status=TicketStatus.pending)
            except TicketStoreError as e:
                self._logger.error(
                    "manual_gating_update_failed",
                    ticket_id=ticket.id,
                    error=str(e),
                )
                continue

            self._seen_ticket_ids.add(ticket.id)
            self._logger.info("ticket_held_for_approval", ticket_id=ticket.id, title=ticket.title)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_queue(self) -> bool:
        """Reconcile the queue with the store's current listing.

        In manual mode new ``ai_to_human`` tickets are gated first, exactly
        as on a store change notification.

        Returns:
            True if any task was added or evicted.
        """
        async with self._refresh_lock:
            return await self._gate_and_refresh_locked()

    async def _refresh_locked(self) -> bool:
        try:
            tickets = await self._store.list_tickets()
        except TicketStoreError as e:
            self._logger.error("queue_refresh_failed", error=str(e))
            return False

        by_id = {ticket.id: ticket for ticket in tickets}

        removed: list[str] = []
        for task in self._queue.pending + self._queue.picked:
            ticket = by_id.get(task.id)
            if ticket is None or not ticket.is_workable:
                self._queue.remove_if_present(task.id)
                self._blocked_escalations.discard(task.id)
                removed.append(task.id)
                continue
            task.title = ticket.title
            if not self._queue.is_picked(task.id):
                task.version = ticket.version

        added: list[str] = []
        for ticket in tickets:
            if not ticket.is_workable:
                continue
            if self._queue.contains(ticket.id) or ticket.id in self._inflight:
                continue
            if self._awaiting_gate(ticket):
                continue
            self._queue.append(QueuedTask.from_ticket(ticket))
            added.append(ticket.id)

        if not added and not removed:
            return False

        self._logger.info(
            "queue_refreshed",
            added=added,
            removed=removed,
            queue_count=len(self._queue),
            picked_count=len(self._queue.picked_ids),
        )
        self._changes.notify()
        return True

    # ------------------------------------------------------------------
    # Pick
    # ------------------------------------------------------------------

    async def get_next_task(self) -> QueuedTask | None:
        """Claim the task at the head of the queue.

        Stalled picks are escalated first. The head task is then swapped to
        ``in-progress`` in the store; if the store rejects the swap the task
        goes back to the head and None is returned so the caller can retry.

        Returns:
            A copy of the picked task, or None if nothing could be picked.

        Raises:
            SchedulerNotInitializedError: If called before initialize().
        """
        self._require_initialized()
        await self.check_for_stalled_tasks()

        task = self._queue.dequeue_front()
        if task is None:
            return None

        with ticket_context(task.id, agent="orchestrator"):
            return await self._claim(task)

    async def _claim(self, task: QueuedTask) -> QueuedTask | None:
        self._inflight[task.id] = task
        try:
            ticket = await self._store.compare_and_swap(
                task.id, task.version, status=TicketStatus.in_progress
            )
        except ConcurrencyConflictError as e:
            self._logger.warning(
                "task_pick_conflict",
                task_id=task.id,
                expected_version=e.expected_version,
                actual_version=e.actual_version,
            )
            await self._resync_after_conflict(task)
            return None
        except TicketStoreError as e:
            self._logger.warning("task_pick_failed", task_id=task.id, error=str(e))
            self._queue.requeue_front(task)
            return None
        finally:
            self._inflight.pop(task.id, None)

        if ticket is None:
            self._logger.warning("task_dropped_ticket_missing", task_id=task.id)
            self._changes.notify()
            return None

        now = self._clock()
        task.title = ticket.title
        task.version = ticket.version
        self._queue.mark_picked(task, now)
        self._last_picked_title = task.title
        self._last_picked_at = now

        self._logger.info(
            "task_picked",
            task_id=task.id,
            title=task.title,
            queue_count=len(self._queue),
        )
        self._changes.notify()
        return task.model_copy()

    async def _resync_after_conflict(self, task: QueuedTask) -> None:
        # The refresh triggered by the conflicting write skipped this task
        # while it was in flight, so re-read it before putting it back.
        try:
            current = await self._store.get_ticket(task.id)
        except TicketStoreError as e:
            self._logger.warning("task_resync_failed", task_id=task.id, error=str(e))
            self._queue.requeue_front(task)
            return

        if current is None or not current.is_workable:
            self._logger.info("task_dropped_after_conflict", task_id=task.id)
            self._changes.notify()
            return

        task.title = current.title
        task.version = current.version
        self._queue.requeue_front(task)

    # ------------------------------------------------------------------
    # Timeout sweep and escalation
    # ------------------------------------------------------------------

    async def check_for_stalled_tasks(self) -> int:
        """Escalate picked tasks idle longer than the timeout.

        Each task is escalated at most once. If creating the escalation
        ticket fails, the task stays eligible for the next sweep.

        Returns:
            Number of escalation tickets created.
        """
        now = self._clock()
        escalated = 0

        for task in self._queue.picked:
            if task.last_picked_at is None or task.id in self._blocked_escalations:
                continue

            idle_seconds = (now - task.last_picked_at).total_seconds()
            if idle_seconds <= self._task_timeout_seconds:
                continue

            # Claim before awaiting so a concurrent sweep skips this task
            self._blocked_escalations.add(task.id)
            ticket = await self.create_blocked_ticket(
                title=f"{ESCALATION_TITLE_PREFIX}{task.title}",
                description=(
                    f"Task idle for {round(idle_seconds)}s "
                    f"(timeout: {self._task_timeout_seconds:g}s)"
                ),
                priority=1,
            )
            if ticket is None:
                self._blocked_escalations.discard(task.id)
                continue

            escalated += 1
            self._logger.warning(
                "stalled_task_escalated",
                task_id=task.id,
                escalation_ticket_id=ticket.id,
                idle_seconds=round(idle_seconds, 1),
            )
            self._changes.notify()

        return escalated

    async def create_blocked_ticket(
        self,
        title: str,
        description: str,
        priority: int = 2,
    ) -> Ticket | None:
        """Create a new ``blocked`` ticket for human attention.

        Returns:
            The created ticket, or None if the store rejected it.
        """
        try:
            ticket = await self._store.create_ticket(
                TicketCreate(
                    title=title,
                    status=TicketStatus.blocked,
                    description=description,
                    priority=priority,
                )
            )
        except TicketStoreError as e:
            self._logger.error("blocked_ticket_creation_failed", title=title, error=str(e))
            return None

        self._logger.info("blocked_ticket_created", ticket_id=ticket.id, title=title)
        return ticket

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def report_task_done(
        self,
        task_id: str,
        status: ReportStatus,
        notes: str | None = None,
    ) -> TaskUpdateResult:
        """Write a completion report onto the task's ticket.

        The ticket status follows :data:`REPORT_STATUS_MAP`; notes are
        appended to the description. The queue itself is updated by the
        refresh that the store write triggers.

        Returns:
            TaskUpdateResult holding the updated ticket, nothing if the
            ticket does not exist, or the store error message.

        Raises:
            ValueError: If ``status`` is not a known report status.
        """
        if status not in REPORT_STATUS_MAP:
            raise ValueError(f"Unknown report status: {status}")

        try:
            ticket = await self._store.get_ticket(task_id)
            if ticket is None:
                self._logger.warning("report_task_not_found", task_id=task_id)
                return TaskUpdateResult()

            fields: dict[str, object] = {"status": REPORT_STATUS_MAP[status]}
            if notes:
                stamp = self._clock().isoformat()
                prefix = f"{ticket.description}\n\n" if ticket.description else ""
                fields["description"] = f"{prefix}Report Notes ({stamp}):\n{notes}"

            updated = await self._store.update_ticket(task_id, **fields)
        except TicketStoreError as e:
            self._logger.error("report_task_failed", task_id=task_id, error=str(e))
            return TaskUpdateResult(error=str(e))

        self._logger.info(
            "task_reported",
            task_id=task_id,
            report_status=status,
            ticket_status=REPORT_STATUS_MAP[status].value,
        )
        return TaskUpdateResult(ticket=updated)

    async def mark_task_blocked(self, task_id: str) -> TaskUpdateResult:
        """Move a task's ticket to ``blocked``, e.g. after failed verification."""
        try:
            ticket = await self._store.update_ticket(task_id, status=TicketStatus.blocked)
        except TicketStoreError as e:
            self._logger.error("mark_task_blocked_failed", task_id=task_id, error=str(e))
            return TaskUpdateResult(error=str(e))

        if ticket is None:
            self._logger.warning("mark_task_blocked_not_found", task_id=task_id)
        else:
            self._logger.info("task_marked_blocked", task_id=task_id)
        return TaskUpdateResult(ticket=ticket)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def _blocked_p1_tickets(self) -> list[Ticket]:
        try:
            blocked = await self._store.list_tickets(status=TicketStatus.blocked)
        except TicketStoreError as e:
            self._logger.error("blocked_ticket_query_failed", error=str(e))
            return []
        return [ticket for ticket in blocked if is_p1_blocked(ticket)]

    async def get_queue_status(self) -> QueueStatus:
        """Summarize pending, picked and blocked-P1 counts."""
        blocked = await self._blocked_p1_tickets()
        return QueueStatus(
            queue_count=len(self._queue),
            picked_count=len(self._queue.picked_ids),
            blocked_p1_count=len(blocked),
            last_picked_title=self._last_picked_title,
        )

    async def get_queue_details(self) -> QueueDetails:
        """List the titles behind :meth:`get_queue_status`."""
        blocked = await self._blocked_p1_tickets()
        return QueueDetails(
            queue_titles=[task.title for task in self._queue.pending],
            picked_titles=[task.title for task in self._queue.picked],
            blocked_p1_titles=[ticket.title for ticket in blocked],
            last_picked_title=self._last_picked_title,
            last_picked_at=self._last_picked_at,
        )

    @property
    def pending_tasks(self) -> list[QueuedTask]:
        return [task.model_copy() for task in self._queue.pending]

    @property
    def picked_tasks(self) -> list[QueuedTask]:
        return [task.model_copy() for task in self._queue.picked]


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_scheduler: Scheduler | None = None


async def initialize_orchestrator(
    store: TicketStore,
    config: OrchestratorConfig | None = None,
) -> Scheduler:
    """Create and initialize the process-wide scheduler.

    A second call logs a warning and returns the existing instance.
    """
    global _scheduler
    if _scheduler is None:
        _scheduler = Scheduler(store)
    await _scheduler.initialize(config)
    return _scheduler


def get_orchestrator() -> Scheduler:
    """Return the process-wide scheduler.

    Raises:
        SchedulerNotInitializedError: If initialize_orchestrator() has not run.
    """
    if _scheduler is None or not _scheduler.is_initialized:
        raise SchedulerNotInitializedError()
    return _scheduler


async def shutdown_orchestrator() -> None:
    """Detach the process-wide scheduler from its store and discard it."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.close()
        logger.info("orchestrator_shutdown")
    _scheduler = None


async def reset_orchestrator_for_tests() -> None:
    """Reset and discard the process-wide scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.reset_for_tests()
    _scheduler = None
