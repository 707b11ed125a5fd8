"""In-memory task queue model for the Ticketforge scheduler.

Holds the pending FIFO and the picked set. A task lives in at most one of
the two at any time. This module performs no I/O; the scheduler decides
when a task may move between them based on store outcomes.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Iterable

from pydantic import BaseModel, Field

from ticketforge.store.base import Ticket


class QueuedTask(BaseModel):
    """Scheduler-side reference to a workable ticket.

    Attributes:
        id: Ticket identifier.
        title: Ticket title at load or refresh time.
        version: Ticket version at load or refresh time, used as the
            compare-and-swap token when the task is picked.
        last_picked_at: When a consumer was handed this task. None means
            the task has never been picked.
    """

    id: str = Field(description="Ticket identifier")
    title: str = Field(description="Title snapshot")
    version: int = Field(default=1, description="Version snapshot")
    last_picked_at: datetime | None = Field(default=None, description="Pick timestamp")

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> QueuedTask:
        return cls(id=ticket.id, title=ticket.title, version=ticket.version)


class TaskQueue:
    """Pending FIFO plus a disjoint picked set keyed by ticket id."""

    def __init__(self) -> None:
        self._pending: deque[QueuedTask] = deque()
        self._picked: dict[str, QueuedTask] = {}

    def load(self, tickets: Iterable[Ticket]) -> None:
        """Replace the pending queue with the workable tickets given.

        Listing order is kept. Tickets already in the picked set are not
        added to the pending queue, and the picked set itself is untouched.

        Args:
            tickets: Tickets in store listing order.
        """
        self._pending = deque(
            QueuedTask.from_ticket(ticket)
            for ticket in tickets
            if ticket.is_workable and ticket.id not in self._picked
        )

    def append(self, task: QueuedTask) -> None:
        """Add a task at the tail of the pending queue."""
        if self.contains(task.id):
            raise ValueError(f"Task {task.id} is already queued")
        self._pending.append(task)

    def dequeue_front(self) -> QueuedTask | None:
        """Pop the head of the pending queue, or return None if empty."""
        if not self._pending:
            return None
        return self._pending.popleft()

    def requeue_front(self, task: QueuedTask) -> None:
        """Push a task back to the head of the pending queue."""
        if self.contains(task.id):
            raise ValueError(f"Task {task.id} is already queued")
        self._pending.appendleft(task)

    def mark_picked(self, task: QueuedTask, now: datetime) -> QueuedTask:
        """Stamp the pick time and move the task into the picked set.

        The task is removed from the pending queue if it is still there.

        Returns:
            The stamped task.
        """
        self._drop_pending(task.id)
        task.last_picked_at = now
        self._picked[task.id] = task
        return task

    def remove_if_present(self, task_id: str) -> QueuedTask | None:
        """Remove a task from whichever set holds it.

        Returns:
            The removed task, or None if it was not tracked.
        """
        picked = self._picked.pop(task_id, None)
        if picked is not None:
            return picked
        return self._drop_pending(task_id)

    def get(self, task_id: str) -> QueuedTask | None:
        """Look up a tracked task by id in either set."""
        if task_id in self._picked:
            return self._picked[task_id]
        for task in self._pending:
            if task.id == task_id:
                return task
        return None

    def contains(self, task_id: str) -> bool:
        return self.get(task_id) is not None

    def is_picked(self, task_id: str) -> bool:
        return task_id in self._picked

    @property
    def pending(self) -> list[QueuedTask]:
        return list(self._pending)

    @property
    def picked(self) -> list[QueuedTask]:
        return list(self._picked.values())

    @property
    def pending_ids(self) -> list[str]:
        return [task.id for task in self._pending]

    @property
    def picked_ids(self) -> list[str]:
        return list(self._picked)

    def clear(self) -> None:
        self._pending.clear()
        self._picked.clear()

    def __len__(self) -> int:
        return len(self._pending)

    def _drop_pending(self, task_id: str) -> QueuedTask | None:
        for task in self._pending:
            if task.id == task_id:
                self._pending.remove(task)
                return task
        return None
