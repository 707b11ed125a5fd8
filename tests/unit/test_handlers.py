"""Unit tests for the get-next-task and report-task-done handlers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
import structlog

from ticketforge.agents.handlers import (
    ReportTaskDoneParams,
    handle_get_next_task,
    handle_report_task_done,
)
from ticketforge.agents.verification import VerificationResult
from ticketforge.orchestrator.scheduler import Scheduler
from ticketforge.store.base import Ticket, TicketStatus, TicketStoreError
from ticketforge.store.memory import InMemoryTicketStore

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_ticket(ticket_id: str, title: str) -> Ticket:
    return Ticket(
        id=ticket_id,
        title=title,
        status=TicketStatus.open,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def store() -> InMemoryTicketStore:
    return InMemoryTicketStore([make_ticket("T1", "Add login"), make_ticket("T2", "Add logout")])


@pytest_asyncio.fixture
async def scheduler(store: InMemoryTicketStore) -> AsyncGenerator[Scheduler, None]:
    """Create an initialized scheduler over two open tickets."""
    instance = Scheduler(store)
    await instance.initialize()
    yield instance
    await instance.reset_for_tests()


@pytest.fixture
def verifier() -> AsyncMock:
    """Create mock verification router."""
    router = AsyncMock()
    router.route = AsyncMock(return_value=VerificationResult(passed=True, explanation="ok"))
    return router


# =====================================================================
# get_next_task
# =====================================================================


class TestGetNextTask:
    """Test the get-next-task handler."""

    @pytest.mark.asyncio
    async def test_returns_task_with_context(self, scheduler: Scheduler) -> None:
        """Test that the full task is returned by default."""
        response = await handle_get_next_task(scheduler)

        assert response.success is True
        assert response.queue_empty is False
        assert response.task is not None
        assert response.task["id"] == "T1"
        assert response.task["title"] == "Add login"
        assert response.task["last_picked_at"] is not None

    @pytest.mark.asyncio
    async def test_without_context(self, scheduler: Scheduler) -> None:
        """Test that include_context=False returns only id and title."""
        response = await handle_get_next_task(scheduler, include_context=False)

        assert response.task == {"id": "T1", "title": "Add login"}

    @pytest.mark.asyncio
    async def test_queue_empty(self, scheduler: Scheduler) -> None:
        """Test the response once every task is picked."""
        await handle_get_next_task(scheduler)
        await handle_get_next_task(scheduler)

        response = await handle_get_next_task(scheduler)

        assert response.success is True
        assert response.queue_empty is True
        assert response.task is None

    @pytest.mark.asyncio
    async def test_invalid_filter(self, scheduler: Scheduler) -> None:
        """Test that unknown filters are rejected without picking."""
        response = await handle_get_next_task(scheduler, filter="urgent")

        assert response.success is False
        assert response.error is not None
        assert response.error.code == "INVALID_FILTER"
        assert len(scheduler.pending_tasks) == 2

    @pytest.mark.asyncio
    async def test_blocked_filter_never_picks(self, scheduler: Scheduler) -> None:
        """Test that the blocked filter returns an empty result."""
        response = await handle_get_next_task(scheduler, filter="blocked")

        assert response.success is True
        assert response.queue_empty is True
        assert len(scheduler.pending_tasks) == 2

    @pytest.mark.asyncio
    async def test_not_initialized(self) -> None:
        """Test the error code when the scheduler is not initialized."""
        response = await handle_get_next_task(Scheduler(InMemoryTicketStore()))

        assert response.success is False
        assert response.error is not None
        assert response.error.code == "ORCHESTRATOR_NOT_INITIALIZED"


# =====================================================================
# report_task_done
# =====================================================================


class TestReportTaskDone:
    """Test the report-task-done handler."""

    @pytest.mark.asyncio
    async def test_marks_done(self, scheduler: Scheduler, store: InMemoryTicketStore) -> None:
        """Test a plain done report without verification."""
        response = await handle_report_task_done(
            scheduler, {"task_id": "T1", "status": "done"}
        )

        assert response.success is True
        assert response.message == "Task T1 marked as done"
        assert response.verification is None
        assert (await store.get_ticket("T1")).status == TicketStatus.done

    @pytest.mark.asyncio
    async def test_invalid_params(self, scheduler: Scheduler) -> None:
        """Test that bad parameters return INVALID_PARAMS."""
        response = await handle_report_task_done(
            scheduler, {"task_id": "T1", "status": "finished"}
        )

        assert response.success is False
        assert response.error is not None
        assert response.error.code == "INVALID_PARAMS"

    @pytest.mark.asyncio
    async def test_empty_task_id_rejected(self, scheduler: Scheduler) -> None:
        """Test that an empty task id fails validation."""
        response = await handle_report_task_done(scheduler, {"task_id": "", "status": "done"})

        assert response.error is not None
        assert response.error.code == "INVALID_PARAMS"

    @pytest.mark.asyncio
    async def test_task_not_found(self, scheduler: Scheduler) -> None:
        """Test the error code for an unknown ticket."""
        response = await handle_report_task_done(
            scheduler, ReportTaskDoneParams(task_id="T404", status="done")
        )

        assert response.success is False
        assert response.error is not None
        assert response.error.code == "TASK_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_store_failure(
        self, scheduler: Scheduler, store: InMemoryTicketStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that store errors become INTERNAL_ERROR."""
        monkeypatch.setattr(
            store, "update_ticket", AsyncMock(side_effect=TicketStoreError("disk full"))
        )

        response = await handle_report_task_done(
            scheduler, {"task_id": "T1", "status": "partial"}
        )

        assert response.success is False
        assert response.error is not None
        assert response.error.code == "INTERNAL_ERROR"
        assert "disk full" in response.error.message

    @pytest.mark.asyncio
    async def test_passing_verification(
        self, scheduler: Scheduler, store: InMemoryTicketStore, verifier: AsyncMock
    ) -> None:
        """Test that a passing diff keeps the ticket done."""
        response = await handle_report_task_done(
            scheduler,
            {"task_id": "T1", "status": "done", "code_diff": "+ login()"},
            verifier=verifier,
        )

        assert response.success is True
        assert response.verification is not None
        assert response.verification.passed is True
        verifier.route.assert_awaited_once_with("Add login", "+ login()")
        assert (await store.get_ticket("T1")).status == TicketStatus.done

    @pytest.mark.asyncio
    async def test_failing_verification_blocks_ticket(
        self, scheduler: Scheduler, store: InMemoryTicketStore, verifier: AsyncMock
    ) -> None:
        """Test that a failing diff moves the ticket to blocked."""
        verifier.route.return_value = VerificationResult(passed=False, explanation="no tests")

        response = await handle_report_task_done(
            scheduler,
            {
                "task_id": "T1",
                "status": "done",
                "task_description": "Add login with tests",
                "code_diff": "+ login()",
            },
            verifier=verifier,
        )

        assert response.success is True
        assert response.verification is not None
        assert response.verification.passed is False
        verifier.route.assert_awaited_once_with("Add login with tests", "+ login()")
        assert (await store.get_ticket("T1")).status == TicketStatus.blocked

    @pytest.mark.asyncio
    async def test_verification_skipped_for_other_statuses(
        self, scheduler: Scheduler, verifier: AsyncMock
    ) -> None:
        """Test that only done reports with a diff are verified."""
        await handle_report_task_done(
            scheduler,
            {"task_id": "T1", "status": "partial", "code_diff": "+ wip"},
            verifier=verifier,
        )
        await handle_report_task_done(
            scheduler, {"task_id": "T2", "status": "done"}, verifier=verifier
        )

        verifier.route.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notes_are_appended(
        self, scheduler: Scheduler, store: InMemoryTicketStore
    ) -> None:
        """Test that notes reach the ticket description."""
        await handle_report_task_done(
            scheduler, {"task_id": "T2", "status": "blocked", "notes": "Waiting on API key"}
        )

        ticket = await store.get_ticket("T2")
        assert ticket.status == TicketStatus.blocked
        assert ticket.description is not None
        assert ticket.description.startswith("Report Notes (")
        assert ticket.description.endswith("):\nWaiting on API key")

    @pytest.mark.asyncio
    async def test_read_failure(
        self, scheduler: Scheduler, store: InMemoryTicketStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that a failed ticket lookup becomes INTERNAL_ERROR."""
        monkeypatch.setattr(
            store, "get_ticket", AsyncMock(side_effect=TicketStoreError("locked"))
        )

        response = await handle_report_task_done(scheduler, {"task_id": "T1", "status": "done"})

        assert response.success is False
        assert response.error is not None
        assert response.error.code == "INTERNAL_ERROR"
        assert response.error.message == "Failed to report task status: locked"

    @pytest.mark.asyncio
    async def test_blocking_after_failed_verification_fails(
        self,
        scheduler: Scheduler,
        store: InMemoryTicketStore,
        verifier: AsyncMock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test that a failed write to blocked becomes INTERNAL_ERROR."""
        verifier.route.return_value = VerificationResult(passed=False, explanation="broken")
        update_ticket = store.update_ticket

        async def refuse_blocked(ticket_id: str, **fields: object) -> Ticket | None:
            if fields.get("status") == TicketStatus.blocked:
                raise TicketStoreError("read-only")
            return await update_ticket(ticket_id, **fields)

        monkeypatch.setattr(store, "update_ticket", refuse_blocked)

        response = await handle_report_task_done(
            scheduler,
            {"task_id": "T1", "status": "done", "code_diff": "+ login()"},
            verifier=verifier,
        )

        assert response.success is False
        assert response.error is not None
        assert response.error.code == "INTERNAL_ERROR"
        assert "read-only" in response.error.message
        assert (await store.get_ticket("T1")).status == TicketStatus.done


# =====================================================================
# Log context
# =====================================================================


class TestLogContext:
    """Test the correlation and ticket context bound per request."""

    @pytest.mark.asyncio
    async def test_pick_runs_in_request_and_ticket_context(self, scheduler: Scheduler) -> None:
        """Test that the pick sees a correlation ID and the picked ticket id."""
        seen: list[dict[str, object]] = []
        scheduler.on_queue_change(lambda: seen.append(structlog.contextvars.get_contextvars()))

        await handle_get_next_task(scheduler)

        assert seen[0]["ticket_id"] == "T1"
        assert seen[0]["agent"] == "orchestrator"
        assert isinstance(seen[0]["correlation_id"], str)
        assert structlog.contextvars.get_contextvars() == {}

    @pytest.mark.asyncio
    async def test_each_request_gets_its_own_correlation_id(self, scheduler: Scheduler) -> None:
        """Test that two picks carry different correlation IDs."""
        seen: list[dict[str, object]] = []
        scheduler.on_queue_change(lambda: seen.append(structlog.contextvars.get_contextvars()))

        await handle_get_next_task(scheduler)
        await handle_get_next_task(scheduler)

        picks = [context for context in seen if "correlation_id" in context]
        assert [context["ticket_id"] for context in picks] == ["T1", "T2"]
        assert picks[0]["correlation_id"] != picks[1]["correlation_id"]

    @pytest.mark.asyncio
    async def test_report_binds_ticket_for_verification(
        self, scheduler: Scheduler, verifier: AsyncMock
    ) -> None:
        """Test that verification runs inside the reported ticket's context."""
        seen: list[dict[str, object]] = []

        async def route(description: str, diff: str) -> VerificationResult:
            seen.append(structlog.contextvars.get_contextvars())
            return VerificationResult(passed=True, explanation="ok")

        verifier.route.side_effect = route

        await handle_report_task_done(
            scheduler,
            {"task_id": "T2", "status": "done", "code_diff": "+ logout()"},
            verifier=verifier,
        )

        assert seen[0]["ticket_id"] == "T2"
        assert "correlation_id" in seen[0]
        assert structlog.contextvars.get_contextvars() == {}
