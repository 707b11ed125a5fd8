"""Consumer-facing handlers for fetching and completing tasks.

These are the two operations a coding agent drives: ask for the next task,
then report how it went. Both return response models instead of raising,
with a machine-readable error code when something goes wrong.

Error codes:
    INVALID_PARAMS: Request parameters failed validation.
    INVALID_FILTER: Unknown ``filter`` for get-next-task.
    ORCHESTRATOR_NOT_INITIALIZED: The scheduler has not been initialized.
    TASK_NOT_FOUND: No ticket exists for the reported task id.
    INTERNAL_ERROR: The ticket store failed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

import structlog
from pydantic import BaseModel, Field, ValidationError

from ticketforge.agents.verification import VerificationResult
from ticketforge.logging import request_context, ticket_context
from ticketforge.orchestrator.scheduler import SchedulerNotInitializedError

if TYPE_CHECKING:
    from ticketforge.agents.verification import VerificationRouter
    from ticketforge.orchestrator.scheduler import Scheduler

logger = structlog.get_logger(__name__)

TaskFilter = Literal["ready", "blocked", "all"]
VALID_FILTERS: tuple[str, ...] = ("ready", "blocked", "all")


class HandlerError(BaseModel):
    """Error detail attached to a failed handler response."""

    code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable description")


class GetNextTaskResponse(BaseModel):
    """Result of a get-next-task request.

    Attributes:
        success: False only when an error occurred
        task: Picked task fields, or None if nothing was handed out
        queue_empty: True when no task was available
        message: Optional human-readable note
        error: Error detail when success is False
    """

    success: bool
    task: dict[str, Any] | None = None
    queue_empty: bool | None = None
    message: str | None = None
    error: HandlerError | None = None


class ReportTaskDoneParams(BaseModel):
    """Parameters of a task completion report.

    Attributes:
        task_id: Id of the ticket being reported on
        status: Outcome reported by the consumer
        task_description: Description used for verification, defaults to
            the ticket title
        code_diff: Diff to verify when status is ``done``
        notes: Free text appended to the ticket description
    """

    task_id: str = Field(min_length=1)
    status: Literal["done", "failed", "blocked", "partial"]
    task_description: str | None = None
    code_diff: str | None = None
    notes: str | None = None


class ReportTaskDoneResponse(BaseModel):
    """Result of a task completion report."""

    success: bool
    task_id: str | None = None
    status: str | None = None
    message: str
    verification: VerificationResult | None = None
    error: HandlerError | None = None


async def handle_get_next_task(
    scheduler: Scheduler,
    filter: str = "ready",
    include_context: bool = True,
) -> GetNextTaskResponse:
    """Hand the next queued task to the caller.

    Args:
        scheduler: Initialized scheduler.
        filter: ``ready`` (default) or ``all`` return picked tasks;
            ``blocked`` never returns one since the queue only holds
            workable tickets.
        include_context: When False, only the task id and title are returned.

    Returns:
        GetNextTaskResponse describing the outcome.
    """
    with request_context():
        return await _get_next_task(scheduler, filter, include_context)


async def _get_next_task(
    scheduler: Scheduler,
    filter: str,
    include_context: bool,
) -> GetNextTaskResponse:
    if filter not in VALID_FILTERS:
        logger.warning("get_next_task_invalid_filter", filter=filter)
        return GetNextTaskResponse(
            success=False,
            error=HandlerError(
                code="INVALID_FILTER",
                message=f"Invalid filter '{filter}'. Valid options: {', '.join(VALID_FILTERS)}",
            ),
        )

    if filter == "blocked":
        return GetNextTaskResponse(
            success=True,
            queue_empty=True,
            message="No blocked tasks available (the queue holds ready tasks only)",
        )

    try:
        task = await scheduler.get_next_task()
    except SchedulerNotInitializedError as e:
        logger.error("get_next_task_not_initialized")
        return GetNextTaskResponse(
            success=False,
            error=HandlerError(code="ORCHESTRATOR_NOT_INITIALIZED", message=str(e)),
        )

    if task is None:
        logger.info("get_next_task_queue_empty")
        return GetNextTaskResponse(
            success=True,
            queue_empty=True,
            message="No tasks available in queue",
        )

    if include_context:
        payload = task.model_dump(mode="json")
    else:
        payload = {"id": task.id, "title": task.title}

    with ticket_context(task.id):
        logger.info("get_next_task_returned")
    return GetNextTaskResponse(success=True, task=payload, queue_empty=False)


def _internal_error(params: ReportTaskDoneParams, error: str) -> ReportTaskDoneResponse:
    return ReportTaskDoneResponse(
        success=False,
        task_id=params.task_id,
        status=params.status,
        message="Failed to report task status",
        error=HandlerError(
            code="INTERNAL_ERROR",
            message=f"Failed to report task status: {error}",
        ),
    )


async def handle_report_task_done(
    scheduler: Scheduler,
    params: ReportTaskDoneParams | dict[str, Any],
    verifier: VerificationRouter | None = None,
) -> ReportTaskDoneResponse:
    """Record a task outcome on its ticket and optionally verify the work.

    The ticket status is updated first. When the report is ``done``, a code
    diff is supplied and a verifier is available, the diff is verified; a
    failing verdict moves the ticket to ``blocked``.

    Args:
        scheduler: Scheduler owning the ticket store.
        params: Report parameters, as a model or a raw mapping.
        verifier: Verification router, or None to skip verification.

    Returns:
        ReportTaskDoneResponse describing the outcome.
    """
    with request_context():
        if not isinstance(params, ReportTaskDoneParams):
            try:
                params = ReportTaskDoneParams.model_validate(params)
            except ValidationError as e:
                logger.warning("report_task_done_invalid_params", errors=e.error_count())
                return ReportTaskDoneResponse(
                    success=False,
                    message="Invalid parameters",
                    error=HandlerError(code="INVALID_PARAMS", message=str(e)),
                )

        with ticket_context(params.task_id):
            return await _report_task_done(scheduler, params, verifier)


async def _report_task_done(
    scheduler: Scheduler,
    params: ReportTaskDoneParams,
    verifier: VerificationRouter | None,
) -> ReportTaskDoneResponse:
    log = logger.bind(report_status=params.status)
    log.info("report_task_done_received")

    result = await scheduler.report_task_done(params.task_id, params.status, params.notes)
    if result.failed:
        log.error("report_task_done_failed", error=result.error)
        return _internal_error(params, result.error or "")

    if result.ticket is None:
        log.warning("report_task_done_not_found")
        return ReportTaskDoneResponse(
            success=False,
            task_id=params.task_id,
            status=params.status,
            message="Task not found",
            error=HandlerError(
                code="TASK_NOT_FOUND",
                message=f"No task found with ID {params.task_id}",
            ),
        )

    verification: VerificationResult | None = None
    if params.status == "done" and params.code_diff and verifier is not None:
        description = params.task_description or result.ticket.title
        verification = await verifier.route(description, params.code_diff)
        if not verification.passed:
            log.warning("report_task_done_verification_failed")
            blocked = await scheduler.mark_task_blocked(params.task_id)
            if blocked.failed:
                return _internal_error(params, blocked.error or "")

    return ReportTaskDoneResponse(
        success=True,
        task_id=params.task_id,
        status=params.status,
        message=f"Task {params.task_id} marked as {params.status}",
        verification=verification,
    )
