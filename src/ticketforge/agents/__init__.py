"""Agent routers and consumer handlers for Ticketforge.

The routers wrap the language model with fixed system prompts and file
blocked tickets through the scheduler. The handlers are what a coding
agent calls to take and complete tasks.
"""

from ticketforge.agents.answer import AnswerRouter
from ticketforge.agents.handlers import (
    GetNextTaskResponse,
    HandlerError,
    ReportTaskDoneParams,
    ReportTaskDoneResponse,
    handle_get_next_task,
    handle_report_task_done,
)
from ticketforge.agents.planning import PlanningRouter
from ticketforge.agents.verification import VerificationResult, VerificationRouter

__all__ = [
    "AnswerRouter",
    "GetNextTaskResponse",
    "HandlerError",
    "PlanningRouter",
    "ReportTaskDoneParams",
    "ReportTaskDoneResponse",
    "VerificationResult",
    "VerificationRouter",
    "handle_get_next_task",
    "handle_report_task_done",
]
