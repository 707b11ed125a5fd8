"""Answer agent router.

Answers developer questions and files a blocked ticket when the answer
calls for follow-up work.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from ticketforge.agents.prompts import ANSWER_SYSTEM_PROMPT
from ticketforge.llm.client import LLMClient, LLMClientError

if TYPE_CHECKING:
    from ticketforge.orchestrator.scheduler import Scheduler

logger = structlog.get_logger(__name__)

ACTION_KEYWORDS = ("ticket", "create", "fix", "implement")

EMPTY_QUESTION_MESSAGE = "Please ask a question."
EMPTY_ANSWER_MESSAGE = "Could not generate an answer."
ANSWER_UNAVAILABLE_MESSAGE = "LLM service is currently unavailable. Please try again later."


def needs_action(answer: str) -> bool:
    lowered = answer.lower()
    return any(keyword in lowered for keyword in ACTION_KEYWORDS)


class AnswerRouter:
    """Routes developer questions to the Answer agent."""

    def __init__(self, llm: LLMClient, scheduler: Scheduler) -> None:
        self.llm = llm
        self.scheduler = scheduler
        self._logger = logger.bind(component="AnswerRouter", agent="answer")

    async def route(self, question: str) -> str:
        if not question or not question.strip():
            self._logger.warning("answer_empty_question")
            return EMPTY_QUESTION_MESSAGE

        self._logger.info("answer_request_routed", question=question[:200])

        try:
            response = await self.llm.complete(question, system_prompt=ANSWER_SYSTEM_PROMPT)
        except LLMClientError as e:
            self._logger.error("answer_agent_failed", error=str(e))
            return ANSWER_UNAVAILABLE_MESSAGE

        answer = response.content
        if not answer:
            self._logger.warning("answer_agent_empty_response")
            return EMPTY_ANSWER_MESSAGE

        self._logger.info("answer_agent_completed", answer=answer[:500])

        if needs_action(answer):
            suffix = "..." if len(question) > 50 else ""
            title = f"ANSWER NEEDS ACTION: {question[:50]}{suffix}"
            ticket = await self.scheduler.create_blocked_ticket(
                title=title,
                description=answer,
                priority=2,
            )
            if ticket is not None:
                self._logger.info("answer_action_ticket_created", ticket_id=ticket.id)

        return answer
