"""Planning agent router.

Streams a step-by-step plan for a coding request from the language model.
"""

from __future__ import annotations

import structlog

from ticketforge.agents.prompts import PLANNING_SYSTEM_PROMPT
from ticketforge.llm.client import LLMClient, LLMClientError

logger = structlog.get_logger(__name__)

PLANNING_UNAVAILABLE_MESSAGE = (
    "Planning service is currently unavailable. Please try again later."
)

# Longest plan excerpt written to the log
_LOG_PLAN_CHARS = 1000


class PlanningRouter:
    """Routes coding requests to the Planning agent."""

    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm
        self._logger = logger.bind(component="PlanningRouter", agent="planning")

    async def route(self, question: str) -> str:
        """Ask the Planning agent for a plan.

        Each streamed chunk is logged at debug level as it arrives.

        Args:
            question: Coding request to break down.

        Returns:
            The full plan, an empty string if the model returned nothing, or
            a fallback message if the model could not be reached.
        """
        self._logger.info("planning_request_routed", question_length=len(question))

        def _on_chunk(chunk: str) -> None:
            self._logger.debug("planning_chunk_received", chunk=chunk)

        try:
            response = await self.llm.stream(
                question,
                _on_chunk,
                system_prompt=PLANNING_SYSTEM_PROMPT,
            )
        except LLMClientError as e:
            self._logger.error("planning_agent_failed", error=str(e))
            return PLANNING_UNAVAILABLE_MESSAGE

        plan = response.content
        if not plan:
            self._logger.warning("planning_agent_empty_response")
            return plan

        self._logger.info(
            "planning_agent_completed",
            plan_length=len(plan),
            plan=plan[:_LOG_PLAN_CHARS],
        )
        return plan
