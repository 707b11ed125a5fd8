"""Verification agent router.

Asks the language model whether a code diff satisfies a task, and files a
blocked ``VERIFICATION FAILED`` ticket for every failing verdict.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from ticketforge.agents.prompts import VERIFICATION_SYSTEM_PROMPT, VERIFICATION_TEMPERATURE
from ticketforge.llm.client import LLMClient, LLMClientError

if TYPE_CHECKING:
    from ticketforge.orchestrator.scheduler import Scheduler

logger = structlog.get_logger(__name__)

_VERDICT = re.compile(r"\b(PASS|FAIL)\b", re.IGNORECASE)
_LEADING_PUNCTUATION = re.compile(r"^[:\-\s]+")

NO_DIFF_EXPLANATION = "No code diff provided for verification."
AMBIGUOUS_EXPLANATION = "Ambiguous response from verification - defaulting to FAIL."
LLM_ERROR_EXPLANATION = "Verification failed due to an LLM error. See logs for details."


class VerificationResult(BaseModel):
    """Outcome of a verification request.

    Attributes:
        passed: True only for an explicit PASS verdict
        explanation: Model explanation, or the reason a FAIL was assumed
    """

    passed: bool = Field(description="Whether the diff passed verification")
    explanation: str = Field(description="Short explanation of the verdict")


def parse_verdict(content: str) -> VerificationResult:
    """Extract the first PASS/FAIL word and the explanation after it.

    A reply with no verdict word is treated as FAIL.
    """
    content = content.strip()
    match = _VERDICT.search(content)
    if match is None:
        logger.warning("verification_response_ambiguous", content=content[:100])
        return VerificationResult(passed=False, explanation=AMBIGUOUS_EXPLANATION)

    passed = match.group(1).upper() == "PASS"
    explanation = _LEADING_PUNCTUATION.sub("", content[match.end():]).strip()
    if not explanation:
        explanation = "All criteria met." if passed else "Criteria not met."
    return VerificationResult(passed=passed, explanation=explanation)


class VerificationRouter:
    """Routes finished work to the Verification agent.

    Args:
        llm: Language model client.
        scheduler: Scheduler used to file blocked tickets on failure.
    """

    def __init__(self, llm: LLMClient, scheduler: Scheduler) -> None:
        self.llm = llm
        self.scheduler = scheduler
        self._logger = logger.bind(component="VerificationRouter", agent="verification")

    async def route(self, task_description: str, code_diff: str) -> VerificationResult:
        """Verify a code diff against a task description.

        An empty diff fails immediately without calling the model. Model
        errors also yield FAIL, but without filing a ticket.
        """
        if not code_diff.strip():
            self._logger.warning("verification_missing_diff", task=task_description)
            result = VerificationResult(passed=False, explanation=NO_DIFF_EXPLANATION)
            await self._file_failure(task_description, code_diff, result)
            return result

        self._logger.info("verification_request_routed", task=task_description)
        prompt = f"Task: {task_description}\nCode diff: {code_diff}"

        try:
            response = await self.llm.complete(
                prompt,
                system_prompt=VERIFICATION_SYSTEM_PROMPT,
                temperature=VERIFICATION_TEMPERATURE,
            )
        except LLMClientError as e:
            self._logger.error("verification_agent_failed", error=str(e))
            return VerificationResult(passed=False, explanation=LLM_ERROR_EXPLANATION)

        result = parse_verdict(response.content)
        self._logger.info(
            "verification_completed",
            passed=result.passed,
            explanation=result.explanation[:200],
        )

        if not result.passed:
            await self._file_failure(task_description, code_diff, result)
        return result

    async def _file_failure(
        self, task_description: str, code_diff: str, result: VerificationResult
    ) -> None:
        await self.scheduler.create_blocked_ticket(
            title=f"VERIFICATION FAILED: {task_description or 'Unknown Task'}",
            description=f"Explanation: {result.explanation}\n\nCode diff:\n{code_diff}",
            priority=2,
        )
