"""Language model client for Ticketforge agent routers."""

from ticketforge.llm.client import (
    LLMAPIError,
    LLMClient,
    LLMClientError,
    LLMConnectionError,
    LLMResponse,
    LLMTimeoutError,
)

__all__ = [
    "LLMAPIError",
    "LLMClient",
    "LLMClientError",
    "LLMConnectionError",
    "LLMResponse",
    "LLMTimeoutError",
]
