"""Chat completion client for the agent routers.

This module provides an async HTTP client for OpenAI-compatible
``/v1/chat/completions`` servers (LM Studio, llama.cpp server, vLLM and
similar). It handles timeouts, retries with exponential backoff, streamed
replies delivered as server-sent events, and error logging.

Example usage:
    >>> from ticketforge.config import LLMConfig
    >>> async with LLMClient(LLMConfig()) as client:
    ...     reply = await client.complete("Summarize this diff", system_prompt="Be brief.")
    ...     print(reply.content)
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import httpx
import structlog
from pydantic import BaseModel, Field

from ticketforge.config import LLMConfig

logger = structlog.get_logger(__name__)

ChunkCallback = Callable[[str], None]

COMPLETIONS_ENDPOINT = "/v1/chat/completions"


class LLMClientError(Exception):
    """Base exception for language model client errors."""

    pass


class LLMTimeoutError(LLMClientError):
    """Raised when a completion request times out."""

    pass


class LLMConnectionError(LLMClientError):
    """Raised when the language model server cannot be reached."""

    pass


class LLMAPIError(LLMClientError):
    """Raised when the server returns an error or malformed response."""

    pass


class LLMResponse(BaseModel):
    """Reply from the language model.

    Attributes:
        content: Full reply text
        model: Model that produced the reply, when reported by the server
        finish_reason: Why generation stopped, when reported by the server
    """

    content: str = Field(description="Reply text")
    model: str | None = Field(default=None, description="Model name")
    finish_reason: str | None = Field(default=None, description="Stop reason")


class LLMClient:
    """Async client for an OpenAI-compatible chat completions API.

    Attributes:
        config: LLM configuration containing URL, model, and sampling settings
    """

    def __init__(
        self,
        config: LLMConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        initial_backoff: float = 1.0,
    ) -> None:
        """Initialize the client.

        Args:
            config: LLMConfig instance with connection settings
            transport: Optional httpx transport, used by tests
            initial_backoff: First retry delay in seconds, doubled per attempt
        """
        self.config = config
        self.initial_backoff = initial_backoff
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        logger.info(
            "llm_client_initialized",
            url=config.url,
            model=config.model,
            timeout=config.timeout_seconds,
        )

    async def __aenter__(self) -> LLMClient:
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.config.url,
            timeout=httpx.Timeout(self.config.timeout_seconds),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("LLMClient must be used as async context manager")
        return self._client

    def _build_payload(
        self,
        prompt: str,
        system_prompt: str | None,
        temperature: float | None,
        messages: list[dict[str, str]] | None,
        stream: bool,
    ) -> dict[str, Any]:
        chat: list[dict[str, str]] = []
        if system_prompt:
            chat.append({"role": "system", "content": system_prompt})
        if messages:
            chat.extend(messages)
        chat.append({"role": "user", "content": prompt})

        return {
            "model": self.config.model,
            "messages": chat,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature if temperature is None else temperature,
            "stream": stream,
        }

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        messages: list[dict[str, str]] | None = None,
    ) -> LLMResponse:
        """Request a single non-streamed reply.

        Retries timeouts, connection errors and 5xx responses with
        exponential backoff, up to ``config.max_retries`` extra attempts.

        Args:
            prompt: User message
            system_prompt: Optional system message placed first
            temperature: Sampling temperature override
            messages: Earlier conversation turns placed before the prompt

        Returns:
            LLMResponse with the reply text

        Raises:
            LLMTimeoutError: If the request times out after all retries
            LLMConnectionError: If the server is unreachable after all retries
            LLMAPIError: If the server returns an error or malformed body
        """
        client = self._get_client()
        payload = self._build_payload(prompt, system_prompt, temperature, messages, False)
        max_retries = self.config.max_retries

        for attempt in range(max_retries + 1):
            backoff = self.initial_backoff * (2**attempt)
            try:
                logger.debug(
                    "llm_completion_request",
                    attempt=attempt + 1,
                    max_attempts=max_retries + 1,
                    prompt_length=len(prompt),
                )

                response = await client.post(COMPLETIONS_ENDPOINT, json=payload)

                if response.status_code == 200:
                    result = self._parse_completion(response)
                    logger.info(
                        "llm_completion_received",
                        content_length=len(result.content),
                        finish_reason=result.finish_reason,
                        attempt=attempt + 1,
                    )
                    return result

                if 500 <= response.status_code < 600 and attempt < max_retries:
                    logger.warning(
                        "llm_server_error_retry",
                        status_code=response.status_code,
                        attempt=attempt + 1,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue

                raise LLMAPIError(_describe_error(response))

            except httpx.TimeoutException as e:
                if attempt < max_retries:
                    logger.warning(
                        "llm_timeout_retry",
                        attempt=attempt + 1,
                        backoff_seconds=backoff,
                        error=str(e),
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.error(
                    "llm_timeout_exhausted",
                    max_retries=max_retries,
                    timeout_seconds=self.config.timeout_seconds,
                )
                raise LLMTimeoutError(f"Request timed out after {max_retries} retries") from e

            except (httpx.ConnectError, httpx.NetworkError) as e:
                if attempt < max_retries:
                    logger.warning(
                        "llm_connection_error_retry",
                        attempt=attempt + 1,
                        backoff_seconds=backoff,
                        error=str(e),
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.error(
                    "llm_connection_exhausted",
                    url=self.config.url,
                    max_retries=max_retries,
                )
                raise LLMConnectionError(
                    f"Failed to connect to language model at {self.config.url}"
                ) from e

        raise LLMClientError("Unexpected retry loop exit")

    async def stream(
        self,
        prompt: str,
        on_chunk: ChunkCallback,
        system_prompt: str | None = None,
        temperature: float | None = None,
        messages: list[dict[str, str]] | None = None,
    ) -> LLMResponse:
        """Request a streamed reply, passing each text delta to ``on_chunk``.

        Streams are not retried; a partially delivered reply cannot be
        replayed safely to the callback.

        Returns:
            LLMResponse with the concatenated reply text

        Raises:
            LLMTimeoutError: If the request times out
            LLMConnectionError: If the server is unreachable
            LLMAPIError: If the server returns an error status
        """
        client = self._get_client()
        payload = self._build_payload(prompt, system_prompt, temperature, messages, True)
        parts: list[str] = []
        finish_reason: str | None = None
        model: str | None = None

        try:
            async with client.stream("POST", COMPLETIONS_ENDPOINT, json=payload) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise LLMAPIError(_describe_error(response))

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break

                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError:
                        logger.warning("llm_stream_bad_event", data=data[:200])
                        continue

                    model = event.get("model", model)
                    for choice in event.get("choices") or []:
                        delta = (choice.get("delta") or {}).get("content")
                        if delta:
                            parts.append(delta)
                            on_chunk(delta)
                        if choice.get("finish_reason"):
                            finish_reason = choice["finish_reason"]

        except httpx.TimeoutException as e:
            logger.error("llm_stream_timeout", timeout_seconds=self.config.timeout_seconds)
            raise LLMTimeoutError("Streaming request timed out") from e
        except (httpx.ConnectError, httpx.NetworkError) as e:
            logger.error("llm_stream_connection_failed", url=self.config.url, error=str(e))
            raise LLMConnectionError(
                f"Failed to connect to language model at {self.config.url}"
            ) from e

        content = "".join(parts)
        logger.info(
            "llm_stream_completed",
            content_length=len(content),
            chunk_count=len(parts),
            finish_reason=finish_reason,
        )
        return LLMResponse(content=content, model=model, finish_reason=finish_reason)

    async def health_check(self) -> bool:
        """Check whether the server answers the model listing endpoint.

        Returns:
            True if the server responded with 200, False otherwise
        """
        client = self._get_client()

        try:
            response = await client.get("/v1/models")
        except (httpx.TimeoutException, httpx.ConnectError, httpx.NetworkError) as e:
            logger.warning("llm_health_check_error", url=self.config.url, error=str(e))
            return False

        if response.status_code == 200:
            logger.info("llm_health_check_passed", url=self.config.url)
            return True

        logger.warning(
            "llm_health_check_failed",
            url=self.config.url,
            status_code=response.status_code,
        )
        return False

    @staticmethod
    def _parse_completion(response: httpx.Response) -> LLMResponse:
        try:
            data = response.json()
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMAPIError(f"Invalid response format: {e}") from e

        if not isinstance(content, str):
            raise LLMAPIError("Invalid response format: 'content' is not a string")

        return LLMResponse(
            content=content,
            model=data.get("model"),
            finish_reason=choice.get("finish_reason"),
        )


def _describe_error(response: httpx.Response) -> str:
    message = f"API error: HTTP {response.status_code}"
    try:
        return f"{message}: {response.json()}"
    except ValueError:
        return f"{message}: {response.text}"
