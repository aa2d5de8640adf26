"""Completion API client with rate-limit and network retry.

Sends OpenAI-style chat completion requests:

    POST {base_url}/chat/completions
    {"model": ..., "messages": [...], "temperature": ..., "max_tokens": ...}

and returns the text of the first choice.

Each call runs through a small state machine:

    PENDING --success--------------------------------> DONE
    PENDING --429 / network error, attempts left-----> RETRYING --sleep--> PENDING
    PENDING --429 / network error, attempts used up--> FAILED (UpstreamExhausted)
    PENDING --any other non-2xx----------------------> FAILED (UpstreamError)

Rate limits and network failures share one attempt counter and one
exponential backoff schedule. The sleep function is injectable so tests
can run the schedule without real delays.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx
import structlog

from chat_responder.config import Settings
from chat_responder.errors import UpstreamError, UpstreamExhausted, UpstreamRateLimited
from chat_responder.services.context import ChatMessage

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Transport failures treated like a 429: retried with backoff.
RETRYABLE_NETWORK_ERRORS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


class CallState(str, Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff schedule.

    With the defaults, a call makes at most 3 attempts and sleeps 1s then
    2s between them.
    """
    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0

    def delay_for(self, retry_number: int) -> float:
        """Backoff before retry number *retry_number* (1-based)."""
        delay = self.initial_delay * (self.multiplier ** (retry_number - 1))
        return min(delay, self.max_delay)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
            multiplier=settings.retry_multiplier,
            max_delay=settings.retry_max_delay,
        )


@dataclass
class CompletionCall:
    """State of one logical completion call across its attempts."""
    model: str
    policy: RetryPolicy
    state: CallState = CallState.PENDING
    attempts: int = 0
    delays: list[float] = field(default_factory=list)
    last_error: Optional[BaseException] = None

    @property
    def attempts_left(self) -> bool:
        return self.attempts < self.policy.max_attempts

    def begin_attempt(self) -> None:
        self.state = CallState.PENDING
        self.attempts += 1

    def schedule_retry(self, error: BaseException) -> float:
        self.last_error = error
        delay = self.policy.delay_for(len(self.delays) + 1)
        self.delays.append(delay)
        self.state = CallState.RETRYING
        logger.warning(
            "completion.retry",
            model=self.model,
            attempt=self.attempts,
            max_attempts=self.policy.max_attempts,
            delay=delay,
            error_type=type(error).__name__,
        )
        return delay

    def fail(self, error: BaseException) -> None:
        self.last_error = error
        self.state = CallState.FAILED

    def finish(self) -> None:
        self.state = CallState.DONE


def _extract_text_content(value: Any) -> str:
    """Normalize model message content payloads to plain text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts: list[str] = []
        for item in value:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "".join(parts)
    return str(value)


class CompletionClient:
    """
    Client for the external chat completion API.

    Args:
        http_client: Shared pooled httpx.AsyncClient
        api_key: Bearer credential for the completion API
        base_url: API base, e.g. ``https://api.openai.com/v1``
        retry_policy: Backoff schedule for 429s and network failures
        sleep: Awaitable sleep used between attempts

    Example:
        client = CompletionClient(http, api_key="sk-...")
        text = await client.complete(messages, "gpt-4", 0.7, 1000)
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._http = http_client
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Run one completion call, retrying rate limits and network failures.

        Args:
            retry_policy: Overrides the client's policy for this call
            timeout: Per-request timeout in seconds (client default if None)

        Returns:
            str: Text of the first choice ("" if the API returned none)

        Raises:
            UpstreamError: Non-2xx status other than 429, or a malformed body (not retried)
            UpstreamExhausted: Every attempt hit a 429 or network failure
        """
        payload = {
            "model": model,
            "messages": [m.model_dump() for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        call = CompletionCall(model=model, policy=retry_policy or self._policy)

        while True:
            call.begin_attempt()
            try:
                response = await self._post(payload, timeout)
                text = self._first_choice_text(response)
            except UpstreamError as exc:
                call.fail(exc)
                logger.warning(
                    "completion.upstream_error",
                    model=model,
                    attempt=call.attempts,
                    upstream_status=exc.upstream_status,
                )
                raise
            except (UpstreamRateLimited, *RETRYABLE_NETWORK_ERRORS) as exc:
                if not call.attempts_left:
                    call.fail(exc)
                    logger.error(
                        "completion.exhausted",
                        model=model,
                        attempts=call.attempts,
                        error_type=type(exc).__name__,
                    )
                    raise UpstreamExhausted(call.attempts, exc) from exc
                await self._sleep(call.schedule_retry(exc))
                continue

            call.finish()
            logger.info("completion.success", model=model, attempts=call.attempts)
            return text

    async def _post(self, payload: dict[str, Any], timeout: Optional[float]) -> httpx.Response:
        response = await self._http.post(
            self._url,
            json=payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=httpx.USE_CLIENT_DEFAULT if timeout is None else timeout,
        )
        if response.status_code == 429:
            raise UpstreamRateLimited(response.text)
        if not response.is_success:
            raise UpstreamError(response.status_code, response.text)
        return response

    @staticmethod
    def _first_choice_text(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(response.status_code, response.text) from exc
        if not isinstance(data, dict):
            raise UpstreamError(response.status_code, response.text)

        choices = data.get("choices") or []
        if not choices:
            return ""
        choice = choices[0] if isinstance(choices, list) else None
        if not isinstance(choice, dict):
            raise UpstreamError(response.status_code, response.text)
        message = choice.get("message") or {}
        if not isinstance(message, dict):
            raise UpstreamError(response.status_code, response.text)
        return _extract_text_content(message.get("content"))
