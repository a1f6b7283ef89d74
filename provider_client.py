"""LLM provider client: per-call timeout, exponential-backoff retry, soft fallback"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, FrozenSet, Optional, TypeVar

import openai

from models.caption import DEFAULT_VIRAL_SCORE, ERROR_CATEGORY
from models.errors import ProviderFatalError, ProviderTransientError, RetryExhausted
from models.generation import ProviderRequest, RawProviderResponse

logger = logging.getLogger("ProviderClient")

T = TypeVar("T")

Transport = Callable[[ProviderRequest], Awaitable[str]]
Sleep = Callable[[float], Awaitable[Any]]

TRANSIENT_STATUSES = frozenset({429, 500, 503})
DEFAULT_TIMEOUT = 30.0

FALLBACK_MESSAGES = {
    "rate_limited": "Rate limit exceeded. Please try again in a moment.",
    "provider_unavailable": "The caption service is temporarily unavailable. Please try again shortly.",
    "connection_failed": "Could not reach the caption service. Check your connection and try again.",
    "unknown": "Unable to generate caption. Please try again.",
}
CONTEXT_LENGTH_MESSAGE = "Image is too complex. Please try a different image or reduce image quality."


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry and how long to wait in between"""
    max_retries: int = 3
    base_delay: float = 1.0  # Seconds
    retryable_statuses: FrozenSet[int] = TRANSIENT_STATUSES

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1``: 1s, 2s, 4s, ..."""
        return self.base_delay * (2 ** attempt)


def status_of(exc: BaseException) -> Optional[int]:
    """HTTP status carried by a provider error, if any"""
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def is_transient(exc: BaseException, policy: RetryPolicy = RetryPolicy()) -> bool:
    if isinstance(exc, ProviderTransientError):
        return True
    # openai.APITimeoutError subclasses APIConnectionError
    if isinstance(exc, (asyncio.TimeoutError, openai.APIConnectionError)):
        return True
    return status_of(exc) in policy.retryable_statuses


async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    transient: Callable[[BaseException], bool] = is_transient,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run ``operation(attempt)`` until it succeeds or transient retries run out.

    Non-transient errors propagate unchanged on the first occurrence.
    Cancellation is never retried. Raises ``RetryExhausted`` after
    ``policy.max_attempts`` transient failures.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(policy.max_attempts):
        try:
            return await operation(attempt)
        except Exception as exc:
            if not transient(exc):
                raise
            last_error = exc
            if attempt + 1 >= policy.max_attempts:
                break
            delay = policy.delay(attempt)
            logger.warning(
                "Transient provider error on attempt %s/%s (%s); retrying in %.1fs",
                attempt + 1,
                policy.max_attempts,
                exc,
                delay,
            )
            await sleep(delay)
    raise RetryExhausted(last_error, policy.max_attempts)


def classify_failure(exc: Optional[BaseException]) -> str:
    status = status_of(exc) if exc is not None else None
    if status == 429:
        return "rate_limited"
    if status is not None and status >= 500:
        return "provider_unavailable"
    if isinstance(exc, (asyncio.TimeoutError, openai.APIConnectionError)):
        return "connection_failed"
    return "unknown"


def error_caption_body(message: str) -> str:
    """Well-formed provider-style body holding a single error caption"""
    return json.dumps(
        {
            "captions": [
                {
                    "text": message,
                    "category": ERROR_CATEGORY,
                    "hashtags": [],
                    "emojis": [],
                    "viral_score": DEFAULT_VIRAL_SCORE,
                }
            ]
        }
    )


def fallback_response(model: str, last_error: Optional[BaseException], attempts: int) -> RawProviderResponse:
    reason = classify_failure(last_error)
    return RawProviderResponse(
        content=error_caption_body(FALLBACK_MESSAGES[reason]),
        model=model,
        attempts=attempts,
        degraded=True,
        reason=reason,
    )


class OpenAIChatTransport:
    """Chat/completions call through the official ``openai`` async client.

    The client is created lazily so the transport can be constructed
    without credentials (tests, config inspection). Its built-in retries are
    disabled; ``RetryingProviderClient`` owns retry behaviour.
    """

    def __init__(self, client: Optional[openai.AsyncOpenAI] = None, **client_kwargs):
        self._client = client
        self._client_kwargs = {"max_retries": 0, **client_kwargs}

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(**self._client_kwargs)
        return self._client

    async def __call__(self, request: ProviderRequest) -> str:
        response = await self.client.chat.completions.create(**request.to_api_kwargs())
        if not response.choices:
            raise ProviderTransientError("Provider returned no choices")
        return response.choices[0].message.content or ""


class RetryingProviderClient:
    """Issues provider calls with a hard timeout and transient-error retry.

    Transient failures (429/500/503, connection errors, timeouts) are
    retried with exponential backoff. When retries run out the client
    returns a degraded response whose body is a valid error-caption payload
    instead of raising, so downstream parsing has a single path. Any other
    failure raises ``ProviderFatalError`` immediately.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        policy: Optional[RetryPolicy] = None,
        timeout: float = DEFAULT_TIMEOUT,
        sleep: Sleep = asyncio.sleep,
    ):
        self.transport = transport or OpenAIChatTransport()
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep

    async def call(self, request: ProviderRequest) -> RawProviderResponse:
        attempts = 0

        async def _attempt(attempt: int) -> str:
            nonlocal attempts
            attempts = attempt + 1
            logger.info("Calling provider model=%s attempt=%s", request.model, attempts)
            return await asyncio.wait_for(self.transport(request), timeout=self.timeout)

        try:
            content = await with_retry(
                _attempt,
                self.policy,
                transient=lambda exc: is_transient(exc, self.policy),
                sleep=self._sleep,
            )
        except RetryExhausted as exc:
            logger.error("Provider retries exhausted after %s attempts: %s", exc.attempts, exc.last_error)
            return fallback_response(request.model, exc.last_error, exc.attempts)
        except ProviderFatalError:
            raise
        except Exception as exc:
            status = status_of(exc)
            logger.error("Provider rejected request (status=%s): %s", status, exc)
            user_message = CONTEXT_LENGTH_MESSAGE if "maximum context length" in str(exc) else None
            raise ProviderFatalError(
                f"Provider call failed: {exc}", status_code=status, user_message=user_message
            ) from exc

        logger.info("Provider responded after %s attempt(s) (%s chars)", attempts, len(content))
        return RawProviderResponse(content=content, model=request.model, attempts=attempts)
