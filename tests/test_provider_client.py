"""Tests for provider retry, timeout and fallback behaviour"""

import asyncio
import json

import httpx
import openai
import pytest

from conftest import FakeTransport, ProviderHTTPError, RecordingSleep, captions_body
from models.errors import ProviderFatalError, ProviderTransientError, RetryExhausted
from models.generation import ProviderRequest
from provider_client import (
    CONTEXT_LENGTH_MESSAGE,
    FALLBACK_MESSAGES,
    OpenAIChatTransport,
    RetryingProviderClient,
    RetryPolicy,
    classify_failure,
    is_transient,
    with_retry,
)

REQUEST = ProviderRequest(
    model="gpt-4o",
    messages=({"role": "user", "content": "hi"},),
)


def make_client(transport, sleep=None, **kwargs):
    return RetryingProviderClient(transport=transport, sleep=sleep or RecordingSleep(), **kwargs)


class TestRetryPolicy:
    """Tests for backoff arithmetic and transient classification"""

    def test_delays_double(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 4
        assert [policy.delay(i) for i in range(3)] == [1.0, 2.0, 4.0]

    def test_transient_statuses(self):
        for status in (429, 500, 503):
            assert is_transient(ProviderHTTPError(status))
        for status in (400, 401, 404):
            assert not is_transient(ProviderHTTPError(status))

    def test_timeouts_and_connection_errors_are_transient(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        assert is_transient(asyncio.TimeoutError())
        assert is_transient(openai.APIConnectionError(request=request))
        assert is_transient(openai.APITimeoutError(request=request))

    def test_classify_failure(self):
        assert classify_failure(ProviderHTTPError(429)) == "rate_limited"
        assert classify_failure(ProviderHTTPError(503)) == "provider_unavailable"
        assert classify_failure(asyncio.TimeoutError()) == "connection_failed"
        assert classify_failure(None) == "unknown"


class TestWithRetry:
    """Tests for the generic retry helper"""

    def test_returns_first_success(self, recording_sleep):
        attempts = []

        async def operation(attempt):
            attempts.append(attempt)
            if attempt < 2:
                raise ProviderHTTPError(503)
            return "done"

        result = asyncio.run(with_retry(operation, RetryPolicy(), sleep=recording_sleep))
        assert result == "done"
        assert attempts == [0, 1, 2]
        assert recording_sleep.delays == [1.0, 2.0]

    def test_exhaustion_raises(self, recording_sleep):
        async def operation(attempt):
            raise ProviderHTTPError(429)

        with pytest.raises(RetryExhausted) as excinfo:
            asyncio.run(with_retry(operation, RetryPolicy(max_retries=2), sleep=recording_sleep))
        assert excinfo.value.attempts == 3
        assert recording_sleep.delays == [1.0, 2.0]

    def test_fatal_error_not_retried(self, recording_sleep):
        async def operation(attempt):
            raise ProviderHTTPError(400)

        with pytest.raises(ProviderHTTPError):
            asyncio.run(with_retry(operation, RetryPolicy(), sleep=recording_sleep))
        assert recording_sleep.delays == []


class TestRetryingProviderClient:
    """Tests for the provider client contract"""

    def test_success_returns_content(self):
        transport = FakeTransport(captions_body("Sunny days"))
        response = asyncio.run(make_client(transport).call(REQUEST))

        assert response.content == captions_body("Sunny days")
        assert response.degraded is False
        assert response.attempts == 1
        assert transport.calls == 1

    def test_always_rate_limited_yields_error_caption(self, recording_sleep):
        """Exactly 4 calls with 1s/2s/4s waits, then an Error caption body"""
        transport = FakeTransport(ProviderHTTPError(429))
        response = asyncio.run(make_client(transport, sleep=recording_sleep).call(REQUEST))

        assert transport.calls == 4
        assert recording_sleep.delays == [1.0, 2.0, 4.0]
        assert response.degraded is True
        assert response.reason == "rate_limited"
        assert response.attempts == 4

        body = json.loads(response.content)
        caption = body["captions"][0]
        assert caption["category"] == "Error"
        assert caption["text"] == FALLBACK_MESSAGES["rate_limited"]

    def test_recovers_after_transient_failure(self, recording_sleep):
        transport = FakeTransport(ProviderHTTPError(500), captions_body("Back online"))
        response = asyncio.run(make_client(transport, sleep=recording_sleep).call(REQUEST))

        assert transport.calls == 2
        assert response.attempts == 2
        assert response.degraded is False
        assert recording_sleep.delays == [1.0]

    def test_empty_completion_is_retried(self, recording_sleep):
        transport = FakeTransport(ProviderTransientError("Provider returned no choices"), captions_body("Second try"))
        response = asyncio.run(make_client(transport, sleep=recording_sleep).call(REQUEST))

        assert transport.calls == 2
        assert response.degraded is False
        assert json.loads(response.content)["captions"][0]["text"] == "Second try"

    def test_fatal_status_raises_immediately(self, recording_sleep):
        transport = FakeTransport(ProviderHTTPError(400, "bad request"))
        with pytest.raises(ProviderFatalError) as excinfo:
            asyncio.run(make_client(transport, sleep=recording_sleep).call(REQUEST))

        assert excinfo.value.status_code == 400
        assert transport.calls == 1
        assert recording_sleep.delays == []

    def test_context_length_message(self):
        transport = FakeTransport(ProviderHTTPError(400, "This model's maximum context length is 128000 tokens"))
        with pytest.raises(ProviderFatalError) as excinfo:
            asyncio.run(make_client(transport).call(REQUEST))
        assert excinfo.value.user_message == CONTEXT_LENGTH_MESSAGE

    def test_timeout_is_retried_then_degrades(self, recording_sleep):
        """Hanging calls are cut off by the per-attempt timeout"""

        async def hanging(request):
            await asyncio.sleep(10)
            return "never"

        client = make_client(hanging, sleep=recording_sleep, timeout=0.01, policy=RetryPolicy(max_retries=1))
        response = asyncio.run(client.call(REQUEST))

        assert response.degraded is True
        assert response.reason == "connection_failed"
        assert response.attempts == 2
        assert recording_sleep.delays == [1.0]


class TestOpenAIChatTransport:
    """Tests for the openai SDK adapter"""

    def test_extracts_message_content(self):
        class Message:
            content = '{"captions": []}'

        class Choice:
            message = Message()

        class Completion:
            choices = [Choice()]

        class Completions:
            def __init__(self):
                self.kwargs = None

            async def create(self, **kwargs):
                self.kwargs = kwargs
                return Completion()

        class Chat:
            completions = Completions()

        class Client:
            chat = Chat()

        client = Client()
        transport = OpenAIChatTransport(client=client)
        content = asyncio.run(transport(REQUEST))

        assert content == '{"captions": []}'
        assert client.chat.completions.kwargs["model"] == "gpt-4o"
        assert "nonce" not in client.chat.completions.kwargs

    def test_no_choices_is_transient(self):
        """A completion without choices is retried rather than parsed as an empty reply"""

        class Completions:
            async def create(self, **kwargs):
                return type("Completion", (), {"choices": []})()

        class Chat:
            completions = Completions()

        class Client:
            chat = Chat()

        transport = OpenAIChatTransport(client=Client())
        with pytest.raises(ProviderTransientError) as excinfo:
            asyncio.run(transport(REQUEST))
        assert is_transient(excinfo.value)
