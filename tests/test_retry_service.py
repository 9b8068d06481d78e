"""
Tests for retry logic and circuit breakers around provider calls
"""

import asyncio

import pytest

from infrastructure.resilience.retry_service import (
    CircuitBreaker,
    CircuitBreakerState,
    RetryService,
    exponential_backoff_delay,
    is_retriable,
)
from services.ai_service.cancellation import CancellationToken
from services.errors import CircuitBreakerError, ProviderError, ProviderErrorKind


def transport_error():
    return ProviderError(ProviderErrorKind.TRANSPORT_ERROR, "Connection failed")


def provider_error():
    return ProviderError(ProviderErrorKind.PROVIDER_ERROR, "Invalid request")


class Flaky:
    """Coroutine function failing with the given errors before succeeding"""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestBackoff:
    """Test exponential backoff calculation"""

    def test_delay_grows_and_is_capped(self):
        assert 1.0 <= exponential_backoff_delay(0, 1.0, 60.0) <= 1.1
        assert 4.0 <= exponential_backoff_delay(2, 1.0, 60.0) <= 4.4
        assert 10.0 <= exponential_backoff_delay(10, 1.0, 10.0) <= 11.0

    def test_retriable_errors(self):
        assert is_retriable(transport_error())
        assert not is_retriable(provider_error())
        assert not is_retriable(ProviderError.cancelled())
        assert not is_retriable(CircuitBreakerError("open"))
        assert not is_retriable(ValueError("x"))


class TestCircuitBreaker:
    """Test circuit breaker state transitions"""

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=60, name="Test_API")
        failing = Flaky(transport_error(), transport_error(), transport_error())

        for _ in range(3):
            with pytest.raises(ProviderError):
                await breaker.execute(failing)

        assert breaker.state is CircuitBreakerState.OPEN

        # Open circuit fails fast without calling the provider
        with pytest.raises(CircuitBreakerError):
            await breaker.execute(failing)
        assert failing.calls == 3

    @pytest.mark.asyncio
    async def test_non_transient_errors_do_not_count(self):
        breaker = CircuitBreaker(failure_threshold=1, name="Test_API")

        with pytest.raises(ProviderError):
            await breaker.execute(Flaky(provider_error()))
        with pytest.raises(ProviderError):
            await breaker.execute(Flaky(ProviderError.cancelled()))

        assert breaker.state is CircuitBreakerState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_recovery(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0, name="Test_API")
        with pytest.raises(ProviderError):
            await breaker.execute(Flaky(transport_error()))
        assert breaker.state is CircuitBreakerState.OPEN

        assert await breaker.execute(Flaky()) == "ok"
        assert breaker.state is CircuitBreakerState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_failed_trial_reopens(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0, name="Test_API")
        with pytest.raises(ProviderError):
            await breaker.execute(Flaky(transport_error()))
        with pytest.raises(ProviderError):
            await breaker.execute(Flaky(transport_error()))
        assert breaker.state is CircuitBreakerState.OPEN

    def test_state_snapshot_and_reset(self):
        breaker = CircuitBreaker(failure_threshold=2, name="Test_API")
        breaker._record_failure()
        breaker._record_failure()

        state = breaker.get_state()
        assert state["state"] == "open"
        assert state["failure_count"] == 2

        breaker.reset()
        assert breaker.get_state()["state"] == "closed"


class TestRetryService:
    """Test retries with backoff"""

    def setup_method(self):
        self.service = RetryService(max_retries=2, base_delay=0.0, max_delay=0.0)

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        func = Flaky(transport_error(), transport_error())
        retries = []

        result = await self.service.retry_with_backoff(
            func, CancellationToken(), on_retry=lambda attempt, error: retries.append(attempt)
        )

        assert result == "ok"
        assert func.calls == 3
        assert retries == [1, 2]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        func = Flaky(transport_error(), transport_error(), transport_error())

        with pytest.raises(ProviderError) as exc_info:
            await self.service.retry_with_backoff(func, CancellationToken())

        assert exc_info.value.kind is ProviderErrorKind.TRANSPORT_ERROR
        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_provider_errors_not_retried(self):
        func = Flaky(provider_error())
        with pytest.raises(ProviderError):
            await self.service.retry_with_backoff(func, CancellationToken())
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_cancellation_not_retried(self):
        func = Flaky(ProviderError.cancelled())
        with pytest.raises(ProviderError) as exc_info:
            await self.service.retry_with_backoff(func, CancellationToken())
        assert exc_info.value.is_cancellation
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_backoff_sleep_is_cancellable(self):
        service = RetryService(max_retries=3, base_delay=30.0, max_delay=30.0)
        token = CancellationToken()
        func = Flaky(transport_error())
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        with pytest.raises(ProviderError) as exc_info:
            await asyncio.wait_for(service.retry_with_backoff(func, token), timeout=5)

        assert exc_info.value.is_cancellation
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_circuit_breaker_per_provider(self):
        service = RetryService(max_retries=0, base_delay=0.0, failure_threshold=1)

        with pytest.raises(ProviderError):
            await service.retry_with_circuit_breaker(Flaky(transport_error()), "claude", CancellationToken())

        with pytest.raises(CircuitBreakerError):
            await service.retry_with_circuit_breaker(Flaky(), "claude", CancellationToken())

        # Other providers are unaffected
        assert await service.retry_with_circuit_breaker(Flaky(), "gemini", CancellationToken()) == "ok"
        assert service.get_circuit_breaker("claude").name == "claude_API"

    def test_from_config(self):
        from config.app_config import RetryConfig
        service = RetryService.from_config(RetryConfig(max_retries=4, base_delay=0.5))
        assert service.max_retries == 4
        assert service.base_delay == 0.5
