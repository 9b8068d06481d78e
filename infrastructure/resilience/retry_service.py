"""
Resilience service for retry logic, circuit breakers, and fault tolerance of provider calls.
"""

import asyncio
import random
from typing import Awaitable, Callable, Dict, Optional, TypeVar
from datetime import datetime
from enum import Enum

from services.ai_service.cancellation import CancellationToken
from services.errors import CircuitBreakerError, ProviderError
from utils.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def exponential_backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds

    Returns:
        Delay in seconds
    """
    # Exponential backoff: base_delay * 2^attempt
    delay = base_delay * (2 ** attempt)

    # Cap at maximum delay
    delay = min(delay, max_delay)

    # Add jitter to avoid thundering herd effect
    jitter = random.uniform(0, 0.1 * delay)

    return delay + jitter


def is_retriable(error: BaseException) -> bool:
    """Only transient transport failures are retried; never cancellation or an open circuit"""
    return (
        isinstance(error, ProviderError)
        and error.is_transient
        and not isinstance(error, CircuitBreakerError)
    )


class CircuitBreakerState(Enum):
    """Circuit breaker states"""
    CLOSED = "closed"      # Normal operation, requests pass through
    OPEN = "open"          # Circuit is open, requests are blocked
    HALF_OPEN = "half_open"  # Testing if service has recovered


class CircuitBreaker:
    """
    Circuit breaker for one provider's API

    States:
    - CLOSED: Normal operation, all requests pass through
    - OPEN: Circuit is open, requests fail fast without hitting the API
    - HALF_OPEN: Testing recovery, limited requests allowed through

    Only transient transport failures count towards opening the circuit.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        name: str = "CircuitBreaker"
    ):
        """
        Initialize circuit breaker

        Args:
            failure_threshold: Number of failures before opening circuit
            recovery_timeout: Seconds to wait before attempting recovery
            name: Name for logging and identification
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name

        # State tracking
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = CircuitBreakerState.CLOSED

        logger.debug(f"CircuitBreaker '{name}' initialized with threshold={failure_threshold}, timeout={recovery_timeout}s")

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt recovery"""
        if self.last_failure_time is None:
            return False

        time_since_failure = datetime.now() - self.last_failure_time
        return time_since_failure.total_seconds() >= self.recovery_timeout

    def _record_success(self):
        """Record a successful operation"""
        self.failure_count = 0
        self.success_count += 1

        if self.state == CircuitBreakerState.HALF_OPEN:
            # Recovery successful, close the circuit
            self.state = CircuitBreakerState.CLOSED
            logger.info(f"CircuitBreaker '{self.name}' recovered - state: CLOSED")

    def _record_failure(self):
        """Record a failed operation"""
        self.failure_count += 1
        self.last_failure_time = datetime.now()

        if self.state == CircuitBreakerState.HALF_OPEN:
            # Recovery attempt failed, open circuit again
            self.state = CircuitBreakerState.OPEN
            logger.warning(f"CircuitBreaker '{self.name}' recovery failed - state: OPEN")

        elif self.state == CircuitBreakerState.CLOSED and self.failure_count >= self.failure_threshold:
            # Threshold reached, open the circuit
            self.state = CircuitBreakerState.OPEN
            logger.warning(f"CircuitBreaker '{self.name}' opened - failures: {self.failure_count}")

    def can_execute(self) -> bool:
        """Check if a request can be executed"""
        if self.state == CircuitBreakerState.CLOSED:
            return True

        elif self.state == CircuitBreakerState.OPEN:
            if self._should_attempt_reset():
                # Time to test recovery
                self.state = CircuitBreakerState.HALF_OPEN
                logger.info(f"CircuitBreaker '{self.name}' attempting recovery - state: HALF_OPEN")
                return True
            return False

        # HALF_OPEN lets one trial request through
        return True

    async def execute(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Execute a coroutine function with circuit breaker protection

        Args:
            func: Zero-argument coroutine function to execute

        Returns:
            Function result if successful

        Raises:
            CircuitBreakerError: If circuit is open
            Original exception: If function fails
        """
        if not self.can_execute():
            remaining_time = self.recovery_timeout
            if self.last_failure_time:
                elapsed = (datetime.now() - self.last_failure_time).total_seconds()
                remaining_time = max(0, self.recovery_timeout - elapsed)

            raise CircuitBreakerError(
                f"{self.name} appears to be down. Retry in {remaining_time:.0f}s."
            )

        try:
            result = await func()
        except ProviderError as e:
            if e.is_transient:
                self._record_failure()
            raise

        self._record_success()
        return result

    def get_state(self) -> dict:
        """Get current circuit breaker state for monitoring"""
        remaining_timeout = 0
        if self.last_failure_time and self.state == CircuitBreakerState.OPEN:
            elapsed = (datetime.now() - self.last_failure_time).total_seconds()
            remaining_timeout = max(0, self.recovery_timeout - elapsed)

        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "failure_threshold": self.failure_threshold,
            "remaining_timeout": remaining_timeout,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None
        }

    def reset(self):
        """Manually reset the circuit breaker to CLOSED state"""
        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.last_failure_time = None
        logger.info(f"CircuitBreaker '{self.name}' manually reset - state: CLOSED")


class RetryService:
    """
    Service for handling retry logic and circuit breakers.
    Keeps one circuit breaker per provider.
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 20.0,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
    ):
        self.logger = get_logger(__name__)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._circuit_breakers: Dict[str, CircuitBreaker] = {}

    @classmethod
    def from_config(cls, retry_config) -> 'RetryService':
        return cls(
            max_retries=retry_config.max_retries,
            base_delay=retry_config.base_delay,
            max_delay=retry_config.max_delay,
            failure_threshold=retry_config.failure_threshold,
            recovery_timeout=retry_config.recovery_timeout,
        )

    def get_circuit_breaker(self, name: str) -> CircuitBreaker:
        """Get or create the circuit breaker for a provider"""
        if name not in self._circuit_breakers:
            self._circuit_breakers[name] = CircuitBreaker(
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
                name=f"{name}_API",
            )
        return self._circuit_breakers[name]

    async def retry_with_backoff(
        self,
        func: Callable[[], Awaitable[T]],
        token: CancellationToken,
        max_retries: Optional[int] = None,
        on_retry: Optional[Callable[[int, Exception], None]] = None
    ) -> T:
        """
        Execute a coroutine function with retry logic and exponential backoff

        Args:
            func: Zero-argument coroutine function to execute
            token: Cancellation token; backoff sleeps abort when it fires
            max_retries: Maximum number of retry attempts (service default when None)
            on_retry: Optional callback for retry events (attempt_number, exception)

        Returns:
            Function result if successful

        Raises:
            The last exception if all retries are exhausted
        """
        if max_retries is None:
            max_retries = self.max_retries

        attempt = 0
        while True:
            try:
                result = await func()
            except ProviderError as e:
                if not is_retriable(e):
                    raise
                if attempt >= max_retries:
                    self.logger.error(f"Provider call failed after {max_retries} retries: {e.detail}")
                    raise

                delay = exponential_backoff_delay(attempt, self.base_delay, self.max_delay)
                self.logger.warning(f"Attempt {attempt + 1} failed ({e.kind.value}), retrying in {delay:.2f}s")

                if on_retry:
                    on_retry(attempt + 1, e)

                await token.run(asyncio.sleep(delay))
                attempt += 1
                continue

            if attempt > 0:
                self.logger.info(f"Provider call succeeded after {attempt} retries")
            return result

    async def retry_with_circuit_breaker(
        self,
        func: Callable[[], Awaitable[T]],
        name: str,
        token: CancellationToken,
        on_retry: Optional[Callable[[int, Exception], None]] = None
    ) -> T:
        """
        Execute a coroutine function with both retry logic and circuit breaker protection

        Raises:
            CircuitBreakerError: If the provider's circuit is open
            The last exception if all retries are exhausted
        """
        circuit_breaker = self.get_circuit_breaker(name)

        async def wrapped_func():
            return await circuit_breaker.execute(func)

        return await self.retry_with_backoff(wrapped_func, token, on_retry=on_retry)
