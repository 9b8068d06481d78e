"""
Resilience infrastructure - handles retry logic, circuit breakers, and fault tolerance.
"""

from .retry_service import (
    RetryService,
    CircuitBreaker,
    CircuitBreakerState,
    exponential_backoff_delay,
    is_retriable,
)

__all__ = [
    'RetryService',
    'CircuitBreaker',
    'CircuitBreakerState',
    'exponential_backoff_delay',
    'is_retriable',
]
