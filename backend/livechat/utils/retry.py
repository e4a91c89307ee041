"""
Resilience helpers for calls to external collaborators.
Retries with exponential backoff (tenacity) and an async circuit breaker
(aiobreaker), configured per collaborator.

Version: 1.0.0
"""
import logging
from datetime import timedelta
from typing import Any, Callable, Optional, Tuple, Type

from aiobreaker import CircuitBreaker, CircuitBreakerError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


class RetryConfig:
    """Retry behaviour for an async call."""

    def __init__(
        self,
        max_attempts: int = 3,
        wait_multiplier: float = 0.5,
        wait_min: float = 0.5,
        wait_max: float = 10.0,
        retry_exceptions: Tuple[Type[BaseException], ...] = (Exception,)
    ):
        """
        Args:
            max_attempts: Attempts including the first call
            wait_multiplier: Exponential backoff multiplier
            wait_min: Minimum wait between attempts (seconds)
            wait_max: Maximum wait between attempts (seconds)
            retry_exceptions: Exception types worth another attempt
        """
        self.max_attempts = max_attempts
        self.wait_multiplier = wait_multiplier
        self.wait_min = wait_min
        self.wait_max = wait_max
        self.retry_exceptions = retry_exceptions


class CircuitBreakerConfig:
    """Circuit breaker thresholds for one collaborator."""

    def __init__(self, fail_max: int = 5, timeout: float = 60.0, name: Optional[str] = None):
        """
        Args:
            fail_max: Consecutive failures before the circuit opens
            timeout: Seconds before an open circuit lets a probe through
            name: Breaker name used in logs and health output
        """
        self.fail_max = fail_max
        self.timeout = timeout
        self.name = name or "default"


def create_retry_decorator(config: RetryConfig) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Build a tenacity decorator from a retry configuration.

    The last exception is re-raised once attempts run out.
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.wait_multiplier,
            min=config.wait_min,
            max=config.wait_max
        ),
        retry=retry_if_exception_type(config.retry_exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


def create_circuit_breaker(config: CircuitBreakerConfig) -> CircuitBreaker:
    breaker = CircuitBreaker(
        fail_max=config.fail_max,
        timeout_duration=timedelta(seconds=config.timeout),
        name=config.name
    )
    logger.info(
        f"Created circuit breaker '{config.name}': "
        f"fail_max={config.fail_max}, timeout={config.timeout}s"
    )
    return breaker


def circuit_state(breaker: CircuitBreaker) -> str:
    """Breaker state as a lowercase label: closed, open or half_open."""
    return breaker.current_state.name.lower()


__all__ = [
    'RetryConfig',
    'CircuitBreakerConfig',
    'CircuitBreaker',
    'CircuitBreakerError',
    'create_retry_decorator',
    'create_circuit_breaker',
    'circuit_state',
]
