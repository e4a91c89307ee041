"""
Utility modules.
"""
from .retry import (
    CircuitBreakerConfig,
    RetryConfig,
    circuit_state,
    create_circuit_breaker,
    create_retry_decorator,
)

__all__ = [
    'CircuitBreakerConfig',
    'RetryConfig',
    'circuit_state',
    'create_circuit_breaker',
    'create_retry_decorator',
]
