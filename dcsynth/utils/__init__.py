"""Resilience utilities."""

from dcsynth.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    get_circuit_health,
    retry_with_backoff,
)
