"""
Circuit Breaker for the LLM Provider
====================================

Keeps extraction responsive when the LLM provider is down: after repeated
provider failures the circuit opens and calls fail fast with
LLMUnavailableError, so the pipeline drops to pattern-only immediately
instead of waiting on a timeout for every request.

Only provider-health failures count against the circuit; a malformed
response means the provider is up.

Usage:
    breaker = CircuitBreaker(name="anthropic", failure_threshold=3)

    async with breaker:
        response = await client.messages.create(...)
"""

import asyncio
import time
import logging
from typing import Any, Callable, Dict, Optional, Tuple, Type
from enum import Enum
from dataclasses import dataclass

from dcsynth.shared.exceptions import LLMUnavailableError

logger = logging.getLogger(__name__)


# =============================================================================
# CIRCUIT BREAKER STATES
# =============================================================================

class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Provider failing, reject immediately
    HALF_OPEN = "half_open"  # Probing recovery


@dataclass
class CircuitStats:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    last_failure_time: Optional[float] = None
    consecutive_failures: int = 0
    consecutive_successes: int = 0


class CircuitOpenError(LLMUnavailableError):
    """Raised when the circuit is open and rejecting calls."""
    pass


# =============================================================================
# CIRCUIT BREAKER
# =============================================================================

class CircuitBreaker:
    """
    Async context manager guarding calls to an external provider.

    States:
    - CLOSED: calls pass through
    - OPEN: calls rejected until reset_timeout elapses
    - HALF_OPEN: a limited number of trial calls decide recovery
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        success_threshold: int = 1,
        reset_timeout: float = 60.0,
        half_open_max_calls: int = 1,
        counted_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    ):
        """
        Args:
            name: Provider name for logging
            failure_threshold: Consecutive failures before opening
            success_threshold: Successes in half-open before closing
            reset_timeout: Seconds before a trial call is allowed
            half_open_max_calls: Concurrent trial calls allowed in half-open
            counted_exceptions: Exception types that count as provider failures
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout = reset_timeout
        self.half_open_max_calls = half_open_max_calls
        self.counted_exceptions = counted_exceptions

        self._state = CircuitState.CLOSED
        self._stats = CircuitStats()
        self._lock = asyncio.Lock()
        self._half_open_calls = 0

    @property
    def state(self) -> CircuitState:
        """Current state, applying the OPEN -> HALF_OPEN transition lazily."""
        if self._state == CircuitState.OPEN and self._stats.last_failure_time:
            if time.monotonic() - self._stats.last_failure_time >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                logger.info(f"Circuit {self.name}: OPEN -> HALF_OPEN (reset timeout)")
        return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    async def __aenter__(self):
        async with self._lock:
            state = self.state

            if state == CircuitState.OPEN:
                self._stats.rejected_calls += 1
                raise CircuitOpenError(
                    f"Circuit {self.name} is OPEN; provider unavailable for up to {self.reset_timeout}s"
                )

            if state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    self._stats.rejected_calls += 1
                    raise CircuitOpenError(f"Circuit {self.name} is HALF_OPEN; trial call already in flight")
                self._half_open_calls += 1

            self._stats.total_calls += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        async with self._lock:
            if exc_type is None or not issubclass(exc_type, self.counted_exceptions):
                self._on_success()
            else:
                self._on_failure(exc_val)
        return False

    def _on_success(self):
        self._stats.successful_calls += 1
        self._stats.consecutive_successes += 1
        self._stats.consecutive_failures = 0

        if self._state == CircuitState.HALF_OPEN and self._stats.consecutive_successes >= self.success_threshold:
            self._state = CircuitState.CLOSED
            logger.info(f"Circuit {self.name}: HALF_OPEN -> CLOSED (recovered)")

    def _on_failure(self, error: BaseException):
        self._stats.failed_calls += 1
        self._stats.last_failure_time = time.monotonic()
        self._stats.consecutive_failures += 1
        self._stats.consecutive_successes = 0

        logger.warning(f"Circuit {self.name}: failure #{self._stats.consecutive_failures}: {error!r}")

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(f"Circuit {self.name}: HALF_OPEN -> OPEN (trial call failed)")
        elif self._state == CircuitState.CLOSED and self._stats.consecutive_failures >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(f"Circuit {self.name}: CLOSED -> OPEN (threshold reached)")

    def reset(self):
        """Manually reset circuit to closed state."""
        self._state = CircuitState.CLOSED
        self._stats = CircuitStats()
        self._half_open_calls = 0


# =============================================================================
# RETRY WITH BACKOFF
# =============================================================================

async def retry_with_backoff(
    func: Callable,
    max_retries: int = 1,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    exponential: bool = True,
    retryable_exceptions: tuple = (ConnectionError,)
) -> Any:
    """
    Call an async function, retrying only on retryable_exceptions.

    Args:
        func: Zero-argument async callable
        max_retries: Retries after the first attempt
        base_delay: Initial delay in seconds
        max_delay: Delay cap
        exponential: Double the delay per attempt
        retryable_exceptions: Exceptions that trigger a retry; anything
            else propagates immediately

    Raises:
        The last retryable exception once retries are exhausted
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except retryable_exceptions as e:
            if attempt == max_retries:
                logger.error(f"All {max_retries + 1} attempts failed: {e}")
                raise

            delay = min(base_delay * (2 ** attempt), max_delay) if exponential else base_delay
            logger.warning(f"Attempt {attempt + 1} failed: {e}. Retrying in {delay:.1f}s")
            await asyncio.sleep(delay)


def get_circuit_health(breakers: Dict[str, CircuitBreaker]) -> Dict[str, Any]:
    """Summarize breaker state for the health endpoint."""
    return {
        name: {
            "state": breaker.state.value,
            "stats": {
                "total_calls": breaker.stats.total_calls,
                "successful": breaker.stats.successful_calls,
                "failed": breaker.stats.failed_calls,
                "rejected": breaker.stats.rejected_calls,
                "consecutive_failures": breaker.stats.consecutive_failures,
            },
            "healthy": breaker.is_closed,
        }
        for name, breaker in breakers.items()
    }
