"""
NeuroSynth DCS - Circuit Breaker Unit Tests
===========================================

Tests for the LLM provider circuit breaker and retry helper.
"""

import asyncio

import pytest

from dcsynth.shared.exceptions import LLMResponseFormatError, LLMTimeoutError, LLMUnavailableError
from dcsynth.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    get_circuit_health,
    retry_with_backoff,
)


@pytest.fixture
def circuit_breaker():
    """Create a fresh circuit breaker for testing."""
    return CircuitBreaker(
        name="test",
        failure_threshold=3,
        reset_timeout=0.2,  # Short timeout for tests
        counted_exceptions=(LLMTimeoutError, LLMUnavailableError),
    )


async def fail(breaker, error):
    try:
        async with breaker:
            raise error
    except type(error):
        pass


async def force_open(breaker):
    for i in range(breaker.failure_threshold):
        await fail(breaker, LLMTimeoutError(f"Simulated timeout {i}"))


# =============================================================================
# Circuit Breaker Tests
# =============================================================================

class TestCircuitBreaker:
    """Tests for circuit breaker state transitions."""

    @pytest.mark.asyncio
    async def test_circuit_starts_closed(self, circuit_breaker):
        assert circuit_breaker.state == CircuitState.CLOSED
        assert circuit_breaker.is_closed

    @pytest.mark.asyncio
    async def test_circuit_opens_after_failures(self, circuit_breaker):
        """Consecutive provider failures open the circuit."""
        await force_open(circuit_breaker)
        assert circuit_breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_circuit_rejects(self, circuit_breaker):
        """An open circuit fails fast with an unavailable error."""
        await force_open(circuit_breaker)

        with pytest.raises(CircuitOpenError):
            async with circuit_breaker:
                pass
        assert circuit_breaker.stats.rejected_calls == 1

    @pytest.mark.asyncio
    async def test_circuit_open_error_is_unavailable(self):
        assert issubclass(CircuitOpenError, LLMUnavailableError)

    @pytest.mark.asyncio
    async def test_format_errors_not_counted(self, circuit_breaker):
        """A malformed response means the provider is up."""
        for _ in range(5):
            await fail(circuit_breaker, LLMResponseFormatError("bad json"))

        assert circuit_breaker.state == CircuitState.CLOSED
        assert circuit_breaker.stats.failed_calls == 0

    @pytest.mark.asyncio
    async def test_half_open_then_closed(self, circuit_breaker):
        """After the reset timeout one successful trial call closes the circuit."""
        await force_open(circuit_breaker)
        await asyncio.sleep(circuit_breaker.reset_timeout + 0.1)
        assert circuit_breaker.state == CircuitState.HALF_OPEN

        async with circuit_breaker:
            pass
        assert circuit_breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_trial_call_reopens(self, circuit_breaker):
        await force_open(circuit_breaker)
        await asyncio.sleep(circuit_breaker.reset_timeout + 0.1)

        await fail(circuit_breaker, LLMUnavailableError("still down"))
        assert circuit_breaker._state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_stats_and_reset(self, circuit_breaker):
        for _ in range(2):
            async with circuit_breaker:
                pass
        await fail(circuit_breaker, LLMTimeoutError("slow"))

        stats = circuit_breaker.stats
        assert stats.total_calls == 3
        assert stats.successful_calls == 2
        assert stats.failed_calls == 1

        circuit_breaker.reset()
        assert circuit_breaker.stats.total_calls == 0

    @pytest.mark.asyncio
    async def test_health_summary(self, circuit_breaker):
        await force_open(circuit_breaker)
        health = get_circuit_health({"anthropic": circuit_breaker})

        assert health["anthropic"]["state"] == "open"
        assert health["anthropic"]["healthy"] is False
        assert health["anthropic"]["stats"]["failed"] == 3


# =============================================================================
# Retry Tests
# =============================================================================

class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise ConnectionError("reset")
            return "ok"

        assert await retry_with_backoff(flaky, max_retries=1, base_delay=0.01) == "ok"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self):
        calls = []

        async def timeout():
            calls.append(1)
            raise LLMTimeoutError("deadline")

        with pytest.raises(LLMTimeoutError):
            await retry_with_backoff(timeout, max_retries=3, base_delay=0.01)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_exhausted_raises_last_error(self):
        async def down():
            raise ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await retry_with_backoff(down, max_retries=2, base_delay=0.01)
