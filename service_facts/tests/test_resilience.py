"""
Unit tests for the circuit breaker and retry helpers used by adapters.
"""

import pytest
from unittest.mock import AsyncMock

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerManager, CircuitBreakerOpenException
from shared.retry import RetryConfig, RetryError, retry_on_exception, backoff_delay
from shared.test_helpers import FakeClock


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(failure_threshold=2, recovery_timeout=30.0, name="fact_store", clock=clock)

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        """Test the breaker opens after consecutive failures."""
        failing = AsyncMock(side_effect=ConnectionError("down"))

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(failing)

        assert breaker.is_open()
        with pytest.raises(CircuitBreakerOpenException):
            await breaker.call(failing)
        assert failing.await_count == 2

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self, breaker, clock):
        """Test a successful call after the recovery timeout closes the breaker."""
        failing = AsyncMock(side_effect=ConnectionError("down"))
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(failing)

        clock.advance(30)
        result = await breaker.call(AsyncMock(return_value="ok"))

        assert result == "ok"
        assert breaker.get_state()["state"] == "closed"
        assert breaker.get_state()["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        """Test a failed trial call reopens immediately."""
        failing = AsyncMock(side_effect=ConnectionError("down"))
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(failing)

        clock.advance(30)
        with pytest.raises(ConnectionError):
            await breaker.call(failing)

        assert breaker.is_open()

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        """Test a success between failures keeps the breaker closed."""
        with pytest.raises(ConnectionError):
            await breaker.call(AsyncMock(side_effect=ConnectionError("down")))
        await breaker.call(AsyncMock(return_value=1))
        with pytest.raises(ConnectionError):
            await breaker.call(AsyncMock(side_effect=ConnectionError("down")))

        assert not breaker.is_open()

    def test_manager_reports_registered_breakers(self, breaker):
        """Test manager state listing."""
        manager = CircuitBreakerManager()
        manager.register(breaker)
        manager.register(None)

        states = manager.get_all_states()
        assert list(states) == ["fact_store"]
        assert states["fact_store"]["failure_threshold"] == 2


class TestRetry:
    """Test cases for retry_on_exception."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        """Test retried call returns once it succeeds."""
        func = AsyncMock(side_effect=[ConnectionError("reset"), "ok"])
        sleep = AsyncMock()
        wrapped = retry_on_exception((ConnectionError,), RetryConfig(max_attempts=3, base_delay=0.1), sleep=sleep)(func)

        result = await wrapped()

        assert result == "ok"
        assert func.await_count == 2
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_retry_error(self):
        """Test RetryError carries the last exception."""
        func = AsyncMock(side_effect=ConnectionError("reset"))
        wrapped = retry_on_exception((ConnectionError,), RetryConfig(max_attempts=2, base_delay=0.1), sleep=AsyncMock())(func)

        with pytest.raises(RetryError) as exc_info:
            await wrapped()

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_exception, ConnectionError)

    @pytest.mark.asyncio
    async def test_other_exceptions_are_not_retried(self):
        """Test exceptions outside the retry set propagate at once."""
        func = AsyncMock(side_effect=ValueError("bad payload"))
        wrapped = retry_on_exception((ConnectionError,), RetryConfig(max_attempts=3))(func)

        with pytest.raises(ValueError):
            await wrapped()
        assert func.await_count == 1

    def test_delay_is_capped(self):
        """Test exponential delay respects max_delay."""
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)
        assert backoff_delay(1, config) == 1.0
        assert backoff_delay(3, config) == 4.0
        assert backoff_delay(10, config) == 5.0

    def test_linear_delay(self):
        """Test linear backoff."""
        config = RetryConfig(base_delay=0.5, jitter=False, backoff_strategy="linear")
        assert backoff_delay(3, config) == 1.5

    def test_rejects_zero_attempts(self):
        """Test a policy without attempts is refused at decoration time."""
        with pytest.raises(ValueError):
            retry_on_exception(config=RetryConfig(max_attempts=0))
