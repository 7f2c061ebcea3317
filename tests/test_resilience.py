"""
Quillnest Backend — Upstream Resilience Unit Tests
====================================================

What:  CircuitBreaker state machine and UpstreamCaller retry/timeout/mapping.
Why:   Both upstreams (media host, mail) rely on this layer to fail fast
       instead of stalling requests.

What we test:
    ✅ Breaker opens at the threshold and rejects calls while open
    ✅ Breaker half-opens after the recovery timeout and closes on success
    ✅ Transient errors are retried, permanent errors are not
    ✅ Slow calls become UpstreamTimeoutError
    ❌ Real SDK calls (see test_upstream_ports.py for mocked SDKs)
"""

import time

import pytest

from quillnest.exceptions import (
    CircuitOpenError,
    UpstreamServiceError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from quillnest.services.resilience import CircuitBreaker, UpstreamCaller, default_error_mapper


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestCircuitBreaker:

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker("media", failure_threshold=5, recovery_timeout=60)
        assert cb.state == CircuitBreaker.CLOSED
        assert cb.failure_count == 0
        assert cb.can_execute() is True

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker("media", failure_threshold=5, recovery_timeout=60)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == CircuitBreaker.CLOSED
        cb.can_execute()

    def test_open_circuit_rejects_calls(self):
        clock = FakeClock()
        cb = CircuitBreaker("media", failure_threshold=3, recovery_timeout=60, clock=clock)
        for _ in range(3):
            cb.record_failure()
        clock.now += 20

        with pytest.raises(CircuitOpenError) as exc_info:
            cb.can_execute()

        assert cb.state == CircuitBreaker.OPEN
        assert exc_info.value.service == "media"
        assert exc_info.value.retry_after == 40

    def test_half_open_after_recovery_timeout_then_closed(self):
        clock = FakeClock()
        cb = CircuitBreaker("mail", failure_threshold=1, recovery_timeout=30, clock=clock)
        cb.record_failure()
        clock.now += 30

        assert cb.can_execute() is True
        assert cb.state == CircuitBreaker.HALF_OPEN

        cb.record_success()
        assert cb.state == CircuitBreaker.CLOSED
        assert cb.failure_count == 0

    def test_failed_trial_call_reopens(self):
        clock = FakeClock()
        cb = CircuitBreaker("mail", failure_threshold=1, recovery_timeout=30, clock=clock)
        cb.record_failure()
        clock.now += 31
        cb.can_execute()

        cb.record_failure()

        assert cb.state == CircuitBreaker.OPEN
        with pytest.raises(CircuitOpenError):
            cb.can_execute()

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker("media", failure_threshold=5)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        assert cb.failure_count == 0


def _caller(**kwargs):
    defaults = dict(
        service="media",
        error_mapper=default_error_mapper("media"),
        timeout=1.0,
        max_attempts=3,
        min_wait=0,
        max_wait=0,
    )
    defaults.update(kwargs)
    return UpstreamCaller(**defaults)


class Flaky:
    """Raises the given errors in order, then returns `result`."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestUpstreamCaller:

    @pytest.mark.asyncio
    async def test_success_passes_arguments_through(self):
        caller = _caller()
        result = await caller.call("echo", lambda a, b=None: (a, b), 1, b=2)
        assert result == (1, 2)
        assert caller.breaker.state == CircuitBreaker.CLOSED

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self):
        func = Flaky(ConnectionResetError("reset"), TimeoutError("slow"))
        caller = _caller(max_attempts=3)

        assert await caller.call("upload", func) == "ok"
        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_transient_errors_exhaust_attempts(self):
        func = Flaky(*(ConnectionError("down") for _ in range(5)))
        caller = _caller(max_attempts=2)

        with pytest.raises(UpstreamUnavailableError):
            await caller.call("upload", func)

        assert func.calls == 2
        assert caller.breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self):
        func = Flaky(ValueError("bad request"))
        caller = _caller(max_attempts=3)

        with pytest.raises(UpstreamServiceError) as exc_info:
            await caller.call("upload", func)

        assert not isinstance(exc_info.value, UpstreamUnavailableError)
        assert exc_info.value.retryable is False
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_slow_call_times_out(self):
        caller = _caller(timeout=0.05, max_attempts=1)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await caller.call("upload", time.sleep, 0.5)

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_open_breaker_skips_the_call(self):
        breaker = CircuitBreaker("media", failure_threshold=1, recovery_timeout=60)
        breaker.record_failure()
        func = Flaky()
        caller = _caller(breaker=breaker)

        with pytest.raises(CircuitOpenError):
            await caller.call("upload", func)

        assert func.calls == 0

    @pytest.mark.asyncio
    async def test_repeated_failures_open_the_breaker(self):
        caller = _caller(
            max_attempts=1,
            breaker=CircuitBreaker("media", failure_threshold=2, recovery_timeout=60),
        )
        for _ in range(2):
            with pytest.raises(UpstreamServiceError):
                await caller.call("upload", Flaky(ValueError("nope")))

        assert caller.breaker.state == CircuitBreaker.OPEN

    def test_from_settings(self, test_settings):
        caller = UpstreamCaller.from_settings("mail", default_error_mapper("mail"), test_settings)
        assert caller.max_attempts == test_settings.retry_max_attempts
        assert caller.breaker.failure_threshold == test_settings.cb_failure_threshold
        assert caller.breaker.service == "mail"
