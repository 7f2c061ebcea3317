"""
Quillnest Backend — Upstream Resilience (Circuit Breaker + Retry + Timeout)
=============================================================================

What:  Shared machinery for calling the media host and the mail provider.
Why:   Both SDKs are blocking and both sit on the request path. A slow or
       failing upstream must not pin the event loop or stall every request.
How:   `UpstreamCaller.call()` wraps one SDK call in four layers:
           1. Circuit breaker check (fail fast while the upstream is down)
           2. tenacity retry with exponential backoff + jitter
           3. asyncio.wait_for timeout per attempt
           4. asyncio.to_thread so the blocking SDK call runs off the loop
Who:   Owned by CloudinaryMediaService and SendGridMailService (one caller,
       and therefore one breaker, per upstream).

Error Contract:
    Everything that leaves `call()` is an UpstreamServiceError subclass:
        UpstreamTimeoutError      attempt exceeded the timeout (retried)
        UpstreamUnavailableError  transient upstream failure (retried)
        UpstreamServiceError      permanent rejection (not retried)
        CircuitOpenError          breaker open, no call made
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from quillnest.exceptions import (
    CircuitOpenError,
    UpstreamServiceError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Implements the circuit breaker pattern to prevent cascade failures.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow the next request through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Thread Safety:
        Not thread-safe (plain counters). All callers run on the event loop;
        only the SDK call itself is pushed to a worker thread.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        service: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            service: Upstream name used in errors and logs ("media", "mail")
            failure_threshold: Consecutive failures before opening the circuit
            recovery_timeout: Seconds to wait before testing recovery
            clock: Monotonic time source (replaced in tests)
        """
        self.service = service
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Check whether a call may go through.

        Raises:
            CircuitOpenError if the circuit is OPEN and the recovery timeout
            has not elapsed yet.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = self._clock() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker [%s] transitioning to HALF_OPEN after %.1fs",
                    self.service,
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = max(int(self.recovery_timeout - elapsed), 1)
            raise CircuitOpenError(service=self.service, recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker [%s] transitioning to CLOSED (service recovered)", self.service)
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker [%s] returning to OPEN (test request failed)", self.service)
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker [%s] OPENING after %d consecutive failures",
                self.service,
                self.failure_count,
            )
            self.state = self.OPEN


def is_retryable(exc: BaseException) -> bool:
    """Retry predicate: only transient upstream failures are retried."""
    return isinstance(exc, UpstreamServiceError) and exc.retryable


# ══════════════════════════════════════════════════════════════════════════
# Upstream Caller
# ══════════════════════════════════════════════════════════════════════════

class UpstreamCaller:
    """
    Runs blocking SDK calls for one upstream with breaker, retry and timeout.

    Args:
        service: Upstream name ("media", "mail")
        error_mapper: Translates an SDK exception into an UpstreamServiceError
            subclass. It decides what is transient (retried) and what is
            permanent (raised immediately).
        timeout: Seconds allowed per attempt
        max_attempts / min_wait / max_wait: tenacity retry policy
        breaker: Circuit breaker for this upstream
    """

    def __init__(
        self,
        service: str,
        error_mapper: Callable[[Exception], UpstreamServiceError],
        timeout: float = 15.0,
        max_attempts: int = 3,
        min_wait: float = 1.0,
        max_wait: float = 8.0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.service = service
        self.error_mapper = error_mapper
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.breaker = breaker or CircuitBreaker(service)

    @classmethod
    def from_settings(
        cls,
        service: str,
        error_mapper: Callable[[Exception], UpstreamServiceError],
        settings,
    ) -> "UpstreamCaller":
        return cls(
            service=service,
            error_mapper=error_mapper,
            timeout=settings.upstream_timeout_seconds,
            max_attempts=settings.retry_max_attempts,
            min_wait=settings.retry_min_wait,
            max_wait=settings.retry_max_wait,
            breaker=CircuitBreaker(
                service,
                failure_threshold=settings.cb_failure_threshold,
                recovery_timeout=settings.cb_recovery_timeout,
            ),
        )

    async def call(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Execute `func(*args, **kwargs)` in a worker thread under the full
        resilience stack.

        Raises:
            CircuitOpenError: breaker is open, the call was not attempted
            UpstreamServiceError (or subclass): the call failed
        """
        self.breaker.can_execute()

        started = time.perf_counter()
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(is_retryable),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential_jitter(
                    initial=self.min_wait,
                    max=self.max_wait,
                    jitter=1,
                ),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    result = await self._attempt(operation, func, *args, **kwargs)
        except UpstreamServiceError as e:
            self.breaker.record_failure()
            logger.error(
                "%s.%s failed after %.0fms: %s",
                self.service,
                operation,
                (time.perf_counter() - started) * 1000,
                e.message,
            )
            raise

        self.breaker.record_success()
        logger.debug(
            "%s.%s completed in %.0fms",
            self.service,
            operation,
            (time.perf_counter() - started) * 1000,
        )
        return result

    async def _attempt(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("%s.%s timed out after %.1fs", self.service, operation, self.timeout)
            raise UpstreamTimeoutError(service=self.service, timeout=self.timeout)
        except UpstreamServiceError:
            raise
        except Exception as e:
            mapped = self.error_mapper(e)
            logger.warning(
                "%s.%s attempt failed (%s, retryable=%s): %s",
                self.service,
                operation,
                type(e).__name__,
                mapped.retryable,
                str(e),
            )
            raise mapped from e


def default_error_mapper(service: str) -> Callable[[Exception], UpstreamServiceError]:
    """Connection-level errors are transient; anything else is permanent."""

    def mapper(exc: Exception) -> UpstreamServiceError:
        # ConnectionError and socket timeouts are OSError subclasses
        if isinstance(exc, OSError):
            return UpstreamUnavailableError(
                message=f"The {service} service is temporarily unreachable. Please try again.",
                service=service,
                context={"error_type": type(exc).__name__},
            )
        return UpstreamServiceError(
            message=f"The {service} service rejected the request.",
            service=service,
            context={"error_type": type(exc).__name__},
        )

    return mapper
