"""
Circuit breaker and timeout helpers shared by the CRM and vector paths.

One CircuitBreaker instance guards one backing resource; every caller that
touches that resource must hold a reference to the same instance.
"""

import asyncio
import functools
import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
import structlog

from shared.errors import CircuitOpenError, OperationTimeoutError

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Failure-counting state machine with no I/O of its own.

    CLOSED -> OPEN after `failure_threshold` consecutive failures.
    OPEN -> HALF_OPEN once `reset_timeout` seconds have passed since opening.
    HALF_OPEN admits `half_open_max_calls` trial calls; a success closes the
    breaker, a failure reopens it with a fresh `opened_at`.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = max(1, int(failure_threshold))
        self.reset_timeout = float(reset_timeout)
        self.half_open_max_calls = max(1, int(half_open_max_calls))
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._half_open_calls = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def opened_at(self) -> Optional[float]:
        return self._opened_at

    def seconds_until_retry(self) -> Optional[float]:
        """Remaining OPEN time, or None when the breaker admits calls"""
        with self._lock:
            self._refresh()
            if self._state is not CircuitState.OPEN:
                return None
            return max(0.0, self.reset_timeout - (self._clock() - self._opened_at))

    def _refresh(self):
        # Caller holds the lock
        if self._state is CircuitState.OPEN and self._clock() - self._opened_at >= self.reset_timeout:
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0
            logger.info("Circuit breaker half-open", breaker=self.name)

    def _trip(self):
        # Caller holds the lock
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._half_open_calls = 0
        logger.warning(
            "Circuit breaker opened",
            breaker=self.name,
            failures=self._consecutive_failures,
            reset_timeout=self.reset_timeout,
        )

    def _acquire(self):
        with self._lock:
            self._refresh()
            if self._state is CircuitState.OPEN:
                retry_after = max(0.0, self.reset_timeout - (self._clock() - self._opened_at))
                raise CircuitOpenError(self.name, retry_after)
            if self._state is CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    raise CircuitOpenError(self.name)
                self._half_open_calls += 1

    def record_success(self):
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info("Circuit breaker closed", breaker=self.name)
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._opened_at = None
            self._half_open_calls = 0

    def record_failure(self):
        with self._lock:
            self._consecutive_failures += 1
            if self._state is CircuitState.HALF_OPEN:
                self._trip()
            elif self._state is CircuitState.CLOSED and self._consecutive_failures >= self.failure_threshold:
                self._trip()

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run `fn` if the breaker admits it, recording the outcome"""
        self._acquire()
        try:
            result = await fn(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def guard(self, fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Decorator form of `call`"""

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            return await self.call(fn, *args, **kwargs)

        return wrapper

    def snapshot(self) -> dict:
        retry = self.seconds_until_retry()
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self._consecutive_failures,
            "seconds_until_retry": None if retry is None else int(round(retry)),
        }


async def with_timeout(awaitable: Awaitable[T], seconds: float, operation: str) -> T:
    """
    Await with a bound, raising OperationTimeoutError on expiry.
    An httpx timeout raised inside the awaitable is reported the same way.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        raise OperationTimeoutError(operation, seconds) from e
