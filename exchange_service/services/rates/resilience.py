from __future__ import annotations

"""Timeout, retry and circuit breaker policies around the upstream fetch.

Each policy is a plain decorator over a ``fetch(currency) -> Quote`` callable
so the stack is visible where it is assembled (ResilientRateFetcher):

    with_retry(with_circuit_breaker(with_timeout(translate_upstream_errors(fetch))))

Per attempt: upstream 404 -> NotFoundError (not retried, no breaker penalty);
any other failure or a timeout -> TransientError (retried, counted by the
breaker). An open circuit raises CircuitOpenError, an UnavailableError that
retry lets through untouched. Exhausted retries raise UnavailableError.
"""
import functools
import logging
import threading
import time
from collections import deque
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, Optional, TypeVar

from exchange_service.models.quote import Quote
from .errors import NotFoundError, TransientError, UnavailableError, UpstreamError

logger = logging.getLogger("exchange_service.resilience")

Fetch = Callable[[str], Quote]
T = TypeVar("T")


@dataclass(frozen=True)
class ResiliencePolicy:
    max_attempts: int = 3
    retry_delay_seconds: float = 1.0
    timeout_seconds: float = 5.0
    request_volume_threshold: int = 4
    failure_ratio: float = 0.5
    delay_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> "ResiliencePolicy":  # type: ignore[no-untyped-def]
        return cls(
            max_attempts=settings.retry_max_attempts,
            retry_delay_seconds=settings.retry_delay_seconds,
            timeout_seconds=settings.timeout_seconds,
            request_volume_threshold=settings.circuit_breaker_request_volume,
            failure_ratio=settings.circuit_breaker_failure_ratio,
            delay_seconds=settings.circuit_breaker_delay_seconds,
        )


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(UnavailableError):
    pass


class CircuitBreaker:
    """Rolling-window circuit breaker.

    The window holds the outcomes of the last `request_volume_threshold` calls.
    Once full, a failure ratio at or above `failure_ratio` opens the circuit for
    `delay_seconds`. After that a single trial call is let through (half-open);
    its outcome closes or reopens the circuit. Outcomes of calls that started
    before the circuit opened are ignored.
    """

    def __init__(
        self,
        name: str,
        *,
        request_volume_threshold: int = 4,
        failure_ratio: float = 0.5,
        delay_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if request_volume_threshold < 1:
            raise ValueError("request_volume_threshold must be at least 1")
        if not (0 < failure_ratio <= 1):
            raise ValueError("failure_ratio must be in (0, 1]")
        self.name = name
        self.failure_ratio = failure_ratio
        self.delay_seconds = delay_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._window: Deque[bool] = deque(maxlen=request_volume_threshold)
        self._state = CircuitState.CLOSED
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state()

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        is_trial = self._acquire()
        try:
            result = fn(*args, **kwargs)
        except NotFoundError:
            # The upstream answered; a missing currency is not a health signal
            self._on_success(is_trial)
            raise
        except Exception:
            self._on_failure(is_trial)
            raise
        self._on_success(is_trial)
        return result

    def reset(self) -> None:
        with self._lock:
            self._close()

    # Internal (callers hold self._lock) ---------------------------
    def _current_state(self) -> CircuitState:
        if self._state is CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.delay_seconds:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                logger.info("circuit %s half-open", self.name)
        return self._state

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False
        logger.warning(
            "circuit %s opened for %.1fs", self.name, self.delay_seconds
        )

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._opened_at = None
        self._trial_in_flight = False
        self._window.clear()

    # Outcome bookkeeping -----------------------------------------
    def _acquire(self) -> bool:
        with self._lock:
            state = self._current_state()
            if state is CircuitState.CLOSED:
                return False
            if state is CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            raise CircuitOpenError(f"circuit {self.name} is {state.value}")

    def _on_success(self, is_trial: bool) -> None:
        with self._lock:
            if is_trial:
                self._close()
                logger.info("circuit %s closed after successful trial", self.name)
            elif self._state is CircuitState.CLOSED:
                self._window.append(True)

    def _on_failure(self, is_trial: bool) -> None:
        with self._lock:
            if is_trial:
                self._open()
                return
            if self._state is not CircuitState.CLOSED:
                return
            self._window.append(False)
            if len(self._window) == self._window.maxlen:
                failures = self._window.count(False)
                # at or above the ratio trips, as MicroProfile failureRatio does
                if failures / len(self._window) >= self.failure_ratio:
                    self._open()


# Policy decorators ------------------------------------------------


def translate_upstream_errors(fetch: Fetch) -> Fetch:
    @functools.wraps(fetch)
    def wrapper(currency: str) -> Quote:
        try:
            return fetch(currency)
        except UpstreamError as e:
            if e.is_not_found:
                raise NotFoundError(str(e), currency=currency) from e
            raise TransientError(str(e), currency=currency) from e
        except (NotFoundError, TransientError, UnavailableError):
            raise
        except Exception as e:
            logger.warning("unexpected error fetching %s", currency, exc_info=True)
            raise TransientError(f"{type(e).__name__}: {e}", currency=currency) from e

    return wrapper


def with_timeout(fetch: Fetch, timeout_seconds: float, executor: Executor) -> Fetch:
    """Abandon an attempt that runs longer than `timeout_seconds`.

    The worker thread is not interrupted; its eventual result is discarded.
    """

    @functools.wraps(fetch)
    def wrapper(currency: str) -> Quote:
        future = executor.submit(fetch, currency)
        try:
            return future.result(timeout=timeout_seconds)
        except FutureTimeoutError as e:
            future.cancel()
            raise TransientError(
                f"fetch for {currency} exceeded {timeout_seconds}s", currency=currency
            ) from e

    return wrapper


def with_circuit_breaker(
    fetch: Fetch, breaker_for: Callable[[str], CircuitBreaker]
) -> Fetch:
    @functools.wraps(fetch)
    def wrapper(currency: str) -> Quote:
        return breaker_for(currency).call(fetch, currency)

    return wrapper


def with_retry(
    fetch: Fetch,
    max_attempts: int,
    delay_seconds: float,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> Fetch:
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    @functools.wraps(fetch)
    def wrapper(currency: str) -> Quote:
        last_error: Optional[TransientError] = None
        for attempt in range(1, max_attempts + 1):
            try:
                return fetch(currency)
            except TransientError as e:
                last_error = e
                logger.warning(
                    "attempt %d/%d for %s failed: %s", attempt, max_attempts, currency, e
                )
                if attempt < max_attempts:
                    sleep(delay_seconds)
        raise UnavailableError(
            f"{currency} unavailable after {max_attempts} attempts", currency=currency
        ) from last_error

    return wrapper


class ResilientRateFetcher:
    """Upstream fetch protected by timeout, per-currency breaker and retry."""

    def __init__(
        self,
        fetch: Fetch,
        policy: Optional[ResiliencePolicy] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        executor: Optional[Executor] = None,
        max_workers: int = 16,
    ) -> None:
        self.policy = policy or ResiliencePolicy()
        self._clock = clock
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="upstream"
        )
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._breakers_lock = threading.Lock()

        attempt = with_timeout(
            translate_upstream_errors(fetch), self.policy.timeout_seconds, self._executor
        )
        guarded = with_circuit_breaker(attempt, self.breaker_for)
        self._protected = with_retry(
            guarded,
            self.policy.max_attempts,
            self.policy.retry_delay_seconds,
            sleep=sleep,
        )

    def breaker_for(self, currency: str) -> CircuitBreaker:
        key = currency.upper()
        with self._breakers_lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    key,
                    request_volume_threshold=self.policy.request_volume_threshold,
                    failure_ratio=self.policy.failure_ratio,
                    delay_seconds=self.policy.delay_seconds,
                    clock=self._clock,
                )
                self._breakers[key] = breaker
            return breaker

    def protected_fetch(self, currency: str) -> Quote:
        return self._protected(currency.upper())

    def circuit_states(self) -> Dict[str, str]:
        with self._breakers_lock:
            breakers = list(self._breakers.items())
        return {name: b.state.value for name, b in breakers}

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)
