"""Retry and polling policy shared by every wait loop in the package.

A ``RetryPolicy`` describes *how often* and *how long* to keep trying:

    max_attempts  total number of attempts (None = bounded only by timeout)
    backoff       function of the attempt number (1-based) returning the
                  delay before the next attempt
    timeout       overall wall-clock ceiling in seconds (None = no ceiling)

The same object drives listener binding, relationship termination polling,
security group propagation polling and consent teardown polling. ``sleep`` and
``clock`` are injectable so tests never block.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Generic, Iterator, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def fixed_backoff(delay: float) -> Callable[[int], float]:
    """Backoff returning the same delay after every attempt."""
    return lambda attempt: delay


def exponential_backoff(
    initial: float, factor: float = 2.0, max_delay: Optional[float] = None
) -> Callable[[int], float]:
    """Backoff returning ``initial * factor ** (attempt - 1)``, optionally capped."""

    def _delay(attempt: int) -> float:
        delay = initial * (factor ** (attempt - 1))
        if max_delay is not None:
            delay = min(delay, max_delay)
        return delay

    return _delay


@dataclass(frozen=True)
class PollResult(Generic[T]):
    """Outcome of ``RetryPolicy.poll``."""

    value: Optional[T]
    satisfied: bool
    attempts: int
    elapsed: float


@dataclass(frozen=True)
class RetryPolicy:
    """Explicit retry/poll policy: {max_attempts, backoff, timeout}."""

    max_attempts: Optional[int]
    backoff: Callable[[int], float]
    timeout: Optional[float] = None
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)
    clock: Callable[[], float] = field(default=time.monotonic, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts is None and self.timeout is None:
            raise ValueError("RetryPolicy needs max_attempts, timeout, or both")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def fixed(
        cls,
        delay: float,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> "RetryPolicy":
        return cls(max_attempts, fixed_backoff(delay), timeout, **kwargs)

    @classmethod
    def exponential(
        cls,
        initial: float,
        max_attempts: Optional[int] = None,
        factor: float = 2.0,
        max_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> "RetryPolicy":
        return cls(
            max_attempts,
            exponential_backoff(initial, factor, max_delay),
            timeout,
            **kwargs,
        )

    def with_clock(
        self, sleep: Callable[[float], None], clock: Callable[[], float]
    ) -> "RetryPolicy":
        """Copy of this policy driven by another sleep/clock pair."""
        return replace(self, sleep=sleep, clock=clock)

    def delays(self) -> Iterator[float]:
        """Yield the delay scheduled after each attempt (finite only if max_attempts)."""
        attempt = 1
        while self.max_attempts is None or attempt < self.max_attempts:
            yield self.backoff(attempt)
            attempt += 1

    def _may_continue(self, attempt: int, started: float, delay: float) -> bool:
        if self.max_attempts is not None and attempt >= self.max_attempts:
            return False
        if self.timeout is not None:
            elapsed = self.clock() - started
            if elapsed + delay > self.timeout:
                return False
        return True

    def poll(
        self,
        probe: Callable[[], T],
        until: Callable[[T], bool],
        delay_first: bool = False,
        description: str = "condition",
    ) -> PollResult[T]:
        """Call ``probe`` until ``until(value)`` holds or the policy is exhausted.

        With ``delay_first`` the first backoff delay is slept before the first
        probe (used when the remote side needs time to settle after an action).
        Exceptions raised by ``probe`` propagate.
        """
        started = self.clock()
        attempt = 0
        value: Optional[T] = None

        if delay_first:
            self.sleep(self.backoff(1))

        while True:
            attempt += 1
            value = probe()
            if until(value):
                return PollResult(value, True, attempt, self.clock() - started)

            delay = self.backoff(attempt + 1 if delay_first else attempt)
            if not self._may_continue(attempt, started, delay):
                logger.debug(
                    f"Gave up waiting for {description} after {attempt} attempts"
                )
                return PollResult(value, False, attempt, self.clock() - started)

            logger.debug(
                f"Waiting for {description}: attempt {attempt} not satisfied, "
                f"retrying in {delay:g}s"
            )
            self.sleep(delay)

    def call(
        self,
        func: Callable[[], T],
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        description: str = "operation",
    ) -> T:
        """Run ``func``, retrying on ``retry_on`` exceptions; re-raise the last one."""
        started = self.clock()
        attempt = 0
        while True:
            attempt += 1
            try:
                return func()
            except retry_on as e:
                delay = self.backoff(attempt)
                if not self._may_continue(attempt, started, delay):
                    raise
                logger.warning(
                    f"{description} failed (attempt {attempt}"
                    f"{'/' + str(self.max_attempts) if self.max_attempts else ''}): {e}. "
                    f"Retrying in {delay:g}s..."
                )
                self.sleep(delay)

