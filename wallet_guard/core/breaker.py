"""
Circuit breakers guarding upstream dependencies.

State is held per process in explicit objects; a restart resets every
breaker to closed.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, TypeVar

from .errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

OPENED = "opened"
HALF_OPEN = "half_open"
CLOSED = "closed"

TransitionListener = Callable[[str, str], None]


def _always(exc: BaseException) -> bool:
    return True


class CircuitBreaker:
    """Fail-fast guard around one dependency.

    Opens after failure_threshold consecutive failures, each no more than
    failure_window seconds after the previous one. While open, calls are
    rejected without running. After reset_timeout a single trial call is
    let through; success closes the breaker, failure re-opens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        failure_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        listener: Optional[TransitionListener] = None,
    ):
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be > 0")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failure_window = failure_window
        self.clock = clock
        self.listener = listener

        self.consecutive_failures = 0
        self.last_failure_at: Optional[float] = None
        self.is_open = False
        self._probing = False
        self._lock = threading.Lock()

    def execute(
        self,
        operation: Callable[[], T],
        counts_as_failure: Callable[[BaseException], bool] = _always,
    ) -> T:
        """Run operation through the breaker.

        Args:
            operation: Zero-argument callable performing the guarded call
            counts_as_failure: Decides whether a raised exception reflects
                dependency health; exceptions it rejects propagate untouched

        Returns:
            The operation's result

        Raises:
            CircuitOpenError: If the breaker is open or a trial call is in flight
        """
        transition = None
        with self._lock:
            now = self.clock()
            if self.is_open:
                if now - self.last_failure_at < self.reset_timeout:
                    raise CircuitOpenError(self.name)
                self.is_open = False
                self.consecutive_failures = 0
                self._probing = True
                probe = True
                transition = HALF_OPEN
            elif self._probing:
                raise CircuitOpenError(self.name)
            else:
                probe = False
        self._notify(transition)

        try:
            result = operation()
        except Exception as exc:
            if counts_as_failure(exc):
                self._on_failure(probe)
            elif probe:
                self._end_probe()
            raise

        self._on_success(probe)
        return result

    def state(self) -> str:
        with self._lock:
            if self.is_open:
                return OPENED
            if self._probing:
                return HALF_OPEN
            return CLOSED

    def _on_success(self, probe: bool) -> None:
        transition = None
        with self._lock:
            if probe:
                self._probing = False
                transition = CLOSED
            self.consecutive_failures = 0
        self._notify(transition)

    def _end_probe(self) -> None:
        with self._lock:
            self._probing = False

    def _on_failure(self, probe: bool) -> None:
        transition = None
        with self._lock:
            now = self.clock()
            if (
                self.last_failure_at is not None
                and now - self.last_failure_at > self.failure_window
            ):
                self.consecutive_failures = 0
            self.consecutive_failures += 1
            self.last_failure_at = now
            if probe:
                self._probing = False
            if probe or self.consecutive_failures >= self.failure_threshold:
                if not self.is_open:
                    transition = OPENED
                self.is_open = True
        self._notify(transition)

    def _notify(self, transition: Optional[str]) -> None:
        if transition is None:
            return
        logger.info("Circuit breaker %s %s", self.name, transition)
        if self.listener is not None:
            try:
                self.listener(self.name, transition)
            except Exception:
                logger.exception("Circuit breaker listener failed for %s", self.name)


class BreakerRegistry:
    """Lazily creates one breaker per dependency name with shared settings."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        failure_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        listener: Optional[TransitionListener] = None,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failure_window = failure_window
        self.clock = clock
        self.listener = listener
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    failure_threshold=self.failure_threshold,
                    reset_timeout=self.reset_timeout,
                    failure_window=self.failure_window,
                    clock=self.clock,
                    listener=self.listener,
                )
                self._breakers[name] = breaker
            return breaker

    def states(self) -> Dict[str, str]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.state() for b in breakers}
