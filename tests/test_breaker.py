"""
Tests for circuit breakers.
"""

import pytest

from fakes import FakeMonotonic
from wallet_guard.core.breaker import (
    CLOSED,
    HALF_OPEN,
    OPENED,
    BreakerRegistry,
    CircuitBreaker,
)
from wallet_guard.core.errors import CircuitOpenError, ErrorKind


class Boom(Exception):
    pass


def _fail():
    raise Boom("upstream down")


def _trip(breaker, times):
    for _ in range(times):
        with pytest.raises(Boom):
            breaker.execute(_fail)


class TestCircuitBreaker:
    """Test state transitions."""

    def setup_method(self):
        self.clock = FakeMonotonic()
        self.transitions = []
        self.breaker = CircuitBreaker(
            "openai",
            failure_threshold=3,
            reset_timeout=30.0,
            failure_window=60.0,
            clock=self.clock,
            listener=lambda name, t: self.transitions.append((name, t)),
        )

    def test_success_passes_through(self):
        """Closed breakers return the call's result."""
        assert self.breaker.execute(lambda: "ok") == "ok"
        assert self.breaker.state() == CLOSED

    def test_opens_after_threshold(self):
        """The breaker opens after the failure threshold."""
        _trip(self.breaker, 3)

        assert self.breaker.state() == OPENED
        assert self.transitions == [("openai", OPENED)]

    def test_open_breaker_rejects_without_calling(self):
        """An open breaker fails fast."""
        _trip(self.breaker, 3)
        calls = []

        with pytest.raises(CircuitOpenError) as exc_info:
            self.breaker.execute(lambda: calls.append(1))

        assert calls == []
        assert exc_info.value.kind == ErrorKind.SERVICE_UNAVAILABLE
        assert "openai" in exc_info.value.message

    def test_success_resets_failure_count(self):
        """A success clears the failure count."""
        _trip(self.breaker, 2)
        self.breaker.execute(lambda: "ok")
        _trip(self.breaker, 2)

        assert self.breaker.state() == CLOSED

    def test_failures_outside_window_start_over(self):
        """Failures older than the window are forgotten."""
        _trip(self.breaker, 2)
        self.clock.advance(61)
        _trip(self.breaker, 1)

        assert self.breaker.state() == CLOSED
        assert self.breaker.consecutive_failures == 1

    def test_probe_success_closes(self):
        """A successful half-open probe closes the breaker."""
        _trip(self.breaker, 3)
        self.clock.advance(30)

        assert self.breaker.execute(lambda: "recovered") == "recovered"

        assert self.breaker.state() == CLOSED
        assert self.transitions == [
            ("openai", OPENED), ("openai", HALF_OPEN), ("openai", CLOSED),
        ]

    def test_probe_failure_reopens(self):
        """A failed half-open probe reopens the breaker."""
        _trip(self.breaker, 3)
        self.clock.advance(30)

        _trip(self.breaker, 1)

        assert self.breaker.state() == OPENED
        with pytest.raises(CircuitOpenError):
            self.breaker.execute(lambda: "ok")
        assert self.transitions[-2:] == [("openai", HALF_OPEN), ("openai", OPENED)]

    def test_only_one_probe_at_a_time(self):
        """Concurrent callers are rejected while a probe runs."""
        _trip(self.breaker, 3)
        self.clock.advance(30)
        concurrent = []

        def probe():
            # A second caller arrives while the probe is in flight
            with pytest.raises(CircuitOpenError):
                self.breaker.execute(lambda: concurrent.append(1))
            return "probe-ok"

        assert self.breaker.execute(probe) == "probe-ok"
        assert concurrent == []
        assert self.breaker.state() == CLOSED

    def test_uncounted_errors_do_not_trip(self):
        """Errors the predicate ignores do not count."""
        for _ in range(5):
            with pytest.raises(Boom):
                self.breaker.execute(_fail, counts_as_failure=lambda exc: False)

        assert self.breaker.state() == CLOSED
        assert self.breaker.consecutive_failures == 0

    def test_uncounted_error_ends_probe(self):
        """An ignored error still frees the probe slot."""
        _trip(self.breaker, 3)
        self.clock.advance(30)

        with pytest.raises(Boom):
            self.breaker.execute(_fail, counts_as_failure=lambda exc: False)

        assert self.breaker.state() == CLOSED
        assert self.breaker.execute(lambda: "ok") == "ok"

    def test_listener_errors_are_contained(self):
        """A failing listener does not break the call."""
        def bad_listener(name, transition):
            raise RuntimeError("listener down")

        breaker = CircuitBreaker("x", failure_threshold=1, clock=self.clock, listener=bad_listener)
        _trip(breaker, 1)
        assert breaker.state() == OPENED

    def test_invalid_threshold(self):
        """A non-positive threshold is rejected."""
        with pytest.raises(ValueError):
            CircuitBreaker("x", failure_threshold=0)


class TestBreakerRegistry:
    """Test per-dependency breaker lookup."""

    def test_one_breaker_per_name(self):
        """The registry returns the same breaker for a name."""
        registry = BreakerRegistry(failure_threshold=1, clock=FakeMonotonic())
        assert registry.get("openai") is registry.get("openai")
        assert registry.get("openai") is not registry.get("google")

    def test_breakers_are_independent(self):
        """Tripping one breaker leaves others closed."""
        registry = BreakerRegistry(failure_threshold=1, clock=FakeMonotonic())
        _trip(registry.get("openai"), 1)

        assert registry.states() == {"openai": OPENED}
        assert registry.get("anthropic").execute(lambda: "ok") == "ok"
        assert registry.states() == {"openai": OPENED, "anthropic": CLOSED}
