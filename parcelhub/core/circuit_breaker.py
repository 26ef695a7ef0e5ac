"""
Circuit Breaker (Fault Isolator)

Wraps every carrier call made by the rate aggregator. One breaker per
carrier adapter instance; state lives in process memory only.

States:
- CLOSED: Calls pass through. Each call is retried up to max_attempts
  times with a fixed delay between attempts.
- OPEN: max_attempts consecutive failures reached. Calls fail fast with
  ServiceUnavailable without touching the carrier until cooldown elapses.
- HALF_OPEN: Cooldown elapsed. A single trial call with a single attempt
  is allowed; success closes the circuit, failure re-opens it. Other
  callers are blocked while the trial is in flight.

Contract: after N consecutive failures, fail fast; one success resets
the failure count to zero.

Errors that are a definitive carrier answer (CarrierRejected, NotFound,
NotSupported) pass straight through and do not count as failures. The
carrier did answer, so they also end the consecutive-failure streak.

Concurrent calls share the breaker. Admission and every state change
happen between awaits, so no lock is needed on a single event loop.
A call that is retrying stops as soon as another call opens the circuit.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from parcelhub.core.exceptions import ServiceUnavailable, is_retryable

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Bounded-retry circuit breaker for carrier API calls.

    Attributes:
        name: Identifier for this circuit breaker (usually the carrier code)
        max_attempts: Consecutive failures before the circuit opens
        retry_delay: Seconds to sleep between attempts of one call
        cooldown: Seconds the circuit stays OPEN before a trial call
    """

    MAX_ATTEMPTS = 3
    RETRY_DELAY = 1.0
    COOLDOWN = 60.0

    def __init__(
        self,
        name: str,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        cooldown: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.max_attempts = max_attempts if max_attempts is not None else self.MAX_ATTEMPTS
        self.retry_delay = retry_delay if retry_delay is not None else self.RETRY_DELAY
        self.cooldown = cooldown if cooldown is not None else self.COOLDOWN
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._clock = clock
        self._sleep = sleep

        # State
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self._trial_in_flight = False

        # Metrics
        self.total_calls = 0
        self.total_failures = 0
        self.total_blocked = 0
        self.last_state_change: Optional[datetime] = None

        logger.debug(f"[CircuitBreaker:{self.name}] Initialized with "
                     f"max_attempts={self.max_attempts}, "
                     f"retry_delay={self.retry_delay}s, cooldown={self.cooldown}s")

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        return self._state

    @state.setter
    def state(self, new_state: CircuitState):
        """Set circuit state with logging."""
        if new_state != self._state:
            old_state = self._state
            self._state = new_state
            self.last_state_change = datetime.now(timezone.utc)
            logger.info(
                f"[CircuitBreaker:{self.name}] State changed: {old_state.value} -> {new_state.value}"
            )

    def get_retry_after_seconds(self) -> float:
        """Seconds until an OPEN circuit will allow a trial call."""
        if self._state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        elapsed = self._clock() - self.opened_at
        return max(0.0, self.cooldown - elapsed)

    def is_call_permitted(self) -> bool:
        """Check if a new call may start (an elapsed cooldown moves OPEN to HALF_OPEN)."""
        if self._state == CircuitState.OPEN:
            if self.get_retry_after_seconds() > 0:
                return False
            self.state = CircuitState.HALF_OPEN
        if self._state == CircuitState.HALF_OPEN:
            return not self._trial_in_flight
        return True

    def _blocked(self, attempts: int) -> ServiceUnavailable:
        retry_after = self.get_retry_after_seconds()
        if self._state == CircuitState.HALF_OPEN:
            reason = "trial call in progress"
        else:
            reason = "circuit open"
        logger.warning(
            f"[CircuitBreaker:{self.name}] Call blocked - {reason}. "
            f"Retry after {retry_after:.0f}s"
        )
        return ServiceUnavailable(
            f"{self.name} is unavailable ({reason})",
            circuit_name=self.name,
            attempts=attempts,
            retry_after_seconds=retry_after,
        )

    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Execute an async function with retry and circuit protection.

        Args:
            func: Async function to execute
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            Result from func

        Raises:
            ServiceUnavailable: Circuit is OPEN (or HALF_OPEN with a trial in
                flight), or max_attempts consecutive failures
            Exception: Non-retryable errors from func are re-raised unchanged
        """
        self.total_calls += 1

        if not self.is_call_permitted():
            self.total_blocked += 1
            raise self._blocked(attempts=0)

        # Claimed before the first await: concurrent callers see it immediately
        is_trial = self._state == CircuitState.HALF_OPEN
        if is_trial:
            self._trial_in_flight = True

        try:
            return await self._attempt_until_settled(func, args, kwargs)
        finally:
            if is_trial:
                self._trial_in_flight = False

    async def _attempt_until_settled(self, func, args, kwargs) -> Any:
        attempts = 0
        while True:
            attempts += 1
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                if not is_retryable(e):
                    self._on_success()
                    raise
                self._on_failure(e)
                if self._state == CircuitState.OPEN:
                    raise ServiceUnavailable(
                        f"{self.name} unavailable after {attempts} attempt(s)",
                        circuit_name=self.name,
                        attempts=attempts,
                        retry_after_seconds=self.get_retry_after_seconds(),
                    ) from e
                logger.info(
                    f"[CircuitBreaker:{self.name}] Attempt {attempts} failed "
                    f"({type(e).__name__}), retrying in {self.retry_delay}s"
                )
                await self._sleep(self.retry_delay)
                # Another call may have opened the circuit while this one slept
                if self._state != CircuitState.CLOSED:
                    self.total_blocked += 1
                    raise self._blocked(attempts=attempts) from e
                continue

            self._on_success()
            return result

    def _on_success(self):
        """Handle an answer from the carrier (a result or a definitive error)."""
        if self._state == CircuitState.OPEN:
            # Attempt started before another call opened the circuit; the
            # cooldown stands until a trial call succeeds
            return
        if self._state == CircuitState.HALF_OPEN:
            self.state = CircuitState.CLOSED
            logger.info(f"[CircuitBreaker:{self.name}] CLOSED - service recovered")
        self.failure_count = 0
        self.opened_at = None

    def _on_failure(self, error: Exception):
        """Handle failed attempt."""
        self.total_failures += 1

        if self._state == CircuitState.OPEN:
            # Already open: a late failure must not push the cooldown back
            return

        self.failure_count += 1
        if self._state == CircuitState.HALF_OPEN:
            self._open()
            logger.warning(
                f"[CircuitBreaker:{self.name}] OPENED (half-open trial failed) - "
                f"error={type(error).__name__}"
            )
        elif self.failure_count >= self.max_attempts:
            self._open()
            logger.warning(
                f"[CircuitBreaker:{self.name}] OPENED - "
                f"failures={self.failure_count}, error={type(error).__name__}"
            )

    def _open(self):
        self.state = CircuitState.OPEN
        self.opened_at = self._clock()

    def reset(self):
        """Manually reset the circuit breaker to CLOSED state."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = None
        logger.info(f"[CircuitBreaker:{self.name}] Manually reset to CLOSED")

    def get_metrics(self) -> dict:
        """Get circuit breaker metrics for observability."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self.failure_count,
            "max_attempts": self.max_attempts,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_blocked": self.total_blocked,
            "trial_in_flight": self._trial_in_flight,
            "retry_after_seconds": self.get_retry_after_seconds(),
            "last_state_change": self.last_state_change.isoformat() if self.last_state_change else None,
        }
