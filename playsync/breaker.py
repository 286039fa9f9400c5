import asyncio
import logging
import random
import threading
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

class CircuitState(str, Enum):
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Failing fast
    HALF_OPEN = "half_open"  # Testing if the service has recovered

class CircuitBreaker:
    """
    Circuit breaker with exponential backoff retries for remote calls.

    After ``failure_threshold`` consecutive failures the circuit opens and calls
    are rejected without being invoked. Once ``timeout`` seconds have passed since
    the last failure, the next call is let through as a trial (half-open); other
    calls are rejected until it completes. A successful trial closes the circuit
    and notifies the recovery listeners.
    """

    def __init__(self, failure_threshold: int = 5, timeout: float = 60.0,
                 jitter: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.jitter = jitter
        self._clock = clock
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._state = CircuitState.CLOSED
        self._trial_in_flight = False
        self._lock = threading.Lock()
        self._listeners: List[Callable[[], None]] = []

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def add_listener(self, callback: Callable[[], None]):
        """Registers a callback fired each time the circuit recovers (half-open -> closed)."""
        self._listeners.append(callback)

    async def execute(self, operation: Callable[[], Awaitable[T]],
                      max_retries: int = 3, base_delay: float = 1.0) -> Optional[T]:
        """
        Runs ``operation`` with breaker protection and up to ``max_retries`` retries.

        Returns None without invoking the operation when the circuit is open.
        Re-raises the last exception when every attempt fails.
        """
        for attempt in range(max_retries + 1):
            if not self._can_execute():
                logger.warning(f"Circuit breaker is {self.state.value}, skipping execution attempt {attempt + 1}")
                return None

            try:
                result = await operation()
            except asyncio.CancelledError:
                self._release_trial()
                raise
            except Exception as e:
                logger.warning(f"Call attempt {attempt + 1} failed: {e}")
                self._on_failure()

                if attempt == max_retries:
                    logger.error(f"All {max_retries + 1} attempts failed, giving up")
                    raise

                wait_time = base_delay * (2 ** attempt) + random.uniform(0, self.jitter)
                logger.info(f"Waiting {wait_time:.1f} seconds before retry attempt {attempt + 2}")
                await asyncio.sleep(wait_time)
                continue

            self._on_success()
            return result

        return None

    def reset(self):
        with self._lock:
            self._failure_count = 0
            self._state = CircuitState.CLOSED
            self._trial_in_flight = False
        logger.info("Circuit breaker manually reset to closed state")

    def _can_execute(self) -> bool:
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                if self._clock() - self._last_failure_time >= self.timeout:
                    self._state = CircuitState.HALF_OPEN
                    self._trial_in_flight = True
                    logger.info("Circuit breaker moving from open to half-open state")
                    return True
                return False
            # Half-open admits one trial call at a time.
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def _release_trial(self):
        with self._lock:
            self._trial_in_flight = False

    def _on_success(self):
        recovered = False
        with self._lock:
            self._failure_count = 0
            self._trial_in_flight = False
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                logger.info("Circuit breaker moving from half-open to closed state")
                recovered = True

        # Listeners run after the lock is released so they observe the closed state.
        if recovered:
            for callback in list(self._listeners):
                try:
                    callback()
                except Exception as e:
                    logger.error(f"Circuit recovery listener failed: {e}", exc_info=True)

    def _on_failure(self):
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            self._trial_in_flight = False

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning("Circuit breaker moving from half-open to open state")
            elif self._failure_count >= self.failure_threshold and self._state != CircuitState.OPEN:
                self._state = CircuitState.OPEN
                logger.warning(f"Circuit breaker opening due to {self._failure_count} consecutive failures")
