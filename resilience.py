"""
Resilience Utilities: Retry and Circuit Breaking for Remote Collaborators
The hosted rule store goes through both; local SQLite access does not.
"""
import time
import logging
import functools
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple, Type
from enum import Enum

from exceptions import HomeGuardError


logger = logging.getLogger("HomeGuardResilience")


class CircuitState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerOpenError(HomeGuardError):
    """A call was refused without reaching the collaborator."""
    pass


class CircuitBreaker:
    """
    Stop calling a collaborator after repeated failures.

    Once open, calls are refused until ``recovery_timeout`` seconds have
    passed; the next call is then let through as a probe. A successful
    probe closes the circuit, a failed one opens it again.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        expected_exceptions: Tuple[Type[Exception], ...] = (Exception,),
        name: str = "circuit"
    ):
        """
        Args:
            failure_threshold: Consecutive failures that open the circuit
            recovery_timeout: Seconds before a probe call is allowed
            expected_exceptions: Exception types counted as failures; others pass through untouched
            name: Label for logs and error messages
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self._lock = Lock()

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Run ``func`` unless the circuit is open.

        Raises:
            CircuitBreakerOpenError: The circuit is open and still cooling down
        """
        self._admit()

        try:
            result = func(*args, **kwargs)
        except self.expected_exceptions:
            self.record_failure()
            raise

        self.record_success()
        return result

    def record_success(self) -> None:
        with self._lock:
            if self.state != CircuitState.CLOSED:
                logger.info(f"Circuit '{self.name}' closed again after a successful probe")
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.opened_at = None

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            probe_failed = self.state == CircuitState.HALF_OPEN
            if probe_failed or self.failure_count >= self.failure_threshold:
                self.state = CircuitState.OPEN
                self.opened_at = time.monotonic()
                logger.error(
                    f"Circuit '{self.name}' opened after {self.failure_count} consecutive failure(s); "
                    f"next probe in {self.recovery_timeout:g}s"
                )

    def reset(self) -> None:
        with self._lock:
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.opened_at = None
        logger.info(f"Circuit '{self.name}' reset")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
        }

    def _admit(self) -> None:
        with self._lock:
            if self.state != CircuitState.OPEN:
                return

            waited = time.monotonic() - (self.opened_at or 0.0)
            if waited < self.recovery_timeout:
                raise CircuitBreakerOpenError(
                    f"Circuit '{self.name}' is OPEN, retry in {self.recovery_timeout - waited:.1f}s",
                    component="CircuitBreaker",
                    context={"circuit": self.name, "failures": self.failure_count}
                )

            self.state = CircuitState.HALF_OPEN
            logger.info(f"Circuit '{self.name}' half-open, letting a probe call through")


def retry_on_exception(
    exceptions: Tuple[Type[Exception], ...],
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0
) -> Callable:
    """
    Retry the decorated function when it raises one of ``exceptions``.

    The wait starts at ``delay`` seconds and is multiplied by ``backoff``
    after every failed attempt. The last failure is re-raised.

    Example:
        @retry_on_exception((httpx.TransportError,), max_attempts=3, delay=0.5)
        def fetch_rules():
            return client.get("/rest/v1/triggers")
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            wait = delay
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(f"{func.__name__} gave up after {attempt} attempt(s): {e}")
                        raise
                    logger.warning(f"{func.__name__} failed ({e}), attempt {attempt} of {max_attempts}; waiting {wait:.2f}s")
                    time.sleep(wait)
                    wait *= backoff
                    attempt += 1

        return wrapper

    return decorator
