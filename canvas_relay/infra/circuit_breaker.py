"""Circuit breaker for provider route calls."""

import time
from enum import Enum
from typing import Callable, Any, Dict, Optional

from canvas_relay.infra.metrics import circuit_breaker_state


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitOpenError(RuntimeError):
    """Raised when a call is rejected because the circuit is open."""


class CircuitBreaker:
    """
    Circuit breaker for external service calls.

    Opens after `failure_threshold` consecutive failures and rejects calls
    until `recovery_timeout` seconds have passed; then lets calls through in
    half-open state and closes again after two successes. When `is_failure`
    is given, only exceptions it accepts count as failures; the rest are
    re-raised without touching the circuit.
    """

    def __init__(
        self,
        service: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type = Exception,
        is_failure: Optional[Callable[[BaseException], bool]] = None,
    ):
        self.service = service
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.is_failure = is_failure

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED
        self.success_count = 0  # For half-open state

    def _set_state(self, state: CircuitState) -> None:
        self.state = state
        circuit_breaker_state.labels(service=self.service).set(_STATE_GAUGE_VALUES[state])

    def _check_open(self) -> None:
        if self.state != CircuitState.OPEN:
            return
        elapsed = time.monotonic() - (self.last_failure_time or 0.0)
        if elapsed >= self.recovery_timeout:
            self._set_state(CircuitState.HALF_OPEN)
            self.success_count = 0
            return
        raise CircuitOpenError(
            f"Circuit breaker is OPEN for {self.service}. "
            f"Retry after {int(self.recovery_timeout - elapsed)} seconds."
        )

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute async function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is open
            Exception: Original exception from function
        """
        self._check_open()

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception as e:
            if self.is_failure is None or self.is_failure(e):
                self.failure_count += 1
                self.last_failure_time = time.monotonic()
                if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                    self._set_state(CircuitState.OPEN)
            raise

        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= 2:  # Need 2 successes to close
                self._set_state(CircuitState.CLOSED)
                self.failure_count = 0
                self.success_count = 0
        else:
            self.failure_count = 0

        return result


def is_upstream_failure(error: BaseException) -> bool:
    """Transport errors, 5xx replies and malformed bodies; 4xx replies belong to the caller."""
    status_code = getattr(error, "status_code", None)
    return status_code is None or status_code >= 500


def provider_breaker(provider: str) -> CircuitBreaker:
    return CircuitBreaker(
        service=f"pro_{provider}",
        failure_threshold=5,
        recovery_timeout=60,
        is_failure=is_upstream_failure,
    )


# One breaker per provider route
provider_circuit_breakers: Dict[str, CircuitBreaker] = {
    provider: provider_breaker(provider) for provider in ("openai", "claude", "grok")
}
