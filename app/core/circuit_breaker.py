"""
Circuit breaker for the external accounting system.

Every queue worker talks to the same accounting service. When it is down,
the breaker fails calls fast with CircuitBreakerOpenError instead of letting
each worker burn its retries; the queue item keeps its attempt and is picked
up again on a later tick.

Only transient errors (timeouts, connection errors, 5xx) trip the breaker.
A 4xx for one bad document means the service answered, so it counts as a
healthy call and clears the failure streak.
"""
import inspect
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, ParamSpec, TypeVar

from app.core.config import settings
from app.core.exceptions import CircuitBreakerOpenError
from app.core.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

EXTERNAL_SYSTEM = "external-system"


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def is_service_failure(error: Exception) -> bool:
    """Errors without a ``transient`` flag (network, timeouts) are failures"""
    return bool(getattr(error, "transient", True))


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    # Probe calls that must succeed in half-open before closing again
    success_threshold: int = 2
    # Cool-down after the last failure before probing
    timeout_seconds: float = 30.0
    half_open_max_calls: int = 3
    counts_as_failure: Callable[[Exception], bool] = is_service_failure


class CircuitBreaker:
    """
    Named breaker, shared per process through get_instance().

    closed    -> calls pass; ``failure_threshold`` failures in a row open it
    open      -> calls are refused until ``timeout_seconds`` pass
    half_open -> up to ``half_open_max_calls`` probes; ``success_threshold``
                 successes close it, a single failure opens it again
    """

    _registry: dict[str, "CircuitBreaker"] = {}
    _registry_lock = threading.Lock()

    def __init__(self, service_name: str, config: CircuitBreakerConfig | None = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._streak = 0  # consecutive failures while closed
        self._probes_started = 0
        self._probes_succeeded = 0
        self._opened_at: float | None = None
        # Celery ticks each run on a fresh event loop, so an asyncio.Lock won't do
        self._guard = threading.Lock()

    @classmethod
    def get_instance(
        cls, service_name: str, config: CircuitBreakerConfig | None = None
    ) -> "CircuitBreaker":
        with cls._registry_lock:
            breaker = cls._registry.get(service_name)
            if breaker is None:
                breaker = cls._registry[service_name] = cls(service_name, config)
            return breaker

    @classmethod
    def reset_all(cls) -> None:
        """Forget every registered breaker"""
        with cls._registry_lock:
            cls._registry.clear()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state is CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state is CircuitState.HALF_OPEN

    def snapshot(self) -> dict[str, Any]:
        return {
            "service": self.service_name,
            "state": self._state.value,
            "failure_streak": self._streak,
            "retry_after_seconds": round(self.get_retry_after(), 3),
        }

    def get_retry_after(self) -> float:
        """Seconds left before the next probe is allowed; 0 unless open"""
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return 0.0
        elapsed = time.monotonic() - self._opened_at
        return max(0.0, self.config.timeout_seconds - elapsed)

    def _move(self, target: CircuitState) -> None:
        # caller holds _guard
        previous, self._state = self._state, target
        if target is CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif target is CircuitState.HALF_OPEN:
            self._probes_started = 0
            self._probes_succeeded = 0
        else:
            self._streak = 0
            self._opened_at = None

        log = logger.warning if target is CircuitState.OPEN else logger.info
        log(
            f"Circuit '{self.service_name}' {previous.value} -> {target.value}",
            extra_data=self.snapshot(),
        )

    def _admit(self) -> bool:
        with self._guard:
            if self._state is CircuitState.OPEN:
                if self.get_retry_after() > 0:
                    return False
                self._move(CircuitState.HALF_OPEN)

            if self._state is CircuitState.HALF_OPEN:
                if self._probes_started >= self.config.half_open_max_calls:
                    return False
                self._probes_started += 1
            return True

    def _settle(self, error: Exception | None) -> None:
        failed = error is not None and self.config.counts_as_failure(error)
        with self._guard:
            if not failed:
                if self._state is CircuitState.HALF_OPEN:
                    self._probes_succeeded += 1
                    if self._probes_succeeded >= self.config.success_threshold:
                        self._move(CircuitState.CLOSED)
                else:
                    self._streak = 0
                return

            if self._state is CircuitState.HALF_OPEN:
                self._move(CircuitState.OPEN)
                return

            self._streak += 1
            logger.debug(
                f"Circuit '{self.service_name}' counted a failure",
                extra_data={**self.snapshot(), "error": str(error)},
            )
            if self._state is CircuitState.CLOSED and self._streak >= self.config.failure_threshold:
                self._move(CircuitState.OPEN)

    async def can_execute(self) -> bool:
        """Take a slot for one call; moves an expired open circuit to half-open"""
        return self._admit()

    async def execute(
        self,
        func: Callable[P, Awaitable[T] | T],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Run ``func`` through the breaker; raises CircuitBreakerOpenError when refused"""
        if not self._admit():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            outcome = func(*args, **kwargs)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:
            self._settle(exc)
            raise

        self._settle(None)
        return outcome


def get_external_system_circuit_breaker() -> CircuitBreaker:
    return CircuitBreaker.get_instance(
        EXTERNAL_SYSTEM,
        CircuitBreakerConfig(
            failure_threshold=settings.EXTERNAL_API_BREAKER_THRESHOLD,
            timeout_seconds=settings.EXTERNAL_API_BREAKER_COOLDOWN_SECONDS,
        ),
    )
