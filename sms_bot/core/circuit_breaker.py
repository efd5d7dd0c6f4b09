"""
Circuit breakers for the downstream services of an SMS turn.

A passenger waits on the reply while the booking API, TeleBirr or the SMS
gateway is called. When one of them is down, its breaker opens and the turn
fails fast (the passenger gets the "try again" reply) instead of hanging for
a full HTTP timeout per message.

CLOSED    calls pass, consecutive failures are counted
OPEN      calls are refused until ``timeout_seconds`` after the last failure
HALF_OPEN a few probe calls pass; successes close, any failure re-opens
"""
import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ParamSpec, TypeVar

from sms_bot.core.exceptions import CircuitBreakerOpenError
from sms_bot.core.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

BOOKING_API = "booking_api"
TELEBIRR = "telebirr"
SMS_GATEWAY = "sms_gateway"


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 30.0
    half_open_max_calls: int = 3


@dataclass(frozen=True)
class CircuitBreakerStatus:
    service: str
    state: CircuitState
    failure_count: int
    retry_after_seconds: float


# TeleBirr trips sooner and rests longer: a failed push leaves a booking unpaid
_SERVICE_CONFIGS: dict[str, CircuitBreakerConfig] = {
    BOOKING_API: CircuitBreakerConfig(failure_threshold=5, success_threshold=2, timeout_seconds=30.0),
    TELEBIRR: CircuitBreakerConfig(failure_threshold=3, success_threshold=1, timeout_seconds=60.0),
    SMS_GATEWAY: CircuitBreakerConfig(failure_threshold=5, success_threshold=2, timeout_seconds=30.0),
}


class CircuitBreaker:
    """
    Per-service breaker. Shared instances come from ``get_instance``; the
    lock is a threading.Lock because Celery tasks run each job on a fresh
    event loop and still share the process-wide instances.
    """

    _instances: dict[str, "CircuitBreaker"] = {}
    _instances_lock = threading.Lock()

    def __init__(self, service_name: str, config: CircuitBreakerConfig | None = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._opened_at = 0.0

    @classmethod
    def get_instance(cls, service_name: str, config: CircuitBreakerConfig | None = None) -> "CircuitBreaker":
        with cls._instances_lock:
            if service_name not in cls._instances:
                cls._instances[service_name] = cls(service_name, config)
            return cls._instances[service_name]

    @classmethod
    def reset_all(cls) -> None:
        with cls._instances_lock:
            cls._instances.clear()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self._state == CircuitState.HALF_OPEN

    def _set_state(self, new_state: CircuitState) -> None:
        old_state, self._state = self._state, new_state
        self._success_count = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
        else:
            self._failure_count = 0

        log = logger.error if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit breaker '{self.service_name}' {old_state.value} -> {new_state.value}",
            extra_data={
                "service": self.service_name,
                "old_state": old_state.value,
                "new_state": new_state.value,
                "failure_count": self._failure_count,
            }
        )

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._set_state(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            self._failure_count += 1
            logger.warning(
                f"{self.service_name} call failed",
                extra_data={
                    "service": self.service_name,
                    "failure_count": self._failure_count,
                    "threshold": self.config.failure_threshold,
                    "error": str(error) if error else None,
                }
            )
            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN)
            elif self._state == CircuitState.OPEN:
                # A call that slipped through before opening; extend the rest period
                self._opened_at = time.monotonic()
            elif self._failure_count >= self.config.failure_threshold:
                self._set_state(CircuitState.OPEN)

    def can_execute(self) -> bool:
        with self._lock:
            if self._state == CircuitState.OPEN:
                if time.monotonic() - self._opened_at < self.config.timeout_seconds:
                    return False
                self._set_state(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    return False
                self._half_open_calls += 1
            return True

    def get_retry_after(self) -> float:
        """Seconds until an open circuit lets a probe through (0 when not open)"""
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.config.timeout_seconds - (time.monotonic() - self._opened_at))

    def snapshot(self) -> CircuitBreakerStatus:
        return CircuitBreakerStatus(
            service=self.service_name,
            state=self._state,
            failure_count=self._failure_count,
            retry_after_seconds=round(self.get_retry_after(), 1),
        )

    async def execute(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
        """
        Call ``func`` (sync or async) under the breaker.

        Raises:
            CircuitBreakerOpenError: the circuit is open, ``func`` was not called
        """
        if not self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            result = func(*args, **kwargs)
            if asyncio.iscoroutine(result):
                result = await result
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result


def get_circuit_breaker(service_name: str) -> CircuitBreaker:
    return CircuitBreaker.get_instance(service_name, _SERVICE_CONFIGS.get(service_name))


def get_booking_api_circuit_breaker() -> CircuitBreaker:
    return get_circuit_breaker(BOOKING_API)


def get_telebirr_circuit_breaker() -> CircuitBreaker:
    return get_circuit_breaker(TELEBIRR)


def get_sms_gateway_circuit_breaker() -> CircuitBreaker:
    return get_circuit_breaker(SMS_GATEWAY)


def downstream_status() -> list[CircuitBreakerStatus]:
    """Status of every downstream breaker, in the order a booking turn uses them"""
    return [get_circuit_breaker(name).snapshot() for name in _SERVICE_CONFIGS]
