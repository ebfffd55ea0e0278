"""
Bounded retry with backoff for idempotent page operations.

    controller = RetryController(RetryConfig.from_env())
    result = controller.attempt(lambda: crm_page.open_once(), target="/dashboard/tickets-manager")

Lifecycle of one call: Idle -> Attempting -> Ready | Retrying | Fatal, with
Retrying -> Attempting bounded by ``max_attempts``. Connection-class errors
wait on the longer connection tier, other transient errors on the regular
tier. Authentication, permission and programming errors are raised on the
first occurrence.
"""
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from crm_e2e import config
from crm_e2e.errors import ErrorClass, RetriesExhaustedError, classify_error

logger = logging.getLogger(__name__)

Backoff = Callable[[int], float]


class AttemptOutcome(Enum):
    SUCCESS = "success"
    RETRYABLE_ERROR = "retryable-error"
    FATAL_ERROR = "fatal-error"


class FailureReason(Enum):
    AUTHENTICATION = "authentication"
    INVALID_CREDENTIALS = "invalid-credentials"
    PERMISSION = "permission"
    TIMEOUT = "timeout"
    RETRIES_EXHAUSTED = "retries-exhausted"
    ERROR_NOTIFICATION = "error-notification"
    SELECTOR_NOT_FOUND = "selector-not-found"


@dataclass
class NavigationAttempt:
    target: str
    attempt_number: int
    delay_before_s: float
    outcome: AttemptOutcome
    error: Optional[str] = None


@dataclass
class ActionResult:
    """Outcome of a named user action or of a retried operation."""
    success: bool
    failure_reason: Optional[FailureReason] = None
    message: str = ""
    attempts: int = 0
    current_url: str = ""
    notification: Any = None
    value: Any = None
    history: List[NavigationAttempt] = field(default_factory=list)

    @classmethod
    def ok(cls, message: str = "", **kwargs) -> "ActionResult":
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def failed(cls, reason: FailureReason, message: str, **kwargs) -> "ActionResult":
        return cls(success=False, failure_reason=reason, message=message, **kwargs)

    def __bool__(self):
        return self.success


def exponential_backoff(base_s: float, cap_s: float) -> Backoff:
    """Delay after failed attempt ``n`` (1-based) is ``base * 2**(n-1)``, capped."""
    def _delay(attempt_index: int) -> float:
        return min(cap_s, base_s * (2 ** max(0, attempt_index - 1)))
    return _delay


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    backoff_base_s: float = 2.0
    connection_backoff_base_s: float = 5.0
    backoff_cap_s: float = 60.0

    @classmethod
    def from_env(cls) -> "RetryConfig":
        return cls(
            max_attempts=int(os.getenv("NAV_MAX_ATTEMPTS", str(config.NAV_MAX_ATTEMPTS))),
            backoff_base_s=float(os.getenv("NAV_BACKOFF_BASE_S", str(config.NAV_BACKOFF_BASE_S))),
            connection_backoff_base_s=float(
                os.getenv("NAV_CONNECTION_BACKOFF_BASE_S", str(config.NAV_CONNECTION_BACKOFF_BASE_S))
            ),
            backoff_cap_s=float(os.getenv("NAV_BACKOFF_CAP_S", str(config.NAV_BACKOFF_CAP_S))),
        )

    @property
    def backoff(self) -> Backoff:
        return exponential_backoff(self.backoff_base_s, self.backoff_cap_s)

    @property
    def connection_backoff(self) -> Backoff:
        return exponential_backoff(self.connection_backoff_base_s, self.backoff_cap_s)


class RetryController:
    """Runs an operation until it succeeds, fails fatally, or runs out of attempts."""

    def __init__(self, retry_config: RetryConfig = None, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.config = retry_config or RetryConfig()
        self._sleep = sleep
        self._clock = clock
        self.history: List[NavigationAttempt] = []

    def attempt(self, operation: Callable[[], Any], max_attempts: int = None, backoff: Backoff = None,
                connection_backoff: Backoff = None, target: str = "") -> ActionResult:
        max_attempts = self.config.max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        backoff = backoff or self.config.backoff
        connection_backoff = connection_backoff or self.config.connection_backoff

        label = target or getattr(operation, "__name__", "operation")
        self.history = []
        started = self._clock()
        delay = 0.0
        last_error = None
        logger.debug(f"[retry] {label}: Idle -> Attempting (max_attempts={max_attempts})")

        for attempt_number in range(1, max_attempts + 1):
            if delay > 0:
                self._sleep(delay)
            try:
                value = operation()
            except Exception as e:
                error_class = classify_error(e)
                last_error = e
                if not error_class.retryable:
                    self._record(label, attempt_number, delay, AttemptOutcome.FATAL_ERROR, e)
                    logger.error(f"[retry] {label}: Attempting -> Fatal on attempt {attempt_number} ({error_class.value}): {e}")
                    raise

                self._record(label, attempt_number, delay, AttemptOutcome.RETRYABLE_ERROR, e)
                if attempt_number >= max_attempts:
                    break
                tier = connection_backoff if error_class is ErrorClass.CONNECTION else backoff
                delay = float(tier(attempt_number))
                logger.warning(
                    f"[retry] {label}: Attempting -> Retrying after attempt {attempt_number}/{max_attempts} "
                    f"({error_class.value}), waiting {delay:.1f}s: {e}"
                )
                continue

            self._record(label, attempt_number, delay, AttemptOutcome.SUCCESS, None)
            logger.info(f"[retry] {label}: Attempting -> Ready on attempt {attempt_number}/{max_attempts}")
            return ActionResult.ok(
                f"{label} succeeded", attempts=attempt_number, value=value, history=list(self.history)
            )

        elapsed = self._clock() - started
        logger.error(f"[retry] {label}: Retrying -> Fatal, {max_attempts} attempts exhausted in {elapsed:.1f}s")
        raise RetriesExhaustedError(
            f"{label} failed after {max_attempts} attempts ({elapsed:.1f}s): {last_error}",
            attempts=max_attempts,
            elapsed=elapsed,
            last_error=last_error,
            history=self.history,
        ) from last_error

    def _record(self, target, attempt_number, delay, outcome, error):
        self.history.append(NavigationAttempt(
            target=target,
            attempt_number=attempt_number,
            delay_before_s=delay,
            outcome=outcome,
            error=str(error) if error is not None else None,
        ))


def attempt(operation: Callable[[], Any], max_attempts: int = None, backoff: Backoff = None) -> ActionResult:
    """Retry ``operation`` with settings taken from the environment."""
    return RetryController(RetryConfig.from_env()).attempt(operation, max_attempts=max_attempts, backoff=backoff)
