"""
Readiness verification: a page is usable only when every criterion holds at
the same time.

Criteria come in two kinds. Presence criteria (VISIBLE, ENABLED) name the
controls a test is about to use. ABSENT criteria name transient loading
indicators; while any of them is visible the presence checks are not even
evaluated, so a half-rendered page behind a spinner never counts as ready.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from playwright.sync_api import Error as PWError, Page

from crm_e2e.config import TIMEOUT_LONG_MS
from crm_e2e.errors import PermissionDeniedError, ReadinessTimeoutError

logger = logging.getLogger(__name__)


class ElementState(Enum):
    VISIBLE = "visible"
    ENABLED = "enabled"
    ABSENT = "absent"


@dataclass(frozen=True)
class Criterion:
    selector: str
    state: ElementState = ElementState.VISIBLE

    def __str__(self):
        return f"{self.selector} [{self.state.value}]"


ReadinessCriteria = Tuple[Criterion, ...]


def visible(selector: str) -> Criterion:
    return Criterion(selector, ElementState.VISIBLE)


def enabled(selector: str) -> Criterion:
    return Criterion(selector, ElementState.ENABLED)


def absent(selector: str) -> Criterion:
    return Criterion(selector, ElementState.ABSENT)


# Loading indicators the CRM renders while data is in flight
LOADING_INDICATORS: ReadinessCriteria = (
    absent('[role="progressbar"]'),
    absent('.animate-spin'),
    absent('[aria-busy="true"]'),
)


@dataclass
class ReadinessStatus:
    ready: bool
    elapsed_s: float = 0.0
    polls: int = 0
    missing: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)
    blocking: List[str] = field(default_factory=list)


def _is_visible(page: Page, selector: str) -> bool:
    try:
        return page.locator(selector).first.is_visible()
    except PWError as e:
        logger.debug(f"readiness: visibility check failed for {selector}: {e}")
        return False


def _is_enabled(page: Page, selector: str) -> bool:
    try:
        return page.locator(selector).first.is_enabled()
    except PWError as e:
        logger.debug(f"readiness: enabled check failed for {selector}: {e}")
        return False


def evaluate_once(page: Page, criteria: ReadinessCriteria) -> ReadinessStatus:
    """Single non-blocking evaluation of ``criteria``."""
    blocking = [c.selector for c in criteria if c.state is ElementState.ABSENT and _is_visible(page, c.selector)]
    if blocking:
        return ReadinessStatus(ready=False, blocking=blocking)

    missing, disabled = [], []
    for criterion in criteria:
        if criterion.state is ElementState.ABSENT:
            continue
        if not _is_visible(page, criterion.selector):
            missing.append(criterion.selector)
        elif criterion.state is ElementState.ENABLED and not _is_enabled(page, criterion.selector):
            disabled.append(criterion.selector)
    return ReadinessStatus(ready=not missing and not disabled, missing=missing, disabled=disabled)


def wait_until_ready(page: Page, criteria: ReadinessCriteria, timeout_ms: int = TIMEOUT_LONG_MS,
                     poll_interval_ms: int = 250, clock: Callable[[], float] = time.monotonic,
                     sleep: Optional[Callable[[float], None]] = None) -> ReadinessStatus:
    """
    Poll until every criterion holds simultaneously.

    Raises PermissionDeniedError when the budget runs out with every control
    present but at least one ENABLED criterion still disabled, and
    ReadinessTimeoutError for any other timeout.
    """
    if sleep is None:
        sleep = lambda seconds: page.wait_for_timeout(seconds * 1000)  # noqa: E731

    started = clock()
    deadline = started + timeout_ms / 1000
    polls = 0
    while True:
        polls += 1
        status = evaluate_once(page, criteria)
        status.polls = polls
        status.elapsed_s = clock() - started
        if status.ready:
            logger.debug(f"readiness: ready after {polls} poll(s), {status.elapsed_s:.2f}s")
            return status
        if clock() >= deadline:
            break
        sleep(poll_interval_ms / 1000)

    if status.disabled and not status.missing and not status.blocking:
        raise PermissionDeniedError(
            f"Controls present but disabled after {timeout_ms}ms: {', '.join(status.disabled)}",
            disabled=status.disabled,
        )
    raise ReadinessTimeoutError(
        f"Page not ready after {timeout_ms}ms "
        f"(missing: {status.missing or '-'}, still loading: {status.blocking or '-'})",
        missing=status.missing,
        blocking=status.blocking,
    )
