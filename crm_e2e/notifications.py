"""
Toast / alert detection.

The CRM shows feedback through Sonner toasts, but depending on the screen the
same message can surface in a ``role="alert"`` region or only in the page
body. Detection therefore walks a list of known containers and reads the whole
body text only when none of them is on screen. Helper copy such as "Sign in to
access your account" is stripped before any pattern is applied.
"""
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Pattern, Sequence, Tuple, Union

from playwright.sync_api import Error as PWError, Page

from crm_e2e.config import TIMEOUT_LONG_MS
from crm_e2e.errors import NotificationNotFoundError

logger = logging.getLogger(__name__)

TextPattern = Union[str, Pattern]

NOTIFICATION_CONTAINERS: Tuple[str, ...] = (
    '[data-sonner-toast]',
    '[data-sonner-toaster] li',
    '.sonner-toast',
    '[role="alert"]',
    '[role="status"]',
    '[id*="sonner"]',
    '[class*="toast"]',
    '[class*="notification"]',
)

INSTRUCTIONAL_TEXT_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"Enter your credentials to access your account\.?", re.IGNORECASE),
    re.compile(r"Sign in to access your account\.?", re.IGNORECASE),
)

# Upper bound on elements read per container selector in one pass
_MAX_PER_CONTAINER = 10


@dataclass(frozen=True)
class NotificationMatch:
    """Text captured from a notification at the moment it matched."""
    container: str
    text: str
    strategy: str
    title_matched: bool
    body_matched: bool


def compile_pattern(pattern: Optional[TextPattern]) -> Optional[Pattern]:
    """Plain strings are matched literally and case-insensitively."""
    if pattern is None:
        return None
    if isinstance(pattern, str):
        return re.compile(re.escape(pattern), re.IGNORECASE)
    return pattern


def strip_instructional_text(text: str, exclude: Iterable[Pattern] = INSTRUCTIONAL_TEXT_PATTERNS) -> str:
    for pattern in exclude:
        text = pattern.sub(" ", text)
    return " ".join(text.split())


def match_notification_text(text: str, title_pattern: Optional[TextPattern] = None,
                            body_pattern: Optional[TextPattern] = None,
                            exclude: Iterable[Pattern] = INSTRUCTIONAL_TEXT_PATTERNS) -> Optional[Tuple[bool, bool, str]]:
    """
    Decide whether ``text`` is the notification being looked for.

    Returns ``(title_matched, body_matched, cleaned_text)`` on a match and None
    otherwise. The body pattern is authoritative: a body match with a title
    mismatch still counts (and is logged), a body mismatch never counts. The
    title decides alone only when no body pattern is given.
    """
    cleaned = strip_instructional_text(text or "", exclude)
    if not cleaned:
        return None
    title_re = compile_pattern(title_pattern)
    body_re = compile_pattern(body_pattern)

    title_matched = title_re is None or bool(title_re.search(cleaned))
    body_matched = body_re is None or bool(body_re.search(cleaned))

    if body_re is not None:
        if not body_matched:
            return None
        if not title_matched:
            logger.warning(f"Notification body matched but title /{title_re.pattern}/ did not: {cleaned!r}")
        return title_matched, body_matched, cleaned
    if not title_matched:
        return None
    return title_matched, body_matched, cleaned


def scan_notifications(page: Page, title_pattern: Optional[TextPattern] = None,
                       body_pattern: Optional[TextPattern] = None,
                       containers: Sequence[str] = NOTIFICATION_CONTAINERS,
                       exclude: Iterable[Pattern] = INSTRUCTIONAL_TEXT_PATTERNS,
                       fallback_to_body: bool = True) -> Optional[NotificationMatch]:
    """
    One non-blocking pass over the containers. The body text is read only
    when ``fallback_to_body`` is set and no container with text is on screen.
    """
    exclude = tuple(exclude)
    container_seen = False
    for selector in containers:
        try:
            elements = page.locator(selector)
            count = min(elements.count(), _MAX_PER_CONTAINER)
        except PWError as e:
            logger.debug(f"scan_notifications: cannot query {selector}: {e}")
            continue
        for index in range(count):
            element = elements.nth(index)
            try:
                if not element.is_visible():
                    continue
                text = element.inner_text()
            except PWError:
                # Toasts detach while being read
                continue
            if strip_instructional_text(text or "", exclude):
                container_seen = True
            hit = match_notification_text(text, title_pattern, body_pattern, exclude)
            if hit:
                logger.debug(f"scan_notifications: matched in {selector}: {hit[2]!r}")
                return NotificationMatch(selector, hit[2], "container", hit[0], hit[1])

    if container_seen:
        return None
    if fallback_to_body and (title_pattern is not None or body_pattern is not None):
        try:
            text = page.locator("body").inner_text()
        except PWError as e:
            logger.debug(f"scan_notifications: cannot read body text: {e}")
            return None
        hit = match_notification_text(text, title_pattern, body_pattern, exclude)
        if hit:
            logger.debug("scan_notifications: matched in page body text")
            return NotificationMatch("body", hit[2], "body-text", hit[0], hit[1])
    return None


def find_notification(page: Page, title_pattern: Optional[TextPattern] = None,
                      body_pattern: Optional[TextPattern] = None, timeout_ms: int = TIMEOUT_LONG_MS,
                      poll_interval_ms: int = 250, containers: Sequence[str] = NOTIFICATION_CONTAINERS,
                      fallback_to_body: bool = True,
                      clock: Callable[[], float] = time.monotonic) -> NotificationMatch:
    """Poll :func:`scan_notifications` until it matches or ``timeout_ms`` passes."""
    deadline = clock() + timeout_ms / 1000
    while True:
        match = scan_notifications(page, title_pattern, body_pattern, containers,
                                   fallback_to_body=fallback_to_body)
        if match is not None:
            logger.info(f"Notification found ({match.strategy}): {match.text[:200]}")
            return match
        if clock() >= deadline:
            break
        page.wait_for_timeout(poll_interval_ms)

    wanted = ", ".join(
        f"{kind}={compile_pattern(p).pattern!r}"
        for kind, p in (("title", title_pattern), ("body", body_pattern)) if p is not None
    ) or "any"
    raise NotificationNotFoundError(f"No notification matching {wanted} within {timeout_ms}ms")
