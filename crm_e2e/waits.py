"""
Wait primitives shared by every page interaction.

Each primitive blocks the calling thread until its condition holds or its
budget runs out. Primitives that answer a yes/no question return a bool
instead of raising so callers can race several conditions.
"""
import logging
import re
from typing import Pattern, Union

from playwright.sync_api import Error as PWError, Page, TimeoutError as PWTimeoutError

from crm_e2e.config import NAVIGATION_TIMEOUT_MS, TIMEOUT_LONG_MS, TIMEOUT_MEDIUM_MS

logger = logging.getLogger(__name__)

UrlPattern = Union[str, Pattern]


def wait_for_element_visible(page: Page, selector: str, timeout_ms: int = TIMEOUT_MEDIUM_MS) -> bool:
    """Return True once the first element matching ``selector`` is visible."""
    try:
        page.locator(selector).first.wait_for(state="visible", timeout=timeout_ms)
        return True
    except PWTimeoutError:
        logger.debug(f"wait_for_element_visible: {selector} not visible after {timeout_ms}ms")
        return False


def url_matches(url: str, pattern: UrlPattern) -> bool:
    if isinstance(pattern, str):
        return pattern in url
    return bool(pattern.search(url))


def wait_for_url_match(page: Page, pattern: UrlPattern, timeout_ms: int = TIMEOUT_LONG_MS) -> bool:
    """
    Return True once the page URL matches ``pattern``.

    A plain string is a substring match, a compiled regex is searched.
    """
    if url_matches(page.url, pattern):
        return True
    if isinstance(pattern, str):
        predicate = lambda url: pattern in url  # noqa: E731
    else:
        predicate = lambda url: bool(pattern.search(url))  # noqa: E731
    try:
        page.wait_for_url(predicate, timeout=timeout_ms)
        return True
    except PWTimeoutError:
        logger.debug(f"wait_for_url_match: still on {page.url} after {timeout_ms}ms")
        return False


def wait_for_network_quiet(page: Page, timeout_ms: int = TIMEOUT_LONG_MS, settle_ms: int = 500) -> None:
    """
    Wait for network idle; fall back to DOM content loaded, then settle.

    SPAs that keep a websocket or polling request open never reach
    networkidle, so a timeout there is not an error.
    """
    try:
        page.wait_for_load_state("networkidle", timeout=timeout_ms)
    except PWTimeoutError:
        logger.debug("wait_for_network_quiet: networkidle timed out, waiting for domcontentloaded")
        try:
            page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
        except PWTimeoutError:
            logger.debug("wait_for_network_quiet: domcontentloaded timed out as well")
    if settle_ms > 0:
        page.wait_for_timeout(settle_ms)


def wait_for_timeout(page: Page, ms: int) -> None:
    """Unconditional pause, driven by Playwright so the event loop keeps pumping."""
    page.wait_for_timeout(ms)


def goto_fast(page: Page, url: str, timeout: int = NAVIGATION_TIMEOUT_MS):
    """
    Navigate with a descending ladder of wait conditions: load, then
    domcontentloaded, then commit.

    Each rung gets a shorter budget than the one above. If every rung fails the
    last Playwright error is raised so the retry controller can classify it.

    Example:
        goto_fast(page, "https://support.cwit.ae/auth/login")
    """
    fallback_timeout = min(30000, timeout // 2)
    commit_timeout = min(15000, timeout // 4)
    ladder = (("load", timeout), ("domcontentloaded", fallback_timeout), ("commit", commit_timeout))

    last_error = None
    for wait_until, budget in ladder:
        try:
            page.goto(url, wait_until=wait_until, timeout=budget)
            if wait_until == "load":
                try:
                    page.wait_for_load_state("domcontentloaded", timeout=TIMEOUT_LONG_MS)
                except PWTimeoutError:
                    logger.debug(f"goto_fast: domcontentloaded wait skipped for {url}")
            return
        except PWError as e:
            last_error = e
            if _is_connection_failure(e):
                # No lighter wait condition will help when the socket is refused
                break
            logger.warning(f"goto_fast: '{wait_until}' failed for {url}, trying a lighter wait condition...")

    logger.error(f"goto_fast: navigation failed for {url}: {last_error}")
    raise last_error


_NET_ERROR_RE = re.compile(r"net::ERR_|ECONNREFUSED")


def _is_connection_failure(error: Exception) -> bool:
    return bool(_NET_ERROR_RE.search(str(error)))
