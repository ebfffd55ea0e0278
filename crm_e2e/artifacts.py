"""
Failure artifacts: screenshot, page HTML and URL, written side by side under
reports/failures so a failed run can be inspected without re-running it.
"""
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from playwright.sync_api import Error as PWError, Page

from crm_e2e import config

logger = logging.getLogger(__name__)


def _safe_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_.-]+", "_", name or "test")


def extract_locator_hint(error_text: str) -> str:
    """Pull the locator a Playwright error was waiting on out of its message."""
    if not error_text:
        return ""
    m = re.search(r'locator\("([^"]+)"\)', error_text)
    if m:
        return m.group(1).strip()
    m = re.search(r"(xpath=[^\s]+)", error_text)
    if m:
        return m.group(1).strip()
    return ""


def capture_failure_artifacts(page: Page, test_name: str,
                              reports_dir: Optional[Path] = None) -> Tuple[Optional[Path], Optional[Path], Path, str]:
    """
    Save whatever can still be read from ``page``.

    Each artifact is attempted independently; a page that has already closed
    yields ``None`` for the screenshot and HTML but the URL file is always
    written. Returns ``(screenshot, html, url_file, current_url)``.
    """
    out_dir = Path(reports_dir or config.REPORTS_DIR / "failures")
    out_dir.mkdir(parents=True, exist_ok=True)
    stem = f"{_safe_filename(test_name)}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    current_url = ""
    try:
        current_url = page.url
    except PWError as e:
        logger.debug(f"Could not read page URL: {e}")

    screenshot_path: Optional[Path] = out_dir / f"{stem}.png"
    try:
        # Short timeout so a page stuck loading web fonts cannot hang teardown
        page.screenshot(path=str(screenshot_path), full_page=True, timeout=8000)
    except PWError as e:
        logger.warning(f"Screenshot failed for {test_name}: {e}")
        screenshot_path = None

    html_path: Optional[Path] = out_dir / f"{stem}.html"
    try:
        html_path.write_text(page.content(), encoding="utf-8")
    except (PWError, OSError) as e:
        logger.warning(f"Saving HTML failed for {test_name}: {e}")
        html_path = None

    url_path = out_dir / f"{stem}.url.txt"
    url_path.write_text(current_url + "\n", encoding="utf-8")
    return screenshot_path, html_path, url_path, current_url
