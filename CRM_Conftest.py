"""
Pytest configuration and fixtures for the CRM end-to-end tests
"""
import json
import logging
import os
import sys
import time
from datetime import datetime

import pytest
from playwright.sync_api import Error as PWError, sync_playwright

from crm_e2e import config
from crm_e2e.actions import login
from crm_e2e.artifacts import capture_failure_artifacts, extract_locator_hint
from crm_e2e.network import check_network_connectivity
from crm_e2e.test_logger import get_test_logger

SUITE_NAME = "CRM E2E"


def _detect_run_scope() -> str:
    """Per-area log file when a single test area is run, combined log otherwise."""
    argv = " ".join(sys.argv or []).lower()
    for scope in ("login", "tickets", "timesheet", "protocol"):
        if f"tests/{scope}" in argv.replace("\\", "/"):
            return scope
    return "all"


def setup_logging():
    """Setup logging configuration similar to Robot Framework"""
    config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    config.REPORTS_DIR.mkdir(parents=True, exist_ok=True)

    scope = _detect_run_scope()
    log_file = config.LOG_DIR / ("crm_e2e.log" if scope == "all" else f"crm_e2e_{scope}.log")

    # test_logger already lays out suite/test/keyword blocks for the file
    file_formatter = logging.Formatter('%(message)s', datefmt='%Y-%m-%d %H:%M:%S')
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)8s] %(filename)s:%(lineno)d - %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(console_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    return log_file


LOG_FILE = setup_logging()
logger = logging.getLogger(__name__)

runtime_data = {'timings': {}}


@pytest.fixture(scope="session")
def playwright_instance():
    """Start Playwright once per session"""
    pw = sync_playwright().start()
    yield pw
    pw.stop()


@pytest.fixture(scope="session")
def pw_browser(playwright_instance):
    """Launch Chromium for the whole session (headless unless HEADLESS=0)"""
    logger.info(f"Launching browser (headless={config.HEADLESS}, channel={config.BROWSER_CHANNEL or 'chromium'})")
    browser = playwright_instance.chromium.launch(
        headless=config.HEADLESS,
        channel=config.BROWSER_CHANNEL,
        slow_mo=config.SLOW_MO_MS,
    )
    yield browser
    try:
        browser.close()
    except PWError as e:
        logger.warning(f"Error closing browser: {e}")


def _new_context(pw_browser, storage_state=None):
    context = pw_browser.new_context(
        ignore_https_errors=True,
        viewport=config.VIEWPORT,
        locale="en-US",
        storage_state=storage_state,
    )
    context.set_default_timeout(config.DEFAULT_CONTEXT_TIMEOUT_MS)
    return context


def _close_context(context):
    try:
        context.close()
    except PWError as e:
        logger.debug(f"Error closing context: {e}")


@pytest.fixture(scope="function")
def page(pw_browser):
    """Fresh, unauthenticated page; each test gets its own isolated context."""
    context = _new_context(pw_browser)
    pw_page = context.new_page()
    yield pw_page
    _close_context(context)


@pytest.fixture(scope="function")
def new_isolated_page(pw_browser):
    """Factory for extra isolated pages inside one test; all are closed at teardown."""
    contexts = []

    def _make():
        context = _new_context(pw_browser)
        contexts.append(context)
        return context.new_page()

    yield _make
    for context in contexts:
        _close_context(context)


def _storage_state_is_usable(path) -> bool:
    if not os.path.exists(path) or os.path.getsize(path) == 0:
        return False
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.debug(f"Unreadable storage state {path}: {e}")
        return False
    return bool(data.get('cookies') or data.get('origins'))


def ensure_auth_storage_state(pw_browser) -> str:
    """
    Log in once and save the session to AUTH_STATE_PATH; reuse it while it holds
    cookies. Set REFRESH_AUTH=1 to force a new login.
    """
    path = str(config.AUTH_STATE_PATH)
    refresh = os.getenv("REFRESH_AUTH", "0").strip().lower() in ("1", "true", "yes", "on")
    if not refresh and _storage_state_is_usable(path):
        logger.debug("Auth storage state exists, reusing it")
        return path

    config.AUTH_DIR.mkdir(parents=True, exist_ok=True)
    logger.info(f"Creating auth storage state for {config.TEST_EMAIL}")
    context = _new_context(pw_browser)
    try:
        auth_page = context.new_page()
        result = login(auth_page, config.TEST_EMAIL, config.TEST_PASSWORD)
        if not result:
            pytest.fail(f"Could not log in to create the auth state: {result.message}")
        context.storage_state(path=path)
        logger.info(f"Auth storage state saved to {path}")
    finally:
        _close_context(context)
    return path


@pytest.fixture(scope="session")
def auth_state(pw_browser):
    assert check_network_connectivity(), "Network connectivity check failed"
    return ensure_auth_storage_state(pw_browser)


@pytest.fixture(scope="function")
def auth_page(pw_browser, auth_state):
    """Page in a fresh context that starts from the saved, signed-in session."""
    context = _new_context(pw_browser, storage_state=auth_state)
    pw_page = context.new_page()
    yield pw_page
    _close_context(context)


@pytest.fixture(scope="function")
def start_runtime_measurement():
    """Start runtime measurement for a test"""
    def _start(test_name: str):
        runtime_data['current_test'] = test_name
        runtime_data['start_time'] = time.time()
        logger.info(f"Started runtime measurement for: {test_name}")
    return _start


@pytest.fixture(scope="function")
def end_runtime_measurement():
    """End runtime measurement and return elapsed time"""
    def _end(operation_name: str = None):
        if 'start_time' not in runtime_data:
            logger.warning("No start time recorded. Call start_runtime_measurement first.")
            return 0.0
        elapsed = time.time() - runtime_data.pop('start_time')
        test_name = runtime_data.get('current_test', operation_name or "Unknown")
        runtime_data['timings'].setdefault(test_name, []).append({
            'operation': operation_name or 'total',
            'elapsed_seconds': elapsed,
            'timestamp': datetime.now().isoformat(),
        })
        logger.info(f"Runtime for '{test_name}': {elapsed:.2f} seconds")
        return elapsed
    return _end


def _page_from_item(item):
    funcargs = getattr(item, "funcargs", {}) or {}
    for key in ("auth_page", "page"):
        if key in funcargs:
            return funcargs[key]
    return None


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """Write test results to the run log; capture artifacts for failed browser tests"""
    test_logger = get_test_logger()
    outcome = yield
    rep = outcome.get_result()
    test_name = item.name

    if rep.when == "setup" and rep.failed:
        test_logger.log_test_end(test_name, "FAIL", message=str(rep.longrepr or "Test setup failed"),
                                 elapsed=rep.duration)
        return
    if rep.when == "setup" and rep.skipped:
        test_logger.log_test_end(test_name, "SKIP", message=str(rep.longrepr or "Test skipped"), elapsed=rep.duration)
        return
    if rep.when != "call":
        return

    if rep.passed:
        test_logger.log_test_end(test_name, "PASS", elapsed=rep.duration)
    elif rep.skipped:
        test_logger.log_test_end(test_name, "SKIP", message=str(rep.longrepr or "Test skipped"), elapsed=rep.duration)
    elif rep.failed:
        error_msg = str(rep.longrepr) if rep.longrepr else "Test failed"
        locator_hint = extract_locator_hint(error_msg)
        if locator_hint:
            error_msg = f"{error_msg}\n\nLocator hint: {locator_hint}"
        test_logger.log_test_end(test_name, "FAIL", message=error_msg, elapsed=rep.duration)

        pw_page = _page_from_item(item)
        if pw_page is not None:
            try:
                screenshot, html, url_file, current_url = capture_failure_artifacts(pw_page, test_name)
                test_logger.log_info("Failure artifacts saved:")
                test_logger.log_info(f"  URL: {current_url}")
                test_logger.log_info(f"  Screenshot: {screenshot}")
                test_logger.log_info(f"  HTML: {html}")
                test_logger.log_info(f"  URL file: {url_file}")
            except OSError as e:
                # Never let artifact capture mask the real failure
                logger.warning(f"Could not capture failure artifacts: {e}")


@pytest.fixture(autouse=True)
def log_test_start_end(request):
    """Log test start; the end is logged by pytest_runtest_makereport"""
    test_file = str(request.node.fspath) if hasattr(request.node, 'fspath') else None
    get_test_logger().log_test_start(request.node.name, test_file)
    yield


def pytest_sessionstart(session):
    """Called after the Session object has been created"""
    get_test_logger().log_suite_start(SUITE_NAME, str(getattr(session, "fspath", "")) or None)
    logger.info("=" * 80)
    logger.info("TEST SESSION STARTED")
    logger.info(f"Base URL: {config.BASE_URL}")
    logger.info(f"Session start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info("=" * 80)


def pytest_sessionfinish(session, exitstatus):
    """Called after whole test run finished"""
    get_test_logger().log_suite_end(SUITE_NAME)

    logger.info("=" * 80)
    logger.info("TEST SESSION FINISHED")
    logger.info(f"Session end time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info(f"Exit status: {exitstatus}")
    if runtime_data['timings']:
        logger.info("RUNTIME SUMMARY:")
        logger.info("-" * 80)
        for test_name, timings in runtime_data['timings'].items():
            logger.info(f"  {test_name}: {sum(t['elapsed_seconds'] for t in timings):.2f} seconds")
        logger.info("-" * 80)
    logger.info("=" * 80)
