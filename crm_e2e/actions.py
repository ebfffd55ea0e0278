"""
Named user actions against the CRM.

Every action returns an ``ActionResult``. Expected failures (rejected
credentials, a bounce to the login page, a disabled control, a selector that
never appears, exhausted retries) come back as failed results with a
``FailureReason``. ``ActionTimeoutError`` is the exception: when neither the
success nor the failure outcome of an action shows up, the action raises so
the test fails loudly with the URL it was stuck on.
"""
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import wraps
from typing import Callable, ContextManager, Iterable, Iterator, List, Optional

from playwright.sync_api import Browser, Error as PWError, Page, TimeoutError as PWTimeoutError, sync_playwright

from crm_e2e import config
from crm_e2e.errors import (
    ActionTimeoutError,
    AuthenticationError,
    CrmAutomationError,
    NotificationNotFoundError,
    PermissionDeniedError,
    ReadinessTimeoutError,
    RetriesExhaustedError,
    SelectorNotFoundError,
)
from crm_e2e.notifications import NOTIFICATION_CONTAINERS, TextPattern, find_notification, scan_notifications
from crm_e2e.pages import DASHBOARD_PAGE, LOGIN_PAGE, TICKETS_MANAGER_PAGE, TIMESHEET_PAGE, CrmPage
from crm_e2e.readiness import enabled, visible, wait_until_ready
from crm_e2e.retry import ActionResult, FailureReason, RetryConfig
from crm_e2e.selectors import css, has_text, resolve_first, xpath
from crm_e2e.test_data import (
    FIELD_ERROR_SELECTOR,
    TICKET_CREATED_PATTERN,
    TICKET_REQUIRED_FIELD_PATTERN,
    TIMESHEET_MESSAGES,
    VALIDATION_ERROR_TITLE,
    ActivityData,
    TicketData,
)
from crm_e2e.test_logger import get_test_logger, log_keyword
from crm_e2e.waits import url_matches, wait_for_network_quiet, wait_for_timeout, wait_for_url_match

logger = logging.getLogger(__name__)

LOGIN_ERROR_PATTERN = re.compile(r"Invalid|Error|Failed|incorrect", re.IGNORECASE)
LOGIN_ERROR_CONTAINERS = ('alert',) + NOTIFICATION_CONTAINERS

TICKET_ERROR_PATTERN = re.compile(r"error|failed|could not|unable", re.IGNORECASE)
TIMESHEET_ERROR_PATTERN = re.compile(
    r"Validation Error|cannot|please (?:select|enter|fill)|overlapping|already", re.IGNORECASE
)

POPOVER_SELECTORS = (
    '[role="dialog"] [cmdk-list], [data-slot="command"]',
    '[role="listbox"]',
    '[data-radix-popper-content-wrapper]',
    '[data-radix-select-content]',
)

# Placeholder shown by an empty combobox when its label cannot be located
COMBOBOX_PLACEHOLDERS = {
    'Purpose': 'Select purpose',
    'Assign To': 'Select',
    'Source': 'Select',
    'Status': 'Select',
    'Priority': 'Select',
}

AUTOCOMPLETE_PLACEHOLDERS = {
    'Contact Phone': 'Search by name or phone',
    'To Recipients': 'Type email',
}

SIGNATURE_SEPARATOR = "\n\n---\n"


def _as_action_result(func):
    """Turn expected protocol failures into failed ActionResults."""
    @wraps(func)
    def wrapper(page, *args, **kwargs):
        try:
            return func(page, *args, **kwargs)
        except ActionTimeoutError:
            raise
        except AuthenticationError as e:
            reason, error = FailureReason.AUTHENTICATION, e
        except PermissionDeniedError as e:
            reason, error = FailureReason.PERMISSION, e
        except RetriesExhaustedError as e:
            logger.error(f"{func.__name__}: {e}")
            return ActionResult.failed(
                FailureReason.RETRIES_EXHAUSTED, str(e), attempts=e.attempts,
                current_url=page.url, history=e.history,
            )
        except SelectorNotFoundError as e:
            reason, error = FailureReason.SELECTOR_NOT_FOUND, e
        except (ReadinessTimeoutError, NotificationNotFoundError) as e:
            reason, error = FailureReason.TIMEOUT, e
        logger.error(f"{func.__name__}: {reason.value}: {error}")
        return ActionResult.failed(reason, str(error), current_url=page.url)
    return wrapper


# Login -----------------------------------------------------------------------

@_as_action_result
def login(page: Page, email: str = config.TEST_EMAIL, password: str = config.TEST_PASSWORD,
          base_url: str = None, retry_config: RetryConfig = None, timeout_ms: int = config.LOGIN_TIMEOUT_MS,
          poll_interval_ms: int = 250, clock: Callable[[], float] = time.monotonic,
          sleep: Callable[[float], None] = time.sleep) -> ActionResult:
    """
    Sign in through the login form.

    After submitting, the success route and an error notification are raced by
    polling both on every tick; whichever shows first decides the result.
    Raises ActionTimeoutError when neither appears within ``timeout_ms``.
    """
    login_page = CrmPage(page, LOGIN_PAGE, base_url, retry_config, sleep=sleep, clock=clock)
    with get_test_logger().keyword("Login", email):
        navigation = login_page.goto()
        if url_matches(page.url, DASHBOARD_PAGE.route_pattern):
            logger.info(f"Already signed in, landed on {page.url}")
            return ActionResult.ok("Already signed in", attempts=navigation.attempts, current_url=page.url)

        login_page.find("email").fill(email)
        login_page.find("password").fill(password)
        login_page.find("submit").click()
        return _await_login_outcome(page, timeout_ms, poll_interval_ms, clock, navigation.attempts)


def _await_login_outcome(page: Page, timeout_ms: int, poll_interval_ms: int, clock, attempts: int) -> ActionResult:
    deadline = clock() + timeout_ms / 1000
    while True:
        if url_matches(page.url, DASHBOARD_PAGE.route_pattern):
            logger.info(f"Login succeeded, landed on {page.url}")
            return ActionResult.ok("Logged in", attempts=attempts, current_url=page.url)

        error = scan_notifications(
            page, body_pattern=LOGIN_ERROR_PATTERN, containers=LOGIN_ERROR_CONTAINERS, fallback_to_body=False
        )
        if error is not None:
            logger.info(f"Login rejected: {error.text}")
            return ActionResult.failed(
                FailureReason.INVALID_CREDENTIALS, f"Login failed: {error.text}",
                attempts=attempts, current_url=page.url, notification=error,
            )

        if clock() >= deadline:
            raise ActionTimeoutError(
                f"Login did not redirect to the dashboard or show an error within {timeout_ms}ms.",
                current_url=page.url,
            )
        page.wait_for_timeout(poll_interval_ms)


# Tickets ---------------------------------------------------------------------

@_as_action_result
@log_keyword("Open Tickets Manager")
def open_tickets_manager(page: Page, base_url: str = None, retry_config: RetryConfig = None,
                         timeout_ms: int = config.TIMEOUT_LONG_MS) -> ActionResult:
    """Go to the dashboard and open Tickets Manager from its navigation button."""
    dashboard = CrmPage(page, DASHBOARD_PAGE, base_url, retry_config)
    tickets = CrmPage(page, TICKETS_MANAGER_PAGE, base_url, retry_config)
    navigation = dashboard.goto()

    if not tickets.is_on_route():
        dashboard.find("tickets_manager", timeout_ms).click()
        if not wait_for_url_match(page, TICKETS_MANAGER_PAGE.route_pattern, timeout_ms):
            return ActionResult.failed(
                FailureReason.TIMEOUT, f"Tickets Manager did not open, still on {page.url}", current_url=page.url
            )
    status = tickets.wait_until_ready()
    return ActionResult.ok("Tickets Manager open", attempts=navigation.attempts, current_url=page.url, value=status)


@_as_action_result
@log_keyword("Open Ticket Form")
def open_ticket_form(page: Page) -> ActionResult:
    tickets = CrmPage(page, TICKETS_MANAGER_PAGE)
    tickets.find("new_ticket", config.TIMEOUT_LONG_MS).click()
    tickets.find("form", config.TIMEOUT_LONG_MS)
    if tickets.is_visible("create_tab"):
        tickets.find("create_tab").click()
    subject = tickets.find("subject", 15000)
    return ActionResult.ok("Ticket form open", current_url=page.url, value=subject)


def _combobox_trigger_strategies(label: str, placeholder: str = None):
    placeholder = placeholder or COMBOBOX_PLACEHOLDERS.get(label, f"Select {label.lower()}")
    label_xpath = f'//label[contains(normalize-space(.), "{label}")]'
    return (
        xpath(f'{label_xpath}/following-sibling::*//button[@role="combobox"]', name=f"label '{label}' sibling"),
        xpath(f'{label_xpath}/..//button[@role="combobox"]', name=f"label '{label}' parent"),
        xpath(f'{label_xpath}/following::button[@role="combobox"][1]', name=f"first combobox after '{label}'"),
        css(f'button[role="combobox"]:has-text("{placeholder}")', name=f"placeholder '{placeholder}'"),
    )


def _option_strategies(option_text: str):
    first_word = option_text.split()[0] if option_text.split() else option_text
    return (
        css(f'[role="option"]:text-is("{option_text}")'),
        has_text('[role="option"]', option_text, ignore_case=False),
        has_text('[role="option"]', option_text),
        has_text('[role="option"]', first_word),
    )


def _shows_option(trigger_text: str, option_text: str) -> bool:
    """Exact (whitespace and case normalised) match, so "Assigned" is not found in "Unassigned"."""
    return " ".join((trigger_text or "").split()).casefold() == " ".join(option_text.split()).casefold()


SEARCH_INPUT_STRATEGIES = (
    css('input[placeholder*="Search" i]'),
    css('input[placeholder*="Type to search" i]'),
    css('[cmdk-input]'),
)


@_as_action_result
@log_keyword("Select Combobox Option")
def select_combobox_option(page: Page, label: str, option_text: str, placeholder: str = None,
                           timeout_ms: int = config.TIMEOUT_LONG_MS) -> ActionResult:
    """
    Pick ``option_text`` in the combobox labelled ``label``.

    The click is skipped when the trigger already shows the option, since
    clicking a selected option toggles it off.
    """
    trigger = resolve_first(page, _combobox_trigger_strategies(label, placeholder), timeout_ms,
                            description=f"combobox '{label}'")
    current = (trigger.inner_text() or "").strip()
    if _shows_option(current, option_text):
        logger.info(f"Combobox '{label}' already shows '{current}'")
        return ActionResult.ok(f"'{option_text}' already selected", value=current)

    if trigger.get_attribute("aria-expanded") != "true":
        trigger.click()
    try:
        resolve_first(page, [css(s) for s in POPOVER_SELECTORS], config.TIMEOUT_SHORT_MS, description="combobox popover")
    except SelectorNotFoundError:
        logger.debug(f"No popover container found for '{label}', looking for options directly")

    try:
        search = resolve_first(page, SEARCH_INPUT_STRATEGIES, 1000, description="combobox search input")
        search.fill(option_text)
    except SelectorNotFoundError:
        logger.debug(f"Combobox '{label}' has no search input")

    option = resolve_first(page, _option_strategies(option_text), timeout_ms, description=f"option '{option_text}'")
    option.click()
    return ActionResult.ok(f"Selected '{option_text}' for '{label}'", value=option_text)


@_as_action_result
@log_keyword("Fill Rich Text")
def fill_rich_text(page: Page, content: str, signature: Optional[str] = "Test Signature") -> ActionResult:
    """Type into the Tiptap message editor, appending a signature block when given."""
    editor = resolve_first(
        page, (css('[contenteditable="true"]'), css('.ProseMirror, [class*="ProseMirror"]')),
        config.TIMEOUT_LONG_MS, description="rich text editor",
    )
    text = content + (f"{SIGNATURE_SEPARATOR}{signature}" if signature else "")
    editor.click()
    editor.fill(text)
    return ActionResult.ok("Editor filled", value=text)


@_as_action_result
@log_keyword("Fill Autocomplete")
def fill_autocomplete(page: Page, label: str, value: str, timeout_ms: int = config.TIMEOUT_LONG_MS) -> ActionResult:
    """Type into an autocomplete input and take the first suggestion, or press Enter."""
    placeholder = AUTOCOMPLETE_PLACEHOLDERS.get(label, label)
    strategies = [
        css(f'input[placeholder*="{placeholder}" i]'),
        xpath(f'//label[contains(normalize-space(.), "{label}")]/..//input', name=f"input near label '{label}'"),
        xpath(f'//label[contains(normalize-space(.), "{label}")]/following::input[1]', name=f"input after label '{label}'"),
    ]
    if "Phone" in label:
        strategies.append(css('input[placeholder*="phone" i]'))
    elif "email" in label.lower() or "Recipients" in label:
        strategies.append(css('input[placeholder*="email" i]'))

    field_input = resolve_first(page, strategies, timeout_ms, description=f"autocomplete '{label}'")
    field_input.click()
    field_input.fill(value)

    suggestion = page.locator('[role="option"]').first
    try:
        suggestion.wait_for(state="visible", timeout=3000)
        suggestion.click()
    except PWTimeoutError:
        field_input.press("Enter")
    return ActionResult.ok(f"Filled '{label}'", value=value)


def _fill_if_visible(crm_page: CrmPage, name: str, value: str):
    if value and crm_page.is_visible(name):
        crm_page.find(name).fill(value)


@_as_action_result
def create_ticket(page: Page, ticket: TicketData = None, timeout_ms: int = 30000, poll_interval_ms: int = 250,
                  clock: Callable[[], float] = time.monotonic) -> ActionResult:
    """
    Fill and submit the ticket form, then wait for the "created successfully"
    toast on the tickets manager route, or an error/validation message.

    Fields are filled in dependency order: purpose drives the assignee list and
    the SLA type drives the SLA times.
    """
    ticket = ticket or TicketData()
    tickets = CrmPage(page, TICKETS_MANAGER_PAGE)
    with get_test_logger().keyword("Create Ticket", ticket.subject):
        opened = open_ticket_form(page)
        if not opened:
            return opened
        opened.value.fill(ticket.subject)

        failed = _first_failure(
            lambda: select_combobox_option(page, "Purpose", ticket.purpose),
            lambda: fill_rich_text(page, ticket.description, ticket.signature),
            lambda: select_combobox_option(page, "Assign To", ticket.assign_to),
            lambda: select_combobox_option(page, "Source", ticket.source),
            lambda: select_combobox_option(page, "Status", ticket.status),
            lambda: select_combobox_option(page, "Priority", ticket.priority),
        )
        if failed:
            return failed

        if tickets.is_visible("sla_tab"):
            tickets.find("sla_tab").click()
            failed = _first_failure(
                lambda: select_combobox_option(page, "SLA Type", ticket.sla_type, placeholder="Select SLA")
            )
            if failed:
                return failed
            _fill_if_visible(tickets, "sla_response", ticket.sla_response_time)
            _fill_if_visible(tickets, "sla_resolution", ticket.sla_resolution_time)

        tickets.find("contact_tab").click()
        tickets.find("contact_name", config.TIMEOUT_LONG_MS).fill(ticket.contact_name)
        failed = _first_failure(
            lambda: fill_autocomplete(page, "Contact Phone", ticket.contact_phone),
            lambda: fill_autocomplete(page, "To Recipients", ticket.contact_email),
        )
        if failed:
            return failed
        _fill_if_visible(tickets, "reference_no", ticket.reference_no)

        tickets.find("submit").click()
        return _await_ticket_outcome(page, timeout_ms, poll_interval_ms, clock)


def _first_failure(*steps: Callable[[], ActionResult]) -> Optional[ActionResult]:
    """Run steps in order, stopping at the first failed result."""
    for step in steps:
        result = step()
        if not result:
            return result
    return None


def _await_ticket_outcome(page: Page, timeout_ms: int, poll_interval_ms: int, clock) -> ActionResult:
    deadline = clock() + timeout_ms / 1000
    while True:
        if url_matches(page.url, TICKETS_MANAGER_PAGE.route_pattern):
            created = scan_notifications(page, body_pattern=TICKET_CREATED_PATTERN)
            if created is not None:
                return ActionResult.ok("Ticket created", current_url=page.url, notification=created)

        error = scan_notifications(page, body_pattern=TICKET_ERROR_PATTERN, fallback_to_body=False)
        if error is not None:
            return ActionResult.failed(
                FailureReason.ERROR_NOTIFICATION, error.text, current_url=page.url, notification=error
            )
        field_errors = field_error_messages(page)
        if field_errors:
            return ActionResult.failed(
                FailureReason.ERROR_NOTIFICATION, "; ".join(field_errors), current_url=page.url, value=field_errors
            )

        if clock() >= deadline:
            raise ActionTimeoutError(
                f"Ticket creation showed neither a success toast nor an error within {timeout_ms}ms.",
                current_url=page.url,
            )
        page.wait_for_timeout(poll_interval_ms)


def field_error_messages(page: Page) -> List[str]:
    """Visible inline validation messages on the current form."""
    messages = []
    errors = page.locator(FIELD_ERROR_SELECTOR)
    try:
        for index in range(errors.count()):
            item = errors.nth(index)
            if item.is_visible():
                text = (item.inner_text() or "").strip()
                # Required-field asterisks share the same red classes
                if TICKET_REQUIRED_FIELD_PATTERN.search(text):
                    messages.append(text)
    except PWError as e:
        logger.debug(f"field_error_messages: {e}")
    return messages


# Timesheet -------------------------------------------------------------------

@_as_action_result
@log_keyword("Ensure Timesheet Exists")
def ensure_timesheet_exists(page: Page, base_url: str = None, retry_config: RetryConfig = None) -> ActionResult:
    """Open the timesheet page and create today's timesheet when Add Activity is not usable yet."""
    timesheet = CrmPage(page, TIMESHEET_PAGE, base_url, retry_config)
    navigation = timesheet.goto()

    if timesheet.is_visible("add_activity") and timesheet.find("add_activity").is_enabled():
        return ActionResult.ok("Timesheet exists", attempts=navigation.attempts, current_url=page.url, value="existing")

    timesheet.find("create_timesheet", config.TIMEOUT_LONG_MS).click()
    if timesheet.is_visible("single_mode"):
        timesheet.find("single_mode").click()
    timesheet.find("create_submit").click()
    wait_for_network_quiet(page)
    wait_until_ready(page, (visible('button:has-text("Add Activity"), button:has-text("+ Activity")'),),
                     config.TIMEOUT_LONG_MS)
    return ActionResult.ok("Timesheet created", attempts=navigation.attempts, current_url=page.url, value="created")


@_as_action_result
@log_keyword("Open Add Activity")
def open_add_activity(page: Page) -> ActionResult:
    timesheet = CrmPage(page, TIMESHEET_PAGE)
    timesheet.find("add_activity", config.TIMEOUT_LONG_MS).click()
    dialog = timesheet.find("activity_dialog", config.TIMEOUT_MEDIUM_MS)
    return ActionResult.ok("Activity dialog open", current_url=page.url, value=dialog)


def _combobox_is_empty(text: str) -> bool:
    return not text.strip() or text.strip().lower().startswith("select")


@_as_action_result
@log_keyword("Select First Option")
def select_first_option(page: Page, combobox: str, timeout_ms: int = config.TIMEOUT_LONG_MS) -> ActionResult:
    """Open the timesheet combobox ``combobox`` (project, work_type, activity_type) and take its first option."""
    timesheet = CrmPage(page, TIMESHEET_PAGE)
    trigger = timesheet.find(combobox, timeout_ms)
    current = (trigger.inner_text() or "").strip()
    if not _combobox_is_empty(current):
        return ActionResult.ok(f"{combobox} already set", value=current)

    _wait_until_enabled(page, timesheet, combobox, timeout_ms)
    trigger.click()
    option = resolve_first(page, (css('[role="option"]'),), timeout_ms, description=f"{combobox} option")
    text = (option.inner_text() or "").strip()
    option.click()
    return ActionResult.ok(f"Selected '{text}' for {combobox}", value=text)


def _wait_until_enabled(page: Page, crm_page: CrmPage, name: str, timeout_ms: int):
    # Dependent comboboxes stay disabled until their parent has a value
    selector = crm_page.spec.selectors[name][0].name
    wait_until_ready(page, (enabled(selector),), timeout_ms)


@_as_action_result
@log_keyword("Select Activity Option")
def select_activity_option(page: Page, combobox: str, option_text: str,
                           timeout_ms: int = config.TIMEOUT_LONG_MS) -> ActionResult:
    """Pick a named option in one of the timesheet comboboxes."""
    timesheet = CrmPage(page, TIMESHEET_PAGE)
    trigger = timesheet.find(combobox, timeout_ms)
    if _shows_option(trigger.inner_text(), option_text):
        return ActionResult.ok(f"'{option_text}' already selected", value=option_text)
    _wait_until_enabled(page, timesheet, combobox, timeout_ms)
    trigger.click()
    option = resolve_first(page, _option_strategies(option_text), timeout_ms, description=f"option '{option_text}'")
    option.click()
    return ActionResult.ok(f"Selected '{option_text}' for {combobox}", value=option_text)


@_as_action_result
@log_keyword("Clear Combobox")
def clear_combobox(page: Page, combobox: str) -> ActionResult:
    """
    Unselect the current value of a timesheet combobox by clicking the selected
    option again. The dropdown is dismissed by clicking the dialog header, since
    Escape would close the whole dialog.
    """
    timesheet = CrmPage(page, TIMESHEET_PAGE)
    trigger = timesheet.find(combobox)
    current = (trigger.inner_text() or "").strip()
    if _combobox_is_empty(current):
        return ActionResult.ok(f"{combobox} already empty", value="")

    trigger.click()
    selected = resolve_first(
        page,
        (
            css('[role="option"][aria-selected="true"]'),
            css('[role="option"]:has(svg.opacity-100)', name="option with visible check mark"),
            css(f'[role="option"]:has-text("{current}")'),
        ),
        config.TIMEOUT_SHORT_MS,
        description=f"selected {combobox} option",
    )
    selected.click()

    header = page.locator('[role="dialog"] h2, [role="dialog"] [data-slot="header"]').first
    if header.is_visible():
        header.click()

    remaining = (timesheet.find(combobox).inner_text() or "").strip()
    if not _combobox_is_empty(remaining):
        return ActionResult.failed(FailureReason.SELECTOR_NOT_FOUND, f"{combobox} still shows '{remaining}'",
                                   current_url=page.url, value=remaining)
    return ActionResult.ok(f"{combobox} cleared", value="")


@_as_action_result
@log_keyword("Fill Activity")
def fill_activity(page: Page, activity: ActivityData) -> ActionResult:
    """
    Fill the open activity dialog. Comboboxes with no value given get their
    first option; times and description are written only when not None.
    """
    timesheet = CrmPage(page, TIMESHEET_PAGE)
    for combobox, value in (("project", activity.project), ("work_type", activity.work_type),
                            ("activity_type", activity.activity_type)):
        step = select_first_option(page, combobox) if value is None else select_activity_option(page, combobox, value)
        if not step:
            return step

    for name, value in (("start_time", activity.start_time), ("end_time", activity.end_time)):
        if value is None:
            continue
        time_input = timesheet.find(name)
        if time_input.is_enabled():
            time_input.fill(value)
        else:
            logger.info(f"{name} is disabled for this activity type, leaving it as is")

    if activity.description is not None:
        timesheet.find("description").fill(activity.description)
    return ActionResult.ok("Activity filled", current_url=page.url, value=activity)


@_as_action_result
@log_keyword("Save Activity")
def save_activity(page: Page, expect_title: Optional[TextPattern] = None, expect_body: Optional[TextPattern] = None,
                  timeout_ms: int = config.TIMEOUT_MEDIUM_MS, clock: Callable[[], float] = time.monotonic) -> ActionResult:
    """
    Click Save in the activity dialog and report the notification it produced.

    With ``expect_title``/``expect_body`` the matching notification is awaited
    and returned in a successful result. Without them the save is raced
    against any error notification; a dialog that closed without any toast
    counts as saved once the budget runs out.
    """
    timesheet = CrmPage(page, TIMESHEET_PAGE)
    timesheet.find("save_activity").click()

    if expect_title is not None or expect_body is not None:
        match = find_notification(page, title_pattern=expect_title, body_pattern=expect_body,
                                  timeout_ms=timeout_ms, clock=clock)
        return ActionResult.ok(match.text, current_url=page.url, notification=match)

    deadline = clock() + timeout_ms / 1000
    while True:
        error = scan_notifications(page, title_pattern=VALIDATION_ERROR_TITLE, fallback_to_body=False) \
            or scan_notifications(page, body_pattern=TIMESHEET_ERROR_PATTERN, fallback_to_body=False)
        if error is not None:
            return ActionResult.failed(FailureReason.ERROR_NOTIFICATION, error.text,
                                       current_url=page.url, notification=error)
        saved = scan_notifications(page, body_pattern=TIMESHEET_MESSAGES['saved'], fallback_to_body=False)
        if saved is not None:
            return ActionResult.ok(saved.text, current_url=page.url, notification=saved)
        if clock() >= deadline:
            if not timesheet.is_visible("save_activity"):
                return ActionResult.ok("Activity dialog closed", current_url=page.url)
            raise ActionTimeoutError(f"Saving the activity produced no notification within {timeout_ms}ms.",
                                     current_url=page.url)
        page.wait_for_timeout(250)


@log_keyword("Close Open Modals")
def close_open_modals(page: Page, max_presses: int = 3) -> int:
    """Dismiss any open dialog; returns how many were closed."""
    closed = 0
    dialogs = page.locator('[role="dialog"]')
    for _ in range(max_presses):
        try:
            if not dialogs.first.is_visible():
                break
            cancel = page.locator('[data-id="Timesheet Activity Cancel"], [data-id="Timesheet Create Cancel"]').first
            if cancel.is_visible():
                cancel.click()
            else:
                page.keyboard.press("Escape")
            wait_for_timeout(page, 300)
            closed += 1
        except PWError as e:
            logger.debug(f"close_open_modals: {e}")
            break
    return closed


# Bulk credential verification ------------------------------------------------

@dataclass
class LoginFailure:
    email: str
    reason: str


@dataclass
class BulkLoginReport:
    successful: List[str] = field(default_factory=list)
    failed: List[LoginFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)


@contextmanager
def launch_browser(headless: bool = config.HEADLESS, channel: str = config.BROWSER_CHANNEL) -> Iterator[Browser]:
    """
    Start Playwright and Chromium for the calling thread.

    Sync Playwright objects belong to the thread that created them, so every
    bulk-login worker opens its own browser through this.
    """
    with sync_playwright() as pw:
        browser = pw.chromium.launch(headless=headless, channel=channel)
        try:
            yield browser
        finally:
            browser.close()


def verify_logins(open_browser: Callable[[], ContextManager[Browser]], emails: Iterable[str], password: str,
                  base_url: str = None, retry_config: RetryConfig = None,
                  batch_size: int = config.BULK_LOGIN_BATCH_SIZE, stagger_ms: int = config.BULK_LOGIN_STAGGER_MS,
                  batch_pause_ms: int = config.BULK_LOGIN_BATCH_PAUSE_MS,
                  sleep: Callable[[float], None] = time.sleep) -> BulkLoginReport:
    """
    Log every account in with ``password``, each in its own fresh browser
    context (no shared storage state), and check the session survives two
    reloads of Tickets Manager.

    Accounts within a batch of ``batch_size`` run in parallel worker threads,
    started ``stagger_ms`` apart; each worker gets its browser from
    ``open_browser`` (see :func:`launch_browser`). Batches run one after
    another with ``batch_pause_ms`` between them.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    emails = [e.strip() for e in emails if e and e.strip()]
    report = BulkLoginReport()
    test_logger = get_test_logger()
    test_logger.log_keyword_start("Verify Logins", [f"{len(emails)} accounts"])

    def worker(email):
        with open_browser() as browser:
            return _verify_one_login(browser, email, password, base_url, retry_config)

    for batch_start in range(0, len(emails), batch_size):
        if batch_start:
            sleep(batch_pause_ms / 1000)
        batch = emails[batch_start:batch_start + batch_size]
        logger.info(f"Verifying batch {batch_start // batch_size + 1}: {len(batch)} account(s)")

        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            futures = []
            for index, email in enumerate(batch):
                if index:
                    sleep(stagger_ms / 1000)
                futures.append(executor.submit(worker, email))

            for email, future in zip(batch, futures):
                try:
                    reason = future.result()
                except (CrmAutomationError, PWError) as e:
                    reason = f"{type(e).__name__}: {e}"
                if reason is None:
                    report.successful.append(email)
                    logger.info(f"PASS {email}")
                else:
                    report.failed.append(LoginFailure(email, reason))
                    logger.warning(f"FAIL {email}: {reason}")

    test_logger.log_keyword_end("Verify Logins", "PASS" if not report.failed else "FAIL")
    logger.info(f"Login verification: {len(report.successful)} succeeded, {len(report.failed)} failed")
    return report


def _verify_one_login(browser: Browser, email: str, password: str, base_url: str,
                      retry_config: RetryConfig) -> Optional[str]:
    """None on success, otherwise the failure reason."""
    context = browser.new_context(storage_state=None, ignore_https_errors=True, viewport=config.VIEWPORT)
    context.set_default_timeout(config.DEFAULT_CONTEXT_TIMEOUT_MS)
    try:
        page = context.new_page()
        result = login(page, email, password, base_url=base_url, retry_config=retry_config)
        if not result:
            return result.message
        tickets = CrmPage(page, TICKETS_MANAGER_PAGE, base_url, retry_config)
        for _ in range(2):
            tickets.goto()
            if not tickets.is_on_route():
                return f"Session lost, landed on {page.url}"
        return None
    except (CrmAutomationError, PWError) as e:
        return f"{type(e).__name__}: {e}"
    finally:
        context.close()
