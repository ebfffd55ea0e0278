"""
Page objects for the CRM screens.

Rather than one class per screen, every screen is a ``PageSpec`` row (route,
readiness criteria, selector table) driven by a single ``CrmPage``. Opening a
page is one retried unit: navigate, detect a bounce to the login screen, and
wait for readiness.
"""
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Pattern, Tuple

from playwright.sync_api import Locator, Page

from crm_e2e import config
from crm_e2e.errors import AuthenticationError, RetryableNavigationError
from crm_e2e.readiness import LOADING_INDICATORS, ReadinessCriteria, ReadinessStatus, enabled, visible, wait_until_ready
from crm_e2e.retry import ActionResult, RetryConfig, RetryController
from crm_e2e.selectors import SelectorStrategy, css, resolve_first, role
from crm_e2e.waits import goto_fast, url_matches

logger = logging.getLogger(__name__)

SelectorTable = Dict[str, Tuple[SelectorStrategy, ...]]


@dataclass(frozen=True)
class PageSpec:
    name: str
    route: str
    route_pattern: Pattern
    readiness: ReadinessCriteria
    selectors: SelectorTable = field(default_factory=dict)
    readiness_timeout_ms: int = config.TIMEOUT_LONG_MS


LOGIN_ROUTE_PATTERN = re.compile(r"/auth/login")

LOGIN_PAGE = PageSpec(
    name="Login",
    route=config.LOGIN_ROUTE,
    route_pattern=LOGIN_ROUTE_PATTERN,
    readiness=LOADING_INDICATORS + (
        visible('input[type="email"]'),
        visible('input[type="password"]'),
        enabled('button:has-text("Log In")'),
    ),
    selectors={
        "email": (css('input[type="email"]'), css('input[name="email"]')),
        "password": (css('input[type="password"]'), css('input[name="password"]')),
        "submit": (role("button", name="Log In"), css('button:has-text("Log In")'), css('button[type="submit"]')),
        "welcome": (css("text=Welcome"),),
        "sign_in_hint": (css("text=Sign in to access your account"),),
    },
)

DASHBOARD_PAGE = PageSpec(
    name="Dashboard",
    route=config.DASHBOARD_ROUTE,
    route_pattern=re.compile(r"/dashboard(?:/|$)"),
    readiness=LOADING_INDICATORS + (
        enabled('button:has-text("Tickets Manager"), a:has-text("Tickets Manager"), [href*="tickets-manager"]'),
    ),
    selectors={
        "tickets_manager": (
            role("button", name="Tickets Manager"),
            css('a:has-text("Tickets Manager")'),
            css('[href*="tickets-manager"]'),
        ),
    },
)

TICKETS_MANAGER_PAGE = PageSpec(
    name="Tickets Manager",
    route=config.TICKETS_MANAGER_ROUTE,
    route_pattern=re.compile(r"/dashboard/tickets-manager"),
    readiness=LOADING_INDICATORS + (
        visible('h2:has-text("Tickets Manager")'),
        enabled('button:text-is("Ticket"), button:has-text("+ Ticket")'),
    ),
    selectors={
        "new_ticket": (role("button", name="Ticket", exact=True), css('button:has-text("+ Ticket")')),
        "form": (css('[data-id="Create"]'), css('form, [role="dialog"], .modal')),
        "create_tab": (css('button[data-id="Create"]'),),
        "subject": (css('input[placeholder*="Subject" i]'), css('input[name="subject"]')),
        "sla_tab": (css('button:has-text("SLA")'),),
        "sla_response": (css('input[placeholder*="Response Time" i]'),),
        "sla_resolution": (css('input[placeholder*="Resolution Time" i]'),),
        "contact_tab": (css('button:has-text("Contact Info")'), css('button:has-text("Contact")')),
        "contact_name": (css('input[placeholder*="Contact name" i]'), css('input[name*="contactName" i]')),
        "reference_no": (css('input[placeholder*="Reference number" i]'), css('input[placeholder*="Reference No" i]')),
        "submit": (
            css('button[type="submit"]:has-text("Create")'),
            css('button:has-text("Create Ticket")'),
            css('button[type="submit"]'),
        ),
    },
)

TIMESHEET_PAGE = PageSpec(
    name="Timesheet",
    route=config.TIMESHEET_ROUTE,
    route_pattern=re.compile(r"/dashboard/timesheet"),
    readiness=LOADING_INDICATORS + (
        visible(
            'button:has-text("Create Timesheet"), button:has-text("+ Timesheet"), '
            'button:has-text("Add Activity"), button:has-text("+ Activity")'
        ),
    ),
    selectors={
        "create_timesheet": (css('button:has-text("Create Timesheet")'), css('button:has-text("+ Timesheet")')),
        "single_mode": (css('[data-id="Timesheet Single Mode"]'),),
        "create_submit": (css('[data-id="Timesheet Create Submit"]'),),
        "add_activity": (css('button:has-text("Add Activity")'), css('button:has-text("+ Activity")')),
        "activity_dialog": (css('[role="dialog"]:has([data-id="Timesheet Activity Save"])'), css('[role="dialog"]')),
        "project": (css("#project-combobox"),),
        "work_type": (css("#work-type-combobox"),),
        "activity_type": (css("#activity-type-combobox"),),
        "description": (
            css('textarea[placeholder*="description" i]'),
            css('textarea[name*="description" i]'),
            css("textarea"),
        ),
        "start_time": (css('input[type="time"][name*="start" i]'), css('input[type="time"] >> nth=0')),
        "end_time": (css('input[type="time"][name*="end" i]'), css('input[type="time"] >> nth=1')),
        "save_activity": (css('[data-id="Timesheet Activity Save"]'),),
        "cancel_activity": (css('[data-id="Timesheet Activity Cancel"]'),),
    },
)


class CrmPage:
    """One CRM screen bound to a Playwright page."""

    def __init__(self, page: Page, spec: PageSpec, base_url: str = None, retry_config: RetryConfig = None,
                 sleep: Callable[[float], None] = time.sleep, clock: Callable[[], float] = time.monotonic):
        self.page = page
        self.spec = spec
        self.base_url = base_url or config.BASE_URL
        self.retry_config = retry_config or RetryConfig.from_env()
        self._sleep = sleep
        self._clock = clock

    @property
    def url(self) -> str:
        return config.url_for(self.spec.route, self.base_url)

    def is_on_route(self) -> bool:
        return url_matches(self.page.url, self.spec.route_pattern)

    def raise_if_login_redirect(self):
        if self.spec is LOGIN_PAGE:
            return
        current = self.page.url
        if url_matches(current, LOGIN_ROUTE_PATTERN):
            raise AuthenticationError(f"Redirected to the login page while opening {self.spec.name}", current_url=current)

    def wait_until_ready(self, timeout_ms: int = None) -> ReadinessStatus:
        return wait_until_ready(
            self.page, self.spec.readiness, timeout_ms or self.spec.readiness_timeout_ms, clock=self._clock
        )

    def open_once(self) -> Optional[ReadinessStatus]:
        """Single navigation attempt; raises on anything the retry controller should see."""
        goto_fast(self.page, self.url, timeout=config.NAVIGATION_TIMEOUT_MS)
        if self.page.url in ("", "about:blank") or self.page.url.startswith("chrome-error://"):
            raise RetryableNavigationError(f"{self.spec.name}: nothing rendered for {self.url} (at {self.page.url!r})")
        self.raise_if_login_redirect()
        if not self.is_on_route():
            # Caller decides what an unexpected landing route means
            logger.warning(f"{self.spec.name}: landed on {self.page.url} instead of {self.spec.route}")
            return None
        return self.wait_until_ready()

    def goto(self, max_attempts: int = None) -> ActionResult:
        """Open the page with retries. Authentication errors and exhaustion are raised."""
        controller = RetryController(self.retry_config, sleep=self._sleep, clock=self._clock)
        result = controller.attempt(self.open_once, max_attempts=max_attempts, target=self.spec.route)
        result.current_url = self.page.url
        return result

    def find(self, name: str, timeout_ms: int = config.TIMEOUT_MEDIUM_MS) -> Locator:
        return resolve_first(self.page, self.spec.selectors[name], timeout_ms, description=f"{self.spec.name}.{name}")

    def is_visible(self, name: str) -> bool:
        """Instant check across the selector table entry, without waiting."""
        return any(strategy(self.page).first.is_visible() for strategy in self.spec.selectors[name])
