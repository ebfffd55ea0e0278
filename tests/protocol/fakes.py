"""
In-memory stand-ins for the parts of Playwright's Page/Locator API the
protocol modules touch, driven by a fake clock so timing-dependent behaviour
can be asserted exactly.

Elements are registered per selector string; ``page.locator(selector)``
returns whatever was registered under that exact string. Visibility and
enabled state are functions of the fake clock.
"""
from playwright.sync_api import TimeoutError as PWTimeoutError

POLL_STEP_MS = 50


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeElement:
    def __init__(self, text="", visible_from=0.0, visible_until=None, enabled_from=0.0,
                 on_click=None, attrs=None, raises=None):
        self.text = text
        self.visible_from = visible_from
        self.visible_until = visible_until
        # None means never enabled
        self.enabled_from = enabled_from
        self.on_click = on_click
        self.attrs = dict(attrs or {})
        self.raises = raises
        self.value = None

    def visible_at(self, now: float) -> bool:
        if self.raises is not None:
            raise self.raises
        if now < self.visible_from:
            return False
        return self.visible_until is None or now < self.visible_until

    def enabled_at(self, now: float) -> bool:
        if self.raises is not None:
            raise self.raises
        return self.enabled_from is not None and now >= self.enabled_from


class FakeLocator:
    def __init__(self, page, selector, index=None, text_filter=None):
        self.page = page
        self.selector = selector
        self.index = index
        self.text_filter = text_filter

    def _elements(self):
        elements = list(self.page.elements.get(self.selector, []))
        if self.text_filter is not None:
            pattern = self.text_filter
            if isinstance(pattern, str):
                elements = [e for e in elements if pattern in e.text]
            else:
                elements = [e for e in elements if pattern.search(e.text)]
        if self.index is not None:
            elements = elements[self.index:self.index + 1]
        return elements

    def _one(self):
        elements = self._elements()
        if not elements:
            raise PWTimeoutError(f'Timeout exceeded waiting for locator("{self.selector}")')
        return elements[0]

    @property
    def first(self):
        return FakeLocator(self.page, self.selector, 0, self.text_filter)

    def nth(self, index):
        return FakeLocator(self.page, self.selector, index, self.text_filter)

    def filter(self, has_text=None):
        return FakeLocator(self.page, self.selector, self.index, has_text)

    def count(self):
        return len(self._elements())

    def is_visible(self):
        elements = self._elements()
        return bool(elements) and elements[0].visible_at(self.page.clock.now)

    def is_enabled(self):
        return self._one().enabled_at(self.page.clock.now)

    def inner_text(self):
        return self._one().text

    def get_attribute(self, name):
        return self._one().attrs.get(name)

    def wait_for(self, state="visible", timeout=30000):
        deadline = self.page.clock.now + timeout / 1000
        while True:
            if state == "visible" and self.is_visible():
                return
            if state == "hidden" and not self.is_visible():
                return
            if self.page.clock.now >= deadline:
                raise PWTimeoutError(f'Timeout {timeout}ms exceeded waiting for locator("{self.selector}") to be {state}')
            self.page.wait_for_timeout(POLL_STEP_MS)

    def click(self, **kwargs):
        element = self._one()
        if not element.visible_at(self.page.clock.now):
            raise PWTimeoutError(f'Timeout exceeded clicking locator("{self.selector}")')
        self.page.clicks.append(self.selector)
        if element.on_click:
            element.on_click()

    def fill(self, value, **kwargs):
        self._one().value = value
        self.page.fills[self.selector] = value

    def press(self, key, **kwargs):
        self.page.key_presses.append((self.selector, key))


class FakeKeyboard:
    def __init__(self, page):
        self.page = page

    def press(self, key):
        self.page.key_presses.append((None, key))


class FakePage:
    def __init__(self, url="about:blank", clock=None):
        self.clock = clock or FakeClock()
        self._url = url
        self._url_changes = []
        self.elements = {}
        self.goto_calls = []
        self.goto_handler = None
        self.clicks = []
        self.fills = {}
        self.key_presses = []
        self.keyboard = FakeKeyboard(self)

    # URL -------------------------------------------------------------------

    @property
    def url(self):
        due = [change for change in self._url_changes if change[0] <= self.clock.now]
        for change in sorted(due):
            self._url = change[1]
            self._url_changes.remove(change)
        return self._url

    @url.setter
    def url(self, value):
        self._url = value

    def change_url_after(self, seconds, url):
        self._url_changes.append((self.clock.now + seconds, url))

    # Elements --------------------------------------------------------------

    def add(self, selector, element=None, **kwargs):
        element = element or FakeElement(**kwargs)
        self.elements.setdefault(selector, []).append(element)
        return element

    def locator(self, selector):
        return FakeLocator(self, selector)

    def get_by_role(self, role, name=None, exact=False):
        key = f"role={role}" if name is None else f"role={role}[name={name}]"
        return FakeLocator(self, key)

    def get_by_text(self, text, exact=False):
        return FakeLocator(self, f"text={text}")

    # Navigation and waiting ----------------------------------------------

    def goto(self, url, wait_until="load", timeout=None):
        self.goto_calls.append((url, wait_until))
        if self.goto_handler is not None:
            self.goto_handler(self, url, wait_until)
        else:
            self._url = url

    def wait_for_load_state(self, state="load", timeout=None):
        return None

    def wait_for_timeout(self, ms):
        self.clock.advance(ms / 1000)

    def wait_for_url(self, predicate, timeout=30000):
        deadline = self.clock.now + timeout / 1000
        while not predicate(self.url):
            if self.clock.now >= deadline:
                raise PWTimeoutError(f"Timeout {timeout}ms exceeded waiting for URL")
            self.wait_for_timeout(POLL_STEP_MS)


class FakeContext:
    def __init__(self, browser, page_factory, storage_state):
        self.browser = browser
        self.page_factory = page_factory
        self.storage_state = storage_state
        self.closed = False
        self.default_timeout = None

    def set_default_timeout(self, timeout):
        self.default_timeout = timeout

    def new_page(self):
        return self.page_factory()

    def close(self):
        self.closed = True


class FakeBrowser:
    """Hands out a fresh FakePage from ``page_factory`` for every new context."""

    def __init__(self, page_factory):
        self.page_factory = page_factory
        self.contexts = []

    def new_context(self, storage_state=None, **kwargs):
        context = FakeContext(self, self.page_factory, storage_state)
        self.contexts.append(context)
        return context
