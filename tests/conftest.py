"""In-memory stand-ins for the Playwright page surface the engine uses.

The fake page owns a fake monotonic clock. Waiting on the page advances the
clock and delivers any beacons scheduled to arrive in that span, so timing
behaviour is deterministic and tests run instantly.
"""

import asyncio
import re

import pytest
from playwright.async_api import Error as PlaywrightError

from tracking.correlation import summarize_category
from tracking.models import (
    Beacon,
    BeaconKind,
    CtaKind,
    CtaTests,
    Evidence,
    HealthReport,
    InteractionOutcome,
    InteractionWindow,
    OutcomeStatus,
    OverallStatus,
    TagsFound,
)
from tracking.tags import DATA_LAYER_JS, TAG_SCAN_JS

GA4_COLLECT = "https://www.google-analytics.com/g/collect?v=2&tid=G-TEST123456&en={en}"
GA4_COLLECT_NO_EVENT = "https://www.google-analytics.com/g/collect?v=2&tid=G-TEST123456"
GTM_LOAD = "https://www.googletagmanager.com/gtm.js?id=GTM-ABC123"

# Playwright text pseudo-classes on a tag: has-text is a case-insensitive
# substring match, text-is an exact match on whitespace-normalized text
TEXT_SELECTOR_RE = re.compile(r'^(\w+):(has-text|text-is)\("(.+)"\)$')


def text_matches(text, mode, wanted):
    normalized = " ".join((text or "").split())
    if mode == "text-is":
        return normalized == wanted
    return wanted.lower() in normalized.lower()


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeResponse:
    def __init__(self, status=200):
        self.status = status


class FakeRequest:
    def __init__(self, url, method="GET", post_data=None):
        self.url = url
        self.method = method
        self.post_data = post_data


class FakeElement:
    def __init__(
        self,
        visible=True,
        attrs=None,
        text="",
        on_click=None,
        click_error=False,
        dispatch_error=False,
        scroll_error=False,
        info=None,
        children=None,
    ):
        self.visible = visible
        self.attrs = attrs or {}
        self.text = text
        self.on_click = on_click
        self.click_error = click_error
        self.dispatch_error = dispatch_error
        self.scroll_error = scroll_error
        self.info = info or {}
        self.children = children or {}
        self.clicks = 0
        self.forced_clicks = 0
        self.dispatched = 0
        self.value = None
        self.checked = False
        self.selected_index = None

    def fire(self):
        if self.on_click:
            self.on_click()


class FakeLocator:
    def __init__(self, elements):
        self.elements = list(elements)

    def _one(self) -> FakeElement:
        if not self.elements:
            raise PlaywrightError("Element not found")
        return self.elements[0]

    async def count(self):
        return len(self.elements)

    def nth(self, i):
        return FakeLocator(self.elements[i:i + 1])

    @property
    def first(self):
        return self.nth(0)

    async def all(self):
        return [FakeLocator([e]) for e in self.elements]

    def locator(self, selector):
        if not self.elements:
            return FakeLocator([])
        return FakeLocator(self._one().children.get(selector, []))

    async def is_visible(self):
        return bool(self.elements) and self.elements[0].visible

    async def scroll_into_view_if_needed(self, timeout=None):
        el = self._one()
        if el.scroll_error:
            raise PlaywrightError("Element is not attached to the DOM")

    async def click(self, timeout=None, force=False):
        el = self._one()
        if el.click_error and not (force and el.click_error == "unless_forced"):
            raise PlaywrightError("Element is covered by another element")
        if force:
            el.forced_clicks += 1
        el.clicks += 1
        el.fire()

    async def dispatch_event(self, event_type):
        el = self._one()
        if el.dispatch_error:
            raise PlaywrightError("Element is detached")
        el.dispatched += 1
        el.fire()

    async def get_attribute(self, name, timeout=None):
        return self._one().attrs.get(name)

    async def text_content(self, timeout=None):
        return self._one().text

    async def evaluate(self, js):
        return self._one().info

    async def fill(self, value, timeout=None):
        self._one().value = value

    async def check(self, timeout=None):
        self._one().checked = True

    async def select_option(self, index=None, timeout=None):
        self._one().selected_index = index

    async def focus(self, timeout=None):
        self._one()


class FakePage:
    def __init__(self, clock=None, url="about:blank"):
        self.clock = clock or FakeClock()
        self.url = url
        self.locators = {}
        self.tag_scan = {
            "scripts": [],
            "noscripts": [],
            "has_gtm_object": False,
            "has_gtag_function": False,
            "data_layer": None,
        }
        self.final_data_layer = None
        self.evaluate_error = None
        self.goto_errors = []
        self.goto_calls = []
        self.load_beacons = []
        self.handlers = []
        self.scheduled = []
        self.statuses = {}
        self.default_status = 200
        self.redirects = {}
        self.pages = {}  # url -> locators served once navigated there
        self.stalled = False

    @property
    def frames(self):
        return [self]

    def on(self, event, handler):
        assert event == "request"
        self.handlers.append(handler)

    def emit(self, url, method="GET", post_data=None):
        for handler in self.handlers:
            handler(FakeRequest(url, method, post_data))

    def schedule(self, delay_ms, url):
        self.scheduled.append((self.clock() + delay_ms, url))
        self.scheduled.sort(key=lambda item: item[0])

    def add(self, selector, *elements):
        self.locators.setdefault(selector, []).extend(elements)

    def locator(self, selector):
        match = TEXT_SELECTOR_RE.match(selector)
        if match:
            tag, mode, wanted = match.groups()
            return FakeLocator(
                [e for e in self.locators.get(tag, []) if text_matches(e.text, mode, wanted)]
            )
        return FakeLocator(self.locators.get(selector, []))

    async def wait_for_timeout(self, ms):
        if self.stalled:
            # a wait that never returns, for runtime-cap tests
            await asyncio.Event().wait()
        target = self.clock() + ms
        while self.scheduled and self.scheduled[0][0] <= target:
            at, url = self.scheduled.pop(0)
            self.clock.now = max(self.clock.now, at)
            self.emit(url)
        self.clock.now = target

    async def wait_for_load_state(self, state=None, timeout=None):
        return None

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append((url, wait_until))
        if self.goto_errors:
            error = self.goto_errors.pop(0)
            if error is not None:
                raise error
        self.url = self.redirects.get(url, url)
        if self.url in self.pages:
            self.locators = self.pages[self.url]
        for beacon_url in self.load_beacons:
            self.emit(beacon_url)
        self.clock.advance(250)
        return FakeResponse(self.statuses.get(url, self.default_status))

    async def evaluate(self, js):
        if js == TAG_SCAN_JS:
            if self.evaluate_error:
                raise self.evaluate_error
            return self.tag_scan
        if js == DATA_LAYER_JS:
            return self.final_data_layer
        return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def page(clock):
    return FakePage(clock=clock, url="https://example.com/")


@pytest.fixture
def report():
    """A finished report: one tracked phone click, one silent email click."""
    phone = InteractionWindow(
        kind=CtaKind.PHONE,
        target="tel:+15551234567",
        start_ms=6250.0,
        end_ms=9900.0,
        outcome=InteractionOutcome(
            status=OutcomeStatus.TRACKED, event_names=["click_call"], beacon_count=1
        ),
    )
    email = InteractionWindow(
        kind=CtaKind.EMAIL,
        target="mailto:info@example.com",
        start_ms=9900.0,
        end_ms=13550.0,
        outcome=InteractionOutcome(status=OutcomeStatus.UNTRACKED),
    )
    beacon = Beacon(
        url=GA4_COLLECT.format(en="click_call"),
        observed_at="2026-01-01T00:00:06+00:00",
        observed_at_ms=6800.0,
        kind=BeaconKind.ANALYTICS_COLLECT,
        event_name="click_call",
        measurement_id="G-TEST123456",
    )
    return HealthReport(
        url="https://example.com",
        final_url="https://example.com/",
        timestamp="2026-01-01T00:00:00+00:00",
        client_name="Acme Plumbing",
        tags_found=TagsFound(gtm=["GTM-ABC123"], ga4=["G-TEST123456"]),
        cta_tests=CtaTests(
            phone=summarize_category(CtaKind.PHONE, 1, [phone]),
            email=summarize_category(CtaKind.EMAIL, 1, [email]),
        ),
        issues=["CRITICAL: All email clicks not tracking (0/1)"],
        summary="1/2 CTA tests fired tracked events",
        evidence=Evidence(beacons=[beacon], events_captured=["click_call"]),
        overall_status=OverallStatus.FAILING,
    )
