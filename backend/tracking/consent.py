"""Cookie consent acceptance and post-consent beacon check.

Selector probing is a priority search: the first visible match across all
frames (main frame first) is clicked, nothing else is tried. After a click
the beacon log is polled for a GA4 collect hit until a bounded timeout.
A timeout here is an observation (tracking did not fire), not an error.
"""

import logging
from typing import Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from tracking.beacons import BeaconLog
from tracking.models import BeaconKind, ConsentOutcome

logger = logging.getLogger(__name__)

# Consent framework detection selectors
FRAMEWORK_SIGNATURES = {
    "onetrust": "#onetrust-banner-sdk, .onetrust-pc-dark-filter, #ot-sdk-btn",
    "trustarc": "#truste-consent-track, .truste_overlay, #consent_blackbar",
    "cookiebot": "#CybotCookiebotDialog, .CybotCookiebotDialogActive",
    "evidon": "#_evidon_banner, #_evidon-barrier-wrapper",
    "quantcast": ".qc-cmp2-container, #qc-cmp2-ui",
    "didomi": "#didomi-host, .didomi-popup-container",
}

# Accept controls, priority order: platform buttons, button text, attributes.
# has-text is a case-insensitive substring match; single short words use
# text-is (exact, whitespace-normalized) so "OK" never matches "Book now".
ACCEPT_SELECTORS = [
    "#onetrust-accept-btn-handler",
    "#truste-consent-button",
    "#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll",
    "#CybotCookiebotDialogBodyButtonAccept",
    ".qc-cmp2-summary-buttons button:first-child",
    "#didomi-notice-agree-button",
    "#accept-all-cookies",
    "#accept-cookies",
    "#cookie-accept",
    'button:has-text("Accept all cookies")',
    'button:has-text("Accept all")',
    'button:has-text("Allow all cookies")',
    'button:has-text("Allow all")',
    'button:has-text("Accept cookies")',
    'button:text-is("I Accept")',
    'button:text-is("Accept")',
    'button:text-is("I Agree")',
    'button:text-is("Agree")',
    'button:text-is("Allow")',
    'button:text-is("Got it")',
    'button:text-is("OK")',
    'button:text-is("Ok")',
    ".cookie-accept",
    ".accept-cookies",
    '[aria-label*="accept" i]',
    '[aria-label*="agree" i]',
    'button[id*="accept" i]',
    'a[id*="accept" i]',
    '[data-testid*="accept" i]',
    '[data-qa*="accept" i]',
]

POLL_INTERVAL_MS = 100
MAX_CANDIDATES = 3


async def detect_framework(page: Page) -> str:
    """Detect which consent framework is in use."""
    for name, selector in FRAMEWORK_SIGNATURES.items():
        try:
            if await page.locator(selector).count():
                return name
        except PlaywrightError:
            continue
    return "unknown"


async def find_accept_control(page: Page) -> tuple[Locator, str] | None:
    """First visible accept control across all frames, or None."""
    for frame in page.frames:
        for selector in ACCEPT_SELECTORS:
            try:
                matches = frame.locator(selector)
                count = await matches.count()
                for i in range(min(count, MAX_CANDIDATES)):
                    loc = matches.nth(i)
                    if await loc.is_visible():
                        return loc, selector
            except PlaywrightError:
                continue
    return None


async def _click_with_retry(loc: Locator) -> bool:
    try:
        await loc.click(timeout=3000)
        return True
    except PlaywrightError as e:
        logger.debug("Consent click failed (%s), retrying with force", str(e))
    try:
        await loc.click(force=True, timeout=3000)
        return True
    except PlaywrightError as e:
        logger.warning("Consent click failed after forced retry: %s", str(e))
        return False


async def wait_for_collect(
    page: Page,
    log: BeaconLog,
    clock: Callable[[], float],
    since_ms: float,
    timeout_ms: int,
) -> bool:
    """Poll the log for a GA4 collect beacon observed at or after since_ms."""
    deadline = clock() + timeout_ms
    while True:
        if any(b.kind == BeaconKind.ANALYTICS_COLLECT for b in log.since(since_ms)):
            return True
        if clock() >= deadline:
            return False
        await page.wait_for_timeout(POLL_INTERVAL_MS)


async def simulate_consent(
    page: Page,
    log: BeaconLog,
    clock: Callable[[], float],
    wait_ms: int = 5000,
    grace_ms: int = 1000,
) -> ConsentOutcome:
    """Accept the cookie banner if there is one and check tracking follows."""
    match = await find_accept_control(page)
    if match is None:
        logger.info("No consent control found on %s", page.url)
        return ConsentOutcome()

    loc, selector = match
    framework = await detect_framework(page)
    logger.info("Consent control found via %s (framework: %s)", selector, framework)

    clicked_at = clock()
    accepted = await _click_with_retry(loc)
    if not accepted:
        return ConsentOutcome(banner_found=True, framework=framework, selector=selector)

    fired = await wait_for_collect(page, log, clock, clicked_at, wait_ms)
    if fired:
        logger.info("GA4 beacon observed after consent")
    else:
        logger.info("No GA4 beacon within %dms of consent", wait_ms)

    await page.wait_for_timeout(grace_ms)

    return ConsentOutcome(
        banner_found=True,
        accepted=True,
        accepted_fired=fired,
        framework=framework,
        selector=selector,
    )
