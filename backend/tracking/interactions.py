"""CTA interaction driver.

Exercises a capped number of phone links, email links and forms, strictly
one at a time. Each interaction is bracketed by a correlation window taken
from the beacon observer's clock: start just before the element is touched,
end after a fixed observation delay. Interactions that throw are recorded as
click_failed and are never correlated.
"""

import logging
from typing import Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from tracking.beacons import BeaconLog
from tracking.correlation import classify, summarize_category
from tracking.errors import InteractionFailure
from tracking.models import (
    CtaCategoryResult,
    CtaKind,
    CtaTests,
    InteractionOutcome,
    InteractionWindow,
)

logger = logging.getLogger(__name__)

PHONE_SELECTOR = 'a[href^="tel:"]'
EMAIL_SELECTOR = 'a[href^="mailto:"]'

# Native forms, common WordPress form builders, ARIA forms
FORM_SELECTOR = ", ".join([
    "form",
    ".wpcf7",
    ".elementor-form",
    ".wpforms-form",
    ".gform_wrapper",
    ".fluentform",
    ".nf-form-cont",
    ".frm_forms",
    ".forminator-custom-form",
    '[role="form"]',
])

# Runs on each form candidate. Builder wrappers that contain a real <form>
# are skipped so one form is never counted twice.
FORM_INFO_JS = """
(el) => {
    const isForm = el.tagName === 'FORM';
    const standalone = isForm
        ? !(el.parentElement && el.parentElement.closest('form'))
        : (!el.closest('form') && !el.querySelector('form'));
    const fields = el.querySelectorAll(
        'input:not([type="hidden"]):not([type="submit"]):not([type="button"]), textarea, select'
    ).length;
    const builders = [
        ['cf7', '.wpcf7, .wpcf7-form'],
        ['elementor', '.elementor-form'],
        ['wpforms', '.wpforms-form'],
        ['gravity', '.gform_wrapper, .gform_wrapper form'],
        ['fluent', '.fluentform, .frm-fluent-form'],
        ['ninja', '.nf-form-cont'],
        ['formidable', '.frm_forms'],
        ['forminator', '.forminator-custom-form'],
    ];
    let kind = isForm ? 'form' : 'role_form';
    for (const [name, sel] of builders) {
        if (el.matches(sel)) { kind = name; break; }
    }
    return { standalone: standalone, fields: fields, kind: kind };
}
"""

FIELD_SELECTOR = "input:visible, textarea:visible, select:visible"

FIELD_INFO_JS = """
(el) => ({
    tag: el.tagName.toLowerCase(),
    type: (el.getAttribute('type') || '').toLowerCase(),
    hint: [el.name, el.id, el.placeholder, el.getAttribute('autocomplete')]
        .filter(Boolean).join(' ').toLowerCase(),
    required: !!el.required || el.getAttribute('aria-required') === 'true',
})
"""

SKIP_FIELD_TYPES = {"hidden", "password", "file", "submit", "button", "reset", "image"}
TEXT_FIELD_TYPES = {"", "text", "search", "url"}
MAX_FIELDS = 25

TEST_EMAIL = "test@example.com"
TEST_PHONE = "5551234567"
TEST_NAME = "Test User"
TEST_MESSAGE = "Test message"
TEST_TEXT = "Test"

VALIDATION_ERROR_SELECTORS = [
    '[aria-invalid="true"]',
    ".wpcf7-not-valid-tip",
    ".invalid-feedback",
    ".field-error",
    ".error-message",
    ".gfield_validation_message",
    ".wpforms-error",
    ".has-error",
]

SUBMIT_SELECTORS = [
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Submit")',
    'button:has-text("Send")',
    'button:has-text("Enquire")',
    'button:has-text("Get Quote")',
    'button:has-text("Request")',
    'button:has-text("Get Started")',
    'button:has-text("Continue")',
    'button:has-text("Next")',
    'button:has-text("Book")',
    '[aria-label*="submit" i]',
    '[aria-label*="send" i]',
]

CAPTCHA_SELECTOR = ", ".join([
    'iframe[src*="recaptcha"]',
    'iframe[src*="hcaptcha"]',
    'iframe[src*="challenges.cloudflare.com"]',
])

PROVIDER_IFRAME_SELECTOR = ", ".join([
    'iframe[src*="typeform" i]',
    'iframe[src*="jotform" i]',
    'iframe[src*="hubspot" i]',
    'iframe[src*="hsforms" i]',
    'iframe[src*="wufoo" i]',
    'iframe[src*="formstack" i]',
    'iframe[src*="google.com/forms" i]',
    'iframe[src*="forms.gle" i]',
    'iframe[src*="cognito" i]',
    'iframe[src*="123formbuilder" i]',
])

SCROLL_TO_FOOTER_JS = """
async () => {
    const sleep = ms => new Promise(r => setTimeout(r, ms));
    const max = Math.max(document.body.scrollHeight, document.documentElement.scrollHeight);
    const step = Math.max(400, Math.floor(window.innerHeight * 0.8));
    for (let y = 0; y < max; y += step) {
        window.scrollTo(0, y);
        await sleep(120);
    }
    window.scrollTo(0, max);
}
"""

STABILIZE_MS = 150
FORM_STABILIZE_MS = 300
CLICK_TIMEOUT_MS = 3000
ATTRIBUTE_TIMEOUT_MS = 2000


async def robust_click(page: Page, loc: Locator) -> None:
    """Scroll, stabilize and click; fall back to a DOM click event.

    Raises InteractionFailure or a Playwright error if the element cannot be
    clicked at all.
    """
    await loc.scroll_into_view_if_needed(timeout=CLICK_TIMEOUT_MS)
    await page.wait_for_timeout(STABILIZE_MS)
    if not await loc.is_visible():
        raise InteractionFailure("Not visible")
    try:
        await loc.click(timeout=CLICK_TIMEOUT_MS)
    except PlaywrightError as e:
        # Covered or animating elements still get the site's click listeners
        logger.debug("Native click failed (%s), dispatching click event", str(e))
        await loc.dispatch_event("click")


def _field_value(tag: str, field_type: str, hint: str) -> Optional[str]:
    """Synthetic value for a fillable field, or None to leave it alone."""
    if tag == "textarea":
        return TEST_MESSAGE
    if field_type == "email" or "email" in hint:
        return TEST_EMAIL
    if field_type == "tel" or "phone" in hint or "tel" in hint.split():
        return TEST_PHONE
    if "name" in hint:
        return TEST_NAME
    if field_type == "number":
        return "1"
    if field_type in TEXT_FIELD_TYPES:
        return TEST_TEXT
    return None


async def fill_form(form: Locator) -> int:
    """Fill recognized fields with synthetic data. Returns the number filled."""
    try:
        fields = await form.locator(FIELD_SELECTOR).all()
    except PlaywrightError as e:
        logger.debug("Could not list form fields: %s", str(e))
        return 0

    filled = 0
    for field in fields[:MAX_FIELDS]:
        try:
            info = await field.evaluate(FIELD_INFO_JS)
            tag = info.get("tag", "")
            field_type = info.get("type", "")
            hint = info.get("hint", "")

            if field_type in SKIP_FIELD_TYPES:
                continue

            if tag == "select":
                await field.select_option(index=1, timeout=ATTRIBUTE_TIMEOUT_MS)
                filled += 1
                continue

            if field_type in ("checkbox", "radio"):
                if info.get("required"):
                    await field.check(timeout=ATTRIBUTE_TIMEOUT_MS)
                    filled += 1
                continue

            value = _field_value(tag, field_type, hint)
            if value is None:
                continue
            await field.fill(value, timeout=ATTRIBUTE_TIMEOUT_MS)
            filled += 1
        except PlaywrightError as e:
            logger.debug("Skipping field: %s", str(e))
            continue

    # Focus the first field for form_start style listeners
    if fields:
        try:
            await fields[0].focus(timeout=ATTRIBUTE_TIMEOUT_MS)
        except PlaywrightError:
            pass

    return filled


async def first_visible(matches: Locator, limit: int = 3) -> Optional[Locator]:
    """First visible locator among the leading matches, or None."""
    count = await matches.count()
    for i in range(min(count, limit)):
        loc = matches.nth(i)
        if await loc.is_visible():
            return loc
    return None


async def has_validation_errors(form: Locator) -> bool:
    for selector in VALIDATION_ERROR_SELECTORS:
        try:
            if await first_visible(form.locator(selector)) is not None:
                return True
        except PlaywrightError:
            continue
    return False


async def find_submit(form: Locator) -> tuple[Locator, str] | None:
    for selector in SUBMIT_SELECTORS:
        try:
            loc = await first_visible(form.locator(selector))
            if loc is not None:
                return loc, selector
        except PlaywrightError:
            continue
    return None


CATEGORY_FIELDS = {CtaKind.PHONE: "phone", CtaKind.EMAIL: "email", CtaKind.FORM: "forms"}


class InteractionDriver:
    """Drives CTA interactions and classifies each against the beacon log.

    Results accumulate across every page the driver is run on. The category
    totals in ``results`` are republished as each window closes, so a run
    cancelled part way still holds every interaction finished before it.
    """

    def __init__(
        self,
        page: Page,
        log: BeaconLog,
        clock: Callable[[], float],
        link_observation_ms: int = 3500,
        form_observation_ms: int = 5000,
        results: Optional[CtaTests] = None,
    ):
        self.page = page
        self.log = log
        self.clock = clock
        self.link_observation_ms = link_observation_ms
        self.form_observation_ms = form_observation_ms
        self.results = results if results is not None else CtaTests()
        self._found = {kind: 0 for kind in CtaKind}
        self._windows: dict[CtaKind, list[InteractionWindow]] = {kind: [] for kind in CtaKind}
        self._embedded_forms = 0

    async def run(self, max_phone: int = 3, max_email: int = 3, max_forms: int = 2) -> CtaTests:
        """Exercise the CTAs of the current page; returns the running totals."""
        await self.scroll_to_footer()
        await self.test_phone_links(max_phone)
        await self.test_email_links(max_email)
        await self.test_forms(max_forms)
        return self.results

    def _publish(self, kind: CtaKind) -> CtaCategoryResult:
        result = summarize_category(kind, self._found[kind], self._windows[kind])
        if kind == CtaKind.FORM:
            result.embedded_forms = self._embedded_forms
        setattr(self.results, CATEGORY_FIELDS[kind], result)
        return result

    def _add(self, kind: CtaKind, window: InteractionWindow) -> None:
        self._windows[kind].append(window)
        self._publish(kind)

    async def scroll_to_footer(self) -> None:
        """Scroll through the page so lazy-loaded footers render."""
        try:
            await self.page.evaluate(SCROLL_TO_FOOTER_JS)
        except PlaywrightError as e:
            logger.debug("Scroll to footer failed: %s", str(e))

    def _close(
        self,
        kind: CtaKind,
        target: str,
        start_ms: float,
        details: dict,
    ) -> InteractionWindow:
        end_ms = self.clock()
        window = InteractionWindow(
            kind=kind, target=target, start_ms=start_ms, end_ms=end_ms, details=details
        )
        outcome = classify(self.log.between(start_ms, end_ms), window)
        return window.model_copy(update={"outcome": outcome})

    def _failed(
        self,
        kind: CtaKind,
        target: str,
        start_ms: float,
        details: dict,
        reason: str,
    ) -> InteractionWindow:
        return InteractionWindow(
            kind=kind,
            target=target,
            start_ms=start_ms,
            end_ms=self.clock(),
            outcome=InteractionOutcome.click_failed(reason),
            details=details,
        )

    async def _describe_link(self, loc: Locator) -> dict:
        details = {"href": None, "text": "", "page": self.page.url}
        try:
            details["href"] = await loc.get_attribute("href", timeout=ATTRIBUTE_TIMEOUT_MS)
            details["text"] = (await loc.text_content(timeout=ATTRIBUTE_TIMEOUT_MS) or "").strip()
        except PlaywrightError as e:
            logger.debug("Could not read link attributes: %s", str(e))
        return details

    async def test_links(self, kind: CtaKind, selector: str, cap: int) -> CtaCategoryResult:
        links = self.page.locator(selector)
        try:
            found = await links.count()
        except PlaywrightError as e:
            logger.warning("Could not enumerate %s links: %s", kind.value, str(e))
            found = 0

        self._found[kind] += found
        self._publish(kind)

        for i in range(min(found, cap)):
            loc = links.nth(i)
            details = await self._describe_link(loc)
            target = details["href"] or f"{kind.value} link #{i + 1}"

            start_ms = self.clock()
            try:
                await robust_click(self.page, loc)
            except (PlaywrightError, InteractionFailure) as e:
                logger.info("%s link %s: click failed (%s)", kind.value, target, str(e))
                self._add(kind, self._failed(kind, target, start_ms, details, str(e)))
                continue

            await self.page.wait_for_timeout(self.link_observation_ms)
            window = self._close(kind, target, start_ms, details)
            logger.info(
                "%s link %s: %s %s",
                kind.value, target, window.outcome.status.value, window.outcome.event_names,
            )
            self._add(kind, window)

        return self._publish(kind)

    async def test_phone_links(self, cap: int = 3) -> CtaCategoryResult:
        return await self.test_links(CtaKind.PHONE, PHONE_SELECTOR, cap)

    async def test_email_links(self, cap: int = 3) -> CtaCategoryResult:
        return await self.test_links(CtaKind.EMAIL, EMAIL_SELECTOR, cap)

    async def find_forms(self) -> list[tuple[Locator, dict]]:
        """Standalone form containers with at least one fillable field."""
        try:
            candidates = await self.page.locator(FORM_SELECTOR).all()
        except PlaywrightError as e:
            logger.warning("Could not enumerate forms: %s", str(e))
            return []

        testable = []
        for loc in candidates:
            try:
                info = await loc.evaluate(FORM_INFO_JS)
            except PlaywrightError:
                continue
            if info.get("standalone") and info.get("fields", 0) > 0:
                testable.append((loc, info))
        return testable

    async def count_embedded_forms(self) -> int:
        """Visible third-party form iframes (not fillable from here)."""
        try:
            iframes = await self.page.locator(PROVIDER_IFRAME_SELECTOR).all()
        except PlaywrightError:
            return 0
        visible = 0
        for frame in iframes[:10]:
            try:
                if await frame.is_visible():
                    visible += 1
            except PlaywrightError:
                continue
        return visible

    async def _has_captcha(self) -> bool:
        try:
            return await self.page.locator(CAPTCHA_SELECTOR).count() > 0
        except PlaywrightError:
            return False

    async def _exercise_form(self, form: Locator, details: dict) -> None:
        await form.scroll_into_view_if_needed(timeout=CLICK_TIMEOUT_MS)
        await self.page.wait_for_timeout(FORM_STABILIZE_MS)

        details["filled_fields"] = await fill_form(form)

        if await has_validation_errors(form):
            details["notes"].append("validation_errors_present")
            return

        submit = await find_submit(form)
        if submit is None:
            details["notes"].append("no_submit_control")
            return

        loc, selector = submit
        await robust_click(self.page, loc)
        details["submit_clicked"] = True
        details["submit_selector"] = selector

    async def test_forms(self, cap: int = 2) -> CtaCategoryResult:
        forms = await self.find_forms()
        embedded = await self.count_embedded_forms()
        captcha = await self._has_captcha()

        self._found[CtaKind.FORM] += len(forms)
        self._embedded_forms += embedded
        self._publish(CtaKind.FORM)

        offset = len(self._windows[CtaKind.FORM])
        for i, (form, info) in enumerate(forms[:cap]):
            target = f"form #{offset + i + 1} ({info.get('kind', 'form')})"
            details = {
                "page": self.page.url,
                "kind": info.get("kind", "form"),
                "total_fields": info.get("fields", 0),
                "filled_fields": 0,
                "submit_clicked": False,
                "notes": ["captcha_detected"] if captcha else [],
            }

            start_ms = self.clock()
            try:
                await self._exercise_form(form, details)
            except (PlaywrightError, InteractionFailure) as e:
                logger.info("%s: interaction failed (%s)", target, str(e))
                self._add(CtaKind.FORM, self._failed(CtaKind.FORM, target, start_ms, details, str(e)))
                continue

            await self.page.wait_for_timeout(self.form_observation_ms)
            window = self._close(CtaKind.FORM, target, start_ms, details)
            logger.info(
                "%s: %s %s (filled=%d, submitted=%s)",
                target,
                window.outcome.status.value,
                window.outcome.event_names,
                details["filled_fields"],
                details["submit_clicked"],
            )
            self._add(CtaKind.FORM, window)

        return self._publish(CtaKind.FORM)
