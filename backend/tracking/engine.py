import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import urljoin, urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Response, async_playwright

from config import settings
from tracking.beacons import BeaconObserver, monotonic_ms
from tracking.consent import simulate_consent
from tracking.errors import NavigationFailure
from tracking.interactions import InteractionDriver
from tracking.models import (
    BeaconKind,
    CheckConfig,
    ConsentOutcome,
    CtaTests,
    Evidence,
    HealthReport,
    TagsFiring,
    TagsFound,
    TagSnapshot,
)
from tracking.tags import detect_tags, snapshot_data_layer
from tracking.verdict import Issue, Severity, derive_issues, overall_status, summarize

logger = logging.getLogger(__name__)

# Same-origin paths tried after the home page; missing ones are skipped.
CONTACT_PATHS = [
    "/contact", "/contact-us", "/get-in-touch", "/enquiry", "/quote", "/book", "/booking",
]


class HealthCheckEngine:
    """One tracking health check: one browser, one page, sequential phases.

    Observer attached before navigation, tags read once after settle, then
    consent, then CTA interactions on the home page and any contact pages,
    then the verdict. Any fatal error stops
    the remaining phases; the report is still built from whatever evidence
    exists, with status ERROR. The browser is closed on every path.
    """

    def __init__(self, config: CheckConfig, clock: Callable[[], float] = monotonic_ms):
        self.config = config
        self.observer = BeaconObserver(clock)
        self.started_at = datetime.now(timezone.utc).isoformat()
        self.final_url: Optional[str] = None
        self.page_load_ms: Optional[int] = None
        self.snapshot: Optional[TagSnapshot] = None
        self.consent = ConsentOutcome()
        self.cta_tests = CtaTests()
        self.final_data_layer: Optional[list] = None
        self.pages_tested: list[str] = []
        self.error: Optional[str] = None

    def _attempt_urls(self) -> list[str]:
        url = self.config.url
        https_url = url
        if url.lower().startswith("http://"):
            https_url = "https://" + url[len("http://"):]
        attempts = [https_url]
        if https_url != url:
            attempts.append(url)
        return attempts

    async def _stabilise(self, page: Page) -> None:
        try:
            await page.wait_for_load_state(
                "networkidle", timeout=settings.networkidle_timeout_ms
            )
        except PlaywrightError:
            pass  # networkidle timeout is non-fatal

    async def navigate(self, page: Page) -> Optional[Response]:
        """https-first navigation, each URL with a degraded 'commit' fallback."""
        clock = self.observer.clock
        start = clock()
        last_error: Optional[Exception] = None

        for url in self._attempt_urls():
            for wait_until, timeout in (
                ("domcontentloaded", settings.navigation_timeout_ms),
                ("commit", settings.fallback_timeout_ms),
            ):
                try:
                    response = await page.goto(url, wait_until=wait_until, timeout=timeout)
                except PlaywrightError as e:
                    logger.warning("Load of %s (%s) failed: %s", url, wait_until, str(e))
                    last_error = e
                    continue
                self.page_load_ms = int(clock() - start)
                self.final_url = page.url
                logger.info(
                    "Loaded %s in %dms (final: %s)", url, self.page_load_ms, self.final_url
                )
                await self._stabilise(page)
                return response

        message = str(last_error).split("\n")[0] if last_error else "unknown error"
        raise NavigationFailure(f"Could not load page: {message}")

    async def check_page(self, page: Page) -> None:
        """Run every phase against an already-open page."""
        self.observer.attach(page)
        await self.navigate(page)

        self.snapshot = await detect_tags(page, settle_ms=settings.settle_delay_ms)

        self.consent = await simulate_consent(
            page,
            self.observer.log,
            self.observer.clock,
            wait_ms=settings.consent_wait_ms,
            grace_ms=settings.consent_grace_ms,
        )

        driver = InteractionDriver(
            page,
            self.observer.log,
            self.observer.clock,
            link_observation_ms=settings.link_observation_ms,
            form_observation_ms=settings.form_observation_ms,
            results=self.cta_tests,
        )
        await self._run_driver(driver)
        self.pages_tested.append(page.url)

        self.final_data_layer = await snapshot_data_layer(page)

        if self.config.test_contact_pages:
            await self.test_contact_pages(page, driver)

    async def _run_driver(self, driver: InteractionDriver) -> None:
        await driver.run(
            max_phone=self.config.max_phone_links,
            max_email=self.config.max_email_links,
            max_forms=self.config.max_forms,
        )

    async def test_contact_pages(self, page: Page, driver: InteractionDriver) -> None:
        """Exercise CTAs on same-origin contact pages, best effort.

        Results merge into the same per-category totals. A page that fails
        to load, answers 4xx/5xx, or redirects off-origin or back to a page
        already tested is skipped; nothing here fails the check.
        """
        base = self.final_url or self.config.url
        origin = urlparse(base).netloc
        tested = {u.rstrip("/") for u in self.pages_tested}

        for path in CONTACT_PATHS:
            url = urljoin(base, path)
            try:
                response = await page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=settings.contact_page_timeout_ms,
                )
            except PlaywrightError as e:
                logger.debug("Contact page %s not reachable: %s", url, str(e).split("\n")[0])
                continue

            if response is not None and response.status >= 400:
                logger.debug("Contact page %s returned %d", url, response.status)
                continue
            landed = page.url.rstrip("/")
            if urlparse(page.url).netloc != origin or landed in tested:
                logger.debug("Contact page %s redirected to %s, skipping", url, page.url)
                continue
            tested.add(landed)

            logger.info("Testing CTAs on contact page %s", page.url)
            await self._stabilise(page)
            try:
                await self._run_driver(driver)
            except PlaywrightError as e:
                logger.warning("CTA tests on %s failed: %s", page.url, str(e).split("\n")[0])
            self.pages_tested.append(page.url)

    async def run(self) -> HealthReport:
        """Launch the browser, run the check and always return a report."""
        logger.info("Starting health check for %s", self.config.url)
        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(
                    headless=settings.headless,
                    args=["--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu"],
                )
                try:
                    context = await browser.new_context(
                        user_agent=settings.user_agent,
                        viewport={"width": 1280, "height": 800},
                    )
                    page = await context.new_page()
                    await asyncio.wait_for(
                        self.check_page(page),
                        timeout=settings.max_runtime_seconds,
                    )
                finally:
                    await browser.close()
        except asyncio.TimeoutError:
            logger.warning(
                "Health check timed out after %ds", settings.max_runtime_seconds
            )
            self.error = f"Health check timed out after {settings.max_runtime_seconds}s"
        except Exception as e:
            logger.error(
                "Health check of %s failed: %s\n%s",
                self.config.url, str(e), traceback.format_exc(),
            )
            self.error = str(e).split("\n")[0][:200]

        report = self.build_report()
        logger.info(
            "Final status for %s: %s (%s)",
            self.config.url, report.overall_status.value, report.summary,
        )
        return report

    def build_report(self) -> HealthReport:
        """Assemble the final, immutable report from accumulated evidence."""
        log = self.observer.log
        beacons = log.snapshot()
        snapshot = self.snapshot or TagSnapshot()

        if self.error is not None:
            issues: list[Issue] = [Issue(Severity.ERROR, self.error)]
        else:
            issues = derive_issues(snapshot, self.consent, self.cta_tests, beacons)

        collect = log.of_kind(BeaconKind.ANALYTICS_COLLECT)
        events: list[str] = []
        for b in collect:
            if b.event_name and b.event_name not in events:
                events.append(b.event_name)

        return HealthReport(
            url=self.config.url,
            final_url=self.final_url,
            timestamp=self.started_at,
            client_id=self.config.client_id,
            client_name=self.config.client_name,
            tags_found=TagsFound(
                gtm=snapshot.gtm_ids,
                ga4=snapshot.ga4_ids,
                ignored=snapshot.ignored_ids,
            ),
            tags_firing=TagsFiring(
                gtm_loaded=snapshot.manager_runtime,
                ga4_loaded=snapshot.analytics_runtime,
                loaded=snapshot.loaded,
                initialized=snapshot.initialized,
                gtm_hits=len(log.of_kind(BeaconKind.GTM_LOAD)),
                ga4_hits=len(collect),
                total_beacons=len(beacons),
                configured_ids=snapshot.configured_ids,
            ),
            cookie_consent=self.consent,
            cta_tests=self.cta_tests,
            issues=[str(i) for i in issues],
            summary=summarize(self.cta_tests),
            evidence=Evidence(
                beacons=list(beacons),
                data_layer=(
                    self.final_data_layer
                    if self.final_data_layer is not None
                    else snapshot.data_layer
                ),
                page_load_ms=self.page_load_ms,
                events_captured=events,
                pages_tested=list(self.pages_tested),
            ),
            overall_status=overall_status(issues),
        )


async def run_health_check(config: CheckConfig) -> HealthReport:
    engine = HealthCheckEngine(config)
    return await engine.run()
