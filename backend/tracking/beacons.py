"""Passive recording of tag-manager and analytics beacons.

Every outbound request of the session passes through BeaconObserver.on_request.
Tag-related requests are classified and appended to an append-only BeaconLog;
everything else is ignored. Consumers never hold a reference to the live list,
they slice the log by monotonic timestamp after the fact.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional
from urllib.parse import parse_qs, urlsplit

from playwright.async_api import Page, Request

from tracking.models import Beacon, BeaconKind

logger = logging.getLogger(__name__)

# Any of these substrings marks a request as tag-related
TRACKING_SUBSTRINGS = (
    "google-analytics.com",
    "googletagmanager.com",
    "analytics.google.com",
    "/g/collect",
    "/r/collect",
    "/j/collect",
    "/collect",
    "gtm.js",
    "gtag",
)

ANALYTICS_HOSTS = ("google-analytics.com", "analytics.google.com")
COLLECT_PATHS = ("/g/collect", "/r/collect", "/j/collect", "/collect")


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def is_tracking_related(url: str) -> bool:
    return any(s in url for s in TRACKING_SUBSTRINGS)


def classify_url(url: str) -> BeaconKind:
    """Classify a tag-related URL. Raises ValueError on unparseable URLs."""
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    path = parts.path

    if "googletagmanager.com" in host and "gtm.js" in path:
        return BeaconKind.GTM_LOAD

    if any(h in host for h in ANALYTICS_HOSTS) and any(
        path.endswith(p) for p in COLLECT_PATHS
    ):
        return BeaconKind.ANALYTICS_COLLECT

    # First-party (server-side) tagging keeps the GA4 path shape
    if path.endswith("/g/collect"):
        return BeaconKind.ANALYTICS_COLLECT

    return BeaconKind.OTHER


def _first(params: dict[str, list[str]], key: str) -> Optional[str]:
    values = params.get(key) or []
    for v in values:
        if v:
            return v
    return None


def parse_collect_params(
    url: str, post_data: Optional[str] = None
) -> tuple[Optional[str], Optional[str]]:
    """Return (event_name, measurement_id) from a collect URL and POST body.

    Body values win over query values. GA4 batches events one per line in
    the body; only the first line is read.
    """
    query = parse_qs(urlsplit(url).query)
    event_name = _first(query, "en")
    measurement_id = _first(query, "tid")

    if post_data:
        first_line = post_data.strip().splitlines()[0] if post_data.strip() else ""
        body = parse_qs(first_line)
        event_name = _first(body, "en") or event_name
        measurement_id = _first(body, "tid") or measurement_id

    return event_name, measurement_id


class BeaconLog:
    """Append-only, arrival-ordered sequence of beacons."""

    def __init__(self):
        self._beacons: list[Beacon] = []

    def append(self, beacon: Beacon) -> None:
        self._beacons.append(beacon)

    def __len__(self) -> int:
        return len(self._beacons)

    def __iter__(self) -> Iterator[Beacon]:
        return iter(tuple(self._beacons))

    def snapshot(self) -> tuple[Beacon, ...]:
        return tuple(self._beacons)

    def between(self, start_ms: float, end_ms: float) -> tuple[Beacon, ...]:
        """Beacons observed in the closed interval [start_ms, end_ms]."""
        return tuple(
            b for b in self._beacons if start_ms <= b.observed_at_ms <= end_ms
        )

    def since(self, start_ms: float) -> tuple[Beacon, ...]:
        return tuple(b for b in self._beacons if b.observed_at_ms >= start_ms)

    def of_kind(self, kind: BeaconKind) -> tuple[Beacon, ...]:
        return tuple(b for b in self._beacons if b.kind == kind)


class BeaconObserver:
    """Subscribes to a page's requests and records tag-related beacons.

    The clock is shared with everything that opens correlation windows, so
    beacon timestamps and window bounds are always comparable.
    """

    def __init__(self, clock: Callable[[], float] = monotonic_ms):
        self.clock = clock
        self.log = BeaconLog()

    def attach(self, page: Page) -> None:
        page.on("request", self.on_request)

    def on_request(self, request: Request) -> None:
        try:
            post_data = request.post_data
        except UnicodeDecodeError:
            # Binary body; the URL is still usable
            post_data = None
        self.record(request.url, method=request.method, post_data=post_data)

    def record(
        self,
        url: str,
        method: str = "GET",
        post_data: Optional[str] = None,
    ) -> Optional[Beacon]:
        """Classify one outbound request. Returns the beacon, or None if irrelevant."""
        if not url or not is_tracking_related(url):
            return None

        observed_at_ms = self.clock()
        observed_at = datetime.now(timezone.utc).isoformat()

        kind = BeaconKind.OTHER
        event_name = None
        measurement_id = None
        try:
            kind = classify_url(url)
            if kind == BeaconKind.ANALYTICS_COLLECT:
                event_name, measurement_id = parse_collect_params(url, post_data)
        except ValueError as e:
            logger.debug("Unparseable beacon URL %s: %s", url, e)
            kind = BeaconKind.OTHER
            event_name = None
            measurement_id = None

        beacon = Beacon(
            url=url,
            method=method or "GET",
            observed_at=observed_at,
            observed_at_ms=observed_at_ms,
            kind=kind,
            event_name=event_name,
            measurement_id=measurement_id,
        )
        self.log.append(beacon)
        if kind == BeaconKind.ANALYTICS_COLLECT:
            logger.debug("GA4 beacon en=%s tid=%s", event_name, measurement_id)
        return beacon
