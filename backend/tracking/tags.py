"""Tag detection via a single in-page evaluation.

The browser side only collects raw material (script text, noscript text,
runtime markers and a JSON-safe copy of window.dataLayer). Identifier
matching and dataLayer interpretation happen in Python.
"""

import logging
import re
from typing import Any, Optional

from playwright.async_api import Page

from tracking.errors import DetectionFailure
from tracking.models import TagSnapshot

logger = logging.getLogger(__name__)

GTM_ID_RE = re.compile(r"\bGTM-[A-Z0-9]{4,}\b")
GA4_ID_RE = re.compile(r"\bG-[A-Z0-9]{4,}\b")
# Google Ads conversion IDs: collected only so they are never mistaken for GA4
IGNORED_ID_RE = re.compile(r"\bAW-[0-9]{4,}\b")

DATA_LAYER_JS = """
() => {
    const dl = window.dataLayer;
    if (!Array.isArray(dl)) return null;
    const out = [];
    for (const entry of dl) {
        try {
            let value = entry;
            if (Object.prototype.toString.call(entry) === '[object Arguments]') {
                value = Array.from(entry);
            }
            out.push(JSON.parse(JSON.stringify(value)));
        } catch (e) {}
    }
    return out;
}
"""

TAG_SCAN_JS = """
() => {
    const scripts = [];
    for (const s of document.querySelectorAll('script')) {
        scripts.push((s.innerHTML || '') + ' ' + (s.src || ''));
    }
    const noscripts = [];
    for (const ns of document.querySelectorAll('noscript')) {
        noscripts.push(ns.innerHTML || '');
    }
    let hasGtmObject = false;
    let hasGtagFunction = false;
    try { hasGtmObject = !!window.google_tag_manager; } catch (e) {}
    try { hasGtagFunction = typeof window.gtag === 'function'; } catch (e) {}
    return {
        scripts: scripts,
        noscripts: noscripts,
        has_gtm_object: hasGtmObject,
        has_gtag_function: hasGtagFunction,
        data_layer: (%s)(),
    };
}
""" % DATA_LAYER_JS.strip()


def _unique(values: list[str]) -> list[str]:
    seen = set()
    out = []
    for v in values:
        if v and v not in seen:
            seen.add(v)
            out.append(v)
    return out


def find_ids(scripts: list[str], noscripts: list[str]) -> dict[str, list[str]]:
    """Match tag identifiers in script and noscript content."""
    gtm: list[str] = []
    ga4: list[str] = []
    ignored: list[str] = []
    for text in scripts:
        gtm.extend(GTM_ID_RE.findall(text))
        ga4.extend(GA4_ID_RE.findall(text))
        ignored.extend(IGNORED_ID_RE.findall(text))
    for text in noscripts:
        gtm.extend(GTM_ID_RE.findall(text))
    return {"gtm": _unique(gtm), "ga4": _unique(ga4), "ignored": _unique(ignored)}


def configured_ids(data_layer: Optional[list[Any]]) -> list[str]:
    """IDs explicitly configured through dataLayer pushes.

    Two equivalent shapes: gtag('config', id, ...) arrives as a positional
    list, GTM's own event form as {event: 'gtag.config', 'gtag.id': id}.
    """
    ids: list[str] = []
    for entry in data_layer or []:
        if isinstance(entry, list):
            if len(entry) >= 2 and entry[0] == "config" and isinstance(entry[1], str):
                ids.append(entry[1])
        elif isinstance(entry, dict):
            if entry.get("event") == "gtag.config" and isinstance(entry.get("gtag.id"), str):
                ids.append(entry["gtag.id"])
    return _unique(ids)


def has_bootstrap_entry(data_layer: Optional[list[Any]]) -> bool:
    """True if the queue shows the manager or gtag runtime bootstrapped."""
    for entry in data_layer or []:
        if isinstance(entry, dict) and entry.get("event") == "gtm.js":
            return True
        if isinstance(entry, list) and entry and entry[0] == "js":
            return True
    return False


def build_snapshot(raw: dict) -> TagSnapshot:
    """Turn the raw evaluation result into a TagSnapshot."""
    data_layer = raw.get("data_layer")
    ids = find_ids(raw.get("scripts") or [], raw.get("noscripts") or [])
    return TagSnapshot(
        gtm_ids=ids["gtm"],
        ga4_ids=ids["ga4"],
        ignored_ids=ids["ignored"],
        manager_runtime=bool(raw.get("has_gtm_object")),
        analytics_runtime=bool(raw.get("has_gtag_function")) or has_bootstrap_entry(data_layer),
        configured_ids=configured_ids(data_layer),
        data_layer=data_layer,
    )


async def detect_tags(page: Page, settle_ms: int = 5000) -> TagSnapshot:
    """Read tag state once, after letting async tag bootstrapping finish.

    Raises DetectionFailure if the page cannot be evaluated.
    """
    if settle_ms > 0:
        await page.wait_for_timeout(settle_ms)
    try:
        raw = await page.evaluate(TAG_SCAN_JS)
    except Exception as e:
        raise DetectionFailure(f"Tag detection failed: {e}") from e

    snapshot = build_snapshot(raw or {})
    logger.info(
        "Tags: gtm=%s ga4=%s configured=%s manager_runtime=%s analytics_runtime=%s",
        snapshot.gtm_ids or "none",
        snapshot.ga4_ids or "none",
        snapshot.configured_ids or "none",
        snapshot.manager_runtime,
        snapshot.analytics_runtime,
    )
    return snapshot


async def snapshot_data_layer(page: Page) -> Optional[list[Any]]:
    """Best-effort final read of window.dataLayer for the evidence section."""
    try:
        return await page.evaluate(DATA_LAYER_JS)
    except Exception as e:
        logger.debug("Final dataLayer snapshot failed: %s", str(e))
        return None
