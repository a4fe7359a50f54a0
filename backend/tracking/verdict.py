"""Issue derivation and overall status.

Each rule is independent and more than one can fire. Issues keep the order
the rules are listed in, so reports for the same evidence are identical.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from tracking.correlation import CATEGORY_LABELS
from tracking.models import (
    Beacon,
    BeaconKind,
    ConsentOutcome,
    CtaCategoryResult,
    CtaKind,
    CtaTests,
    OverallStatus,
    TagSnapshot,
)


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Issue:
    severity: Severity
    message: str

    def __str__(self) -> str:
        return f"{self.severity.value}: {self.message}"


def tag_issues(snapshot: TagSnapshot, beacons: Iterable[Beacon]) -> list[Issue]:
    if not snapshot.gtm_ids and not snapshot.ga4_ids:
        return [Issue(Severity.CRITICAL, "No GTM or GA4 tags found")]

    issues = []
    if snapshot.gtm_ids and not snapshot.manager_runtime:
        issues.append(Issue(
            Severity.WARNING,
            f"GTM container found in markup ({', '.join(snapshot.gtm_ids)}) but runtime not loaded",
        ))
    if snapshot.ga4_ids and not snapshot.analytics_runtime:
        issues.append(Issue(
            Severity.WARNING,
            f"GA4 ID found in markup ({', '.join(snapshot.ga4_ids)}) but gtag runtime not loaded",
        ))
    if snapshot.ga4_ids and snapshot.analytics_runtime and not snapshot.initialized:
        issues.append(Issue(
            Severity.WARNING,
            "GA4 runtime loaded but never configured (no config push in dataLayer)",
        ))
    if snapshot.initialized and not any(
        b.kind == BeaconKind.ANALYTICS_COLLECT for b in beacons
    ):
        issues.append(Issue(
            Severity.WARNING,
            "GA4 configured but no collect beacons observed during the session",
        ))
    return issues


def consent_issues(consent: ConsentOutcome) -> list[Issue]:
    if consent.banner_found and consent.accepted and not consent.accepted_fired:
        return [Issue(Severity.WARNING, "Consent accepted but no GA4 beacon fired afterwards")]
    return []


def category_issues(kind: CtaKind, result: CtaCategoryResult) -> list[Issue]:
    label = CATEGORY_LABELS[kind]
    ratio = f"({result.working}/{result.tested})"
    if result.tested > 0 and result.working == 0:
        return [Issue(Severity.CRITICAL, f"All {label} not tracking {ratio}")]
    if 0 < result.working < result.tested:
        return [Issue(Severity.WARNING, f"Some {label} not tracking {ratio}")]
    if result.found > 0 and result.tested == 0 and result.failures:
        return [Issue(
            Severity.WARNING,
            f"Could not exercise any {label} ({len(result.failures)} interaction(s) failed)",
        )]
    return []


def derive_issues(
    snapshot: TagSnapshot,
    consent: ConsentOutcome,
    cta_tests: CtaTests,
    beacons: Iterable[Beacon],
) -> list[Issue]:
    issues = tag_issues(snapshot, tuple(beacons))
    issues.extend(consent_issues(consent))
    issues.extend(category_issues(CtaKind.PHONE, cta_tests.phone))
    issues.extend(category_issues(CtaKind.EMAIL, cta_tests.email))
    issues.extend(category_issues(CtaKind.FORM, cta_tests.forms))
    if cta_tests.forms.found == 0 and cta_tests.forms.embedded_forms > 0:
        issues.append(Issue(
            Severity.WARNING,
            f"Form embed detected in iframe ({cta_tests.forms.embedded_forms}) "
            "but no testable fields were accessible",
        ))
    return issues


def overall_status(issues: Iterable[Issue]) -> OverallStatus:
    severities = {i.severity for i in issues}
    if Severity.ERROR in severities:
        return OverallStatus.ERROR
    if Severity.CRITICAL in severities:
        return OverallStatus.FAILING
    if Severity.WARNING in severities:
        return OverallStatus.WARNING
    return OverallStatus.HEALTHY


def summarize(cta_tests: CtaTests) -> str:
    categories = (cta_tests.phone, cta_tests.email, cta_tests.forms)
    tested = sum(c.tested for c in categories)
    working = sum(c.working for c in categories)
    if tested == 0:
        return "No CTAs tested (none found or page blocked)"
    return f"{working}/{tested} CTA tests fired tracked events"
