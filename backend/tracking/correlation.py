"""Beacon-to-interaction correlation.

classify() is a pure function of an immutable beacon sequence and a closed
window. Only GA4 collect beacons whose monotonic timestamp falls inside
[start_ms, end_ms] count; wall-clock time is never consulted.
"""

from typing import Iterable

from tracking.models import (
    Beacon,
    BeaconKind,
    CtaCategoryResult,
    CtaFailure,
    CtaKind,
    FiredEvent,
    InteractionOutcome,
    InteractionWindow,
    OutcomeStatus,
)

# Event-name keywords that make a fired event look intended for the CTA
RELEVANT_EVENT_PATTERNS = {
    CtaKind.PHONE: [
        "click_call", "call_click", "phone_click", "click_phone",
        "click_tel", "tel_click", "phone", "call",
    ],
    CtaKind.EMAIL: [
        "click_email", "email_click", "mailto_click", "click_mail",
        "mail_click", "email", "mailto",
    ],
    CtaKind.FORM: [
        "form_submit", "submit_form", "form_submission", "contact_form",
        "generate_lead", "lead", "form_complete", "form_success", "contact",
        "enquiry", "quote", "submit", "form_start",
    ],
}

GENERIC_EVENTS = {"page_view", "scroll", "user_engagement", "session_start", "first_visit"}

CATEGORY_LABELS = {
    CtaKind.PHONE: "phone clicks",
    CtaKind.EMAIL: "email clicks",
    CtaKind.FORM: "form submissions",
}


def classify(beacons: Iterable[Beacon], window: InteractionWindow) -> InteractionOutcome:
    """Classify one interaction from the beacons observed inside its window."""
    hits = [
        b for b in beacons
        if b.kind == BeaconKind.ANALYTICS_COLLECT and window.contains(b.observed_at_ms)
    ]
    if not hits:
        return InteractionOutcome(status=OutcomeStatus.UNTRACKED)

    names: list[str] = []
    for b in hits:
        if b.event_name and b.event_name not in names:
            names.append(b.event_name)

    if names:
        return InteractionOutcome(
            status=OutcomeStatus.TRACKED, event_names=names, beacon_count=len(hits)
        )
    return InteractionOutcome(
        status=OutcomeStatus.TRACKED_NO_EVENT_NAME, beacon_count=len(hits)
    )


def relevant_events(kind: CtaKind, event_names: list[str]) -> list[str]:
    """Subset of event names that match the CTA category's keywords."""
    patterns = RELEVANT_EVENT_PATTERNS[kind]
    out = []
    for name in event_names:
        lowered = name.lower()
        if lowered in GENERIC_EVENTS:
            continue
        if any(p in lowered for p in patterns):
            out.append(name)
    return out


def failure_reason(window: InteractionWindow) -> str:
    outcome = window.outcome
    if outcome.status == OutcomeStatus.CLICK_FAILED:
        return f"Click failed: {outcome.reason or 'unknown'}"
    if outcome.status == OutcomeStatus.TRACKED_NO_EVENT_NAME:
        return f"GA4 fired {outcome.beacon_count} beacon(s) without an event name"
    return "No GA4 event fired"


def summarize_category(
    kind: CtaKind, found: int, windows: list[InteractionWindow]
) -> CtaCategoryResult:
    """Aggregate classified windows into found/tested/working counts."""
    result = CtaCategoryResult(found=found, interactions=list(windows))
    for w in windows:
        status = w.outcome.status if w.outcome else OutcomeStatus.UNTRACKED
        if status != OutcomeStatus.CLICK_FAILED:
            result.tested += 1
        if status == OutcomeStatus.TRACKED:
            result.working += 1
            result.events.append(
                FiredEvent(
                    target=w.target,
                    event_names=w.outcome.event_names,
                    relevant_events=relevant_events(kind, w.outcome.event_names),
                    beacon_count=w.outcome.beacon_count,
                    details=w.details,
                )
            )
        else:
            if w.outcome is None:
                w = w.model_copy(
                    update={"outcome": InteractionOutcome(status=OutcomeStatus.UNTRACKED)}
                )
            result.failures.append(
                CtaFailure(
                    target=w.target,
                    status=status,
                    reason=failure_reason(w),
                    details=w.details,
                )
            )
    return result
