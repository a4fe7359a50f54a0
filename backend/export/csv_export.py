"""CSV export of per-interaction results."""

import io
import csv

from tracking.correlation import failure_reason, relevant_events
from tracking.models import HealthReport, OutcomeStatus

COLUMNS = [
    ("Category", "category"),
    ("Target", "target"),
    ("Outcome", "outcome"),
    ("Events Fired", "events"),
    ("Relevant Events", "relevant_events"),
    ("Beacons", "beacon_count"),
    ("Reason", "reason"),
    ("Window Start (ms)", "start_ms"),
    ("Window End (ms)", "end_ms"),
]

CATEGORIES = (("phone", "phone"), ("email", "email"), ("forms", "form"))


def interaction_rows(report: HealthReport) -> list[dict]:
    """Flatten the report's CTA interactions into one dict per interaction."""
    rows = []
    for attr, label in CATEGORIES:
        for window in getattr(report.cta_tests, attr).interactions:
            outcome = window.outcome
            if outcome is None:
                continue
            tracked = outcome.status == OutcomeStatus.TRACKED
            rows.append({
                "category": label,
                "target": window.target,
                "outcome": outcome.status.value,
                "events": ", ".join(outcome.event_names),
                "relevant_events": ", ".join(relevant_events(window.kind, outcome.event_names)),
                "beacon_count": outcome.beacon_count,
                "reason": "" if tracked else failure_reason(window),
                "start_ms": round(window.start_ms),
                "end_ms": round(window.end_ms),
            })
    return rows


def generate_csv(report: HealthReport) -> str:
    """Generate CSV string from a health report's interactions."""
    output = io.StringIO()
    writer = csv.writer(output)

    # Header
    writer.writerow([header for header, _ in COLUMNS])

    # Data
    for row in interaction_rows(report):
        writer.writerow([row.get(field, "") for _, field in COLUMNS])

    return output.getvalue()
