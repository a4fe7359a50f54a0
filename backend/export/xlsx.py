"""XLSX export of a health report for analytics teams.

Produces a workbook with:
- Interactions sheet: one row per CTA interaction, frozen header, auto-filter,
  outcome cells coloured by status
- Summary sheet: tags, consent and per-category counts
- Issues sheet
- Beacons sheet: the raw beacon log
"""

import io
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment, Border, Side
from openpyxl.utils import get_column_letter

from export.csv_export import interaction_rows
from tracking.models import HealthReport

# Column definitions: (header, row field, width)
COLUMNS = [
    ("Category", "category", 10),
    ("Target", "target", 40),
    ("Outcome", "outcome", 22),
    ("Events Fired", "events", 35),
    ("Relevant Events", "relevant_events", 25),
    ("Beacons", "beacon_count", 9),
    ("Reason", "reason", 45),
    ("Window Start (ms)", "start_ms", 16),
    ("Window End (ms)", "end_ms", 16),
]

BEACON_COLUMNS = [
    ("Observed At", "observed_at", 28),
    ("Kind", "kind", 18),
    ("Event", "event_name", 22),
    ("Measurement ID", "measurement_id", 16),
    ("Method", "method", 8),
    ("URL", "url", 80),
]

HEADER_FONT = Font(name="Calibri", bold=True, size=10, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="1E3A8A", end_color="1E3A8A", fill_type="solid")
HEADER_ALIGNMENT = Alignment(horizontal="center", vertical="center", wrap_text=True)

DATA_FONT = Font(name="Calibri", size=10)
DATA_ALIGNMENT = Alignment(vertical="top", wrap_text=False)
WRAP_ALIGNMENT = Alignment(vertical="top", wrap_text=True)

OUTCOME_FILLS = {
    "tracked": PatternFill(start_color="DCFCE7", end_color="DCFCE7", fill_type="solid"),
    "tracked_no_event_name": PatternFill(start_color="FEF3C7", end_color="FEF3C7", fill_type="solid"),
    "untracked": PatternFill(start_color="FEE2E2", end_color="FEE2E2", fill_type="solid"),
    "click_failed": PatternFill(start_color="E5E7EB", end_color="E5E7EB", fill_type="solid"),
}

THIN_BORDER = Border(
    bottom=Side(style="thin", color="E5E7EB"),
)


def _write_header(ws, columns) -> None:
    for col_idx, (header, _, width) in enumerate(columns, 1):
        cell = ws.cell(row=1, column=col_idx, value=header)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGNMENT
        ws.column_dimensions[get_column_letter(col_idx)].width = width
    ws.freeze_panes = "A2"
    ws.row_dimensions[1].height = 30


def generate_xlsx(report: HealthReport) -> io.BytesIO:
    """Generate an XLSX workbook from a health report.

    Returns a BytesIO buffer containing the workbook.
    """
    wb = Workbook()

    # === Interactions Sheet ===
    ws = wb.active
    ws.title = "Interactions"
    _write_header(ws, COLUMNS)

    rows = interaction_rows(report)
    outcome_col = next(i for i, (_, f, _) in enumerate(COLUMNS, 1) if f == "outcome")
    for row_idx, row in enumerate(rows, 2):
        for col_idx, (_, field, _) in enumerate(COLUMNS, 1):
            cell = ws.cell(row=row_idx, column=col_idx, value=row.get(field, ""))
            cell.font = DATA_FONT
            cell.border = THIN_BORDER
            if field in ("target", "events", "reason"):
                cell.alignment = WRAP_ALIGNMENT
            else:
                cell.alignment = DATA_ALIGNMENT

        fill = OUTCOME_FILLS.get(row.get("outcome"))
        if fill:
            ws.cell(row=row_idx, column=outcome_col).fill = fill

    if rows:
        last_col = get_column_letter(len(COLUMNS))
        ws.auto_filter.ref = f"A1:{last_col}{len(rows) + 1}"

    # === Summary Sheet ===
    ws_summary = wb.create_sheet("Summary")

    ctas = report.cta_tests
    summary_data = [
        ("URL", report.url),
        ("Final URL", report.final_url or ""),
        ("Checked At", report.timestamp),
        ("Client ID", report.client_id or ""),
        ("Client Name", report.client_name or ""),
        ("Overall Status", report.overall_status.value),
        ("Summary", report.summary),
        ("", ""),
        ("GTM IDs", ", ".join(report.tags_found.gtm)),
        ("GA4 IDs", ", ".join(report.tags_found.ga4)),
        ("Configured IDs", ", ".join(report.tags_firing.configured_ids)),
        ("GTM Loaded", "Yes" if report.tags_firing.gtm_loaded else "No"),
        ("GA4 Loaded", "Yes" if report.tags_firing.ga4_loaded else "No"),
        ("Initialized", "Yes" if report.tags_firing.initialized else "No"),
        ("GA4 Hits", report.tags_firing.ga4_hits),
        ("Total Beacons", report.tags_firing.total_beacons),
        ("", ""),
        ("Consent Banner", "Yes" if report.cookie_consent.banner_found else "No"),
        ("Consent Accepted", "Yes" if report.cookie_consent.accepted else "No"),
        ("Fired After Consent", "Yes" if report.cookie_consent.accepted_fired else "No"),
        ("Consent Framework", report.cookie_consent.framework),
        ("", ""),
        ("CTA Breakdown", "found / tested / working"),
    ]
    for label, category in (("  phone", ctas.phone), ("  email", ctas.email), ("  forms", ctas.forms)):
        summary_data.append((label, f"{category.found} / {category.tested} / {category.working}"))

    for row_idx, (label, value) in enumerate(summary_data, 1):
        label_cell = ws_summary.cell(row=row_idx, column=1, value=label)
        value_cell = ws_summary.cell(row=row_idx, column=2, value=value)
        label_cell.font = Font(name="Calibri", bold=True, size=10)
        value_cell.font = Font(name="Calibri", size=10)

    ws_summary.column_dimensions["A"].width = 22
    ws_summary.column_dimensions["B"].width = 60

    # === Issues Sheet ===
    ws_issues = wb.create_sheet("Issues")
    _write_header(ws_issues, [("Issue", "issue", 100)])
    for row_idx, issue in enumerate(report.issues, 2):
        cell = ws_issues.cell(row=row_idx, column=1, value=issue)
        cell.font = DATA_FONT
        cell.alignment = WRAP_ALIGNMENT

    # === Beacons Sheet ===
    ws_beacons = wb.create_sheet("Beacons")
    _write_header(ws_beacons, BEACON_COLUMNS)
    for row_idx, beacon in enumerate(report.evidence.beacons, 2):
        data = beacon.model_dump(mode="json")
        for col_idx, (_, field, _) in enumerate(BEACON_COLUMNS, 1):
            cell = ws_beacons.cell(row=row_idx, column=col_idx, value=data.get(field) or "")
            cell.font = DATA_FONT
            cell.alignment = DATA_ALIGNMENT

    # Write to buffer
    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer
