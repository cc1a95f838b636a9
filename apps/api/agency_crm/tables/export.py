from __future__ import annotations

import csv
import io
from datetime import datetime, timezone
from typing import Any

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from agency_crm.tables.registry import TableSpec

MEDIA_TYPES = {"csv": "text/csv", "pdf": "application/pdf"}


def export_filename(spec: TableSpec, export_format: str, *, today: datetime | None = None) -> str:
    stamp = (today or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return f"{spec.name}_export_{stamp}.{export_format}"


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_csv(spec: TableSpec, columns: list[str], rows: list[dict[str, Any]]) -> bytes:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=columns, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({key: _cell(row.get(key)) for key in columns})
    # BOM keeps spreadsheet apps from mangling Arabic text.
    return output.getvalue().encode("utf-8-sig")


def render_pdf(
    spec: TableSpec,
    columns: list[str],
    rows: list[dict[str, Any]],
    *,
    max_rows: int,
    total: int | None = None,
) -> bytes:
    """Title, a generated-on line and a grid capped at ``max_rows`` rows."""
    buffer = io.BytesIO()
    document = SimpleDocTemplate(buffer, pagesize=landscape(A4), title=f"{spec.title} Export")
    styles = getSampleStyleSheet()
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

    story: list[Any] = [
        Paragraph(f"{spec.title.upper()} Export", styles["Title"]),
        Paragraph(f"Generated on {generated}", styles["Normal"]),
        Spacer(1, 12),
    ]

    headers = [spec.fields[key].label for key in columns]
    shown = rows[:max_rows]
    grid = [headers] + [[_cell(row.get(key)) for key in columns] for row in shown]
    table = Table(grid, repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                ("FONTSIZE", (0, 0), (-1, -1), 7),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ]
        )
    )
    story.append(table)

    remaining = (total if total is not None else len(rows)) - len(shown)
    if remaining > 0:
        story.append(Spacer(1, 8))
        story.append(Paragraph(f"... and {remaining} more rows", styles["Italic"]))

    document.build(story)
    return buffer.getvalue()
