"""
Batch record PDF rendering (reportlab).

Rendering is synchronous and CPU-bound; callers run it in a thread pool.
"""
from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ebr_api.core.settings import get_app_settings
from ebr_api.db.models.batches import Batch, BatchStep
from ebr_api.schemas.audit import AuditEventRead
from ebr_api.services.audit import format_details

logger = logging.getLogger(__name__)

_GRID_STYLE = [
    ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
    ("TEXTCOLOR", (0, 0), (-1, 0), colors.black),
    ("ALIGN", (0, 0), (-1, -1), "LEFT"),
    ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
    ("FONTSIZE", (0, 0), (-1, -1), 7),
    ("BOTTOMPADDING", (0, 0), (-1, 0), 6),
    ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
]


def _fmt(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%d %b %Y %H:%M UTC")


def _num(value: Optional[float], unit: Optional[str] = None) -> str:
    if value is None:
        return "-"
    return f"{value:g} {unit}".strip() if unit else f"{value:g}"


class BatchReportGenerator:
    """
    Renders a completed batch, its steps and its audit trail into an A4 PDF
    under the configured storage directory.
    """

    def __init__(self, storage_dir: Optional[str] = None) -> None:
        self.storage_dir = storage_dir or get_app_settings().REPORT_STORAGE_DIR

    def _path_for(self, batch: Batch) -> str:
        file_name = f"batch-record-{batch.id}-{int(time.time() * 1000)}.pdf"
        return os.path.join(self.storage_dir, file_name)

    # PUBLIC_INTERFACE
    def generate(
        self,
        batch: Batch,
        steps: Sequence[BatchStep],
        events: Sequence[AuditEventRead],
    ) -> str:
        """Write the document and return its storage path."""
        Path(self.storage_dir).mkdir(parents=True, exist_ok=True)
        file_path = self._path_for(batch)

        styles = getSampleStyleSheet()
        cell = styles["BodyText"].clone("cell", fontSize=7, leading=9)
        doc = SimpleDocTemplate(
            file_path,
            pagesize=A4,
            leftMargin=5 * mm,
            rightMargin=5 * mm,
            topMargin=10 * mm,
            bottomMargin=10 * mm,
            title=f"Batch Record {batch.batch_number}",
        )
        elements: list = [
            Paragraph(f"Electronic Batch Record: {escape(batch.batch_number)}", styles["Title"]),
            Paragraph(f"Generated {_fmt(datetime.now(timezone.utc))}", styles["Normal"]),
            Spacer(1, 6 * mm),
        ]

        header = [
            ["Product", batch.product_name, "Status", batch.status],
            ["Batch size", _num(batch.batch_size), "Created by", batch.created_by or "-"],
            ["Created", _fmt(batch.created_at), "Started", _fmt(batch.started_at)],
            ["Completed", _fmt(batch.completed_at), "Steps", str(len(steps))],
            ["Recipe", str(batch.recipe_id) if batch.recipe_id else "-", "Batch id", str(batch.id)],
        ]
        summary = Table(header, colWidths=[30 * mm, 65 * mm, 30 * mm, 65 * mm])
        summary.setStyle(
            TableStyle(
                [
                    ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                    ("FONTNAME", (2, 0), (2, -1), "Helvetica-Bold"),
                    ("FONTSIZE", (0, 0), (-1, -1), 8),
                    ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ]
            )
        )
        elements += [summary, Spacer(1, 6 * mm), Paragraph("Steps", styles["Heading2"])]

        step_rows = [["#", "Description", "Type", "Expected", "Actual", "Status", "Performed by", "Signed", "Completed"]]
        for s in steps:
            step_rows.append(
                [
                    str(s.step_number),
                    Paragraph(escape(s.description), cell),
                    s.step_type,
                    _num(s.expected_value, s.unit),
                    _num(s.actual_value, s.unit),
                    s.status,
                    s.performed_by or "-",
                    "yes" if s.signature_data else "-",
                    _fmt(s.completed_at),
                ]
            )
        step_table = Table(step_rows, repeatRows=1)
        step_table.setStyle(TableStyle(_GRID_STYLE))
        elements += [step_table, Spacer(1, 6 * mm), Paragraph("Audit Trail", styles["Heading2"])]

        audit_rows = [["Time", "Action", "Step", "Performed by", "Details"]]
        for e in events:
            audit_rows.append(
                [
                    _fmt(e.created_at),
                    e.action,
                    str(e.step_number) if e.step_number is not None else "-",
                    e.performed_by or "-",
                    Paragraph(escape(format_details(e.details)), cell),
                ]
            )
        audit_table = Table(audit_rows, repeatRows=1, colWidths=[32 * mm, 40 * mm, 12 * mm, 35 * mm, 81 * mm])
        audit_table.setStyle(TableStyle(_GRID_STYLE))
        elements.append(audit_table)

        doc.build(elements)
        logger.info("Rendered batch record %s to %s", batch.batch_number, file_path)
        return file_path
