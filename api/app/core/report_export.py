"""Tabular exports of compliance survey responses (CSV and PDF).

One row per stored response, always in the same column order. Missing
values are written as empty cells rather than dropping the row.
"""
import csv
import io
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from fpdf import FPDF

from app.core.aggregation import DepartmentGroup
from app.core.errors import ValidationError
from app.core.time import utc_now

REPORT_COLUMNS = [
    "Department",
    "Respondent Name",
    "Respondent Email",
    "Question",
    "Answer",
    "Score",
    "Comment",
    "Submitted At",
]

EXPORT_FORMATS = ("csv", "pdf")
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Header colors
HEADER_BG = (31, 41, 55)        # Gray-800
HEADER_TEXT = (255, 255, 255)   # White
SECTION_TEXT = (31, 41, 55)     # Gray-800
ROW_ALT_BG = (243, 244, 246)    # Gray-100

# Landscape A4 usable width is 267mm with 15mm margins
PDF_COL_WIDTHS = [32, 32, 40, 58, 22, 12, 45, 26]


@dataclass(frozen=True)
class ReportRow:
    department: str
    respondent_name: str
    respondent_email: str
    question_text: str
    answer: str
    score: Optional[int]
    comment: Optional[str]
    submitted_at: Optional[datetime]

    def cells(self) -> List[str]:
        """Row values in column order; None becomes an empty string."""
        return [
            self.department or "",
            self.respondent_name or "",
            self.respondent_email or "",
            self.question_text or "",
            self.answer or "",
            "" if self.score is None else str(self.score),
            self.comment or "",
            self.submitted_at.strftime(TIMESTAMP_FORMAT) if self.submitted_at else "",
        ]


def build_report_rows(grouped: Sequence[DepartmentGroup]) -> List[ReportRow]:
    rows = []
    for department in grouped:
        for respondent in department.respondents:
            for answer in respondent.answers:
                rows.append(ReportRow(
                    department=department.department_name,
                    respondent_name=respondent.respondent_name,
                    respondent_email=respondent.respondent_email,
                    question_text=answer.question_text,
                    answer=answer.answer,
                    score=answer.score,
                    comment=answer.comment,
                    submitted_at=answer.submitted_at,
                ))
    return rows


def export_csv(rows: Sequence[ReportRow]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(REPORT_COLUMNS)
    for row in rows:
        writer.writerow(row.cells())
    return output.getvalue()


def _latin1(text: str) -> str:
    # Core PDF fonts only cover latin-1
    return text.encode("latin-1", "replace").decode("latin-1")


class ComplianceReportPDF(FPDF):
    """Landscape response table for one compliance run."""

    def __init__(self, run_title: str, rows: Sequence[ReportRow], generated_at: Optional[datetime] = None):
        super().__init__(orientation='L', unit='mm', format='A4')
        self.run_title = run_title
        self.rows = rows
        self.generated_at = generated_at or utc_now()
        self.set_auto_page_break(auto=True, margin=15)
        self.set_margins(15, 15, 15)

    def header(self):
        self.set_font('helvetica', 'B', 12)
        self.set_text_color(*SECTION_TEXT)
        self.cell(0, 8, _latin1(f'Compliance Survey Report: {self.run_title}'))
        self.ln(8)
        self.set_font('helvetica', '', 8)
        self.cell(0, 5, f'Generated {self.generated_at.strftime(TIMESTAMP_FORMAT)} UTC')
        self.ln(8)

    def footer(self):
        self.set_y(-12)
        self.set_font('helvetica', 'I', 8)
        self.set_text_color(128, 128, 128)
        self.cell(0, 5, f'Page {self.page_no()}/{{nb}}', align='C')

    def _table_header(self):
        self.set_fill_color(*HEADER_BG)
        self.set_text_color(*HEADER_TEXT)
        self.set_font('helvetica', 'B', 7)
        for header, width in zip(REPORT_COLUMNS, PDF_COL_WIDTHS):
            self.cell(width, 7, header, border=1, align='C', fill=True)
        self.ln()
        self.set_font('helvetica', '', 7)
        self.set_text_color(*SECTION_TEXT)

    def _fit(self, text: str, width: float) -> str:
        """Truncate text to the column width."""
        text = _latin1(text)
        if self.get_string_width(text) <= width - 2:
            return text
        while text and self.get_string_width(text + '...') > width - 2:
            text = text[:-1]
        return text + '...'

    def add_table(self):
        self.add_page()
        if not self.rows:
            self.set_font('helvetica', 'I', 10)
            self.cell(0, 10, 'No responses recorded for this compliance run.')
            return

        self._table_header()
        for i, row in enumerate(self.rows):
            if self.get_y() > self.h - 25:
                self.add_page()
                self._table_header()
            fill = i % 2 == 1
            if fill:
                self.set_fill_color(*ROW_ALT_BG)
            for value, width in zip(row.cells(), PDF_COL_WIDTHS):
                self.cell(width, 6, self._fit(value, width), border=1, fill=fill)
            self.ln()

    def generate(self) -> bytes:
        self.alias_nb_pages()
        self.add_table()
        return bytes(self.output())


def export_pdf(run_title: str, rows: Sequence[ReportRow], generated_at: Optional[datetime] = None) -> bytes:
    return ComplianceReportPDF(run_title, rows, generated_at).generate()


def export_filename(run_id: int, run_title: str, fmt: str) -> str:
    slug = "".join(c if c.isalnum() else "_" for c in run_title.lower()).strip("_")[:40]
    return f"compliance_run_{run_id}_{slug or 'report'}_{utc_now().strftime('%Y%m%d')}.{fmt}"


def export_report(run, grouped: Sequence[DepartmentGroup], fmt: str = "csv") -> Tuple[bytes, str, str]:
    """Render a run's grouped responses.

    Returns:
        (content, media_type, filename)
    """
    fmt = (fmt or "").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format '{fmt}'", fields=["format"])

    rows = build_report_rows(grouped)
    filename = export_filename(run.run_id, run.title, fmt)
    if fmt == "csv":
        return export_csv(rows).encode("utf-8"), "text/csv", filename
    return export_pdf(run.title, rows), "application/pdf", filename
