"""Tests for CSV and PDF response exports."""
import csv
import io
from collections import Counter
from datetime import datetime

import pytest

from app.core import aggregation, survey_responses
from app.core.errors import ValidationError
from app.core.fanout import activate_run
from app.core.report_export import (
    REPORT_COLUMNS,
    ReportRow,
    build_report_rows,
    export_csv,
    export_filename,
    export_pdf,
    export_report,
)
from app.models.compliance import ComplianceRecipient, ComplianceResponse


def _row(**overrides):
    values = dict(
        department="Finance",
        respondent_name="Alice Archer",
        respondent_email="alice@example.com",
        question_text="Are all contracts registered?",
        answer="true",
        score=None,
        comment=None,
        submitted_at=datetime(2024, 3, 1, 9, 30, 0),
    )
    values.update(overrides)
    return ReportRow(**values)


def _parse(text):
    return list(csv.reader(io.StringIO(text)))


class TestCsvExport:
    def test_header_row(self):
        assert _parse(export_csv([]))[0] == REPORT_COLUMNS

    def test_missing_values_are_empty_cells(self):
        rows = _parse(export_csv([_row()]))
        assert rows[1] == [
            "Finance", "Alice Archer", "alice@example.com", "Are all contracts registered?",
            "true", "", "", "2024-03-01 09:30:00",
        ]

    def test_special_characters_survive(self):
        comment = 'Contract "A-17", renewed\nsecond line'
        rows = _parse(export_csv([_row(comment=comment, question_text="Rate, 1-5", answer="3", score=3)]))
        assert rows[1][3] == "Rate, 1-5"
        assert rows[1][5] == "3"
        assert rows[1][6] == comment

    def test_no_submitted_at(self):
        assert _parse(export_csv([_row(submitted_at=None)]))[1][7] == ""


class TestPdfExport:
    def test_pdf_bytes(self):
        content = export_pdf("Annual contract compliance", [_row(), _row(comment="Ünïcödé → text")])
        assert content.startswith(b"%PDF")

    def test_empty_pdf(self):
        assert export_pdf("Nothing yet", []).startswith(b"%PDF")

    def test_many_rows_span_pages(self):
        rows = [_row(question_text=f"Question {i} " + "x" * 120) for i in range(120)]
        assert export_pdf("Long run", rows).startswith(b"%PDF")


class TestExportReport:
    @pytest.fixture
    def submitted_run(self, db_session, make_run, org, directory, dispatcher, recipient_for):
        run = make_run(title="Q1 / Contracts, review")
        activate_run(db_session, run.run_id, directory, dispatcher, org["admin"].user_id)
        db_session.refresh(run)
        ids = [q.question_id for q in run.questions]
        for department, comment in ((org["finance"], None), (org["legal"], "Register, \"v2\"")):
            token = recipient_for(run.run_id, department.department_id).access_token
            survey_responses.submit_survey(db_session, token, [
                (ids[0], "true", comment),
                (ids[1], "5", None),
                (ids[2], "Never", None),
                (ids[3], "Nothing to add", None),
            ])
        db_session.refresh(run)
        return run

    def test_one_row_per_response(self, db_session, submitted_run, directory):
        grouped = aggregation.group_responses(db_session, submitted_run, directory)
        content, media_type, filename = export_report(submitted_run, grouped, "csv")

        assert media_type == "text/csv"
        assert filename.endswith(".csv")
        rows = _parse(content.decode("utf-8"))
        assert len(rows) - 1 == sum(g.response_count for g in grouped) == 8
        assert {r[0] for r in rows[1:]} == {"Finance", "Legal"}
        assert 'Register, "v2"' in [r[6] for r in rows[1:]]
        scores = [r[5] for r in rows[1:] if r[4] == "5"]
        assert scores == ["5", "5"]

    def test_rows_follow_grouping(self, db_session, submitted_run, directory):
        grouped = aggregation.group_responses(db_session, submitted_run, directory)
        rows = build_report_rows(grouped)
        assert [r.department for r in rows] == ["Finance"] * 4 + ["Legal"] * 4

    def test_pdf_format(self, db_session, submitted_run, directory):
        grouped = aggregation.group_responses(db_session, submitted_run, directory)
        content, media_type, filename = export_report(submitted_run, grouped, "PDF")
        assert media_type == "application/pdf"
        assert filename.endswith(".pdf")
        assert content.startswith(b"%PDF")

    def test_csv_round_trips_stored_responses(self, db_session, submitted_run, directory):
        """Every stored response appears exactly once in the CSV."""
        stored = db_session.query(ComplianceResponse).join(ComplianceRecipient).filter(
            ComplianceRecipient.run_id == submitted_run.run_id
        ).all()
        expected = Counter(
            (
                directory.get_department(r.recipient.department_id).name,
                directory.get_user(r.recipient.user_id).full_name,
                r.question.question_text,
                r.answer,
                r.comment or "",
            )
            for r in stored
        )

        grouped = aggregation.group_responses(db_session, submitted_run, directory)
        content, _, _ = export_report(submitted_run, grouped, "csv")
        rows = _parse(content.decode("utf-8"))[1:]

        assert len(rows) == len(stored)
        assert Counter((r[0], r[1], r[3], r[4], r[6]) for r in rows) == expected

    def test_unsupported_format(self, db_session, submitted_run, directory):
        with pytest.raises(ValidationError) as exc_info:
            export_report(submitted_run, [], "xlsx")
        assert exc_info.value.fields == ["format"]


def test_export_filename_slug():
    name = export_filename(7, "Q1 / Contracts, review", "csv")
    assert name.startswith("compliance_run_7_q1___contracts__review_")
    assert name.endswith(".csv")
