"""Tests for the compliance run admin API."""
from datetime import date, timedelta

import pytest

from app.core import survey_responses
from app.models.compliance import ComplianceRecipient


@pytest.fixture
def run_payload(org, question_payloads):
    return {
        "title": "Annual contract compliance",
        "description": "Yearly check of contract handling",
        "frequency": "once",
        "start_date": date.today().isoformat(),
        "due_date": (date.today() + timedelta(days=14)).isoformat(),
        "questions": question_payloads,
        "department_ids": [
            org["finance"].department_id,
            org["legal"].department_id,
            org["operations"].department_id,
        ],
    }


@pytest.fixture
def created_run(client, admin_headers, run_payload):
    response = client.post("/compliance/runs", json=run_payload, headers=admin_headers)
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def activated_run(client, admin_headers, created_run):
    response = client.post(f"/compliance/runs/{created_run['run_id']}/activate", headers=admin_headers)
    assert response.status_code == 200
    return response.json()


class TestIdentity:
    def test_missing_header_is_unauthorized(self, client):
        assert client.get("/compliance/runs").status_code == 401

    def test_invalid_header_is_unauthorized(self, client):
        assert client.get("/compliance/runs", headers={"X-User-Id": "abc"}).status_code == 401

    def test_root(self, client):
        assert client.get("/").json() == {"message": "Compliance Survey Engine API"}


class TestRunCrud:
    def test_create_run(self, created_run, org):
        assert created_run["status"] == "draft"
        assert created_run["created_by"] == org["admin"].user_id
        assert [q["order_index"] for q in created_run["questions"]] == [0, 1, 2, 3]
        assert created_run["questions"][2]["options"] == ["Monthly", "Quarterly", "Never"]
        assert len(created_run["department_ids"]) == 3

    def test_create_invalid_run(self, client, admin_headers, run_payload):
        run_payload["questions"] = [{"question_text": "Pick", "question_type": "multiple", "options": ["A"]}]
        response = client.post("/compliance/runs", json=run_payload, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["fields"] == ["questions[0].options"]

    def test_create_run_bad_schedule(self, client, admin_headers, run_payload):
        run_payload["frequency"] = "monthly"
        response = client.post("/compliance/runs", json=run_payload, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["fields"] == ["recurring_day"]

    def test_get_unknown_run(self, client, admin_headers, org):
        assert client.get("/compliance/runs/999", headers=admin_headers).status_code == 404

    def test_list_runs(self, client, admin_headers, created_run):
        response = client.get("/compliance/runs", headers=admin_headers)
        assert response.status_code == 200
        (item,) = response.json()
        assert item["run_id"] == created_run["run_id"]
        assert item["total_recipients"] == 0
        assert item["completion_rate"] == 0.0

    def test_list_runs_status_filter(self, client, admin_headers, created_run):
        assert client.get("/compliance/runs?status=active", headers=admin_headers).json() == []
        assert len(client.get("/compliance/runs?status=draft", headers=admin_headers).json()) == 1

    def test_patch_run(self, client, admin_headers, created_run):
        response = client.patch(
            f"/compliance/runs/{created_run['run_id']}",
            json={"title": "Renamed", "frequency": "quarterly", "recurring_day": 1},
            headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"
        assert response.json()["is_recurring"] is True

    def test_replace_questions_and_departments(self, client, admin_headers, created_run, org):
        run_id = created_run["run_id"]
        questions = client.put(
            f"/compliance/runs/{run_id}/questions",
            json={"questions": [{"question_text": "Only one", "question_type": "text"}]},
            headers=admin_headers
        )
        assert [q["question_text"] for q in questions.json()["questions"]] == ["Only one"]

        departments = client.put(
            f"/compliance/runs/{run_id}/departments",
            json={"department_ids": [org["legal"].department_id]},
            headers=admin_headers
        )
        assert departments.json()["department_ids"] == [org["legal"].department_id]

    def test_delete_draft(self, client, admin_headers, created_run):
        run_id = created_run["run_id"]
        assert client.delete(f"/compliance/runs/{run_id}", headers=admin_headers).status_code == 204
        assert client.get(f"/compliance/runs/{run_id}", headers=admin_headers).status_code == 404


class TestActivationApi:
    def test_activate(self, activated_run):
        assert activated_run["run"]["status"] == "active"
        assert activated_run["notifications"] == {"attempted": 3, "delivered": 3, "failed": 0}
        names = sorted(r["department_name"] for r in activated_run["recipients"])
        assert names == ["Finance", "Legal", "Operations"]
        assert all("access_token" not in r for r in activated_run["recipients"])

    def test_activate_twice_conflicts(self, client, admin_headers, activated_run):
        run_id = activated_run["run"]["run_id"]
        assert client.post(f"/compliance/runs/{run_id}/activate", headers=admin_headers).status_code == 409

    def test_activate_unassigned_department(self, client, admin_headers, run_payload, org):
        run_payload["department_ids"] = [org["unstaffed"].department_id]
        run_id = client.post("/compliance/runs", json=run_payload, headers=admin_headers).json()["run_id"]

        response = client.post(f"/compliance/runs/{run_id}/activate", headers=admin_headers)
        assert response.status_code == 409
        assert response.json()["department_id"] == org["unstaffed"].department_id
        assert client.get(f"/compliance/runs/{run_id}", headers=admin_headers).json()["status"] == "draft"

    def test_edit_after_activation_conflicts(self, client, admin_headers, activated_run):
        run_id = activated_run["run"]["run_id"]
        response = client.patch(f"/compliance/runs/{run_id}", json={"title": "Late"}, headers=admin_headers)
        assert response.status_code == 409

    def test_list_recipients(self, client, admin_headers, activated_run):
        run_id = activated_run["run"]["run_id"]
        response = client.get(f"/compliance/runs/{run_id}/recipients", headers=admin_headers)
        assert response.status_code == 200
        assert len(response.json()) == 3
        assert all(r["email_sent"] for r in response.json())

    def test_retry_notifications(self, client, admin_headers, activated_run):
        run_id = activated_run["run"]["run_id"]
        response = client.post(f"/compliance/runs/{run_id}/notifications/retry", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["attempted"] == 0

    def test_close(self, client, admin_headers, activated_run):
        run_id = activated_run["run"]["run_id"]
        response = client.post(f"/compliance/runs/{run_id}/close", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert client.post(f"/compliance/runs/{run_id}/close", headers=admin_headers).status_code == 409


class TestReportingApi:
    @pytest.fixture
    def two_submitted(self, db_session, activated_run, org):
        run_id = activated_run["run"]["run_id"]
        ids = [q["question_id"] for q in activated_run["run"]["questions"]]
        for department in (org["finance"], org["legal"]):
            recipient = db_session.query(ComplianceRecipient).filter(
                ComplianceRecipient.run_id == run_id,
                ComplianceRecipient.department_id == department.department_id
            ).one()
            survey_responses.submit_survey(db_session, recipient.access_token, [
                (ids[0], "false", "Register incomplete, see ticket"),
                (ids[1], "3", None),
                (ids[2], "Monthly", None),
            ])
        return run_id

    def test_statistics(self, client, admin_headers, two_submitted):
        data = client.get(f"/compliance/runs/{two_submitted}/statistics", headers=admin_headers).json()
        assert data["total_recipients"] == 3
        assert data["completed_surveys"] == 2
        assert data["pending_surveys"] == 1
        assert data["completion_rate"] == pytest.approx(200 / 3)
        assert data["completion_rate_display"] == 66.7

    def test_department_statistics(self, client, admin_headers, two_submitted, org):
        data = client.get(f"/compliance/runs/{two_submitted}/statistics/departments", headers=admin_headers).json()
        assert [(d["department_name"], d["completed"]) for d in data] == [
            ("Finance", 1), ("Legal", 1), ("Operations", 0)
        ]
        operations = data[2]
        assert operations["recipient_count"] == 1
        (recipient,) = operations["recipients"]
        assert recipient["user_id"] == org["operations"].head_user_id
        assert recipient["respondent_name"] == "Carol Chen"
        assert recipient["survey_completed"] is False
        assert recipient["survey_completed_at"] is None
        assert data[0]["recipients"][0]["survey_completed"] is True

    def test_list_shows_completion(self, client, admin_headers, two_submitted):
        (item,) = client.get("/compliance/runs", headers=admin_headers).json()
        assert item["completed_recipients"] == 2
        assert item["completion_rate"] == 66.7

    def test_grouped_responses(self, client, admin_headers, two_submitted, org):
        data = client.get(
            f"/compliance/runs/{two_submitted}/responses",
            params={"department_id": org["legal"].department_id},
            headers=admin_headers
        ).json()
        (legal,) = data
        (respondent,) = legal["respondents"]
        assert respondent["respondent_email"] == "bob@example.com"
        assert [a["answer"] for a in respondent["answers"]] == ["false", "3", "Monthly"]
        assert respondent["answers"][1]["score"] == 3

    def test_csv_export(self, client, admin_headers, two_submitted):
        response = client.get(f"/compliance/runs/{two_submitted}/export?format=csv", headers=admin_headers)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment; filename=compliance_run_" in response.headers["content-disposition"]
        lines = response.text.strip().splitlines()
        assert len(lines) == 1 + 6

    def test_pdf_export(self, client, admin_headers, two_submitted):
        response = client.get(f"/compliance/runs/{two_submitted}/export?format=pdf", headers=admin_headers)
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")

    def test_unsupported_export_format(self, client, admin_headers, two_submitted):
        response = client.get(f"/compliance/runs/{two_submitted}/export?format=xml", headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["fields"] == ["format"]


class TestScheduleAndSweeps:
    def test_next_due_date_preview(self, client, admin_headers):
        response = client.get(
            "/compliance/schedule/next-due-date",
            params={"frequency": "monthly", "recurring_day": 31, "from_date": "2024-02-01"},
            headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["next_due_date"] == "2024-02-29"

    def test_next_due_date_invalid_rule(self, client, admin_headers):
        response = client.get(
            "/compliance/schedule/next-due-date",
            params={"frequency": "monthly", "recurring_day": 40, "from_date": "2024-02-01"},
            headers=admin_headers
        )
        assert response.status_code == 400

    def test_expiry_sweep(self, client, admin_headers, activated_run):
        run_id = activated_run["run"]["run_id"]
        later = (date.today() + timedelta(days=30)).isoformat()
        response = client.post(f"/compliance/sweeps/expire?today={later}", headers=admin_headers)
        assert response.json() == {"expired_run_ids": [run_id], "completed_run_ids": []}
        assert client.get(f"/compliance/runs/{run_id}", headers=admin_headers).json()["status"] == "expired"

    def test_recurrence_sweep(self, client, admin_headers, run_payload):
        run_payload.update({
            "frequency": "monthly",
            "recurring_day": 31,
            "start_date": "2024-01-01",
            "due_date": "2024-01-31",
        })
        run_id = client.post("/compliance/runs", json=run_payload, headers=admin_headers).json()["run_id"]
        client.post(f"/compliance/runs/{run_id}/activate", headers=admin_headers)

        response = client.post("/compliance/sweeps/recurrence?today=2024-02-01", headers=admin_headers)
        assert response.status_code == 200
        (successor_id,) = response.json()["created_run_ids"]
        successor = client.get(f"/compliance/runs/{successor_id}", headers=admin_headers).json()
        assert successor["parent_run_id"] == run_id
        assert successor["due_date"] == "2024-02-29"
        assert successor["status"] == "active"
