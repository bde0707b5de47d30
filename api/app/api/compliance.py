"""Compliance run routes - definitions, activation, statistics and exports."""
from typing import List, Optional
from datetime import date
from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.deps import get_current_user_id, get_directory, get_dispatcher
from app.core import aggregation, compliance_runs, fanout, recurrence, report_export
from app.core.schedule import next_due_date
from app.core.time import utc_today
from app.models.compliance import ComplianceRecipient, ComplianceRun, RunFrequency, RunStatus
from app.services.directory import DepartmentDirectory
from app.services.notifications import NotificationDispatcher
from app.schemas.compliance import (
    # Run schemas
    ComplianceRunCreate,
    ComplianceRunUpdate,
    ComplianceRunResponse,
    ComplianceRunListItem,
    QuestionsReplace,
    DepartmentsReplace,
    # Activation schemas
    ActivationResponse,
    ComplianceRecipientResponse,
    DispatchSummaryResponse,
    RetryNotificationsRequest,
    # Reporting schemas
    RunStatisticsResponse,
    DepartmentStatisticsResponse,
    DepartmentRecipientStatus,
    DepartmentResponses,
    RespondentResponses,
    AnswerResponse,
    # Schedule / sweeps
    NextDueDateResponse,
    ExpirySweepResponse,
    RecurrenceSweepResponse,
    RecurrenceFailure,
)

router = APIRouter()


# ============================================================================
# HELPERS
# ============================================================================

def _build_run_response(run: ComplianceRun) -> ComplianceRunResponse:
    return ComplianceRunResponse.model_validate(run)


def _build_recipient_response(
    recipient: ComplianceRecipient,
    directory: DepartmentDirectory
) -> ComplianceRecipientResponse:
    department = directory.get_department(recipient.department_id)
    user = directory.get_user(recipient.user_id)
    return ComplianceRecipientResponse(
        recipient_id=recipient.recipient_id,
        user_id=recipient.user_id,
        department_id=recipient.department_id,
        department_name=department.name if department else None,
        respondent_name=user.full_name if user else None,
        respondent_email=user.email if user else None,
        email_sent=recipient.email_sent,
        email_sent_at=recipient.email_sent_at,
        email_attempts=recipient.email_attempts,
        last_email_error=recipient.last_email_error,
        survey_completed=recipient.survey_completed,
        survey_completed_at=recipient.survey_completed_at,
    )


def _build_dispatch_response(summary: fanout.DispatchSummary) -> DispatchSummaryResponse:
    return DispatchSummaryResponse(
        attempted=summary.attempted,
        delivered=summary.delivered,
        failed=summary.failed,
    )


# ============================================================================
# RUN DEFINITIONS
# ============================================================================

@router.get("/runs", response_model=List[ComplianceRunListItem])
def list_runs(
    status_filter: Optional[RunStatus] = Query(None, alias="status"),
    frequency: Optional[RunFrequency] = None,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id)
):
    """List compliance runs with recipient counts, newest first."""
    runs = compliance_runs.list_runs(db, status=status_filter, frequency=frequency)
    counts = aggregation.recipient_counts(db, [r.run_id for r in runs])

    result = []
    for run in runs:
        total, completed = counts.get(run.run_id, (0, 0))
        result.append(ComplianceRunListItem(
            run_id=run.run_id,
            title=run.title,
            frequency=run.frequency,
            is_recurring=run.is_recurring,
            status=run.status,
            start_date=run.start_date,
            due_date=run.due_date,
            next_due_date=run.next_due_date,
            parent_run_id=run.parent_run_id,
            created_at=run.created_at,
            total_recipients=total,
            completed_recipients=completed,
            completion_rate=aggregation.display_rate(aggregation.completion_rate(completed, total)),
        ))
    return result


@router.post("/runs", response_model=ComplianceRunResponse, status_code=status.HTTP_201_CREATED)
def create_run(
    run_data: ComplianceRunCreate,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id)
):
    """Create a draft compliance run."""
    run = compliance_runs.create_run(db, run_data, current_user_id)
    return _build_run_response(run)


@router.get("/runs/{run_id}", response_model=ComplianceRunResponse)
def get_run(
    run_id: int,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id)
):
    return _build_run_response(compliance_runs.get_run(db, run_id))


@router.patch("/runs/{run_id}", response_model=ComplianceRunResponse)
def update_run(
    run_id: int,
    run_data: ComplianceRunUpdate,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id)
):
    """Update a draft run's title, description or schedule."""
    run = compliance_runs.update_run(db, run_id, run_data, current_user_id)
    return _build_run_response(run)


@router.put("/runs/{run_id}/questions", response_model=ComplianceRunResponse)
def replace_questions(
    run_id: int,
    payload: QuestionsReplace,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id)
):
    run = compliance_runs.replace_questions(db, run_id, payload.questions, current_user_id)
    return _build_run_response(run)


@router.put("/runs/{run_id}/departments", response_model=ComplianceRunResponse)
def replace_departments(
    run_id: int,
    payload: DepartmentsReplace,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id)
):
    run = compliance_runs.replace_departments(db, run_id, payload.department_ids, current_user_id)
    return _build_run_response(run)


@router.delete("/runs/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_run(
    run_id: int,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id)
):
    """Delete a draft run."""
    compliance_runs.delete_run(db, run_id, current_user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# LIFECYCLE
# ============================================================================

@router.post("/runs/{run_id}/activate", response_model=ActivationResponse)
def activate_run(
    run_id: int,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
    directory: DepartmentDirectory = Depends(get_directory),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    """
    Activate a draft run: create one recipient per department and send the
    survey invitations. Fails without side effects if any department has no
    head.
    """
    result = fanout.activate_run(db, run_id, directory, dispatcher, current_user_id)
    return ActivationResponse(
        run=_build_run_response(result.run),
        recipients=[_build_recipient_response(r, directory) for r in result.recipients],
        notifications=_build_dispatch_response(result.notifications),
    )


@router.post("/runs/{run_id}/close", response_model=ComplianceRunResponse)
def close_run(
    run_id: int,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id)
):
    """Complete an active run now, even with surveys outstanding."""
    run = compliance_runs.close_run(db, run_id, current_user_id)
    return _build_run_response(run)


@router.get("/runs/{run_id}/recipients", response_model=List[ComplianceRecipientResponse])
def list_recipients(
    run_id: int,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
    directory: DepartmentDirectory = Depends(get_directory)
):
    run = compliance_runs.get_run(db, run_id)
    recipients = sorted(run.recipients, key=lambda r: r.recipient_id)
    return [_build_recipient_response(r, directory) for r in recipients]


@router.post("/runs/{run_id}/notifications/retry", response_model=DispatchSummaryResponse)
def retry_notifications(
    run_id: int,
    payload: Optional[RetryNotificationsRequest] = None,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
    directory: DepartmentDirectory = Depends(get_directory),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    """Re-send invitations that were never delivered."""
    recipient_ids = payload.recipient_ids if payload else None
    summary = fanout.retry_notifications(db, run_id, dispatcher, directory, recipient_ids)
    return _build_dispatch_response(summary)


# ============================================================================
# STATISTICS / RESPONSES / EXPORT
# ============================================================================

@router.get("/runs/{run_id}/statistics", response_model=RunStatisticsResponse)
def get_statistics(
    run_id: int,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id)
):
    run = compliance_runs.get_run(db, run_id)
    stats = aggregation.statistics(db, run)
    return RunStatisticsResponse(
        run_id=run.run_id,
        total_recipients=stats.total_recipients,
        completed_surveys=stats.completed_surveys,
        pending_surveys=stats.pending_surveys,
        completion_rate=stats.completion_rate,
        completion_rate_display=aggregation.display_rate(stats.completion_rate),
    )


@router.get("/runs/{run_id}/statistics/departments", response_model=List[DepartmentStatisticsResponse])
def get_department_statistics(
    run_id: int,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
    directory: DepartmentDirectory = Depends(get_directory)
):
    run = compliance_runs.get_run(db, run_id)
    return [
        DepartmentStatisticsResponse(
            department_id=s.department_id,
            department_name=s.department_name,
            recipient_count=s.recipient_count,
            completed=s.completed,
            completion_rate=s.completion_rate,
            completion_rate_display=aggregation.display_rate(s.completion_rate),
            recipients=[
                DepartmentRecipientStatus(
                    recipient_id=r.recipient_id,
                    user_id=r.user_id,
                    respondent_name=r.respondent_name,
                    survey_completed=r.survey_completed,
                    survey_completed_at=r.survey_completed_at,
                )
                for r in s.recipients
            ],
        )
        for s in aggregation.by_department(db, run, directory)
    ]


@router.get("/runs/{run_id}/responses", response_model=List[DepartmentResponses])
def get_responses(
    run_id: int,
    department_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
    directory: DepartmentDirectory = Depends(get_directory)
):
    """Responses grouped by department and respondent."""
    run = compliance_runs.get_run(db, run_id)
    grouped = aggregation.group_responses(db, run, directory, department_id=department_id)
    return [
        DepartmentResponses(
            department_id=group.department_id,
            department_name=group.department_name,
            respondents=[
                RespondentResponses(
                    recipient_id=r.recipient_id,
                    user_id=r.user_id,
                    respondent_name=r.respondent_name,
                    respondent_email=r.respondent_email,
                    survey_completed=r.survey_completed,
                    survey_completed_at=r.survey_completed_at,
                    answers=[
                        AnswerResponse(
                            question_id=a.question_id,
                            order_index=a.order_index,
                            question_text=a.question_text,
                            question_type=a.question_type,
                            answer=a.answer,
                            score=a.score,
                            comment=a.comment,
                            submitted_at=a.submitted_at,
                        )
                        for a in r.answers
                    ],
                )
                for r in group.respondents
            ],
        )
        for group in grouped
    ]


@router.get("/runs/{run_id}/export")
def export_responses(
    run_id: int,
    format: str = Query("csv"),
    department_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
    directory: DepartmentDirectory = Depends(get_directory)
):
    """Export responses as CSV or PDF, optionally for one department."""
    run = compliance_runs.get_run(db, run_id)
    grouped = aggregation.group_responses(db, run, directory, department_id=department_id)
    content, media_type, filename = report_export.export_report(run, grouped, format)

    return StreamingResponse(
        iter([content]),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


# ============================================================================
# SCHEDULE PREVIEW
# ============================================================================

@router.get("/schedule/next-due-date", response_model=NextDueDateResponse)
def preview_next_due_date(
    frequency: RunFrequency,
    recurring_day: Optional[int] = None,
    from_date: Optional[date] = None,
    explicit_date: Optional[date] = None,
    current_user_id: int = Depends(get_current_user_id)
):
    """Show the due date a recurrence rule produces, for run forms."""
    from_date = from_date or utc_today()
    return NextDueDateResponse(
        frequency=frequency,
        recurring_day=recurring_day,
        from_date=from_date,
        next_due_date=next_due_date(
            frequency, recurring_day, from_date=from_date, explicit_date=explicit_date
        ),
    )


# ============================================================================
# SWEEPS
# ============================================================================

@router.post("/sweeps/expire", response_model=ExpirySweepResponse)
def run_expiry_sweep(
    today: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id)
):
    """Expire active runs past their due date with surveys outstanding."""
    expired, completed = compliance_runs.expire_overdue_runs(db, today=today)
    return ExpirySweepResponse(expired_run_ids=expired, completed_run_ids=completed)


@router.post("/sweeps/recurrence", response_model=RecurrenceSweepResponse)
def run_recurrence_sweep(
    today: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
    directory: DepartmentDirectory = Depends(get_directory),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    """Create and activate the next instance of every due recurring run."""
    result = recurrence.process_recurring_runs(db, directory, dispatcher, today=today)
    return RecurrenceSweepResponse(
        created_run_ids=result.created_run_ids,
        failures=[RecurrenceFailure(run_id=run_id, error=error) for run_id, error in result.failures],
    )
