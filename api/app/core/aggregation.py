"""Completion statistics and response grouping for compliance runs.

Everything here is recomputed from recipient and response rows on every
call; nothing is cached.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session, selectinload

from app.models.compliance import (
    ComplianceRecipient,
    ComplianceResponse,
    ComplianceRun,
    QuestionType,
)
from app.services.directory import DepartmentDirectory


def completion_rate(completed: int, total: int) -> float:
    """Percentage of completed surveys, exact; 0 for a run without recipients."""
    if total <= 0:
        return 0.0
    return completed * 100.0 / total


def display_rate(rate: float) -> float:
    """One-decimal rounding for presentation only."""
    return round(rate, 1)


def department_label(directory: DepartmentDirectory, department_id: int) -> str:
    department = directory.get_department(department_id)
    return department.name if department else f"Department {department_id}"


# ============================================================================
# Statistics
# ============================================================================

@dataclass(frozen=True)
class RunStatistics:
    total_recipients: int
    completed_surveys: int
    pending_surveys: int
    completion_rate: float


@dataclass(frozen=True)
class DepartmentRecipient:
    recipient_id: int
    user_id: int
    respondent_name: str
    survey_completed: bool
    survey_completed_at: Optional[datetime]


@dataclass(frozen=True)
class DepartmentStatistics:
    department_id: int
    department_name: str
    recipients: List[DepartmentRecipient]
    completed: int
    completion_rate: float

    @property
    def recipient_count(self) -> int:
        return len(self.recipients)


def recipient_counts(db: Session, run_ids: Iterable[int]) -> Dict[int, Tuple[int, int]]:
    """Map run_id -> (total recipients, completed recipients) in one query."""
    run_ids = list(run_ids)
    if not run_ids:
        return {}
    rows = db.query(
        ComplianceRecipient.run_id,
        func.count(ComplianceRecipient.recipient_id),
        func.sum(case((ComplianceRecipient.survey_completed == True, 1), else_=0)),  # noqa: E712
    ).filter(
        ComplianceRecipient.run_id.in_(run_ids)
    ).group_by(ComplianceRecipient.run_id).all()
    return {run_id: (total, int(done or 0)) for run_id, total, done in rows}


def statistics(db: Session, run: ComplianceRun) -> RunStatistics:
    total, completed = recipient_counts(db, [run.run_id]).get(run.run_id, (0, 0))
    return RunStatistics(
        total_recipients=total,
        completed_surveys=completed,
        pending_surveys=total - completed,
        completion_rate=completion_rate(completed, total),
    )


def by_department(db: Session, run: ComplianceRun, directory: DepartmentDirectory) -> List[DepartmentStatistics]:
    """Per-department completion, one entry per department with recipients.

    Each entry lists its recipients with their completion flag so callers
    can see who is still outstanding, not only how many.
    """
    recipients = db.query(ComplianceRecipient).filter(
        ComplianceRecipient.run_id == run.run_id
    ).order_by(ComplianceRecipient.recipient_id).all()

    grouped: Dict[int, List[DepartmentRecipient]] = {}
    for recipient in recipients:
        user = directory.get_user(recipient.user_id)
        grouped.setdefault(recipient.department_id, []).append(DepartmentRecipient(
            recipient_id=recipient.recipient_id,
            user_id=recipient.user_id,
            respondent_name=user.full_name if user else "",
            survey_completed=recipient.survey_completed,
            survey_completed_at=recipient.survey_completed_at,
        ))

    result = []
    for department_id, members in grouped.items():
        completed = sum(1 for m in members if m.survey_completed)
        result.append(DepartmentStatistics(
            department_id=department_id,
            department_name=department_label(directory, department_id),
            recipients=members,
            completed=completed,
            completion_rate=completion_rate(completed, len(members)),
        ))
    return sorted(result, key=lambda s: (s.department_name, s.department_id))


# ============================================================================
# Response grouping
# ============================================================================

@dataclass
class GroupedAnswer:
    question_id: int
    order_index: int
    question_text: str
    question_type: str
    answer: str
    comment: Optional[str]
    submitted_at: datetime

    @property
    def score(self) -> Optional[int]:
        if self.question_type != QuestionType.SCORE.value:
            return None
        try:
            return int(self.answer)
        except (TypeError, ValueError):
            return None


@dataclass
class RespondentGroup:
    recipient_id: int
    user_id: int
    respondent_name: str
    respondent_email: str
    survey_completed: bool
    survey_completed_at: Optional[datetime]
    answers: List[GroupedAnswer] = field(default_factory=list)


@dataclass
class DepartmentGroup:
    department_id: int
    department_name: str
    respondents: List[RespondentGroup] = field(default_factory=list)

    @property
    def response_count(self) -> int:
        return sum(len(r.answers) for r in self.respondents)


def group_responses(
    db: Session,
    run: ComplianceRun,
    directory: DepartmentDirectory,
    department_id: Optional[int] = None,
) -> List[DepartmentGroup]:
    """Responses of a run grouped by department, then respondent.

    Answers follow the run's question order. Departments sort by name,
    respondents by name.
    """
    query = db.query(ComplianceRecipient).options(
        selectinload(ComplianceRecipient.responses).selectinload(ComplianceResponse.question)
    ).filter(ComplianceRecipient.run_id == run.run_id)
    if department_id is not None:
        query = query.filter(ComplianceRecipient.department_id == department_id)

    departments: Dict[int, DepartmentGroup] = {}
    for recipient in query.all():
        group = departments.get(recipient.department_id)
        if group is None:
            group = DepartmentGroup(
                department_id=recipient.department_id,
                department_name=department_label(directory, recipient.department_id),
            )
            departments[recipient.department_id] = group

        user = directory.get_user(recipient.user_id)
        answers = sorted(
            (
                GroupedAnswer(
                    question_id=r.question_id,
                    order_index=r.question.order_index,
                    question_text=r.question.question_text,
                    question_type=r.question.question_type,
                    answer=r.answer,
                    comment=r.comment,
                    submitted_at=r.submitted_at,
                )
                for r in recipient.responses
            ),
            key=lambda a: (a.order_index, a.question_id)
        )
        group.respondents.append(RespondentGroup(
            recipient_id=recipient.recipient_id,
            user_id=recipient.user_id,
            respondent_name=user.full_name if user else "",
            respondent_email=user.email if user else "",
            survey_completed=recipient.survey_completed,
            survey_completed_at=recipient.survey_completed_at,
            answers=answers,
        ))

    for group in departments.values():
        group.respondents.sort(key=lambda r: (r.respondent_name, r.recipient_id))
    return sorted(departments.values(), key=lambda g: (g.department_name, g.department_id))
