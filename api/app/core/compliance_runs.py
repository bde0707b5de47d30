"""Compliance run definitions and run status transitions.

A run is editable (questions, department targets, schedule) only while in
draft. Every status change is a compare-and-set on the current status, so a
sweep racing a submission, or two activations racing each other, can never
move a run backwards or apply the same transition twice.
"""
import logging
from datetime import date
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, exists
from sqlalchemy.orm import Session

from app.core.audit import create_audit_log
from app.core.errors import NotFoundError, StateConflictError, ValidationError
from app.core.schedule import validate_schedule
from app.core.time import utc_now, utc_today
from app.models.compliance import (
    ComplianceQuestion,
    ComplianceRecipient,
    ComplianceRun,
    ComplianceRunDepartment,
    QuestionType,
    RunFrequency,
    RunStatus,
)
from app.schemas.compliance import (
    ComplianceQuestionCreate,
    ComplianceRunCreate,
    ComplianceRunUpdate,
)

logger = logging.getLogger(__name__)

ENTITY_TYPE = "ComplianceRun"
MIN_MULTIPLE_OPTIONS = 2


# ============================================================================
# Validation helpers
# ============================================================================

def _clean_title(title: Optional[str]) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError("Title is required", fields=["title"])
    return cleaned


def validate_question(question, position: int) -> None:
    """Check one question definition (schema or ORM row) for consistency."""
    prefix = f"questions[{position}]"
    if not (question.question_text or "").strip():
        raise ValidationError("Question text is required", fields=[f"{prefix}.question_text"])

    qtype = QuestionType(question.question_type)
    options = [o for o in (question.options or []) if o is not None]

    if qtype == QuestionType.MULTIPLE:
        cleaned = [o.strip() for o in options if o.strip()]
        if len(cleaned) < MIN_MULTIPLE_OPTIONS:
            raise ValidationError(
                f"Multiple choice questions need at least {MIN_MULTIPLE_OPTIONS} options",
                fields=[f"{prefix}.options"]
            )
        if len(set(cleaned)) != len(cleaned):
            raise ValidationError("Options must be unique", fields=[f"{prefix}.options"])
    elif options:
        raise ValidationError(
            "Options are only allowed on multiple choice questions", fields=[f"{prefix}.options"]
        )

    if qtype == QuestionType.SCORE:
        if question.max_score is None or question.max_score < 1:
            raise ValidationError(
                "Score questions need a max_score of at least 1", fields=[f"{prefix}.max_score"]
            )
    elif question.max_score is not None:
        raise ValidationError(
            "max_score is only allowed on score questions", fields=[f"{prefix}.max_score"]
        )


def _build_questions(questions: Sequence[ComplianceQuestionCreate]) -> List[ComplianceQuestion]:
    built = []
    for i, q in enumerate(questions):
        validate_question(q, i)
        qtype = QuestionType(q.question_type)
        built.append(ComplianceQuestion(
            order_index=i,
            question_text=q.question_text.strip(),
            question_type=qtype.value,
            is_required=q.is_required,
            options=[o.strip() for o in q.options if o and o.strip()]
            if qtype == QuestionType.MULTIPLE else None,
            max_score=q.max_score if qtype == QuestionType.SCORE else None,
        ))
    return built


def _unique_department_ids(department_ids: Iterable[int]) -> List[int]:
    ids = list(department_ids)
    if len(set(ids)) != len(ids):
        raise ValidationError("Department targets must be unique", fields=["department_ids"])
    return ids


def _require_draft(run: ComplianceRun, action: str) -> None:
    if run.status != RunStatus.DRAFT.value:
        raise StateConflictError(
            f"Cannot {action} a compliance run in '{run.status}' status; only draft runs are editable"
        )


def validate_for_activation(run: ComplianceRun) -> None:
    """Preconditions for draft -> active. Raises without touching the run."""
    _require_draft(run, "activate")
    if not run.departments:
        raise StateConflictError("A compliance run needs at least one target department")
    if not run.questions:
        raise StateConflictError("A compliance run needs at least one question")
    for i, question in enumerate(run.questions):
        validate_question(question, i)


# ============================================================================
# Status transitions (compare-and-set)
# ============================================================================

def transition_status(db: Session, run_id: int, from_status: RunStatus, to_status: RunStatus, **values) -> bool:
    """Move a run from `from_status` to `to_status` if it is still there.

    Returns False when another writer got there first. Does not commit.
    """
    values.update({"status": to_status.value, "updated_at": utc_now()})
    updated = db.query(ComplianceRun).filter(
        ComplianceRun.run_id == run_id,
        ComplianceRun.status == from_status.value
    ).update(values, synchronize_session="fetch")
    return updated == 1


# ============================================================================
# CRUD
# ============================================================================

def create_run(db: Session, data: ComplianceRunCreate, acting_user_id: int) -> ComplianceRun:
    """Create a draft run with its questions and department targets."""
    title = _clean_title(data.title)
    validate_schedule(data.frequency, data.recurring_day, data.start_date, data.due_date)
    questions = _build_questions(data.questions)
    department_ids = _unique_department_ids(data.department_ids)

    run = ComplianceRun(
        title=title,
        description=data.description,
        frequency=RunFrequency(data.frequency).value,
        recurring_day=data.recurring_day,
        start_date=data.start_date,
        due_date=data.due_date,
        status=RunStatus.DRAFT.value,
        created_by=acting_user_id,
    )
    run.questions = questions
    run.departments = [ComplianceRunDepartment(department_id=d) for d in department_ids]
    db.add(run)
    db.flush()

    create_audit_log(
        db=db,
        entity_type=ENTITY_TYPE,
        entity_id=run.run_id,
        action="CREATE",
        user_id=acting_user_id,
        changes={
            "title": title,
            "frequency": run.frequency,
            "questions": len(questions),
            "department_ids": department_ids,
        }
    )
    db.commit()
    db.refresh(run)
    logger.info("Created compliance run %s (%s)", run.run_id, run.frequency)
    return run


def list_runs(
    db: Session,
    status: Optional[RunStatus] = None,
    frequency: Optional[RunFrequency] = None,
) -> List[ComplianceRun]:
    query = db.query(ComplianceRun)
    if status:
        query = query.filter(ComplianceRun.status == RunStatus(status).value)
    if frequency:
        query = query.filter(ComplianceRun.frequency == RunFrequency(frequency).value)
    return query.order_by(ComplianceRun.created_at.desc(), ComplianceRun.run_id.desc()).all()


def get_run(db: Session, run_id: int) -> ComplianceRun:
    run = db.query(ComplianceRun).filter(ComplianceRun.run_id == run_id).first()
    if not run:
        raise NotFoundError("Compliance run not found")
    return run


def update_run(db: Session, run_id: int, data: ComplianceRunUpdate, acting_user_id: int) -> ComplianceRun:
    """Update scalar fields of a draft run. Schedule is re-validated as a whole."""
    run = get_run(db, run_id)
    _require_draft(run, "edit")

    update_data = data.model_dump(exclude_unset=True)
    if "title" in update_data:
        update_data["title"] = _clean_title(update_data["title"])
    if update_data.get("frequency") is not None:
        update_data["frequency"] = RunFrequency(update_data["frequency"]).value
    for required in ("frequency", "start_date", "due_date"):
        if required in update_data and update_data[required] is None:
            raise ValidationError(f"{required} cannot be cleared", fields=[required])

    merged = {
        "frequency": update_data.get("frequency", run.frequency),
        "recurring_day": update_data.get("recurring_day", run.recurring_day),
        "start_date": update_data.get("start_date", run.start_date),
        "due_date": update_data.get("due_date", run.due_date),
    }
    validate_schedule(**merged)

    changes = {}
    for field, value in update_data.items():
        old_value = getattr(run, field)
        if old_value != value:
            changes[field] = {
                "old": str(old_value) if old_value is not None else None,
                "new": str(value) if value is not None else None,
            }
            setattr(run, field, value)

    if changes:
        create_audit_log(
            db=db,
            entity_type=ENTITY_TYPE,
            entity_id=run.run_id,
            action="UPDATE",
            user_id=acting_user_id,
            changes=changes
        )
    db.commit()
    db.refresh(run)
    return run


def replace_questions(
    db: Session,
    run_id: int,
    questions: Sequence[ComplianceQuestionCreate],
    acting_user_id: int
) -> ComplianceRun:
    """Replace the full ordered question list of a draft run."""
    run = get_run(db, run_id)
    _require_draft(run, "edit questions of")
    built = _build_questions(questions)

    run.questions.clear()
    # Old rows must be gone before new ones reuse their order_index
    db.flush()
    run.questions.extend(built)

    create_audit_log(
        db=db,
        entity_type=ENTITY_TYPE,
        entity_id=run.run_id,
        action="REPLACE_QUESTIONS",
        user_id=acting_user_id,
        changes={"questions": len(built)}
    )
    db.commit()
    db.refresh(run)
    return run


def replace_departments(
    db: Session,
    run_id: int,
    department_ids: Iterable[int],
    acting_user_id: int
) -> ComplianceRun:
    """Replace the department targets of a draft run."""
    run = get_run(db, run_id)
    _require_draft(run, "edit departments of")
    ids = _unique_department_ids(department_ids)
    old_ids = sorted(run.department_ids)

    run.departments.clear()
    db.flush()
    run.departments.extend(ComplianceRunDepartment(department_id=d) for d in ids)

    create_audit_log(
        db=db,
        entity_type=ENTITY_TYPE,
        entity_id=run.run_id,
        action="REPLACE_DEPARTMENTS",
        user_id=acting_user_id,
        changes={"department_ids": {"old": old_ids, "new": sorted(ids)}}
    )
    db.commit()
    db.refresh(run)
    return run


def delete_run(db: Session, run_id: int, acting_user_id: int) -> None:
    """Delete a draft run together with its questions and targets."""
    run = get_run(db, run_id)
    _require_draft(run, "delete")

    create_audit_log(
        db=db,
        entity_type=ENTITY_TYPE,
        entity_id=run.run_id,
        action="DELETE",
        user_id=acting_user_id,
        changes={"title": run.title}
    )
    db.delete(run)
    db.commit()
    logger.info("Deleted draft compliance run %s", run_id)


# ============================================================================
# Completion and expiry
# ============================================================================

def close_run(db: Session, run_id: int, acting_user_id: int) -> ComplianceRun:
    """Explicitly complete an active run, whatever its pending surveys."""
    run = get_run(db, run_id)
    if run.status != RunStatus.ACTIVE.value:
        raise StateConflictError(f"Only active runs can be closed (run is '{run.status}')")

    if not transition_status(
        db, run_id, RunStatus.ACTIVE, RunStatus.COMPLETED,
        completed_at=utc_now(), closed_by=acting_user_id
    ):
        db.rollback()
        raise StateConflictError("Compliance run changed status while closing; reload and retry")

    create_audit_log(
        db=db,
        entity_type=ENTITY_TYPE,
        entity_id=run_id,
        action="CLOSE",
        user_id=acting_user_id,
        changes={"status": {"old": RunStatus.ACTIVE.value, "new": RunStatus.COMPLETED.value}}
    )
    db.commit()
    db.refresh(run)
    return run


def _has_pending_recipients(db: Session, run_id: int) -> bool:
    return db.query(exists().where(and_(
        ComplianceRecipient.run_id == run_id,
        ComplianceRecipient.survey_completed == False  # noqa: E712
    ))).scalar()


def complete_run_if_done(db: Session, run: ComplianceRun, acting_user_id: Optional[int] = None) -> bool:
    """Complete an active run once every recipient has submitted.

    Runs inside the caller's transaction; returns True if this call made the
    transition.
    """
    if not run.recipients or _has_pending_recipients(db, run.run_id):
        return False
    if not transition_status(db, run.run_id, RunStatus.ACTIVE, RunStatus.COMPLETED, completed_at=utc_now()):
        return False
    create_audit_log(
        db=db,
        entity_type=ENTITY_TYPE,
        entity_id=run.run_id,
        action="AUTO_COMPLETE",
        user_id=acting_user_id,
        changes={"status": {"old": RunStatus.ACTIVE.value, "new": RunStatus.COMPLETED.value}}
    )
    logger.info("Compliance run %s completed: all surveys submitted", run.run_id)
    return True


def expire_overdue_runs(db: Session, today: Optional[date] = None) -> Tuple[List[int], List[int]]:
    """Periodic sweep over active runs whose due date has passed.

    Runs with incomplete recipients become expired; runs whose recipients
    all submitted become completed. Only run status is written.

    Returns:
        (expired_run_ids, completed_run_ids)
    """
    today = today or utc_today()
    overdue_ids = [
        run_id for (run_id,) in db.query(ComplianceRun.run_id).filter(
            ComplianceRun.status == RunStatus.ACTIVE.value,
            ComplianceRun.due_date < today
        ).order_by(ComplianceRun.run_id).all()
    ]

    expired, completed = [], []
    for run_id in overdue_ids:
        if _has_pending_recipients(db, run_id):
            if transition_status(db, run_id, RunStatus.ACTIVE, RunStatus.EXPIRED, expired_at=utc_now()):
                expired.append(run_id)
                action, new_status = "EXPIRE", RunStatus.EXPIRED
            else:
                continue
        else:
            if transition_status(db, run_id, RunStatus.ACTIVE, RunStatus.COMPLETED, completed_at=utc_now()):
                completed.append(run_id)
                action, new_status = "AUTO_COMPLETE", RunStatus.COMPLETED
            else:
                continue
        create_audit_log(
            db=db,
            entity_type=ENTITY_TYPE,
            entity_id=run_id,
            action=action,
            user_id=None,
            changes={"status": {"old": RunStatus.ACTIVE.value, "new": new_status.value}}
        )
        db.commit()

    if expired or completed:
        logger.info("Expiry sweep: expired=%s completed=%s", expired, completed)
    return expired, completed
