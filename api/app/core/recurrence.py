"""Regeneration of recurring compliance runs.

When a recurring run reaches its due date, a successor run is created for
the next period with the same questions and department targets and is
activated through the normal fan-out. The predecessor keeps its own
recipients, responses and status untouched. `parent_run_id` is unique, so a
run produces at most one successor even if two sweeps overlap.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from app.core.audit import create_audit_log
from app.core.compliance_runs import ENTITY_TYPE
from app.core.errors import ComplianceError
from app.core.fanout import dispatch_notifications, prepare_activation
from app.core.schedule import next_due_date
from app.core.time import utc_today
from app.models.compliance import (
    ComplianceQuestion,
    ComplianceRun,
    ComplianceRunDepartment,
    RunFrequency,
    RunStatus,
)
from app.services.directory import DepartmentDirectory
from app.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class RecurrenceResult:
    created_run_ids: List[int] = field(default_factory=list)
    failures: List[Tuple[int, str]] = field(default_factory=list)


def find_due_recurring_runs(db: Session, today: date) -> List[ComplianceRun]:
    """Activated recurring runs due by `today` that have no successor yet."""
    successor = aliased(ComplianceRun)
    return db.query(ComplianceRun).outerjoin(
        successor, successor.parent_run_id == ComplianceRun.run_id
    ).filter(
        ComplianceRun.frequency != RunFrequency.ONCE.value,
        ComplianceRun.status != RunStatus.DRAFT.value,
        ComplianceRun.due_date <= today,
        successor.run_id.is_(None),
    ).order_by(ComplianceRun.due_date, ComplianceRun.run_id).all()


def build_successor(run: ComplianceRun) -> ComplianceRun:
    """Draft copy of `run` covering the following period."""
    upcoming = run.next_due_date or next_due_date(
        run.frequency, run.recurring_day, from_date=run.due_date
    )
    successor = ComplianceRun(
        title=run.title,
        description=run.description,
        frequency=run.frequency,
        recurring_day=run.recurring_day,
        start_date=run.due_date,
        due_date=upcoming,
        status=RunStatus.DRAFT.value,
        created_by=run.created_by,
        parent_run_id=run.run_id,
    )
    successor.questions = [
        ComplianceQuestion(
            order_index=q.order_index,
            question_text=q.question_text,
            question_type=q.question_type,
            is_required=q.is_required,
            options=list(q.options) if q.options else None,
            max_score=q.max_score,
        )
        for q in run.questions
    ]
    successor.departments = [
        ComplianceRunDepartment(department_id=d.department_id) for d in run.departments
    ]
    return successor


def regenerate_run(
    db: Session,
    run: ComplianceRun,
    directory: DepartmentDirectory,
    acting_user_id: Optional[int] = None,
):
    """Create and activate the successor of `run` in a single transaction.

    Returns (successor, recipients). On any error nothing is persisted.
    """
    try:
        successor = build_successor(run)
        db.add(successor)
        db.flush()
        create_audit_log(
            db=db,
            entity_type=ENTITY_TYPE,
            entity_id=successor.run_id,
            action="REGENERATE",
            user_id=acting_user_id,
            changes={"parent_run_id": run.run_id, "due_date": successor.due_date.isoformat()}
        )
        recipients = prepare_activation(db, successor, directory, acting_user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(successor)
    return successor, recipients


def process_recurring_runs(
    db: Session,
    directory: DepartmentDirectory,
    dispatcher: NotificationDispatcher,
    today: Optional[date] = None,
) -> RecurrenceResult:
    """Regenerate every due recurring run; one failure does not stop the rest."""
    today = today or utc_today()
    result = RecurrenceResult()

    candidate_ids = [run.run_id for run in find_due_recurring_runs(db, today)]
    for run_id in candidate_ids:
        run = db.query(ComplianceRun).filter(ComplianceRun.run_id == run_id).first()
        try:
            successor, recipients = regenerate_run(db, run, directory)
        except IntegrityError:
            logger.info("Run %s was already regenerated by another sweep", run_id)
            continue
        except ComplianceError as exc:
            logger.error("Could not regenerate compliance run %s: %s", run_id, exc.message)
            result.failures.append((run_id, exc.message))
            continue

        logger.info("Regenerated compliance run %s as run %s", run_id, successor.run_id)
        result.created_run_ids.append(successor.run_id)
        dispatch_notifications(db, successor, recipients, dispatcher, directory)

    return result
