"""Activation fan-out: one survey recipient per target department.

Activation happens in two phases:

1. One transaction resolves every department head, flips the run from draft
   to active (compare-and-set), creates the recipients and computes the next
   due date of a recurring run. Any unassigned department or directory
   failure aborts before anything is written.
2. After commit, invitations are dispatched concurrently. Delivery failures
   are recorded per recipient and never undo the activation.
"""
import logging
import secrets
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.audit import create_audit_log
from app.core.compliance_runs import ENTITY_TYPE, get_run, transition_status, validate_for_activation
from app.core.config import settings
from app.core.errors import DirectoryUnavailableError, StateConflictError, UnassignedDepartmentError
from app.core.schedule import next_due_date
from app.core.time import utc_now
from app.models.compliance import ComplianceRecipient, ComplianceRun, RunStatus
from app.services.directory import DepartmentDirectory
from app.services.notifications import DeliveryStatus, NotificationDispatcher

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


@dataclass
class DispatchSummary:
    attempted: int = 0
    delivered: int = 0
    failed: int = 0


@dataclass
class ActivationResult:
    run: ComplianceRun
    recipients: List[ComplianceRecipient]
    notifications: DispatchSummary


def generate_access_token() -> str:
    """Opaque, unguessable survey token."""
    return secrets.token_hex(settings.SURVEY_TOKEN_BYTES)


def resolve_department_heads(
    run: ComplianceRun,
    directory: DepartmentDirectory,
    timeout: Optional[float] = None,
) -> Dict[int, int]:
    """Map each target department to its head's user id.

    Raises:
        UnassignedDepartmentError: a department has no (active) head
        DirectoryUnavailableError: the directory could not be queried
    """
    heads = {}
    for department_id in sorted(run.department_ids):
        try:
            head = directory.head_of(department_id, timeout=timeout)
        except DirectoryUnavailableError:
            raise
        except Exception as exc:
            logger.error("Directory lookup failed for department %s: %s", department_id, exc)
            raise DirectoryUnavailableError(
                f"Directory lookup failed for department {department_id}"
            ) from exc

        if head is None:
            department = directory.get_department(department_id)
            raise UnassignedDepartmentError(
                department_id, department.name if department else None
            )
        heads[department_id] = head
    return heads


def prepare_activation(
    db: Session,
    run: ComplianceRun,
    directory: DepartmentDirectory,
    acting_user_id: Optional[int],
) -> List[ComplianceRecipient]:
    """Phase one of activation, inside the caller's transaction (no commit).

    The caller rolls back on any exception.
    """
    validate_for_activation(run)
    heads = resolve_department_heads(run, directory, timeout=settings.DIRECTORY_TIMEOUT_SECONDS)

    upcoming = None
    if run.is_recurring:
        upcoming = next_due_date(run.frequency, run.recurring_day, from_date=run.due_date)

    if not transition_status(
        db, run.run_id, RunStatus.DRAFT, RunStatus.ACTIVE,
        activated_at=utc_now(), activated_by=acting_user_id, next_due_date=upcoming
    ):
        raise StateConflictError("Compliance run has already been activated")

    recipients = [
        ComplianceRecipient(
            run_id=run.run_id,
            user_id=user_id,
            department_id=department_id,
            access_token=generate_access_token(),
        )
        for department_id, user_id in heads.items()
    ]
    db.add_all(recipients)
    db.flush()

    create_audit_log(
        db=db,
        entity_type=ENTITY_TYPE,
        entity_id=run.run_id,
        action="ACTIVATE",
        user_id=acting_user_id,
        changes={
            "status": {"old": RunStatus.DRAFT.value, "new": RunStatus.ACTIVE.value},
            "recipients": len(recipients),
            "next_due_date": upcoming.isoformat() if upcoming else None,
        }
    )
    return recipients


def activate_run(
    db: Session,
    run_id: int,
    directory: DepartmentDirectory,
    dispatcher: NotificationDispatcher,
    acting_user_id: Optional[int],
) -> ActivationResult:
    """Activate a draft run and notify its recipients.

    All-or-nothing up to the commit; a second concurrent activation is
    rejected with StateConflictError either by the status compare-and-set
    or by the unique (run, department) constraint.
    """
    run = get_run(db, run_id)
    try:
        recipients = prepare_activation(db, run, directory, acting_user_id)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Concurrent activation of run %s rejected: %s", run_id, exc.orig)
        raise StateConflictError("Compliance run has already been activated") from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(run)
    logger.info("Activated compliance run %s with %d recipients", run_id, len(recipients))
    summary = dispatch_notifications(db, run, recipients, dispatcher, directory)
    return ActivationResult(run=run, recipients=recipients, notifications=summary)


def _record_delivery(db: Session, recipient_id: int, delivered: bool, error: Optional[str]) -> None:
    values = {
        "email_attempts": ComplianceRecipient.email_attempts + 1,
        "last_email_error": None if delivered else (error or "Delivery failed")[:MAX_ERROR_LENGTH],
    }
    if delivered:
        values.update({"email_sent": True, "email_sent_at": utc_now()})
    # Bulk update: delivery bookkeeping must not bump the survey version
    db.query(ComplianceRecipient).filter(
        ComplianceRecipient.recipient_id == recipient_id
    ).update(values, synchronize_session=False)


def dispatch_notifications(
    db: Session,
    run: ComplianceRun,
    recipients: Iterable[ComplianceRecipient],
    dispatcher: NotificationDispatcher,
    directory: DepartmentDirectory,
) -> DispatchSummary:
    """Send survey invitations concurrently and record each outcome."""
    timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
    summary = DispatchSummary()
    outcomes: Dict[int, Optional[str]] = {}
    jobs = []

    # Directory reads stay on this thread; the session is not shared with workers
    for recipient in recipients:
        summary.attempted += 1
        try:
            user = directory.get_user(recipient.user_id)
        except Exception as exc:
            outcomes[recipient.recipient_id] = f"Directory lookup failed: {exc}"
            continue
        if user is None or not user.email:
            outcomes[recipient.recipient_id] = "Recipient has no email address in the directory"
            continue
        jobs.append((recipient.recipient_id, user.email, settings.survey_url(recipient.access_token)))

    if jobs:
        executor = ThreadPoolExecutor(max_workers=max(1, min(settings.NOTIFICATION_MAX_WORKERS, len(jobs))))
        try:
            futures = [
                (recipient_id, executor.submit(dispatcher.send, email, url, run.due_date, timeout))
                for recipient_id, email, url in jobs
            ]
            for recipient_id, future in futures:
                try:
                    status = future.result(timeout=timeout)
                except FuturesTimeout:
                    outcomes[recipient_id] = f"Notification timed out after {timeout}s"
                except Exception as exc:
                    outcomes[recipient_id] = f"Notification failed: {exc}"
                else:
                    outcomes[recipient_id] = (
                        None if status == DeliveryStatus.DELIVERED
                        else f"Notification not delivered ({getattr(status, 'value', status)})"
                    )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    for recipient_id, error in outcomes.items():
        delivered = error is None
        if delivered:
            summary.delivered += 1
        else:
            summary.failed += 1
            logger.warning("Survey notification for recipient %s failed: %s", recipient_id, error)
        _record_delivery(db, recipient_id, delivered, error)

    db.commit()
    db.expire_all()
    logger.info(
        "Dispatched notifications for run %s: %d delivered, %d failed",
        run.run_id, summary.delivered, summary.failed
    )
    return summary


def retry_notifications(
    db: Session,
    run_id: int,
    dispatcher: NotificationDispatcher,
    directory: DepartmentDirectory,
    recipient_ids: Optional[Iterable[int]] = None,
) -> DispatchSummary:
    """Re-send invitations to recipients that never got one and have not submitted."""
    run = get_run(db, run_id)
    if run.status != RunStatus.ACTIVE.value:
        raise StateConflictError(f"Notifications can only be retried for active runs (run is '{run.status}')")

    query = db.query(ComplianceRecipient).filter(
        ComplianceRecipient.run_id == run_id,
        ComplianceRecipient.email_sent == False,  # noqa: E712
        ComplianceRecipient.survey_completed == False  # noqa: E712
    )
    if recipient_ids is not None:
        query = query.filter(ComplianceRecipient.recipient_id.in_(list(recipient_ids)))
    pending = query.order_by(ComplianceRecipient.recipient_id).all()

    if not pending:
        return DispatchSummary()
    return dispatch_notifications(db, run, pending, dispatcher, directory)
