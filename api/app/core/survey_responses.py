"""Token-addressed survey taking, persisted.

Every write re-reads the recipient under a row lock and goes through the
`survey_session` state machine, so stored responses always passed the same
validation the session applies. Writes for one recipient are serialized by
the lock plus the recipient's version counter; different recipients never
contend.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core import survey_session
from app.core.aggregation import department_label
from app.core.audit import create_audit_log
from app.core.compliance_runs import complete_run_if_done
from app.core.errors import StateConflictError, SurveySessionClosed, SurveyUnavailable
from app.core.survey_session import Answer, QuestionSpec, SurveySession
from app.core.time import utc_now
from app.models.compliance import (
    ComplianceRecipient,
    ComplianceResponse,
    ComplianceRun,
    RunStatus,
)
from app.services.directory import DepartmentDirectory

logger = logging.getLogger(__name__)


@dataclass
class SurveyView:
    """Everything the respondent-facing page needs."""
    recipient: ComplianceRecipient
    run: ComplianceRun
    department_name: str
    session: SurveySession


def _find_recipient(db: Session, token: Optional[str], lock: bool = False) -> Optional[ComplianceRecipient]:
    if not token:
        return None
    query = db.query(ComplianceRecipient).filter(ComplianceRecipient.access_token == token)
    if lock:
        query = query.with_for_update()
    return query.first()


def resolve_token(db: Session, token: Optional[str]) -> ComplianceRecipient:
    """Recipient behind an access token, if its survey is open.

    Unknown tokens, submitted surveys and runs that are not active all raise
    the same SurveyUnavailable.
    """
    recipient = _find_recipient(db, token)
    if (
        recipient is None
        or recipient.survey_completed
        or recipient.run.status != RunStatus.ACTIVE.value
    ):
        raise SurveyUnavailable()
    return recipient


def _lock_for_write(db: Session, token: Optional[str]) -> ComplianceRecipient:
    recipient = _find_recipient(db, token, lock=True)
    if recipient is None:
        raise SurveyUnavailable()
    if recipient.survey_completed:
        raise SurveySessionClosed()
    if recipient.run.status != RunStatus.ACTIVE.value:
        raise SurveyUnavailable()
    return recipient


def _saved_responses(db: Session, recipient: ComplianceRecipient) -> Dict[int, ComplianceResponse]:
    rows = db.query(ComplianceResponse).filter(
        ComplianceResponse.recipient_id == recipient.recipient_id
    ).all()
    return {r.question_id: r for r in rows}


def _restore_session(db: Session, recipient: ComplianceRecipient) -> Tuple[SurveySession, Dict[int, ComplianceResponse]]:
    responses = _saved_responses(db, recipient)
    questions = [QuestionSpec.from_model(q) for q in recipient.run.questions]
    answers = {qid: Answer(answer=r.answer, comment=r.comment) for qid, r in responses.items()}
    session = SurveySession.restore(questions, answers, submitted=recipient.survey_completed)
    return session, responses


def _apply_answer(session: SurveySession, question_id: int, value: Optional[str], comment: Optional[str]) -> SurveySession:
    session = survey_session.go_to(session, session.index_of(question_id))
    return survey_session.answer(session, value, comment)


def _persist_answers(
    db: Session,
    recipient: ComplianceRecipient,
    session: SurveySession,
    responses: Dict[int, ComplianceResponse],
    question_ids: Sequence[int],
) -> List[ComplianceResponse]:
    """Upsert the session's answers for the given questions."""
    now = utc_now()
    written = []
    for question_id in question_ids:
        recorded = session.answers[question_id]
        response = responses.get(question_id)
        if response is None:
            response = ComplianceResponse(
                recipient_id=recipient.recipient_id,
                question_id=question_id,
            )
            db.add(response)
            responses[question_id] = response
        response.answer = recorded.answer
        response.comment = recorded.comment
        response.submitted_at = now
        written.append(response)
    # Touch the recipient so its version advances with every write
    recipient.updated_at = now
    return written


def _commit(db: Session, recipient_id: int) -> None:
    try:
        db.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.rollback()
        logger.warning("Concurrent write to survey of recipient %s rejected: %s", recipient_id, exc)
        raise StateConflictError("The survey was changed concurrently; reload and retry") from exc


def load_survey(db: Session, token: Optional[str], directory: DepartmentDirectory) -> SurveyView:
    recipient = resolve_token(db, token)
    session, _responses = _restore_session(db, recipient)
    session = survey_session.begin(session)
    return SurveyView(
        recipient=recipient,
        run=recipient.run,
        department_name=department_label(directory, recipient.department_id),
        session=session,
    )


def save_answer(
    db: Session,
    token: Optional[str],
    question_id: int,
    value: Optional[str],
    comment: Optional[str] = None,
) -> Tuple[ComplianceResponse, SurveySession]:
    """Record or overwrite one answer. Returns the stored response and the
    session positioned where the respondent should go next."""
    recipient = _lock_for_write(db, token)
    session, responses = _restore_session(db, recipient)
    session = _apply_answer(session, question_id, value, comment)

    (response,) = _persist_answers(db, recipient, session, responses, [question_id])
    _commit(db, recipient.recipient_id)
    db.refresh(response)
    return response, session


def submit_survey(
    db: Session,
    token: Optional[str],
    answers: Sequence[Tuple[int, Optional[str], Optional[str]]] = (),
) -> ComplianceRecipient:
    """Submit a survey, optionally saving a final batch of answers first.

    `answers` holds (question_id, answer, comment) tuples. The batch, the
    completion flag and the run completion check share one transaction.
    """
    recipient = _lock_for_write(db, token)
    session, responses = _restore_session(db, recipient)

    for question_id, value, comment in answers:
        session = _apply_answer(session, question_id, value, comment)
    session = survey_session.submit(session)

    _persist_answers(db, recipient, session, responses, [qid for qid, _, _ in answers])
    recipient.survey_completed = True
    recipient.survey_completed_at = utc_now()

    create_audit_log(
        db=db,
        entity_type="ComplianceRecipient",
        entity_id=recipient.recipient_id,
        action="SUBMIT",
        user_id=recipient.user_id,
        changes={"run_id": recipient.run_id, "responses": len(session.answers)}
    )

    try:
        db.flush()
    except (StaleDataError, IntegrityError) as exc:
        db.rollback()
        raise StateConflictError("The survey was changed concurrently; reload and retry") from exc

    complete_run_if_done(db, recipient.run, acting_user_id=recipient.user_id)
    _commit(db, recipient.recipient_id)
    db.refresh(recipient)
    logger.info("Survey submitted for recipient %s of run %s", recipient.recipient_id, recipient.run_id)
    return recipient
