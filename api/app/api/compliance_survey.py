"""Survey-taking routes, addressed by the recipient's access token.

These routes need no acting identity: possession of the token is the
credential. Every failure to find an open survey looks the same to the
caller.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core import survey_responses
from app.core.database import get_db
from app.core.deps import get_directory
from app.core.survey_session import SurveySession, needs_comment
from app.models.compliance import RunStatus
from app.services.directory import DepartmentDirectory
from app.schemas.compliance import (
    SurveyResponse,
    SurveyQuestion,
    SurveySessionState,
    SurveyAnswerRequest,
    SurveySubmitRequest,
    SurveySubmitResponse,
)

router = APIRouter()


def _build_session_state(session: SurveySession) -> SurveySessionState:
    return SurveySessionState(
        state=session.state.name,
        current_index=session.current_index,
        missing_question_ids=session.missing_question_ids,
    )


@router.get("/{token}", response_model=SurveyResponse)
def get_survey(
    token: str,
    db: Session = Depends(get_db),
    directory: DepartmentDirectory = Depends(get_directory)
):
    """Survey questions with any answers saved so far."""
    view = survey_responses.load_survey(db, token, directory)
    session = view.session

    questions = []
    for spec, question in zip(session.questions, view.run.questions):
        saved = session.answers.get(spec.question_id)
        questions.append(SurveyQuestion(
            question_id=question.question_id,
            order_index=question.order_index,
            question_text=question.question_text,
            question_type=question.question_type,
            is_required=question.is_required,
            options=question.options,
            max_score=question.max_score,
            answer=saved.answer if saved else None,
            comment=saved.comment if saved else None,
            comment_required=needs_comment(spec, saved),
        ))

    return SurveyResponse(
        run_title=view.run.title,
        run_description=view.run.description,
        due_date=view.run.due_date,
        department_name=view.department_name,
        questions=questions,
        session=_build_session_state(session),
    )


@router.put("/{token}/answers/{question_id}", response_model=SurveySessionState)
def save_answer(
    token: str,
    question_id: int,
    payload: SurveyAnswerRequest,
    db: Session = Depends(get_db)
):
    """Save or overwrite one answer; returns where the survey goes next."""
    _response, session = survey_responses.save_answer(
        db, token, question_id, payload.answer, payload.comment
    )
    return _build_session_state(session)


@router.post("/{token}/submit", response_model=SurveySubmitResponse)
def submit_survey(
    token: str,
    payload: SurveySubmitRequest = SurveySubmitRequest(),
    db: Session = Depends(get_db)
):
    """Submit the survey. Answers in the body are saved first, atomically."""
    recipient = survey_responses.submit_survey(
        db, token, [(r.question_id, r.answer, r.comment) for r in payload.responses]
    )
    return SurveySubmitResponse(
        survey_completed=recipient.survey_completed,
        survey_completed_at=recipient.survey_completed_at,
        run_status=RunStatus(recipient.run.status),
    )
