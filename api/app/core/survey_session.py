"""Answer-taking state machine for a single survey recipient.

A session moves through NotStarted -> Answering(i) -> [CommentPending(i)] ->
Answering(i+1) -> ... -> ReadyToSubmit -> Submitted. Every transition is a
plain function returning a new `SurveySession`; nothing here touches the
database, so the same rules serve the HTTP layer and headless clients.

A yes/no question answered "false" needs a justification comment. Until one
is given the session sits in CommentPending(i); a required question cannot
be left in that state, an optional one can.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from app.core.errors import (
    IncompleteSurveyError,
    StateConflictError,
    SurveySessionClosed,
    ValidationError,
)
from app.models.compliance import QuestionType

YES = "true"
NO = "false"


# ============================================================================
# Session states
# ============================================================================

@dataclass(frozen=True)
class NotStarted:
    name = "not_started"


@dataclass(frozen=True)
class Answering:
    index: int
    name = "answering"


@dataclass(frozen=True)
class CommentPending:
    index: int
    name = "comment_pending"


@dataclass(frozen=True)
class ReadyToSubmit:
    name = "ready_to_submit"


@dataclass(frozen=True)
class Submitted:
    name = "submitted"


SessionState = Union[NotStarted, Answering, CommentPending, ReadyToSubmit, Submitted]


# ============================================================================
# Questions and answers
# ============================================================================

@dataclass(frozen=True)
class QuestionSpec:
    """The parts of a question the session needs to validate answers."""
    question_id: int
    question_type: QuestionType
    is_required: bool = True
    options: Tuple[str, ...] = ()
    max_score: Optional[int] = None

    @classmethod
    def from_model(cls, question) -> "QuestionSpec":
        return cls(
            question_id=question.question_id,
            question_type=QuestionType(question.question_type),
            is_required=question.is_required,
            options=tuple(question.options or ()),
            max_score=question.max_score,
        )


@dataclass(frozen=True)
class Answer:
    answer: str
    comment: Optional[str] = None


def _clean_comment(comment: Optional[str]) -> Optional[str]:
    if comment is None:
        return None
    comment = comment.strip()
    return comment or None


def validate_answer(question: QuestionSpec, answer: Optional[str], comment: Optional[str] = None) -> Answer:
    """Check a raw answer against the question type and normalize it.

    - yesno: "true" / "false" (case-insensitive)
    - score: integer between 1 and max_score
    - multiple: exactly one of the question's options
    - text: any non-blank text
    """
    if answer is None or not str(answer).strip():
        raise ValidationError("An answer is required", fields=["answer"])
    raw = str(answer).strip()
    qtype = question.question_type

    if qtype == QuestionType.YESNO:
        value = raw.lower()
        if value not in (YES, NO):
            raise ValidationError("Yes/no answers must be 'true' or 'false'", fields=["answer"])
    elif qtype == QuestionType.SCORE:
        try:
            score = int(raw)
        except ValueError:
            raise ValidationError("Score answers must be whole numbers", fields=["answer"])
        upper = question.max_score or 0
        if not 1 <= score <= upper:
            raise ValidationError(f"Score must be between 1 and {upper}", fields=["answer"])
        value = str(score)
    elif qtype == QuestionType.MULTIPLE:
        if raw not in question.options:
            raise ValidationError("Answer must be one of the question's options", fields=["answer"])
        value = raw
    else:
        value = raw

    return Answer(answer=value, comment=_clean_comment(comment))


def needs_comment(question: QuestionSpec, answer: Optional[Answer]) -> bool:
    """True when a yes/no answer of "false" still lacks its justification."""
    return (
        answer is not None
        and question.question_type == QuestionType.YESNO
        and answer.answer == NO
        and not answer.comment
    )


def is_complete(question: QuestionSpec, answer: Optional[Answer]) -> bool:
    return answer is not None and not needs_comment(question, answer)


def missing_required(questions: Sequence[QuestionSpec], answers: Mapping[int, Answer]) -> List[int]:
    """Ids of required questions without a complete answer, in question order."""
    return [
        q.question_id for q in questions
        if q.is_required and not is_complete(q, answers.get(q.question_id))
    ]


# ============================================================================
# Session
# ============================================================================

@dataclass(frozen=True)
class SurveySession:
    questions: Tuple[QuestionSpec, ...]
    state: SessionState = NotStarted()
    answers: Dict[int, Answer] = field(default_factory=dict)

    @classmethod
    def restore(
        cls,
        questions: Sequence[QuestionSpec],
        answers: Optional[Mapping[int, Answer]] = None,
        submitted: bool = False,
    ) -> "SurveySession":
        """Rebuild a session from persisted responses.

        Resumes at the first incomplete required question, or ReadyToSubmit
        when nothing required is missing.
        """
        session = cls(questions=tuple(questions), answers=dict(answers or {}))
        if submitted:
            return replace(session, state=Submitted())
        if not session.answers:
            return session
        return replace(session, state=session._resume_state())

    @property
    def is_submitted(self) -> bool:
        return isinstance(self.state, Submitted)

    @property
    def current_index(self) -> Optional[int]:
        return getattr(self.state, "index", None)

    @property
    def missing_question_ids(self) -> List[int]:
        return missing_required(self.questions, self.answers)

    def index_of(self, question_id: int) -> int:
        for i, question in enumerate(self.questions):
            if question.question_id == question_id:
                return i
        raise ValidationError(f"Question {question_id} is not part of this survey", fields=["question_id"])

    def _state_at(self, index: int) -> SessionState:
        question = self.questions[index]
        if needs_comment(question, self.answers.get(question.question_id)):
            return CommentPending(index)
        return Answering(index)

    def _resume_state(self) -> SessionState:
        missing = self.missing_question_ids
        if not missing:
            return ReadyToSubmit()
        return self._state_at(self.index_of(missing[0]))

    def _after(self, index: int) -> SessionState:
        if index + 1 < len(self.questions):
            return Answering(index + 1)
        return self._resume_state()


def _ensure_open(session: SurveySession) -> None:
    if session.is_submitted:
        raise SurveySessionClosed()


def _current_index(session: SurveySession) -> int:
    index = session.current_index
    if index is None:
        raise StateConflictError(f"No question is open in state '{session.state.name}'")
    return index


def begin(session: SurveySession) -> SurveySession:
    """Open the first question. Already started sessions are returned as-is."""
    _ensure_open(session)
    if not isinstance(session.state, NotStarted):
        return session
    if not session.questions:
        return replace(session, state=ReadyToSubmit())
    return replace(session, state=session._state_at(0))


def answer(session: SurveySession, value: Optional[str], comment: Optional[str] = None) -> SurveySession:
    """Record (or overwrite) the answer to the open question."""
    _ensure_open(session)
    index = _current_index(session)
    question = session.questions[index]
    recorded = validate_answer(question, value, comment)

    answers = dict(session.answers)
    answers[question.question_id] = recorded
    updated = replace(session, answers=answers)

    if needs_comment(question, recorded):
        return replace(updated, state=CommentPending(index))
    return replace(updated, state=updated._after(index))


def add_comment(session: SurveySession, comment: Optional[str]) -> SurveySession:
    """Attach a comment to the open question's answer."""
    _ensure_open(session)
    index = _current_index(session)
    question = session.questions[index]
    existing = session.answers.get(question.question_id)
    if existing is None:
        raise StateConflictError("Answer the question before adding a comment")

    cleaned = _clean_comment(comment)
    if cleaned is None and isinstance(session.state, CommentPending):
        raise ValidationError("A comment is required for a 'false' answer", fields=["comment"])

    answers = dict(session.answers)
    answers[question.question_id] = replace(existing, comment=cleaned)
    updated = replace(session, answers=answers)
    if isinstance(session.state, CommentPending):
        return replace(updated, state=updated._after(index))
    return updated


def advance(session: SurveySession) -> SurveySession:
    """Move past the open question without changing its answer."""
    _ensure_open(session)
    if isinstance(session.state, NotStarted):
        return begin(session)
    index = _current_index(session)
    question = session.questions[index]
    if isinstance(session.state, CommentPending) and question.is_required:
        raise ValidationError("A comment is required for a 'false' answer", fields=["comment"])
    return replace(session, state=session._after(index))


def go_to(session: SurveySession, index: int) -> SurveySession:
    """Jump to any question; allowed in every state before submission."""
    _ensure_open(session)
    if not 0 <= index < len(session.questions):
        raise ValidationError(f"Question index {index} is out of range", fields=["index"])
    return replace(session, state=session._state_at(index))


def submit(session: SurveySession) -> SurveySession:
    """Freeze the session. Every required question needs a complete answer."""
    _ensure_open(session)
    missing = session.missing_question_ids
    if missing:
        raise IncompleteSurveyError(missing)
    return replace(session, state=Submitted())
