"""Compliance survey schemas."""
from typing import Optional, List
from datetime import date, datetime
from pydantic import BaseModel, Field

from app.models.compliance import RunFrequency, RunStatus, QuestionType


# ============================================================================
# QUESTION SCHEMAS
# ============================================================================

class ComplianceQuestionCreate(BaseModel):
    """Question definition; order follows its position in the list."""
    question_text: str
    question_type: QuestionType
    is_required: bool = True
    options: Optional[List[str]] = None
    max_score: Optional[int] = None


class ComplianceQuestionResponse(BaseModel):
    """Response schema for a run question."""
    question_id: int
    order_index: int
    question_text: str
    question_type: QuestionType
    is_required: bool
    options: Optional[List[str]] = None
    max_score: Optional[int] = None

    class Config:
        from_attributes = True


class QuestionsReplace(BaseModel):
    questions: List[ComplianceQuestionCreate]


class DepartmentsReplace(BaseModel):
    department_ids: List[int]


# ============================================================================
# RUN SCHEMAS
# ============================================================================

class ComplianceRunBase(BaseModel):
    """Base schema for a compliance run."""
    title: str
    description: Optional[str] = None
    frequency: RunFrequency = RunFrequency.ONCE
    recurring_day: Optional[int] = None
    start_date: date
    due_date: date


class ComplianceRunCreate(ComplianceRunBase):
    """Create schema; questions and targets may also be set later while in draft."""
    questions: List[ComplianceQuestionCreate] = Field(default_factory=list)
    department_ids: List[int] = Field(default_factory=list)


class ComplianceRunUpdate(BaseModel):
    """Update schema for a draft run."""
    title: Optional[str] = None
    description: Optional[str] = None
    frequency: Optional[RunFrequency] = None
    recurring_day: Optional[int] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None


class ComplianceRunListItem(BaseModel):
    """Run summary with recipient counts."""
    run_id: int
    title: str
    frequency: RunFrequency
    is_recurring: bool
    status: RunStatus
    start_date: date
    due_date: date
    next_due_date: Optional[date] = None
    parent_run_id: Optional[int] = None
    created_at: datetime
    total_recipients: int = 0
    completed_recipients: int = 0
    completion_rate: float = 0.0


class ComplianceRunResponse(ComplianceRunBase):
    """Response schema for a compliance run."""
    run_id: int
    is_recurring: bool
    status: RunStatus
    next_due_date: Optional[date] = None
    parent_run_id: Optional[int] = None
    created_by: int
    created_at: datetime
    updated_at: datetime
    activated_at: Optional[datetime] = None
    activated_by: Optional[int] = None
    completed_at: Optional[datetime] = None
    closed_by: Optional[int] = None
    expired_at: Optional[datetime] = None
    questions: List[ComplianceQuestionResponse] = []
    department_ids: List[int] = []

    class Config:
        from_attributes = True


# ============================================================================
# RECIPIENT / ACTIVATION SCHEMAS
# ============================================================================

class ComplianceRecipientResponse(BaseModel):
    """Recipient status; the access token is never exposed here."""
    recipient_id: int
    user_id: int
    department_id: int
    department_name: Optional[str] = None
    respondent_name: Optional[str] = None
    respondent_email: Optional[str] = None
    email_sent: bool
    email_sent_at: Optional[datetime] = None
    email_attempts: int
    last_email_error: Optional[str] = None
    survey_completed: bool
    survey_completed_at: Optional[datetime] = None


class DispatchSummaryResponse(BaseModel):
    attempted: int
    delivered: int
    failed: int


class ActivationResponse(BaseModel):
    run: ComplianceRunResponse
    recipients: List[ComplianceRecipientResponse]
    notifications: DispatchSummaryResponse


class RetryNotificationsRequest(BaseModel):
    """Limit a retry to specific recipients; all unsent recipients otherwise."""
    recipient_ids: Optional[List[int]] = None


# ============================================================================
# STATISTICS / RESPONSES SCHEMAS
# ============================================================================

class RunStatisticsResponse(BaseModel):
    run_id: int
    total_recipients: int
    completed_surveys: int
    pending_surveys: int
    completion_rate: float
    completion_rate_display: float


class DepartmentRecipientStatus(BaseModel):
    recipient_id: int
    user_id: int
    respondent_name: str
    survey_completed: bool
    survey_completed_at: Optional[datetime] = None


class DepartmentStatisticsResponse(BaseModel):
    department_id: int
    department_name: str
    recipient_count: int
    completed: int
    completion_rate: float
    completion_rate_display: float
    recipients: List[DepartmentRecipientStatus]


class AnswerResponse(BaseModel):
    question_id: int
    order_index: int
    question_text: str
    question_type: QuestionType
    answer: str
    score: Optional[int] = None
    comment: Optional[str] = None
    submitted_at: datetime


class RespondentResponses(BaseModel):
    recipient_id: int
    user_id: int
    respondent_name: str
    respondent_email: str
    survey_completed: bool
    survey_completed_at: Optional[datetime] = None
    answers: List[AnswerResponse]


class DepartmentResponses(BaseModel):
    department_id: int
    department_name: str
    respondents: List[RespondentResponses]


# ============================================================================
# SCHEDULE / SWEEP SCHEMAS
# ============================================================================

class NextDueDateResponse(BaseModel):
    frequency: RunFrequency
    recurring_day: Optional[int] = None
    from_date: date
    next_due_date: date


class ExpirySweepResponse(BaseModel):
    expired_run_ids: List[int]
    completed_run_ids: List[int]


class RecurrenceFailure(BaseModel):
    run_id: int
    error: str


class RecurrenceSweepResponse(BaseModel):
    created_run_ids: List[int]
    failures: List[RecurrenceFailure]


# ============================================================================
# SURVEY-TAKING SCHEMAS (token-addressed)
# ============================================================================

class SurveyQuestion(BaseModel):
    question_id: int
    order_index: int
    question_text: str
    question_type: QuestionType
    is_required: bool
    options: Optional[List[str]] = None
    max_score: Optional[int] = None
    answer: Optional[str] = None
    comment: Optional[str] = None
    comment_required: bool = False


class SurveySessionState(BaseModel):
    """Where the respondent is in the survey."""
    state: str
    current_index: Optional[int] = None
    missing_question_ids: List[int]


class SurveyResponse(BaseModel):
    """Survey as shown to the respondent."""
    run_title: str
    run_description: Optional[str] = None
    due_date: date
    department_name: str
    questions: List[SurveyQuestion]
    session: SurveySessionState


class SurveyAnswerRequest(BaseModel):
    answer: str
    comment: Optional[str] = None


class SurveySubmitAnswer(SurveyAnswerRequest):
    question_id: int


class SurveySubmitRequest(BaseModel):
    """Optional final batch of answers, saved together with the submission."""
    responses: List[SurveySubmitAnswer] = Field(default_factory=list)


class SurveySubmitResponse(BaseModel):
    survey_completed: bool
    survey_completed_at: datetime
    run_status: RunStatus
