"""Compliance survey entities."""
import enum
from datetime import datetime, date
from typing import Optional, List
from sqlalchemy import (
    String, Integer, Text, Boolean, ForeignKey, DateTime, Date,
    UniqueConstraint, Index, JSON
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base
from app.core.time import utc_now


# ============================================================================
# Enums
# ============================================================================

class RunFrequency(str, enum.Enum):
    """How often a compliance run repeats."""
    ONCE = "once"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    BIMONTHLY = "bimonthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class RunStatus(str, enum.Enum):
    """Compliance run lifecycle: draft -> active -> completed | expired."""
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class QuestionType(str, enum.Enum):
    """Answer format of a survey question."""
    YESNO = "yesno"
    SCORE = "score"
    MULTIPLE = "multiple"
    TEXT = "text"


# ============================================================================
# ComplianceRun - a compliance check definition
# ============================================================================

class ComplianceRun(Base):
    """
    A compliance survey definition, possibly recurring.
    Questions and department targets are editable only while in draft.
    """
    __tablename__ = "compliance_runs"

    run_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Schedule
    frequency: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RunFrequency.ONCE.value
    )
    recurring_day: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True,
        comment="Day of period (1-31) for monthly/bimonthly/quarterly runs"
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_due_date: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True,
        comment="Due date of the next instance; set at activation for recurring runs"
    )

    # Recurrence chain: the run this instance was regenerated from
    parent_run_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("compliance_runs.run_id", ondelete="SET NULL"),
        nullable=True, unique=True
    )

    # Workflow status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RunStatus.DRAFT.value
    )

    # Lifecycle tracking (user ids come from the external directory)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    activated_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    closed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index('ix_compliance_runs_status', 'status'),
        Index('ix_compliance_runs_due_date', 'due_date'),
    )

    # Relationships
    questions: Mapped[List["ComplianceQuestion"]] = relationship(
        "ComplianceQuestion", back_populates="run", cascade="all, delete-orphan",
        order_by="ComplianceQuestion.order_index"
    )
    departments: Mapped[List["ComplianceRunDepartment"]] = relationship(
        "ComplianceRunDepartment", back_populates="run", cascade="all, delete-orphan"
    )
    recipients: Mapped[List["ComplianceRecipient"]] = relationship(
        "ComplianceRecipient", back_populates="run", cascade="all, delete-orphan"
    )
    parent_run: Mapped[Optional["ComplianceRun"]] = relationship(
        "ComplianceRun", remote_side="ComplianceRun.run_id"
    )

    @property
    def is_recurring(self) -> bool:
        return self.frequency != RunFrequency.ONCE.value

    @property
    def department_ids(self) -> List[int]:
        return [d.department_id for d in self.departments]


# ============================================================================
# ComplianceQuestion - one question of a run, ordered
# ============================================================================

class ComplianceQuestion(Base):
    """Survey question belonging to exactly one run."""
    __tablename__ = "compliance_questions"

    question_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("compliance_runs.run_id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Multiple choice options (ordered), only for type=multiple
    options: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # Upper bound of the score scale, only for type=score
    max_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint('run_id', 'order_index', name='uq_question_run_order'),
    )

    run: Mapped["ComplianceRun"] = relationship(
        "ComplianceRun", back_populates="questions"
    )


# ============================================================================
# ComplianceRunDepartment - department targets selected at creation
# ============================================================================

class ComplianceRunDepartment(Base):
    """Department targeted by a run. Resolved to a head user at activation."""
    __tablename__ = "compliance_run_departments"

    target_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("compliance_runs.run_id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    # Weak reference into the external directory
    department_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint('run_id', 'department_id', name='uq_run_department'),
    )

    run: Mapped["ComplianceRun"] = relationship(
        "ComplianceRun", back_populates="departments"
    )


# ============================================================================
# ComplianceRecipient - one department head's survey assignment
# ============================================================================

class ComplianceRecipient(Base):
    """
    Survey assignment for one department within a run.
    One recipient per department per run; addressed by an opaque token.
    """
    __tablename__ = "compliance_recipients"

    recipient_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("compliance_runs.run_id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    # Weak references into the external directory
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    department_id: Mapped[int] = mapped_column(Integer, nullable=False)

    access_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    # Notification bookkeeping
    email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    email_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_email_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Completion (false -> true exactly once)
    survey_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    survey_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Optimistic concurrency counter; bumped on every write for this recipient
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint('run_id', 'department_id', name='uq_recipient_run_department'),
        Index('ix_compliance_recipients_completed', 'survey_completed'),
    )

    __mapper_args__ = {"version_id_col": version}

    run: Mapped["ComplianceRun"] = relationship(
        "ComplianceRun", back_populates="recipients"
    )
    responses: Mapped[List["ComplianceResponse"]] = relationship(
        "ComplianceResponse", back_populates="recipient", cascade="all, delete-orphan"
    )


# ============================================================================
# ComplianceResponse - latest answer per question per recipient
# ============================================================================

class ComplianceResponse(Base):
    """
    Answer to one question by one recipient. Upserted until the survey
    is submitted, frozen afterwards.
    """
    __tablename__ = "compliance_responses"

    response_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("compliance_recipients.recipient_id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    question_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("compliance_questions.question_id", ondelete="CASCADE"),
        nullable=False
    )

    # String-encoded; meaning depends on the question type
    answer: Mapped[str] = mapped_column(Text, nullable=False)

    # Required when a yes/no question is answered "false"
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint('recipient_id', 'question_id', name='uq_response_recipient_question'),
    )

    recipient: Mapped["ComplianceRecipient"] = relationship(
        "ComplianceRecipient", back_populates="responses"
    )
    question: Mapped["ComplianceQuestion"] = relationship("ComplianceQuestion")
