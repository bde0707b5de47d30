"""Domain errors raised by the compliance survey engine.

Core modules raise these; the HTTP layer (app.main exception handlers)
translates them into responses. None of them leave partially persisted
state behind: every multi-row mutation rolls back before raising.
"""
from typing import Iterable, List, Optional


class ComplianceError(Exception):
    """Base class for every compliance engine error."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ComplianceError):
    """Malformed input. Always recoverable; carries the offending field(s)."""

    def __init__(self, message: str, fields: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.fields: List[str] = list(fields or [])


class ScheduleError(ValidationError):
    """Bad recurrence configuration, rejected at run-definition time."""


class InvalidScheduleError(ScheduleError):
    """A due date cannot be computed from the given recurrence rule."""


class StateConflictError(ComplianceError):
    """Operation not allowed in the current state of a run or survey."""


class NotFoundError(ComplianceError):
    """Unknown run or record."""


class SurveyUnavailable(NotFoundError):
    """Access token does not map to an open survey.

    Deliberately does not say whether the token is unknown, already used,
    or belongs to an expired run.
    """

    def __init__(self, message: str = "Survey not available"):
        super().__init__(message)


class UnassignedDepartmentError(StateConflictError):
    """A target department has no head to receive the survey."""

    def __init__(self, department_id: int, department_name: Optional[str] = None):
        label = department_name or f"#{department_id}"
        super().__init__(f"Department {label} has no head assigned")
        self.department_id = department_id
        self.department_name = department_name


class DirectoryUnavailableError(ComplianceError):
    """The department directory could not be queried."""


class IncompleteSurveyError(ComplianceError):
    """Submit attempted while required questions lack a complete answer."""

    def __init__(self, missing_question_ids: Iterable[int]):
        self.missing_question_ids: List[int] = list(missing_question_ids)
        super().__init__(
            "Required questions are unanswered: "
            + ", ".join(str(q) for q in self.missing_question_ids)
        )


class SurveySessionClosed(StateConflictError):
    """The survey has been submitted; its responses are frozen."""

    def __init__(self, message: str = "Survey has already been submitted"):
        super().__init__(message)
