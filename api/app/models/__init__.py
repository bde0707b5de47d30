"""Models package."""
from app.models.user import User
from app.models.department import Department
from app.models.audit_log import AuditLog
from app.models.compliance import (
    RunFrequency,
    RunStatus,
    QuestionType,
    ComplianceRun,
    ComplianceQuestion,
    ComplianceRunDepartment,
    ComplianceRecipient,
    ComplianceResponse,
)

__all__ = [
    "User",
    "Department",
    "AuditLog",
    "RunFrequency",
    "RunStatus",
    "QuestionType",
    "ComplianceRun",
    "ComplianceQuestion",
    "ComplianceRunDepartment",
    "ComplianceRecipient",
    "ComplianceResponse",
]
