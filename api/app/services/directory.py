"""Department directory lookups.

Compliance runs target departments and address surveys to the head of each
department. The engine only ever talks to the directory through the
`DepartmentDirectory` interface so a remote HR/identity system can replace
the database-backed default without touching the fan-out logic.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import DirectoryUnavailableError
from app.models.department import Department
from app.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepartmentInfo:
    department_id: int
    name: str
    head_user_id: Optional[int]


@dataclass(frozen=True)
class UserInfo:
    user_id: int
    email: str
    full_name: str


class DepartmentDirectory(Protocol):
    """Read-only view of departments and their heads."""

    def head_of(self, department_id: int, timeout: Optional[float] = None) -> Optional[int]:
        """User id of the department head, or None when unassigned.

        Raises DirectoryUnavailableError if the directory cannot be queried.
        """
        ...

    def get_department(self, department_id: int) -> Optional[DepartmentInfo]:
        ...

    def get_user(self, user_id: int) -> Optional[UserInfo]:
        ...


class DatabaseDirectory:
    """Directory backed by the local departments/users tables."""

    def __init__(self, db: Session):
        self.db = db

    def head_of(self, department_id: int, timeout: Optional[float] = None) -> Optional[int]:
        # Local queries are bounded by the connection pool, not by `timeout`
        try:
            row = self.db.query(Department.head_user_id, User.is_active).outerjoin(
                User, User.user_id == Department.head_user_id
            ).filter(Department.department_id == department_id).first()
        except SQLAlchemyError as exc:
            logger.error("Directory lookup failed for department %s: %s", department_id, exc)
            raise DirectoryUnavailableError(
                f"Directory lookup failed for department {department_id}"
            ) from exc

        if row is None:
            return None
        head_user_id, head_active = row
        if head_user_id is None or not head_active:
            return None
        return head_user_id

    def get_department(self, department_id: int) -> Optional[DepartmentInfo]:
        department = self.db.query(Department).filter(
            Department.department_id == department_id
        ).first()
        if not department:
            return None
        return DepartmentInfo(
            department_id=department.department_id,
            name=department.name,
            head_user_id=department.head_user_id,
        )

    def get_user(self, user_id: int) -> Optional[UserInfo]:
        user = self.db.query(User).filter(User.user_id == user_id).first()
        if not user:
            return None
        return UserInfo(user_id=user.user_id, email=user.email, full_name=user.full_name)
