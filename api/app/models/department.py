"""Department model for the organizational directory."""
from typing import Optional, TYPE_CHECKING
from sqlalchemy import String, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base

if TYPE_CHECKING:
    from app.models.user import User


class Department(Base):
    """Department with an optional head of department.

    Compliance surveys are addressed to the head; a department without
    one cannot be targeted by an activated run.
    """
    __tablename__ = "departments"

    department_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    head_user_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.user_id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Head of department; survey recipient"
    )

    head: Mapped[Optional["User"]] = relationship("User", foreign_keys=[head_user_id])
