"""User model (directory mirror used to resolve department heads)."""
from sqlalchemy import String, Integer, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from app.models.base import Base


class User(Base):
    """User model."""
    __tablename__ = "users"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Inactive users cannot receive surveys even if still listed as a head
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
