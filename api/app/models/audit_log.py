"""Audit log model for tracking changes."""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.models.base import Base
from app.core.time import utc_now


class AuditLog(Base):
    """Audit log table for tracking compliance run changes."""
    __tablename__ = "audit_logs"

    log_id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)  # e.g., "ComplianceRun"
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE, ACTIVATE, SUBMIT, ...
    # Directory user id; None for system actions (sweeps)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    changes: Mapped[dict] = mapped_column(JSON, nullable=True)  # JSON of what changed
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index('ix_audit_logs_entity', 'entity_type', 'entity_id'),
    )
