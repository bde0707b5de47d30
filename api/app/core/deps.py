"""FastAPI dependencies shared by the compliance routers."""
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.services.directory import DatabaseDirectory, DepartmentDirectory
from app.services.notifications import LoggingNotificationDispatcher, NotificationDispatcher


def get_current_user_id(x_user_id: str = Header(None)) -> int:
    """Acting identity, authenticated upstream and forwarded in X-User-Id."""
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header"
        )
    if user_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header"
        )
    return user_id


def get_directory(db: Session = Depends(get_db)) -> DepartmentDirectory:
    return DatabaseDirectory(db)


def get_dispatcher() -> NotificationDispatcher:
    return LoggingNotificationDispatcher()
