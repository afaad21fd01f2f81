from __future__ import annotations

import logging
from typing import List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from teacher_auth.core.database import SessionLocal
from teacher_auth.models.audit_log import AuditLog
from teacher_auth.services.errors import AuditWriteError

logger = logging.getLogger(__name__)

TEACHER_REGISTERED = "Teacher Registered"
PIN_VALIDATION_FAILED = "PIN Validation Failed"
PIN_VALIDATION_SUCCESSFUL = "PIN Validation Successful"
ACCOUNT_LOCKED = "Account Locked"
PIN_RESET = "PIN Reset"
ACCOUNT_UNLOCKED = "Account Unlocked"
TEACHER_REGISTRATION_FAILED = "Teacher Registration Failed"
PIN_RESET_FAILED = "PIN Reset Failed"
ACCOUNT_UNLOCK_FAILED = "Account Unlock Failed"

# Subject recorded for events that have no teacher record yet.
ANONYMOUS_USER_ID = "anonymous"

MAX_PAGE_SIZE = 200


class AuditSink(Protocol):
    def log(self, user_id: str, action: str, details: str, document_id: Optional[str] = None) -> None:
        """Record a security-relevant event; must complete before the caller returns."""


class DatabaseAuditSink:
    """Append-only audit sink writing one ``AuditLog`` row per event."""

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    def log(self, user_id: str, action: str, details: str, document_id: Optional[str] = None) -> None:
        db: Session = self._session_factory()
        try:
            db.add(AuditLog(user_id=user_id, action=action, details=details, document_id=document_id))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Error creating audit log for user %s", user_id)
            raise AuditWriteError(f"Failed to write audit entry '{action}'") from exc
        finally:
            db.close()

        logger.info(
            "Audit log created: %s by user %s",
            action,
            user_id,
            extra={"action": action, "user_id": user_id},
        )


def list_audit_logs(
    db: Session,
    *,
    user_id: Optional[str] = None,
    page: int = 1,
    page_size: int = 50,
) -> List[AuditLog]:
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

    query = db.query(AuditLog)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)

    return (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
