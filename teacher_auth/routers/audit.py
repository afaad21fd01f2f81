from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from teacher_auth.core.database import get_db
from teacher_auth.schemas.audit import AuditLogRead
from teacher_auth.services.audit import MAX_PAGE_SIZE, list_audit_logs

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=List[AuditLogRead])
def get_audit_logs(
    user_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    return list_audit_logs(db, user_id=user_id, page=page, page_size=page_size)
