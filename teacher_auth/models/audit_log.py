from sqlalchemy import Column, DateTime, Integer, String, Text

from teacher_auth.core.database import Base, utc_now


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    action = Column(String, nullable=False, index=True)
    details = Column(Text, nullable=False, default="")
    document_id = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
