from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, text

from teacher_auth.core.database import Base, utc_now


class Teacher(Base):
    __tablename__ = "teachers"
    __table_args__ = (
        Index(
            "uq_teachers_active_email",
            "email",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)

    name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    pin_hash = Column(String, nullable=False)
    pin_created_at = Column(DateTime, nullable=False, default=utc_now)
    pin_expires_at = Column(DateTime, nullable=False)
    failed_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
