from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class TeacherRegistrationRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    pin: str = ""


class TeacherPinRequest(BaseModel):
    pin: str = ""


class TeacherRead(BaseModel):
    """Public view of a teacher record; the PIN hash is never part of it."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    name: str
    email: str
    is_active: bool
    created_at: datetime
    pin_expires_at: datetime


class TeacherStatusRead(TeacherRead):
    failed_attempts: int
    is_locked: bool
    locked_until: Optional[datetime] = None


class SampleTeacherRead(TeacherRead):
    message: str


class TeacherPinResponse(BaseModel):
    is_valid: bool
    message: str
    is_locked: bool = False
    locked_until: Optional[datetime] = None
    remaining_attempts: int = 0
    requires_reset: bool = False
    errors: List[str] = Field(default_factory=list)


class TeacherPinValidationResult(BaseModel):
    is_valid: bool
    message: str
    validation_errors: List[str] = Field(default_factory=list)


class MessageResponse(BaseModel):
    message: str
