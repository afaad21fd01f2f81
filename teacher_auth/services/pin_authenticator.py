from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from teacher_auth.core.config import LOCKOUT_MINUTES, MAX_FAILED_ATTEMPTS, PIN_EXPIRY_DAYS, PIN_LENGTH
from teacher_auth.core.database import utc_now
from teacher_auth.models.teacher import Teacher
from teacher_auth.services.audit import (
    ACCOUNT_LOCKED,
    ACCOUNT_UNLOCK_FAILED,
    ACCOUNT_UNLOCKED,
    ANONYMOUS_USER_ID,
    PIN_RESET,
    PIN_RESET_FAILED,
    PIN_VALIDATION_FAILED,
    PIN_VALIDATION_SUCCESSFUL,
    TEACHER_REGISTERED,
    TEACHER_REGISTRATION_FAILED,
    AuditSink,
)
from teacher_auth.services.errors import AuditWriteError, PinAuthError
from teacher_auth.services.pin_hasher import PinHasher
from teacher_auth.services.pin_policy import PinFormatResult, validate_pin_format
from teacher_auth.services.teacher_registry import TeacherRegistry

logger = logging.getLogger(__name__)

LOCKOUT_DURATION = timedelta(minutes=LOCKOUT_MINUTES)
PIN_EXPIRY = timedelta(days=PIN_EXPIRY_DAYS)


class AuthOutcome(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    DUPLICATE_EMAIL = "duplicate_email"
    INVALID_FORMAT = "invalid_format"
    LOCKED = "locked"
    EXPIRED = "expired"
    INVALID_PIN = "invalid_pin"


@dataclass(frozen=True)
class AuthResult:
    outcome: AuthOutcome
    message: str
    teacher: Optional[Teacher] = None
    errors: List[str] = field(default_factory=list)
    locked_until: Optional[datetime] = None
    remaining_attempts: Optional[int] = None
    requires_reset: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is AuthOutcome.SUCCESS

    @property
    def is_locked(self) -> bool:
        return self.outcome is AuthOutcome.LOCKED


def _now() -> datetime:
    return utc_now()


def is_locked(teacher: Teacher, now: Optional[datetime] = None) -> bool:
    now = now or _now()
    if teacher.locked_until is None:
        return False
    return teacher.locked_until > now


def is_expired(teacher: Teacher, now: Optional[datetime] = None) -> bool:
    now = now or _now()
    return now > teacher.pin_expires_at


def _invalid_format_message(errors: List[str]) -> str:
    return f"Invalid PIN format: {', '.join(errors)}"


class PinAuthenticator:
    """Lockout/expiry state machine over the teacher registry.

    Every operation reports its outcome to the audit sink before returning.
    Lock and expiry are evaluated lazily against the clock at call time.
    A failing audit write raises ``AuditWriteError`` out of the operation and
    rolls back the record change made by that call.
    """

    def __init__(
        self,
        registry: TeacherRegistry,
        audit_sink: AuditSink,
        hasher: Optional[PinHasher] = None,
        *,
        clock: Callable[[], datetime] = _now,
        pin_length: int = PIN_LENGTH,
        max_failed_attempts: int = MAX_FAILED_ATTEMPTS,
        lockout_duration: timedelta = LOCKOUT_DURATION,
        pin_expiry: timedelta = PIN_EXPIRY,
    ) -> None:
        self.registry = registry
        self.audit_sink = audit_sink
        self.hasher = hasher or PinHasher()
        self.clock = clock
        self.pin_length = pin_length
        self.max_failed_attempts = max_failed_attempts
        self.lockout_duration = lockout_duration
        self.pin_expiry = pin_expiry

    def _audit(self, user_id: str, action: str, details: str) -> None:
        try:
            self.audit_sink.log(user_id, action, details)
        except PinAuthError:
            raise
        except Exception as exc:
            logger.exception("Audit sink failed for %s (%s)", user_id, action)
            raise AuditWriteError(f"Failed to write audit entry '{action}'") from exc

    def validate_pin_format(self, pin: Optional[str]) -> PinFormatResult:
        return validate_pin_format(pin, self.pin_length)

    def register(self, name: str, email: str, pin: str) -> AuthResult:
        format_result = self.validate_pin_format(pin)
        if not format_result.is_valid:
            message = _invalid_format_message(format_result.errors)
            self._audit(ANONYMOUS_USER_ID, TEACHER_REGISTRATION_FAILED, f"Registration for {email} rejected. {message}")
            return AuthResult(AuthOutcome.INVALID_FORMAT, message, errors=format_result.errors)

        now = self.clock()
        pin_hash = self.hasher.hash(pin)
        with self.registry.create(
            name=name,
            email=email,
            pin_hash=pin_hash,
            pin_created_at=now,
            pin_expires_at=now + self.pin_expiry,
        ) as teacher:
            if teacher is None:
                self._audit(ANONYMOUS_USER_ID, TEACHER_REGISTRATION_FAILED, f"Teacher with email {email} already exists")
                logger.warning("Teacher registration conflict: %s", email)
                return AuthResult(AuthOutcome.DUPLICATE_EMAIL, "Teacher with this email already exists")

        # The record is committed at this point; the event must not precede it.
        try:
            self._audit(teacher.user_id, TEACHER_REGISTERED, f"Teacher {teacher.name} registered with email {teacher.email}")
        except PinAuthError:
            self.registry.discard(teacher.user_id)
            raise

        logger.info("Teacher registered: %s with user ID %s", teacher.email, teacher.user_id)
        return AuthResult(AuthOutcome.SUCCESS, "Teacher registered successfully", teacher=teacher)

    def validate_pin(self, user_id: str, pin: str) -> AuthResult:
        """Authenticate ``pin`` for ``user_id``.

        Checks short-circuit in a fixed order: missing record, active lock,
        expired PIN, PIN format, then the hash comparison. A lock wins over
        expiry and over a correct PIN; an expired or malformed attempt never
        touches ``failed_attempts``.
        """
        with self.registry.mutate(user_id) as teacher:
            now = self.clock()

            if teacher is None:
                self._audit(user_id, PIN_VALIDATION_FAILED, "Teacher not found")
                return AuthResult(AuthOutcome.NOT_FOUND, "Teacher not found")

            if is_locked(teacher, now):
                self._audit(user_id, PIN_VALIDATION_FAILED, "Account is locked")
                return AuthResult(
                    AuthOutcome.LOCKED,
                    f"Account is locked until {teacher.locked_until:%Y-%m-%d %H:%M:%S}. Please try again later.",
                    locked_until=teacher.locked_until,
                    remaining_attempts=0,
                )

            if is_expired(teacher, now):
                self._audit(user_id, PIN_VALIDATION_FAILED, "PIN has expired")
                return AuthResult(
                    AuthOutcome.EXPIRED,
                    "Your PIN has expired. Please reset your PIN.",
                    requires_reset=True,
                )

            format_result = self.validate_pin_format(pin)
            if not format_result.is_valid:
                message = _invalid_format_message(format_result.errors)
                self._audit(user_id, PIN_VALIDATION_FAILED, message)
                return AuthResult(
                    AuthOutcome.INVALID_FORMAT,
                    message,
                    errors=format_result.errors,
                    remaining_attempts=self.max_failed_attempts - teacher.failed_attempts,
                )

            if self.hasher.verify(pin, teacher.pin_hash):
                teacher.failed_attempts = 0
                teacher.locked_until = None
                self._audit(user_id, PIN_VALIDATION_SUCCESSFUL, f"Teacher {teacher.name} successfully authenticated")
                logger.info("PIN validation successful for teacher: %s", teacher.email)
                return AuthResult(AuthOutcome.SUCCESS, "PIN validation successful", teacher=teacher)

            # A lapsed lock leaves the counter at the maximum, so the next
            # miss locks again straight away.
            teacher.failed_attempts = min(teacher.failed_attempts + 1, self.max_failed_attempts)

            if teacher.failed_attempts >= self.max_failed_attempts:
                teacher.locked_until = now + self.lockout_duration
                self._audit(
                    user_id,
                    ACCOUNT_LOCKED,
                    f"Account locked due to {self.max_failed_attempts} failed PIN attempts",
                )
                logger.warning("Account locked for teacher: %s due to failed PIN attempts", teacher.email)
                lockout_minutes = int(self.lockout_duration.total_seconds() // 60)
                return AuthResult(
                    AuthOutcome.LOCKED,
                    "Account locked due to too many failed attempts. "
                    f"Please try again after {lockout_minutes} minutes.",
                    locked_until=teacher.locked_until,
                    remaining_attempts=0,
                )

            remaining_attempts = self.max_failed_attempts - teacher.failed_attempts
            self._audit(user_id, PIN_VALIDATION_FAILED, f"Invalid PIN entered. {remaining_attempts} attempts remaining")
            logger.warning(
                "PIN validation failed for teacher: %s. %s attempts remaining",
                teacher.email,
                remaining_attempts,
            )
            return AuthResult(
                AuthOutcome.INVALID_PIN,
                f"Invalid PIN. You have {remaining_attempts} attempt(s) remaining before account lockout.",
                remaining_attempts=remaining_attempts,
            )

    def get_teacher(self, user_id: str) -> AuthResult:
        teacher = self.registry.find_by_user_id(user_id)
        if teacher is None:
            return AuthResult(AuthOutcome.NOT_FOUND, "Teacher not found")
        return AuthResult(AuthOutcome.SUCCESS, "Teacher found", teacher=teacher)

    def reset_pin(self, user_id: str, new_pin: str) -> AuthResult:
        with self.registry.mutate(user_id) as teacher:
            if teacher is None:
                self._audit(user_id, PIN_RESET_FAILED, "Teacher not found")
                return AuthResult(AuthOutcome.NOT_FOUND, "Teacher not found")

            format_result = self.validate_pin_format(new_pin)
            if not format_result.is_valid:
                message = _invalid_format_message(format_result.errors)
                self._audit(user_id, PIN_RESET_FAILED, message)
                return AuthResult(AuthOutcome.INVALID_FORMAT, message, errors=format_result.errors)

            now = self.clock()
            teacher.pin_hash = self.hasher.hash(new_pin)
            teacher.pin_created_at = now
            teacher.pin_expires_at = now + self.pin_expiry
            teacher.failed_attempts = 0
            teacher.locked_until = None

            self._audit(user_id, PIN_RESET, "Teacher PIN has been reset")

        logger.info("PIN reset for teacher: %s", user_id)
        return AuthResult(AuthOutcome.SUCCESS, "PIN has been reset successfully", teacher=teacher)

    def unlock_account(self, user_id: str) -> AuthResult:
        """Lift a lockout early and zero the counter; the PIN is not required."""
        with self.registry.mutate(user_id) as teacher:
            if teacher is None:
                self._audit(user_id, ACCOUNT_UNLOCK_FAILED, "Teacher not found")
                return AuthResult(AuthOutcome.NOT_FOUND, "Teacher not found")

            teacher.failed_attempts = 0
            teacher.locked_until = None
            self._audit(user_id, ACCOUNT_UNLOCKED, "Teacher account has been manually unlocked")

        logger.info("Account unlocked for teacher: %s", user_id)
        return AuthResult(AuthOutcome.SUCCESS, "Account has been unlocked successfully", teacher=teacher)
