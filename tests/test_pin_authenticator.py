from datetime import timedelta

import pytest

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
)
from teacher_auth.services.errors import AuditWriteError
from teacher_auth.services.pin_authenticator import AuthOutcome, PinAuthenticator
from teacher_auth.services.pin_hasher import PinHasher
from teacher_auth.services.teacher_registry import TeacherRegistry
from tests.fixtures_data import (
    ALICE,
    BASE_TIME,
    WRONG_PIN,
    FailingAuditSink,
    FrozenClock,
    RecordingAuditSink,
    build_session_factory,
)


def _build(tmp_path, **kwargs):
    clock = FrozenClock()
    audit = RecordingAuditSink()
    registry = TeacherRegistry(build_session_factory(tmp_path))
    authenticator = PinAuthenticator(registry, audit, PinHasher(scheme="sha256"), clock=clock, **kwargs)
    return authenticator, clock, audit


def _register_alice(authenticator):
    result = authenticator.register(**ALICE)
    assert result.ok
    return result.teacher


def _lock(authenticator, user_id):
    results = [authenticator.validate_pin(user_id, WRONG_PIN) for _ in range(3)]
    assert results[-1].outcome is AuthOutcome.LOCKED
    return results


def test_register_creates_record_with_fresh_expiry(tmp_path):
    authenticator, _, audit = _build(tmp_path)

    teacher = _register_alice(authenticator)

    assert teacher.name == "Alice"
    assert teacher.email == "alice@x.com"
    assert teacher.pin_hash != ALICE["pin"]
    assert teacher.pin_created_at == BASE_TIME
    assert teacher.pin_expires_at == BASE_TIME + timedelta(days=90)
    assert teacher.failed_attempts == 0
    assert teacher.locked_until is None
    assert audit.entries == [
        (teacher.user_id, TEACHER_REGISTERED, "Teacher Alice registered with email alice@x.com"),
    ]


def test_register_rejects_bad_pin_format_without_creating_a_record(tmp_path):
    authenticator, _, audit = _build(tmp_path)

    result = authenticator.register("Alice", "alice@x.com", "12a4")

    assert result.outcome is AuthOutcome.INVALID_FORMAT
    assert len(result.errors) == 2
    assert result.message.startswith("Invalid PIN format: ")
    assert authenticator.registry.find_active_by_email("alice@x.com") is None
    assert audit.entries[0][:2] == (ANONYMOUS_USER_ID, TEACHER_REGISTRATION_FAILED)


@pytest.mark.parametrize("pin", ["12345\n", "123456\n"])
def test_register_and_reset_reject_pin_with_trailing_newline(tmp_path, pin):
    authenticator, _, _ = _build(tmp_path)
    teacher = _register_alice(authenticator)

    registered = authenticator.register("Eve", "eve@x.com", pin)
    reset = authenticator.reset_pin(teacher.user_id, pin)

    assert registered.outcome is AuthOutcome.INVALID_FORMAT
    assert reset.outcome is AuthOutcome.INVALID_FORMAT
    assert authenticator.registry.find_active_by_email("eve@x.com") is None
    assert authenticator.registry.find_by_user_id(teacher.user_id).pin_hash == teacher.pin_hash


def test_register_rejects_duplicate_active_email(tmp_path):
    authenticator, _, audit = _build(tmp_path)
    _register_alice(authenticator)

    result = authenticator.register("Alice Again", "ALICE@x.com", "111111")

    assert result.outcome is AuthOutcome.DUPLICATE_EMAIL
    assert result.teacher is None
    assert audit.actions[-1] == TEACHER_REGISTRATION_FAILED


def test_register_succeeds_when_only_inactive_record_has_the_email(tmp_path):
    authenticator, _, _ = _build(tmp_path)
    first = _register_alice(authenticator)
    authenticator.registry.deactivate(first.user_id)

    result = authenticator.register(**ALICE)

    assert result.ok
    assert result.teacher.user_id != first.user_id


def test_three_wrong_pins_lock_the_account(tmp_path):
    authenticator, clock, audit = _build(tmp_path)
    teacher = _register_alice(authenticator)

    first, second, third = _lock(authenticator, teacher.user_id)

    assert first.outcome is AuthOutcome.INVALID_PIN
    assert first.remaining_attempts == 2
    assert "2 attempt(s) remaining" in first.message
    assert second.outcome is AuthOutcome.INVALID_PIN
    assert second.remaining_attempts == 1
    assert third.is_locked
    assert third.locked_until == clock.now + timedelta(minutes=15)
    assert "15 minutes" in third.message
    assert audit.actions == [
        TEACHER_REGISTERED,
        PIN_VALIDATION_FAILED,
        PIN_VALIDATION_FAILED,
        ACCOUNT_LOCKED,
    ]
    stored = authenticator.registry.find_by_user_id(teacher.user_id)
    assert stored.failed_attempts == 3
    assert stored.locked_until == BASE_TIME + timedelta(minutes=15)


def test_correct_pin_is_refused_while_locked(tmp_path):
    authenticator, clock, audit = _build(tmp_path)
    teacher = _register_alice(authenticator)
    _lock(authenticator, teacher.user_id)
    clock.advance(minutes=14)

    result = authenticator.validate_pin(teacher.user_id, ALICE["pin"])

    assert result.outcome is AuthOutcome.LOCKED
    assert result.locked_until == BASE_TIME + timedelta(minutes=15)
    assert result.message.startswith("Account is locked until 2026-01-05 09:15:00")
    assert audit.entries[-1] == (teacher.user_id, PIN_VALIDATION_FAILED, "Account is locked")
    assert authenticator.registry.find_by_user_id(teacher.user_id).failed_attempts == 3


def test_unlock_lifts_lock_immediately(tmp_path):
    authenticator, _, audit = _build(tmp_path)
    teacher = _register_alice(authenticator)
    _lock(authenticator, teacher.user_id)

    unlocked = authenticator.unlock_account(teacher.user_id)
    result = authenticator.validate_pin(teacher.user_id, ALICE["pin"])

    assert unlocked.ok
    assert unlocked.teacher.failed_attempts == 0
    assert unlocked.teacher.locked_until is None
    assert result.ok
    assert audit.actions[-2:] == [ACCOUNT_UNLOCKED, PIN_VALIDATION_SUCCESSFUL]


def test_lock_lapses_after_lockout_duration(tmp_path):
    authenticator, clock, _ = _build(tmp_path)
    teacher = _register_alice(authenticator)
    _lock(authenticator, teacher.user_id)
    clock.advance(minutes=15, seconds=1)

    result = authenticator.validate_pin(teacher.user_id, ALICE["pin"])

    assert result.ok
    stored = authenticator.registry.find_by_user_id(teacher.user_id)
    assert stored.failed_attempts == 0
    assert stored.locked_until is None


def test_miss_after_lapsed_lock_locks_again_from_now(tmp_path):
    authenticator, clock, _ = _build(tmp_path)
    teacher = _register_alice(authenticator)
    _lock(authenticator, teacher.user_id)
    clock.advance(minutes=20)

    result = authenticator.validate_pin(teacher.user_id, WRONG_PIN)

    assert result.is_locked
    assert result.locked_until == clock.now + timedelta(minutes=15)
    assert authenticator.registry.find_by_user_id(teacher.user_id).failed_attempts == 3


def test_correct_pin_resets_failed_attempts(tmp_path):
    authenticator, _, _ = _build(tmp_path)
    teacher = _register_alice(authenticator)
    authenticator.validate_pin(teacher.user_id, WRONG_PIN)
    authenticator.validate_pin(teacher.user_id, WRONG_PIN)

    result = authenticator.validate_pin(teacher.user_id, ALICE["pin"])

    assert result.ok
    assert result.message == "PIN validation successful"
    assert authenticator.registry.find_by_user_id(teacher.user_id).failed_attempts == 0


def test_expired_pin_requires_reset_even_when_correct(tmp_path):
    authenticator, clock, audit = _build(tmp_path)
    teacher = _register_alice(authenticator)
    clock.advance(days=91)

    result = authenticator.validate_pin(teacher.user_id, ALICE["pin"])

    assert result.outcome is AuthOutcome.EXPIRED
    assert result.requires_reset is True
    assert audit.entries[-1] == (teacher.user_id, PIN_VALIDATION_FAILED, "PIN has expired")


def test_expired_account_does_not_accumulate_failed_attempts(tmp_path):
    authenticator, clock, _ = _build(tmp_path)
    teacher = _register_alice(authenticator)
    clock.advance(days=91)

    for _ in range(5):
        assert authenticator.validate_pin(teacher.user_id, WRONG_PIN).outcome is AuthOutcome.EXPIRED

    stored = authenticator.registry.find_by_user_id(teacher.user_id)
    assert stored.failed_attempts == 0
    assert stored.locked_until is None


def test_lock_takes_precedence_over_expiry(tmp_path):
    authenticator, clock, _ = _build(tmp_path, pin_expiry=timedelta(minutes=5))
    teacher = _register_alice(authenticator)
    _lock(authenticator, teacher.user_id)
    clock.advance(minutes=10)

    result = authenticator.validate_pin(teacher.user_id, ALICE["pin"])

    assert result.outcome is AuthOutcome.LOCKED


def test_malformed_pin_does_not_count_as_failed_attempt(tmp_path):
    authenticator, _, audit = _build(tmp_path)
    teacher = _register_alice(authenticator)
    authenticator.validate_pin(teacher.user_id, WRONG_PIN)

    result = authenticator.validate_pin(teacher.user_id, "12a")

    assert result.outcome is AuthOutcome.INVALID_FORMAT
    assert result.remaining_attempts == 2
    assert "PIN must contain only numeric characters (0-9)" in result.errors
    assert audit.entries[-1][1] == PIN_VALIDATION_FAILED
    assert authenticator.registry.find_by_user_id(teacher.user_id).failed_attempts == 1


def test_unknown_user_is_not_found_and_audited(tmp_path):
    authenticator, _, audit = _build(tmp_path)

    result = authenticator.validate_pin("missing-user", ALICE["pin"])

    assert result.outcome is AuthOutcome.NOT_FOUND
    assert result.message == "Teacher not found"
    assert audit.entries == [("missing-user", PIN_VALIDATION_FAILED, "Teacher not found")]


def test_reset_replaces_pin_and_clears_lock(tmp_path):
    authenticator, clock, audit = _build(tmp_path)
    teacher = _register_alice(authenticator)
    _lock(authenticator, teacher.user_id)
    clock.advance(minutes=5)

    result = authenticator.reset_pin(teacher.user_id, "654321")

    assert result.ok
    stored = authenticator.registry.find_by_user_id(teacher.user_id)
    assert stored.failed_attempts == 0
    assert stored.locked_until is None
    assert stored.pin_created_at == clock.now
    assert stored.pin_expires_at == clock.now + timedelta(days=90)
    assert audit.entries[-1] == (teacher.user_id, PIN_RESET, "Teacher PIN has been reset")
    assert authenticator.validate_pin(teacher.user_id, ALICE["pin"]).outcome is AuthOutcome.INVALID_PIN
    assert authenticator.validate_pin(teacher.user_id, "654321").ok


def test_reset_revives_an_expired_pin(tmp_path):
    authenticator, clock, _ = _build(tmp_path)
    teacher = _register_alice(authenticator)
    clock.advance(days=120)

    assert authenticator.reset_pin(teacher.user_id, "222222").ok
    assert authenticator.validate_pin(teacher.user_id, "222222").ok


def test_reset_with_bad_format_keeps_existing_pin(tmp_path):
    authenticator, _, audit = _build(tmp_path)
    teacher = _register_alice(authenticator)

    result = authenticator.reset_pin(teacher.user_id, "12345")

    assert result.outcome is AuthOutcome.INVALID_FORMAT
    assert result.errors == ["PIN must be exactly 6 digits"]
    assert audit.actions[-1] == PIN_RESET_FAILED
    assert authenticator.registry.find_by_user_id(teacher.user_id).pin_hash == teacher.pin_hash


def test_reset_and_unlock_report_unknown_user(tmp_path):
    authenticator, _, audit = _build(tmp_path)

    assert authenticator.reset_pin("missing", "123456").outcome is AuthOutcome.NOT_FOUND
    assert authenticator.unlock_account("missing").outcome is AuthOutcome.NOT_FOUND
    assert audit.actions == [PIN_RESET_FAILED, ACCOUNT_UNLOCK_FAILED]


def test_validate_pin_format_needs_no_record(tmp_path):
    authenticator, _, audit = _build(tmp_path)

    result = authenticator.validate_pin_format("12a456")

    assert result.is_valid is False
    assert any("must contain only numeric characters" in error for error in result.errors)
    assert audit.entries == []


def test_get_teacher(tmp_path):
    authenticator, _, _ = _build(tmp_path)
    teacher = _register_alice(authenticator)

    found = authenticator.get_teacher(teacher.user_id)
    missing = authenticator.get_teacher("missing")

    assert found.ok
    assert found.teacher.email == "alice@x.com"
    assert missing.outcome is AuthOutcome.NOT_FOUND


def test_every_operation_writes_exactly_one_audit_entry(tmp_path):
    authenticator, clock, audit = _build(tmp_path)
    teacher = _register_alice(authenticator)
    user_id = teacher.user_id

    calls = [
        lambda: authenticator.register(**ALICE),
        lambda: authenticator.register("X", "x@x.com", "bad"),
        lambda: authenticator.validate_pin(user_id, ALICE["pin"]),
        lambda: authenticator.validate_pin(user_id, "abc"),
        lambda: authenticator.validate_pin(user_id, WRONG_PIN),
        lambda: authenticator.validate_pin(user_id, WRONG_PIN),
        lambda: authenticator.validate_pin(user_id, WRONG_PIN),
        lambda: authenticator.validate_pin(user_id, ALICE["pin"]),
        lambda: authenticator.unlock_account(user_id),
        lambda: authenticator.reset_pin(user_id, "x"),
        lambda: authenticator.reset_pin(user_id, "777777"),
        lambda: authenticator.validate_pin("nobody", "777777"),
    ]
    for call in calls:
        before = len(audit.entries)
        call()
        assert len(audit.entries) == before + 1

    clock.advance(days=91)
    before = len(audit.entries)
    authenticator.validate_pin(user_id, "777777")
    assert len(audit.entries) == before + 1


def test_audit_failure_aborts_registration(tmp_path):
    authenticator, _, _ = _build(tmp_path)
    authenticator.audit_sink = FailingAuditSink()

    with pytest.raises(AuditWriteError):
        authenticator.register(**ALICE)

    assert authenticator.registry.find_active_by_email(ALICE["email"]) is None


def test_audit_failure_rolls_back_attempt_counter(tmp_path):
    authenticator, _, _ = _build(tmp_path)
    teacher = _register_alice(authenticator)
    failing = FailingAuditSink()
    authenticator.audit_sink = failing

    with pytest.raises(AuditWriteError):
        authenticator.validate_pin(teacher.user_id, WRONG_PIN)

    assert failing.calls == 1
    assert authenticator.registry.find_by_user_id(teacher.user_id).failed_attempts == 0


def test_registered_event_is_written_after_the_record_is_stored(tmp_path):
    authenticator, _, _ = _build(tmp_path)
    seen = []

    class LookupAuditSink(RecordingAuditSink):
        def log(self, user_id, action, details, document_id=None):
            if action == TEACHER_REGISTERED:
                seen.append(authenticator.registry.find_by_user_id(user_id))
            super().log(user_id, action, details, document_id)

    authenticator.audit_sink = LookupAuditSink()
    teacher = _register_alice(authenticator)

    assert len(seen) == 1
    assert seen[0] is not None
    assert seen[0].user_id == teacher.user_id


def test_audit_failure_after_registration_removes_the_record(tmp_path):
    authenticator, _, _ = _build(tmp_path)
    failing = FailingAuditSink()
    authenticator.audit_sink = failing

    with pytest.raises(AuditWriteError):
        authenticator.register(**ALICE)

    assert failing.calls == 1
    authenticator.audit_sink = RecordingAuditSink()
    teacher = _register_alice(authenticator)
    assert teacher.id == 2
