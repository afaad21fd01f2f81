from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from teacher_auth.core.config import DEMO_ENDPOINTS_ENABLED
from teacher_auth.deps import get_pin_authenticator
from teacher_auth.schemas.teacher import (
    MessageResponse,
    SampleTeacherRead,
    TeacherPinRequest,
    TeacherPinResponse,
    TeacherPinValidationResult,
    TeacherRead,
    TeacherRegistrationRequest,
    TeacherStatusRead,
)
from teacher_auth.services.pin_authenticator import AuthOutcome, AuthResult, PinAuthenticator, is_locked

router = APIRouter(prefix="/api/teacher", tags=["teacher"])
logger = logging.getLogger(__name__)

DEMO_TEACHER_NAME = "Demo Teacher"
DEMO_TEACHER_EMAIL = "demo.teacher@example.com"
DEMO_TEACHER_PIN = "123456"

_STATUS_BY_OUTCOME = {
    AuthOutcome.SUCCESS: status.HTTP_200_OK,
    AuthOutcome.INVALID_FORMAT: status.HTTP_400_BAD_REQUEST,
    AuthOutcome.INVALID_PIN: status.HTTP_401_UNAUTHORIZED,
    AuthOutcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthOutcome.DUPLICATE_EMAIL: status.HTTP_409_CONFLICT,
    AuthOutcome.EXPIRED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AuthOutcome.LOCKED: status.HTTP_423_LOCKED,
}


def _raise_for_result(result: AuthResult) -> None:
    if result.ok:
        return
    raise HTTPException(status_code=_STATUS_BY_OUTCOME[result.outcome], detail=result.message)


def _pin_response(result: AuthResult) -> TeacherPinResponse:
    return TeacherPinResponse(
        is_valid=result.ok,
        message=result.message,
        is_locked=result.is_locked,
        locked_until=result.locked_until,
        remaining_attempts=result.remaining_attempts or 0,
        requires_reset=result.requires_reset,
        errors=result.errors,
    )


@router.post("/register", response_model=TeacherRead)
def register_teacher(
    payload: TeacherRegistrationRequest,
    authenticator: PinAuthenticator = Depends(get_pin_authenticator),
):
    result = authenticator.register(payload.name, payload.email, payload.pin)
    _raise_for_result(result)
    return result.teacher


@router.post(
    "/validate-pin",
    response_model=TeacherPinResponse,
    responses={code: {"model": TeacherPinResponse} for code in (400, 401, 404, 422, 423)},
)
def validate_pin(
    payload: TeacherPinRequest,
    user_id: str = Query(..., min_length=1),
    authenticator: PinAuthenticator = Depends(get_pin_authenticator),
):
    result = authenticator.validate_pin(user_id, payload.pin)
    body = _pin_response(result)
    if result.ok:
        return body
    return JSONResponse(status_code=_STATUS_BY_OUTCOME[result.outcome], content=body.model_dump(mode="json"))


@router.post(
    "/validate-pin-format",
    response_model=TeacherPinValidationResult,
    responses={400: {"model": TeacherPinValidationResult}},
)
def validate_pin_format(
    payload: TeacherPinRequest,
    authenticator: PinAuthenticator = Depends(get_pin_authenticator),
):
    result = authenticator.validate_pin_format(payload.pin)
    body = TeacherPinValidationResult(
        is_valid=result.is_valid,
        message=result.message,
        validation_errors=result.errors,
    )
    if result.is_valid:
        return body
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(mode="json"))


@router.post("/demo/create-sample", response_model=SampleTeacherRead)
def create_sample_teacher(authenticator: PinAuthenticator = Depends(get_pin_authenticator)):
    if not DEMO_ENDPOINTS_ENABLED:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    result = authenticator.register(DEMO_TEACHER_NAME, DEMO_TEACHER_EMAIL, DEMO_TEACHER_PIN)
    if result.outcome is AuthOutcome.DUPLICATE_EMAIL:
        logger.warning("Sample teacher already exists")
    _raise_for_result(result)

    teacher = TeacherRead.model_validate(result.teacher)
    return SampleTeacherRead(
        **teacher.model_dump(),
        message=f"Sample teacher created with PIN: {DEMO_TEACHER_PIN}",
    )


@router.get("/{user_id}", response_model=TeacherStatusRead)
def get_teacher(user_id: str, authenticator: PinAuthenticator = Depends(get_pin_authenticator)):
    result = authenticator.get_teacher(user_id)
    _raise_for_result(result)

    teacher = result.teacher
    return TeacherStatusRead(
        **TeacherRead.model_validate(teacher).model_dump(),
        failed_attempts=teacher.failed_attempts,
        is_locked=is_locked(teacher, authenticator.clock()),
        locked_until=teacher.locked_until,
    )


@router.post("/{user_id}/reset-pin", response_model=MessageResponse)
def reset_pin(
    user_id: str,
    payload: TeacherPinRequest,
    authenticator: PinAuthenticator = Depends(get_pin_authenticator),
):
    result = authenticator.reset_pin(user_id, payload.pin)
    _raise_for_result(result)
    return MessageResponse(message=result.message)


@router.post("/{user_id}/unlock", response_model=MessageResponse)
def unlock_account(user_id: str, authenticator: PinAuthenticator = Depends(get_pin_authenticator)):
    result = authenticator.unlock_account(user_id)
    _raise_for_result(result)
    return MessageResponse(message=result.message)
