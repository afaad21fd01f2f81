from __future__ import annotations

from fastapi import Request

from teacher_auth.services.pin_authenticator import PinAuthenticator


def get_pin_authenticator(request: Request) -> PinAuthenticator:
    """The authenticator is built once per app so its registry locks are shared by every request."""
    return request.app.state.pin_authenticator
