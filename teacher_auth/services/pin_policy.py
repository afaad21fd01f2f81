from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from teacher_auth.core.config import PIN_LENGTH

PIN_REQUIRED_ERROR = "PIN is required"
PIN_NUMERIC_ERROR = "PIN must contain only numeric characters (0-9)"

# ASCII digits only; str.isdigit() would also accept superscripts and other scripts.
_DIGITS_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class PinFormatResult:
    is_valid: bool
    message: str
    errors: List[str] = field(default_factory=list)


def pin_length_error(length: int = PIN_LENGTH) -> str:
    return f"PIN must be exactly {length} digits"


def validate_pin_format(pin: Optional[str], length: int = PIN_LENGTH) -> PinFormatResult:
    """Check PIN syntax without touching any stored state.

    An empty PIN short-circuits; otherwise the length and digit rules are
    evaluated independently so both violations can be reported together.
    """
    if not pin:
        return PinFormatResult(is_valid=False, message="PIN format validation failed", errors=[PIN_REQUIRED_ERROR])

    errors: List[str] = []
    if len(pin) != length:
        errors.append(pin_length_error(length))
    if not _DIGITS_RE.fullmatch(pin):
        errors.append(PIN_NUMERIC_ERROR)

    if errors:
        return PinFormatResult(is_valid=False, message="PIN format validation failed", errors=errors)
    return PinFormatResult(is_valid=True, message="PIN format is valid")
