from __future__ import annotations

import base64
import hashlib
import hmac

from passlib.context import CryptContext

from teacher_auth.core.config import PIN_HASH_SALT, PIN_HASH_SCHEME

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")

_bcrypt_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class PinHasher:
    """One-way PIN transform plus verifier.

    The default ``sha256`` scheme is deterministic: base64(sha256(pin + salt))
    with a single salt shared by every record. That keeps digests compatible
    with records written by the legacy service but leaves every PIN of the
    same value with the same digest; ``bcrypt`` uses a random salt per hash.
    ``verify`` recognises both formats regardless of the configured scheme.
    """

    def __init__(self, scheme: str = PIN_HASH_SCHEME, salt: str = PIN_HASH_SALT) -> None:
        if scheme not in {"sha256", "bcrypt"}:
            raise ValueError(f"Unsupported PIN hash scheme: {scheme}")
        self.scheme = scheme
        self.salt = salt

    def hash(self, pin: str) -> str:
        if self.scheme == "bcrypt":
            return _bcrypt_context.hash(pin)
        return self._sha256_digest(pin)

    def verify(self, pin: str, pin_hash: str) -> bool:
        if not pin_hash:
            return False
        if pin_hash.startswith(BCRYPT_PREFIXES):
            return _bcrypt_context.verify(pin, pin_hash)
        return hmac.compare_digest(self._sha256_digest(pin).encode("utf-8"), pin_hash.encode("utf-8"))

    def _sha256_digest(self, pin: str) -> str:
        digest = hashlib.sha256(f"{pin}{self.salt}".encode("utf-8")).digest()
        return base64.b64encode(digest).decode("ascii")
