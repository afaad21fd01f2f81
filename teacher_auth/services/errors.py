class PinAuthError(Exception):
    """Internal failure that aborts a PIN operation instead of producing a result."""


class AuditWriteError(PinAuthError):
    """An audit entry could not be persisted."""


class RegistryError(PinAuthError):
    """The teacher store failed while reading or writing a record."""
