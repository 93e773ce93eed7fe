"""Custom exceptions.
"""

from typing import Optional

__all__ = (
    "PKIError", "UnknownProfileError", "InvalidSANError", "InvalidCSRError",
    "InvalidReasonError", "NotFoundError", "AlreadyRevokedError",
    "InactiveAuthorityError", "MissingRootError", "LedgerIOError",
    "LockContentionError",
)


class PKIError(Exception):
    """Base class for ledger and authority errors.

    Carries the authority id and serial involved, when known.
    """
    authority: Optional[str]
    serial: Optional[int]

    def __init__(self, message: str, authority: Optional[str] = None,
                 serial: Optional[int] = None) -> None:
        super().__init__(message)
        self.authority = authority
        self.serial = serial


class UnknownProfileError(PKIError, ValueError):
    """Profile name not in the fixed vocabulary."""


class InvalidSANError(PKIError, ValueError):
    """SubjectAltName entry with unrecognized type or bad value."""


class InvalidCSRError(PKIError, ValueError):
    """CSR cannot be parsed or its self-signature does not verify."""


class InvalidReasonError(PKIError, ValueError):
    """Unknown revocation reason."""


class NotFoundError(PKIError):
    """Unknown authority, serial or certificate."""


class AlreadyRevokedError(PKIError):
    """Entry was revoked before.  Benign for idempotent callers."""


class InactiveAuthorityError(PKIError):
    """Authority is revoked or archived and cannot issue."""


class MissingRootError(PKIError):
    """Root certificate is absent."""


class LedgerIOError(PKIError):
    """Ledger or counter persistence failed."""


class LockContentionError(PKIError):
    """Ledger lock not acquired in time.  Retry with backoff."""
