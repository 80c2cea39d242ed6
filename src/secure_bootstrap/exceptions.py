"""
Exception classes for the secure bootstrap system.

All exceptions inherit from BootstrapError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional

from secure_bootstrap.enums import ErrorKind


class BootstrapError(Exception):
    """Base exception for all secure bootstrap errors."""

    kind: Optional[ErrorKind] = None

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value if self.kind else None,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(BootstrapError):
    """Raised when declared configuration cannot be parsed or is invalid."""

    pass


class PreconditionError(BootstrapError):
    """Raised when the host is unfit to run the pipeline (not root, unsupported OS, missing tool)."""

    kind = ErrorKind.PRECONDITION


class ProbeError(BootstrapError):
    """Raised when the live state of a domain cannot be read at all."""

    kind = ErrorKind.PROBE


class ValidationError(BootstrapError):
    """Raised when a rendered artifact fails its syntax or semantic check."""

    kind = ErrorKind.VALIDATION


class ActivationError(BootstrapError):
    """Raised when a service fails to pick up a validated artifact."""

    kind = ErrorKind.ACTIVATION


class VerificationMismatch(BootstrapError):
    """Raised when live effective state disagrees with desired state after activation."""

    kind = ErrorKind.VERIFICATION


class PersistenceError(BootstrapError):
    """Raised when persistence operations fail (file I/O, HMAC validation)."""

    pass


class TamperingError(PersistenceError):
    """Raised when HMAC validation fails, indicating data tampering."""

    pass


class NotificationError(BootstrapError):
    """Raised when notification delivery fails."""

    pass
