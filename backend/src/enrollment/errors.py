"""Error taxonomy for the enrollment core.

Every failure raised by a crypto primitive is wrapped in one of these
exceptions together with a `Diagnostic` captured in the failing call itself,
so that concurrent calls never read each other's error state.
"""

from dataclasses import dataclass, field
from enum import StrEnum

from cryptography.exceptions import InternalError


@dataclass(frozen=True)
class Diagnostic:
    """Snapshot of a primitive-level failure."""

    error_type: str
    message: str
    openssl_errors: tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        if self.openssl_errors:
            return f"{self.error_type}: {self.message} [{'; '.join(self.openssl_errors)}]"
        return f"{self.error_type}: {self.message}"


def _describe_openssl_error(code: object) -> str:
    reason = getattr(code, "reason_text", None)
    if isinstance(reason, bytes):
        return reason.decode("utf-8", "replace")
    return repr(code)


def capture_diagnostic(exc: BaseException) -> Diagnostic:
    """Build a diagnostic from the exception raised by a primitive call."""
    openssl_errors: tuple[str, ...] = ()
    if isinstance(exc, InternalError):
        openssl_errors = tuple(_describe_openssl_error(code) for code in exc.err_code)
    return Diagnostic(
        error_type=type(exc).__name__,
        message=str(exc),
        openssl_errors=openssl_errors,
    )


class EnrollmentError(Exception):
    """Base class for all enrollment core errors."""

    def __init__(self, message: str, diagnostic: Diagnostic | None = None):
        self.diagnostic = diagnostic
        super().__init__(f"{message}: {diagnostic}" if diagnostic else message)

    @classmethod
    def from_exception(cls, message: str, exc: BaseException) -> "EnrollmentError":
        return cls(message, capture_diagnostic(exc))


class InvalidConfig(EnrollmentError):
    """Raised when a key configuration is rejected at construction."""


class KeyGenerationFailed(EnrollmentError):
    """Raised when the primitive fails to generate a key pair."""


class KeyImportFailed(EnrollmentError):
    """Raised when key material cannot be parsed."""


class IncorrectPassphrase(KeyImportFailed):
    """Raised when an encrypted key is imported with the wrong passphrase."""


class PassphraseRequired(KeyImportFailed):
    """Raised when an encrypted key is imported without a passphrase."""


class InvalidArgument(EnrollmentError, ValueError):
    """Raised for caller errors detected before any primitive call."""


class ExportFailed(EnrollmentError):
    """Raised when key or profile serialization fails."""


class UnsupportedFormat(EnrollmentError):
    """Raised for an unknown export format."""


class ValidationFailed(EnrollmentError):
    """Raised when export metadata (network profile) is malformed."""


class InvalidSubject(EnrollmentError):
    """Raised for an empty identity or an inverted validity window."""


class PolicyViolation(EnrollmentError):
    """Raised when a request breaks CA issuance policy."""


class SigningFailed(EnrollmentError):
    """Raised when the CA fails to sign a request."""


class IssuanceTimeout(EnrollmentError):
    """Raised when an issuance exceeds its overall deadline."""


class IssuanceErrorKind(StrEnum):
    INVALID_CONFIG = "invalid_config"
    KEY_GENERATION_FAILED = "key_generation_failed"
    KEY_IMPORT_FAILED = "key_import_failed"
    INVALID_ARGUMENT = "invalid_argument"
    EXPORT_FAILED = "export_failed"
    UNSUPPORTED_FORMAT = "unsupported_format"
    VALIDATION_FAILED = "validation_failed"
    INVALID_SUBJECT = "invalid_subject"
    POLICY_VIOLATION = "policy_violation"
    SIGNING_FAILED = "signing_failed"
    TIMEOUT = "timeout"
    STORAGE_FAILED = "storage_failed"


_KIND_BY_ERROR: dict[type[EnrollmentError], IssuanceErrorKind] = {
    InvalidConfig: IssuanceErrorKind.INVALID_CONFIG,
    KeyGenerationFailed: IssuanceErrorKind.KEY_GENERATION_FAILED,
    KeyImportFailed: IssuanceErrorKind.KEY_IMPORT_FAILED,
    InvalidArgument: IssuanceErrorKind.INVALID_ARGUMENT,
    ExportFailed: IssuanceErrorKind.EXPORT_FAILED,
    UnsupportedFormat: IssuanceErrorKind.UNSUPPORTED_FORMAT,
    ValidationFailed: IssuanceErrorKind.VALIDATION_FAILED,
    InvalidSubject: IssuanceErrorKind.INVALID_SUBJECT,
    PolicyViolation: IssuanceErrorKind.POLICY_VIOLATION,
    SigningFailed: IssuanceErrorKind.SIGNING_FAILED,
    IssuanceTimeout: IssuanceErrorKind.TIMEOUT,
}


class IssuanceError(EnrollmentError):
    """Raised by IssuanceService; `kind` names the failing stage."""

    def __init__(self, kind: IssuanceErrorKind, message: str, diagnostic: Diagnostic | None = None):
        self.kind = kind
        super().__init__(message, diagnostic)

    @classmethod
    def wrap(cls, exc: EnrollmentError) -> "IssuanceError":
        kind = IssuanceErrorKind.STORAGE_FAILED
        for error_type in type(exc).__mro__:
            if error_type in _KIND_BY_ERROR:
                kind = _KIND_BY_ERROR[error_type]
                break
        return cls(kind, str(exc), exc.diagnostic)
