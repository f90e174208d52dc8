"""Signable certificate requests."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from enrollment.ca.key_pair import KeyPair, PublicKey
from enrollment.errors import InvalidSubject

# X.520 upper bound for commonName
MAX_IDENTITY_LENGTH = 64


def validate_identity(identity: str) -> None:
    """Reject identities that cannot become a certificate subject.

    Raises:
        InvalidSubject: If the identity is empty, blank, too long or
            contains control characters.
    """
    if not identity or not identity.strip():
        raise InvalidSubject("Subject identity cannot be empty")
    if len(identity) > MAX_IDENTITY_LENGTH:
        raise InvalidSubject(
            f"Subject identity exceeds {MAX_IDENTITY_LENGTH} characters ({len(identity)})"
        )
    if any(ord(char) < 0x20 or ord(char) == 0x7F for char in identity):
        raise InvalidSubject("Subject identity contains control characters")


@dataclass(frozen=True)
class Validity:
    """Certificate validity window (timezone-aware, UTC)."""

    not_before: datetime
    not_after: datetime

    @classmethod
    def from_days(cls, days: int, now: datetime | None = None) -> "Validity":
        not_before = now or datetime.now(timezone.utc)
        return cls(not_before=not_before, not_after=not_before + timedelta(days=days))

    @property
    def days(self) -> float:
        return (self.not_after - self.not_before) / timedelta(days=1)


@dataclass(frozen=True)
class CertificateRequest:
    """Public key bound to a subject identity and a validity window."""

    public_key: PublicKey
    subject_identity: str
    not_before: datetime
    not_after: datetime

    @classmethod
    def build(cls, key_pair: KeyPair, identity: str, validity: Validity) -> "CertificateRequest":
        """Build a request for `identity`.

        Raises:
            InvalidSubject: If the identity is empty or the window is inverted.
        """
        validate_identity(identity)
        for moment in (validity.not_before, validity.not_after):
            if moment.tzinfo is None:
                raise InvalidSubject("Validity bounds must be timezone-aware")
        if validity.not_before >= validity.not_after:
            raise InvalidSubject(
                f"Validity window is inverted: not_before {validity.not_before.isoformat()} "
                f"is not before not_after {validity.not_after.isoformat()}"
            )

        return cls(
            public_key=key_pair.public_key,
            subject_identity=identity,
            not_before=validity.not_before.astimezone(timezone.utc),
            not_after=validity.not_after.astimezone(timezone.utc),
        )
