"""Tests for CertificateRequest and validity windows."""

from datetime import datetime, timedelta, timezone

import pytest

from enrollment.ca.certificate_request import (
    MAX_IDENTITY_LENGTH,
    CertificateRequest,
    Validity,
    validate_identity,
)
from enrollment.errors import InvalidSubject


class TestValidateIdentity:
    """Tests for identity checks."""

    @pytest.mark.parametrize("identity", ["", "   ", "\t"])
    def test_blank_identity_rejected(self, identity):
        """Test that empty identities raise InvalidSubject."""
        with pytest.raises(InvalidSubject, match="empty"):
            validate_identity(identity)

    def test_long_identity_rejected(self):
        """Test the commonName length bound."""
        with pytest.raises(InvalidSubject):
            validate_identity("a" * (MAX_IDENTITY_LENGTH + 1))

    def test_max_length_identity_accepted(self):
        """Test that the bound itself is accepted."""
        validate_identity("a" * MAX_IDENTITY_LENGTH)

    @pytest.mark.parametrize("identity", ["alice\x00", "alice\nbob", "al\x1bice", "alice\x7f"])
    def test_control_characters_rejected(self, identity):
        """Test that identities with control characters raise InvalidSubject."""
        with pytest.raises(InvalidSubject, match="control characters"):
            validate_identity(identity)


class TestValidity:
    """Tests for Validity helpers."""

    def test_from_days(self):
        """Test building a window from a lifetime."""
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        validity = Validity.from_days(30, now=now)

        assert validity.not_before == now
        assert validity.not_after == now + timedelta(days=30)
        assert validity.days == 30


class TestCertificateRequestBuild:
    """Tests for CertificateRequest.build."""

    def test_build_binds_public_key(self, ec_key_pair):
        """Test that the request carries the key pair's public key."""
        request = CertificateRequest.build(ec_key_pair, "alice", Validity.from_days(30))

        assert request.subject_identity == "alice"
        assert request.public_key == ec_key_pair.public_key
        assert request.not_before < request.not_after

    def test_bounds_normalized_to_utc(self, ec_key_pair):
        """Test that offsets are converted to UTC."""
        plus_two = timezone(timedelta(hours=2))
        start = datetime(2025, 6, 1, 12, 0, tzinfo=plus_two)
        request = CertificateRequest.build(
            ec_key_pair, "alice", Validity(start, start + timedelta(days=1))
        )

        assert request.not_before.utcoffset() == timedelta(0)
        assert request.not_before.hour == 10

    def test_inverted_window_rejected(self, ec_key_pair):
        """Test that not_before after not_after raises InvalidSubject."""
        now = datetime.now(timezone.utc)
        with pytest.raises(InvalidSubject, match="inverted"):
            CertificateRequest.build(
                ec_key_pair, "alice", Validity(now, now - timedelta(days=1))
            )

    def test_empty_window_rejected(self, ec_key_pair):
        """Test that a zero-length window raises InvalidSubject."""
        now = datetime.now(timezone.utc)
        with pytest.raises(InvalidSubject):
            CertificateRequest.build(ec_key_pair, "alice", Validity(now, now))

    def test_naive_bounds_rejected(self, ec_key_pair):
        """Test that naive datetimes are rejected."""
        now = datetime(2025, 1, 1)
        with pytest.raises(InvalidSubject, match="timezone"):
            CertificateRequest.build(
                ec_key_pair, "alice", Validity(now, now + timedelta(days=1))
            )

    def test_empty_identity_rejected(self, ec_key_pair):
        """Test that build re-checks the identity."""
        with pytest.raises(InvalidSubject):
            CertificateRequest.build(ec_key_pair, "", Validity.from_days(1))
