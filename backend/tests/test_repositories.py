"""Tests for the serial counter and issued certificate repositories."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from enrollment.ca.authority import CertificateAuthority
from enrollment.ca.certificate_request import CertificateRequest, Validity
from enrollment.domain.states import ExportFormat
from enrollment.repository.repositories import (
    IssuedCertificateRepository,
    SerialCounterRepository,
    SqlCertificateRecorder,
    SqlSerialAllocator,
)


class TestSerialCounterRepository:
    """Tests for SerialCounterRepository."""

    def test_ensure_is_idempotent(self, session_factory):
        """Test that ensure creates the row once."""
        with session_factory() as db:
            repo = SerialCounterRepository(db)
            repo.ensure("default")
            repo.ensure("default")
            db.commit()

            assert repo.current("default") == 0

    def test_allocate_increments(self, session_factory):
        """Test sequential allocation."""
        with session_factory() as db:
            repo = SerialCounterRepository(db)
            repo.ensure("default")

            assert [repo.allocate("default") for _ in range(3)] == [1, 2, 3]
            assert repo.current("default") == 3

    def test_allocate_unknown_ca(self, session_factory):
        """Test that allocating without a counter row fails."""
        with session_factory() as db:
            with pytest.raises(LookupError):
                SerialCounterRepository(db).allocate("missing")

    def test_counters_are_per_ca(self, session_factory):
        """Test that CAs do not share counters."""
        with session_factory() as db:
            repo = SerialCounterRepository(db)
            repo.ensure("a")
            repo.ensure("b")
            repo.allocate("a")
            repo.allocate("a")

            assert repo.allocate("b") == 1
            assert repo.current("a") == 2


class TestSqlSerialAllocator:
    """Tests for the database-backed allocator."""

    def test_survives_restart(self, session_factory):
        """Test that a new allocator continues where the previous one stopped."""
        first = SqlSerialAllocator(session_factory, "default")
        assert [first.next_serial() for _ in range(3)] == [1, 2, 3]

        second = SqlSerialAllocator(session_factory, "default")
        assert second.next_serial() == 4

    def test_concurrent_allocation_unique(self, session_factory):
        """Test that parallel callers never get the same serial."""
        allocator = SqlSerialAllocator(session_factory, "default")

        with ThreadPoolExecutor(max_workers=8) as pool:
            serials = list(pool.map(lambda _: allocator.next_serial(), range(40)))

        assert sorted(serials) == list(range(1, 41))


class TestSqlCertificateRecorder:
    """Tests for the issued certificate ledger."""

    def test_record_and_query(self, session_factory, ca_key_pair, ec_key_pair):
        """Test that recorded certificates can be looked up."""
        authority = CertificateAuthority(ca_key_pair, SqlSerialAllocator(session_factory, "default"))
        request = CertificateRequest.build(ec_key_pair, "alice", Validity.from_days(30))
        certificate = authority.sign(request)

        SqlCertificateRecorder(session_factory, "default").record(certificate, ExportFormat.PEM)

        with session_factory() as db:
            repo = IssuedCertificateRepository(db)
            stored = repo.get_by_serial("default", certificate.serial_hex)

            assert stored is not None
            assert stored.subject_identity == "alice"
            assert stored.thumbprint == certificate.thumbprint
            assert stored.export_format == "pem"
            assert repo.count() == 1
            assert [c.serial_number for c in repo.list_by_subject("alice")] == ["1"]
            assert repo.get_by_serial("other", certificate.serial_hex) is None
