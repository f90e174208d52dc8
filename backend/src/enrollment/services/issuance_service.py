"""Issuance service: identity in, exported profile out.

identity -> KeyPair.generate -> CertificateRequest.build -> CertificateAuthority.sign
         -> ProfileExporter.export -> CertificateRecorder.record -> ExportedProfile

All checks that need no key material (identity, format, passphrase policy,
network metadata) run before a key is generated. The pipeline runs under an
overall deadline. Nothing is recorded and nothing is returned unless every
step succeeded in time. Failures are never retried: a retry would mint a new
key and consume a new serial.
"""

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Protocol

from opentelemetry import context as otel_context
from opentelemetry import trace

from enrollment.ca.authority import Certificate, CertificateAuthority
from enrollment.ca.certificate_request import CertificateRequest, Validity, validate_identity
from enrollment.ca.key_config import KeyConfig
from enrollment.ca.key_pair import KeyPair
from enrollment.domain.states import ExportFormat
from enrollment.errors import (
    EnrollmentError,
    IssuanceError,
    IssuanceErrorKind,
    IssuanceTimeout,
    KeyImportFailed,
    capture_diagnostic,
)
from enrollment.export.profile_exporter import ExportedProfile, NetworkInput, ProfileExporter
from enrollment.export.schemas import NetworkProfile
from enrollment.metrics import enrollment_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

KeyFactory = Callable[[], KeyPair]


class CertificateRecorder(Protocol):
    """Persists the ledger entry of a delivered certificate."""

    def record(self, certificate: Certificate, export_format: ExportFormat) -> None: ...


class IssuanceService:
    """Orchestrates key generation, signing and export for one identity."""

    DEFAULT_VALIDITY_DAYS = 365
    DEFAULT_TIMEOUT_SECONDS = 30.0

    def __init__(
        self,
        authority: CertificateAuthority,
        exporter: ProfileExporter,
        recorder: CertificateRecorder | None = None,
        key_config: KeyConfig | None = None,
        validity_days: int | None = None,
        timeout_seconds: float | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.authority = authority
        self.exporter = exporter
        self.recorder = recorder
        self.key_config = key_config or KeyConfig()
        self.validity_days = validity_days or self.DEFAULT_VALIDITY_DAYS
        self.timeout_seconds = timeout_seconds or self.DEFAULT_TIMEOUT_SECONDS
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="issuance")

    def issue(
        self,
        identity: str,
        export_format: ExportFormat | str,
        passphrase: str | None = None,
        network: NetworkInput = None,
    ) -> ExportedProfile:
        """Issue a fresh key and certificate for `identity`.

        Args:
            identity: Authenticated identity (certificate subject).
            export_format: pem, pkcs12, mobileconfig or eap-metadata.
            passphrase: Protects the exported private key; None and "" mean none.
            network: Network metadata for Wi-Fi formats (defaults to configuration).

        Returns:
            The exported profile.

        Raises:
            IssuanceError: With `kind` naming the failing stage; the original
                error is chained as `__cause__`.
        """
        return self._issue(
            identity,
            export_format,
            passphrase,
            network,
            key_factory=lambda: KeyPair.generate(self.key_config),
            key_source="generated",
        )

    def issue_for_key(
        self,
        identity: str,
        export_format: ExportFormat | str,
        key_material: bytes | str,
        key_passphrase: str | None = None,
        passphrase: str | None = None,
        network: NetworkInput = None,
    ) -> ExportedProfile:
        """Issue a certificate for an existing private key (PEM or DER)."""
        return self._issue(
            identity,
            export_format,
            passphrase,
            network,
            key_factory=lambda: KeyPair.import_key(key_material, key_passphrase),
            key_source="imported",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "IssuanceService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _issue(
        self,
        identity: str,
        export_format: ExportFormat | str,
        passphrase: str | None,
        network: NetworkInput,
        key_factory: KeyFactory,
        key_source: str,
    ) -> ExportedProfile:
        with tracer.start_as_current_span("IssuanceService.issue") as span:
            span.set_attribute("key_source", key_source)
            start_time = time.time()

            try:
                validate_identity(identity)
                fmt, profile = self.exporter.validate(export_format, passphrase, network)
                span.set_attribute("format", fmt.value)

                exported, certificate = self._run_with_deadline(
                    identity, fmt, passphrase, profile, key_factory
                )
            except EnrollmentError as e:
                error = IssuanceError.wrap(e)
                self._record_failure(error, identity, start_time)
                raise error from e

            if self.recorder is not None:
                try:
                    self.recorder.record(certificate, fmt)
                except Exception as e:
                    error = IssuanceError(
                        IssuanceErrorKind.STORAGE_FAILED,
                        "Failed to record issued certificate",
                        capture_diagnostic(e),
                    )
                    self._record_failure(error, identity, start_time)
                    raise error from e

            span.set_attribute("serial", certificate.serial_hex)
            enrollment_metrics.record_issuance("issued", time.time() - start_time)
            logger.info(
                "certificate_issued",
                extra={
                    "subject": identity,
                    "serial": certificate.serial_hex,
                    "format": fmt.value,
                    "key_source": key_source,
                },
            )
            return exported

    def _run_with_deadline(
        self,
        identity: str,
        fmt: ExportFormat,
        passphrase: str | None,
        profile: NetworkProfile | None,
        key_factory: KeyFactory,
    ) -> tuple[ExportedProfile, Certificate]:
        parent_context = otel_context.get_current()

        def run() -> tuple[ExportedProfile, Certificate]:
            token = otel_context.attach(parent_context)
            try:
                return self._pipeline(identity, fmt, passphrase, profile, key_factory)
            finally:
                otel_context.detach(token)

        future = self._executor.submit(run)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as e:
            # Abandoned work may still consume a serial; its output is discarded
            future.cancel()
            raise IssuanceTimeout(
                f"Issuance exceeded the {self.timeout_seconds}s deadline"
            ) from e

    def _pipeline(
        self,
        identity: str,
        fmt: ExportFormat,
        passphrase: str | None,
        profile: NetworkProfile | None,
        key_factory: KeyFactory,
    ) -> tuple[ExportedProfile, Certificate]:
        with key_factory() as key_pair:
            if not key_pair.has_private_key:
                raise KeyImportFailed("Key material holds no private key")
            request = CertificateRequest.build(
                key_pair, identity, Validity.from_days(self.validity_days)
            )
            certificate = self.authority.sign(request)
            exported = self.exporter.export(key_pair, certificate, fmt, passphrase, profile)
        return exported, certificate

    def _record_failure(self, error: IssuanceError, identity: str, start_time: float) -> None:
        enrollment_metrics.record_issuance(error.kind.value, time.time() - start_time)
        logger.warning(
            "issuance_failed",
            extra={"subject": identity, "kind": error.kind.value, "error": str(error)},
        )
