"""OpenTelemetry metrics for the enrollment core."""

from collections.abc import Iterator

from opentelemetry import metrics

# Get meter for enrollment module
meter = metrics.get_meter("enrollment")

# Key generation
keys_generated_total = meter.create_counter(
    name="enrollment_keys_generated_total",
    description="Total key pairs generated",
    unit="1",
)

key_generation_duration = meter.create_histogram(
    name="enrollment_key_generation_duration_seconds",
    description="Key pair generation duration in seconds",
    unit="s",
)

# CA metrics
ca_certificates_signed_total = meter.create_counter(
    name="enrollment_ca_certificates_signed_total",
    description="Total certificates signed by CA",
    unit="1",
)

ca_policy_violations_total = meter.create_counter(
    name="enrollment_ca_policy_violations_total",
    description="Total signing requests rejected by CA policy",
    unit="1",
)

ca_serials_allocated_total = meter.create_counter(
    name="enrollment_ca_serials_allocated_total",
    description="Total serial numbers consumed, including gaps",
    unit="1",
)

# Export counters
profiles_exported_total = meter.create_counter(
    name="enrollment_profiles_exported_total",
    description="Total profiles exported",
    unit="1",
)

# Issuance
issuances_total = meter.create_counter(
    name="enrollment_issuances_total",
    description="Total issuance attempts",
    unit="1",
)

issuance_duration = meter.create_histogram(
    name="enrollment_issuance_duration_seconds",
    description="End-to-end issuance duration in seconds",
    unit="s",
)

# CA key loaded gauge - track storage type
_ca_key_storage_type: str | None = None


def _get_ca_key_loaded(
    options: metrics.CallbackOptions,
) -> Iterator[metrics.Observation]:
    """Callback to report CA key loaded status."""
    if _ca_key_storage_type:
        yield metrics.Observation(1, {"storage_type": _ca_key_storage_type})
    else:
        yield metrics.Observation(0, {"storage_type": "none"})


ca_key_loaded_gauge = meter.create_observable_gauge(
    name="enrollment_ca_key_loaded",
    description="CA key loaded (1=yes, 0=no)",
    unit="1",
    callbacks=[_get_ca_key_loaded],
)


class EnrollmentMetrics:
    """Facade for enrollment metrics with proper labels."""

    def record_key_generated(self, algorithm: str, duration_seconds: float) -> None:
        """Record key generation. Labels: algorithm=RSA-2048|EC-secp384r1|..."""
        keys_generated_total.add(1, {"algorithm": algorithm})
        key_generation_duration.record(duration_seconds, {"algorithm": algorithm})

    def record_certificate_signed(self) -> None:
        ca_certificates_signed_total.add(1)

    def record_policy_violation(self, rule: str) -> None:
        """Record policy rejection. Labels: rule=not_before|not_after|max_validity"""
        ca_policy_violations_total.add(1, {"rule": rule})

    def record_serial_allocated(self) -> None:
        ca_serials_allocated_total.add(1)

    def record_profile_exported(self, export_format: str) -> None:
        """Record profile export. Labels: format=pem|pkcs12|mobileconfig|eap-metadata"""
        profiles_exported_total.add(1, {"format": export_format})

    def record_issuance(self, result: str, duration_seconds: float) -> None:
        """Record issuance outcome. Labels: result=issued|<error kind>"""
        issuances_total.add(1, {"result": result})
        issuance_duration.record(duration_seconds, {"result": result})

    def record_ca_key_loaded(self, storage_type: str) -> None:
        """Record CA key loaded with storage type."""
        global _ca_key_storage_type
        _ca_key_storage_type = storage_type


# Singleton instance
enrollment_metrics = EnrollmentMetrics()
