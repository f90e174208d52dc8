from opentelemetry import metrics
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource


def setup_metrics(app_name: str, export_interval_millis: int = 60_000) -> MeterProvider:
    """Configure OpenTelemetry metrics for the issuance core."""

    resource = Resource.create({"service.name": app_name})

    # Reader 1: Prometheus (pull model); the transport layer exposes /metrics
    prometheus_reader = PrometheusMetricReader()

    # Reader 2: Console, for local visibility
    console_reader = PeriodicExportingMetricReader(
        ConsoleMetricExporter(), export_interval_millis=export_interval_millis
    )

    provider = MeterProvider(resource=resource, metric_readers=[prometheus_reader, console_reader])

    metrics.set_meter_provider(provider)
    return provider
