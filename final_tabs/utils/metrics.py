"""
OpenTelemetry metrics configuration for Final Tabs.

Counters and histograms for the fetch, build, capture and posting stages.
Metrics are always collected; they are exported over OTLP/HTTP only when
OTEL_EXPORTER_OTLP_ENDPOINT is set.
"""

import logging
import os
import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Optional

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import Counter, Histogram, MeterProvider
from opentelemetry.sdk.metrics.export import (
    AggregationTemporality,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource

from .. import __version__

logger = logging.getLogger(__name__)


# attribute name -> (instrument name, description)
COUNTERS = {
    "games_fetched_counter": ("games_fetched_total", "Finished games returned by the scoreboard"),
    "receipts_built_counter": ("receipts_built_total", "Receipts built from finished games"),
    "receipt_build_errors_counter": (
        "receipt_build_errors_total",
        "Games that could not be turned into a receipt, by error type",
    ),
    "receipts_captured_counter": (
        "receipts_captured_total",
        "Receipt images captured from the rendered document",
    ),
    "posts_counter": ("posts_total", "Publish outcomes by result"),
    "api_calls_counter": ("api_calls_total", "Requests made to the scoreboard provider"),
    "browser_operations_counter": ("browser_operations_total", "Browser operations performed"),
}

HISTOGRAMS = {
    "operation_duration_histogram": (
        "operation_duration_seconds",
        "Time spent in each pipeline stage",
    ),
    "api_call_duration_histogram": (
        "api_call_duration_seconds",
        "Scoreboard provider response times",
    ),
    "browser_operation_duration_histogram": (
        "browser_operation_duration_seconds",
        "Time spent loading, clicking and screenshotting",
    ),
    "execution_duration_histogram": (
        "application_execution_duration_seconds",
        "Wall time of a whole CLI invocation",
    ),
}


def parse_otlp_headers(raw: str) -> dict[str, str]:
    """Parse ``key=value,key=value`` as used by OTEL_EXPORTER_OTLP_HEADERS."""
    headers = {}
    for pair in raw.split(","):
        if "=" in pair:
            key, value = pair.strip().split("=", 1)
            headers[key] = value
    return headers


class FinalTabsMetrics:
    """
    OpenTelemetry instruments for one final-tabs process.

    Every instrument in COUNTERS and HISTOGRAMS is available as an attribute,
    so recording never has to check whether export is configured.
    """

    def __init__(self, service_name: str = "final-tabs", service_version: str = __version__):
        self.service_name = service_name
        self.service_version = service_version

        resource = Resource.create(
            {
                "service.name": service_name,
                "service.version": service_version,
                "service.instance.id": os.getenv("HOSTNAME", "local"),
                "deployment.environment": os.getenv("DEPLOYMENT_ENV", "production"),
            }
        )

        self.metric_readers = self._build_readers()
        self.meter_provider = MeterProvider(
            resource=resource, metric_readers=self.metric_readers
        )
        metrics.set_meter_provider(self.meter_provider)
        self.meter = metrics.get_meter(service_name, service_version)

        for attribute, (name, description) in COUNTERS.items():
            setattr(
                self,
                attribute,
                self.meter.create_counter(name=name, description=description, unit="1"),
            )
        for attribute, (name, description) in HISTOGRAMS.items():
            setattr(
                self,
                attribute,
                self.meter.create_histogram(name=name, description=description, unit="s"),
            )

    @staticmethod
    def _build_readers() -> list[PeriodicExportingMetricReader]:
        endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        if not endpoint:
            logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, metrics stay in-process")
            return []

        try:
            exporter = OTLPMetricExporter(
                endpoint=endpoint,
                headers=parse_otlp_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS", "")),
                timeout=30,
                preferred_temporality={
                    Counter: AggregationTemporality.DELTA,
                    Histogram: AggregationTemporality.DELTA,
                },
            )
            reader = PeriodicExportingMetricReader(
                exporter=exporter,
                export_interval_millis=int(os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "5000")),
                export_timeout_millis=int(os.getenv("OTEL_METRIC_EXPORT_TIMEOUT", "30000")),
            )
        except Exception as e:
            logger.warning(
                "OTLP metrics exporter not configured: %s", e, extra={"endpoint": endpoint}
            )
            return []

        logger.info("Exporting metrics over OTLP", extra={"endpoint": endpoint})
        return [reader]

    def _attributes(self, labels: Optional[dict[str, str]], **extra: str) -> dict[str, str]:
        attributes = dict(labels or {})
        attributes.update({"service": self.service_name, **extra})
        return attributes

    def record_games_fetched(
        self, count: int, labels: Optional[dict[str, str]] = None
    ) -> None:
        """Record the number of finished games fetched for a date."""
        self.games_fetched_counter.add(count, self._attributes(labels))

    def record_receipts_built(
        self, count: int, labels: Optional[dict[str, str]] = None
    ) -> None:
        """Record the number of receipts built."""
        self.receipts_built_counter.add(count, self._attributes(labels))

    def record_build_error(
        self, error_type: str, labels: Optional[dict[str, str]] = None
    ) -> None:
        """Record a game that failed to build into a receipt."""
        self.receipt_build_errors_counter.add(
            1, self._attributes(labels, error_type=error_type)
        )

    def record_receipts_captured(
        self, count: int, labels: Optional[dict[str, str]] = None
    ) -> None:
        """Record the number of captured receipt images."""
        self.receipts_captured_counter.add(count, self._attributes(labels))

    def record_post(
        self,
        result: str,
        failure_kind: Optional[str] = None,
        labels: Optional[dict[str, str]] = None,
    ) -> None:
        """
        Record one publish outcome.

        Args:
            result: posted, skipped or failed
            failure_kind: authorization or transient for failures
            labels: Additional labels for the metric
        """
        attributes = self._attributes(labels, result=result)
        if failure_kind:
            attributes["failure_kind"] = failure_kind
        self.posts_counter.add(1, attributes)

    def record_api_call(
        self,
        endpoint: str,
        method: str,
        status_code: int,
        duration_seconds: float,
        labels: Optional[dict[str, str]] = None,
    ) -> None:
        """
        Record an API call with timing and status information.

        Args:
            endpoint: API endpoint called
            method: HTTP method used
            status_code: HTTP response status code (0 for network errors)
            duration_seconds: Request duration in seconds
            labels: Additional labels for the metric
        """
        attributes = self._attributes(
            labels,
            endpoint=endpoint,
            method=method,
            status_code=str(status_code),
            status_class=f"{status_code // 100}xx",
        )
        self.api_calls_counter.add(1, attributes)
        self.api_call_duration_histogram.record(duration_seconds, attributes)

    def record_browser_operation(
        self,
        operation: str,
        success: bool,
        duration_seconds: float,
        labels: Optional[dict[str, str]] = None,
    ) -> None:
        """
        Record a browser operation with timing and success information.

        Args:
            operation: Browser operation performed
            success: Whether operation was successful
            duration_seconds: Operation duration in seconds
            labels: Additional labels for the metric
        """
        attributes = self._attributes(
            labels, operation=operation, success=str(success).lower()
        )
        self.browser_operations_counter.add(1, attributes)
        self.browser_operation_duration_histogram.record(duration_seconds, attributes)

    @contextmanager
    def time_operation(
        self, operation_name: str, labels: Optional[dict[str, str]] = None
    ) -> Generator[None, None, None]:
        """
        Context manager to time a pipeline stage and record the duration.

        Args:
            operation_name: Name of the operation being timed
            labels: Additional labels for the metric
        """
        start_time = time.time()
        try:
            yield
        finally:
            self.operation_duration_histogram.record(
                time.time() - start_time,
                self._attributes(labels, operation=operation_name),
            )

    @contextmanager
    def time_execution(
        self, labels: Optional[dict[str, str]] = None
    ) -> Generator[None, None, None]:
        """Context manager to time a whole CLI execution."""
        start_time = time.time()
        try:
            yield
        finally:
            self.execution_duration_histogram.record(
                time.time() - start_time,
                self._attributes(labels, instance=os.getenv("HOSTNAME", "local")),
            )

    def shutdown(self, timeout_seconds: int = 30) -> bool:
        """
        Force flush pending metrics and shut the provider down.

        Args:
            timeout_seconds: Maximum time to wait for export completion

        Returns:
            True if shutdown succeeded, False otherwise
        """
        try:
            for reader in self.metric_readers:
                reader.force_flush(timeout_millis=timeout_seconds * 1000)

            self.meter_provider.shutdown()
            logger.info("Metrics shutdown completed successfully")
            return True

        except Exception as e:
            logger.error(f"Error during metrics shutdown: {e}", exc_info=True)
            return False


final_tabs_metrics = FinalTabsMetrics()


def get_metrics() -> FinalTabsMetrics:
    return final_tabs_metrics
