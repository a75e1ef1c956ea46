"""
Shared metrics configuration for the collection resource service.
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
from typing import Dict, Any, Optional
import threading


class MetricsCollector:
    """Centralized metrics collector for a service.

    Each collector owns its own ``CollectorRegistry`` unless one is passed
    in, so several app instances can live in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_resource_metrics()

    def _setup_resource_metrics(self):
        """Set up permission and event-stream metrics."""
        self._metrics["permission_denials_total"] = Counter(
            "permission_denials_total",
            "Total permission denials",
            ["resource", "operation"],
            registry=self.registry
        )

        self._metrics["sse_active_subscriptions"] = Gauge(
            "sse_active_subscriptions",
            "Number of open event-stream subscriptions",
            registry=self.registry
        )

        self._metrics["sse_events_sent_total"] = Counter(
            "sse_events_sent_total",
            "Total change events pushed to subscribers",
            ["resource", "event"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_permission_denial(self, resource: str, operation: str):
        self._metrics["permission_denials_total"].labels(resource=resource, operation=operation).inc()

    def record_event_sent(self, resource: str, event: str):
        self._metrics["sse_events_sent_total"].labels(resource=resource, event=event).inc()

    def set_active_subscriptions(self, count: int):
        with self._lock:
            self._metrics["sse_active_subscriptions"].set(count)

    def render(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
