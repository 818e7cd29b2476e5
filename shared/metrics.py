"""
Shared metrics configuration for the cargo billing rules service.
"""

import time
import threading
from contextlib import contextmanager
from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, start_http_server


class MetricsCollector:
    """Centralized metrics collector for the rules service."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up rule engine metrics."""
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        self._metrics["records_evaluated_total"] = Counter(
            "records_evaluated_total",
            "Total records evaluated against a rule set",
            ["rule_set"],
            registry=self.registry
        )

        self._metrics["assignment_decisions_total"] = Counter(
            "assignment_decisions_total",
            "Assignment decisions by status",
            ["rule_set", "status"],
            registry=self.registry
        )

        self._metrics["data_quality_issues_total"] = Counter(
            "data_quality_issues_total",
            "Malformed conditions degraded to non-match",
            ["kind"],
            registry=self.registry
        )

        self._metrics["batch_duration_seconds"] = Histogram(
            "batch_duration_seconds",
            "Assignment batch duration in seconds",
            ["rule_set"],
            registry=self.registry
        )

        self._metrics["reorders_total"] = Counter(
            "reorders_total",
            "Priority reorders by result",
            ["rule_set", "result"],
            registry=self.registry
        )

        self._metrics["reorder_phase_duration_seconds"] = Histogram(
            "reorder_phase_duration_seconds",
            "Two-phase reorder phase duration in seconds",
            ["rule_set", "phase"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            if operation_name in self._metrics:
                self._metrics[operation_name].labels(**labels).observe(duration)

    def increment_counter(self, metric_name: str, amount: float = 1, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc(amount)

    def sample(self, metric_name: str, **labels) -> float:
        """Read the current value of a labelled counter (``_total`` sample)."""
        value = self.registry.get_sample_value(metric_name, labels)
        return value or 0.0


_collectors: Dict[str, MetricsCollector] = {}
_collectors_lock = threading.Lock()


def get_metrics_collector(service_name: str = "rules") -> MetricsCollector:
    """Get the process-wide metrics collector for a service."""
    with _collectors_lock:
        if service_name not in _collectors:
            _collectors[service_name] = MetricsCollector(service_name)
        return _collectors[service_name]
