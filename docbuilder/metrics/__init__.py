"""
Prometheus metrics for the documentation build service.
Declared once in the schema, registered once by MetricsRegistry.
"""

from .errors import MetricRegistrationError, SchemaError
from .registry import MetricsRegistry, Snapshot
from .schema import METRIC_DESCRIPTORS, MetricDescriptor, MetricKind

__all__ = [
    "METRIC_DESCRIPTORS",
    "MetricDescriptor",
    "MetricKind",
    "MetricRegistrationError",
    "MetricsRegistry",
    "SchemaError",
    "Snapshot",
]
