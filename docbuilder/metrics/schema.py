"""
Declarative metric schema.

Every metric the process exports is listed once in METRIC_DESCRIPTORS. The
registry turns each entry into a live prometheus_client collector, so adding a
metric means adding a row here and nothing else.
"""

import re
import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from docbuilder.metrics.errors import SchemaError

# Legacy Prometheus charsets; newer prometheus_client releases accept any UTF-8 name
METRIC_NAME_PATTERN = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
LABEL_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


class MetricKind(str, Enum):
    GAUGE = "gauge"
    COUNTER = "counter"
    COUNTER_VEC = "counter_vec"
    HISTOGRAM_VEC = "histogram_vec"

    @property
    def is_labeled(self) -> bool:
        return self in (MetricKind.COUNTER_VEC, MetricKind.HISTOGRAM_VEC)


def is_linux() -> bool:
    return sys.platform.startswith("linux")


@dataclass(frozen=True)
class MetricDescriptor:
    name: str
    kind: MetricKind
    help: str
    label: Optional[str] = None
    # Evaluated once at registry construction; False means the metric does not exist
    platform: Optional[Callable[[], bool]] = None

    def is_available(self) -> bool:
        return self.platform is None or bool(self.platform())


def gauge(name: str, help: str, platform: Optional[Callable[[], bool]] = None) -> MetricDescriptor:
    return MetricDescriptor(name, MetricKind.GAUGE, help, platform=platform)


def counter(name: str, help: str) -> MetricDescriptor:
    return MetricDescriptor(name, MetricKind.COUNTER, help)


def counter_vec(name: str, label: str, help: str) -> MetricDescriptor:
    return MetricDescriptor(name, MetricKind.COUNTER_VEC, help, label=label)


def histogram_vec(name: str, label: str, help: str) -> MetricDescriptor:
    return MetricDescriptor(name, MetricKind.HISTOGRAM_VEC, help, label=label)


METRIC_DESCRIPTORS: tuple[MetricDescriptor, ...] = (
    gauge("queued_crates_count", "Number of crates in the build queue"),
    gauge("prioritized_crates_count", "Number of crates in the build queue that have a positive priority"),
    gauge("failed_crates_count", "Number of crates that failed to build"),
    gauge("idle_db_connections", "The number of idle database connections"),
    gauge("used_db_connections", "The number of used database connections"),
    gauge("max_db_connections", "The maximum number of database connections"),
    counter("failed_db_connections", "Number of attempted and failed connections to the database"),
    gauge("open_file_descriptors", "The number of currently opened file descriptors", platform=is_linux),
    gauge("running_threads", "The number of threads being used by docs.rs", platform=is_linux),
    counter_vec("routes_visited", "route", "The traffic of various docs.rs routes"),
    histogram_vec("response_time", "route", "The response times of various docs.rs routes"),
    histogram_vec("rustdoc_rendering_times", "step", "The time it takes to render a rustdoc page"),
    counter("total_builds", "Number of crates built"),
    counter("successful_builds", "Number of builds that successfully generated docs"),
    counter("failed_builds", "Number of builds that generated a compiler error"),
    counter("non_library_builds", "Number of builds that did not complete due to not being a library"),
    counter("uploaded_files_total", "Number of files uploaded to the storage backend"),
    counter("html_rewrite_ooms", "The number of attempted files that failed due to a memory limit"),
)

# Gauges refreshed from process introspection during gather
PROCESS_METRICS = ("open_file_descriptors", "running_threads")


def validate_schema(descriptors: Iterable[MetricDescriptor]) -> None:
    """
    Fail fast on declarations that can never register cleanly.

    Raises:
        SchemaError: on a malformed or duplicate name, or a label that disagrees with the kind.
    """
    seen: set[str] = set()
    for descriptor in descriptors:
        if not METRIC_NAME_PATTERN.match(descriptor.name):
            raise SchemaError(f"Metric name '{descriptor.name}' is not a valid Prometheus metric name")
        # Underscore names would be shadowed by MetricsRegistry's private attributes
        if descriptor.name.startswith("_"):
            raise SchemaError(f"Metric name '{descriptor.name}' must not start with an underscore")
        if descriptor.name in seen:
            raise SchemaError(f"Metric '{descriptor.name}' is declared more than once")
        seen.add(descriptor.name)

        if descriptor.kind.is_labeled and not descriptor.label:
            raise SchemaError(f"Metric '{descriptor.name}' of kind {descriptor.kind.value} needs a label dimension")
        if not descriptor.kind.is_labeled and descriptor.label is not None:
            raise SchemaError(f"Metric '{descriptor.name}' of kind {descriptor.kind.value} cannot carry a label")
        if descriptor.label is not None and not LABEL_NAME_PATTERN.match(descriptor.label):
            raise SchemaError(f"Metric '{descriptor.name}' has an invalid label name '{descriptor.label}'")


def applicable_descriptors(descriptors: Sequence[MetricDescriptor]) -> list[MetricDescriptor]:
    return [descriptor for descriptor in descriptors if descriptor.is_available()]
