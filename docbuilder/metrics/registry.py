"""
Central registry for the process's Prometheus metrics.

One MetricsRegistry is built at startup from the declarative schema and handed
to every component that records metrics. Counters and histograms are updated
by their owners as events happen; pool, queue and process gauges are pulled
fresh on every gather.

prometheus_client appends _total to counter samples and their HELP/TYPE lines,
so counter total_builds is scraped as docsrs_total_builds_total.
"""

from collections.abc import Iterator, Sequence
from typing import Optional, Union

from prometheus_client import Counter, Gauge, Histogram
from prometheus_client.core import CollectorRegistry, Metric
from prometheus_client.exposition import generate_latest

from docbuilder.metrics.errors import MetricRegistrationError, SchemaError
from docbuilder.metrics.interfaces import PoolStats, ProcessStatsSource, QueueStats
from docbuilder.metrics.process_stats import ProcessStats
from docbuilder.metrics.schema import (
    METRIC_DESCRIPTORS,
    PROCESS_METRICS,
    MetricDescriptor,
    MetricKind,
    applicable_descriptors,
    validate_schema,
)
from docbuilder.utils.config_loader import MetricsConfig
from docbuilder.utils.logger import LOGGER as logger

LiveMetric = Union[Counter, Gauge, Histogram]

# (gauge name, accessor name) pairs refreshed by gather, in read order
POOL_GAUGES = (
    ("idle_db_connections", "idle_connections"),
    ("used_db_connections", "used_connections"),
    ("max_db_connections", "max_size"),
)
QUEUE_GAUGES = (
    ("queued_crates_count", "pending_count"),
    ("prioritized_crates_count", "prioritized_count"),
    ("failed_crates_count", "failed_count"),
)
PROCESS_GAUGES = (
    ("open_file_descriptors", "open_file_descriptor_count"),
    ("running_threads", "thread_count"),
)


class Snapshot:
    """
    Point-in-time copy of every registered metric family.
    Quacks like a collector so the exposition helpers can render it directly.
    """

    def __init__(self, families: Sequence[Metric]) -> None:
        self._families: tuple[Metric, ...] = tuple(families)

    @property
    def families(self) -> tuple[Metric, ...]:
        return self._families

    def __iter__(self) -> Iterator[Metric]:
        return iter(self._families)

    def __len__(self) -> int:
        return len(self._families)

    def collect(self) -> Iterator[Metric]:
        return iter(self._families)

    def family(self, name: str) -> Optional[Metric]:
        for family in self._families:
            if family.name == name:
                return family
        return None

    def sample_value(self, sample_name: str, labels: Optional[dict[str, str]] = None) -> Optional[float]:
        """Value of the sample with exactly these labels, or None if it was never observed."""
        wanted = labels or {}
        for family in self._families:
            for sample in family.samples:
                if sample.name == sample_name and sample.labels == wanted:
                    return float(sample.value)
        return None

    def render(self) -> bytes:
        """Serialize to the Prometheus text exposition format."""
        return generate_latest(self)  # type: ignore[arg-type]


class MetricsRegistry:
    """
    Owns one live collector per applicable metric descriptor.

    Each collector is reachable as an attribute named after its descriptor,
    e.g. ``metrics.total_builds.inc()`` or
    ``metrics.routes_visited.labels(route="/").inc()``. Metrics whose platform
    predicate does not hold are never registered and have no attribute.
    """

    def __init__(
        self,
        metrics_config: Optional[MetricsConfig] = None,
        descriptors: Sequence[MetricDescriptor] = METRIC_DESCRIPTORS,
        collector_registry: Optional[CollectorRegistry] = None,
        process_stats: Optional[ProcessStatsSource] = None,
    ) -> None:
        validate_schema(descriptors)

        self._config = metrics_config or MetricsConfig()
        self._registry = collector_registry if collector_registry is not None else CollectorRegistry()
        self._metrics: dict[str, LiveMetric] = {}

        for descriptor in applicable_descriptors(descriptors):
            self._register(descriptor)

        self._process_stats: Optional[ProcessStatsSource] = None
        if any(name in self._metrics for name in PROCESS_METRICS):
            self._process_stats = process_stats if process_stats is not None else ProcessStats()

        logger.info(
            f"MetricsRegistry initialized with {len(self._metrics)} metrics under namespace '{self.namespace}'"
        )

    @property
    def namespace(self) -> str:
        return self._config.namespace

    @property
    def collector_registry(self) -> CollectorRegistry:
        return self._registry

    def _create(self, descriptor: MetricDescriptor) -> LiveMetric:
        namespace = self.namespace
        if descriptor.kind is MetricKind.GAUGE:
            return Gauge(descriptor.name, descriptor.help, namespace=namespace, registry=None)
        if descriptor.kind is MetricKind.COUNTER:
            return Counter(descriptor.name, descriptor.help, namespace=namespace, registry=None)
        if descriptor.kind is MetricKind.COUNTER_VEC:
            return Counter(descriptor.name, descriptor.help, [descriptor.label], namespace=namespace, registry=None)
        if descriptor.kind is MetricKind.HISTOGRAM_VEC:
            return Histogram(
                descriptor.name,
                descriptor.help,
                [descriptor.label],
                namespace=namespace,
                buckets=self._config.histogram_buckets,
                registry=None,
            )
        raise SchemaError(f"Metric '{descriptor.name}' has unsupported kind {descriptor.kind!r}")

    def _register(self, descriptor: MetricDescriptor) -> None:
        if hasattr(type(self), descriptor.name):
            raise SchemaError(f"Metric name '{descriptor.name}' collides with a MetricsRegistry attribute")

        full_name = self.full_name(descriptor.name)
        try:
            metric = self._create(descriptor)
            self._registry.register(metric)
        except ValueError as e:
            logger.error(f"Failed to register metric {full_name}: {e}")
            raise MetricRegistrationError(f"Failed to register metric '{full_name}': {e}") from e

        self._metrics[descriptor.name] = metric
        logger.debug(f"Registered metric: {full_name} of type {descriptor.kind.value}")

    def full_name(self, name: str) -> str:
        return f"{self.namespace}_{name}"

    def family_name(self, name: str) -> str:
        """Exported family name; prometheus_client drops a trailing ``_total`` from counters."""
        return self.get(name).describe()[0].name

    def names(self) -> list[str]:
        return list(self._metrics)

    def has(self, name: str) -> bool:
        return name in self._metrics

    def get(self, name: str) -> LiveMetric:
        try:
            return self._metrics[name]
        except KeyError:
            raise KeyError(f"Metric '{name}' is not registered") from None

    def __getattr__(self, name: str) -> LiveMetric:
        # Only reached when normal lookup fails, i.e. for metric accessors
        metrics = self.__dict__.get("_metrics", {})
        if name in metrics:
            return metrics[name]
        raise AttributeError(f"'{type(self).__name__}' object has no metric '{name}'")

    def _set_gauge(self, name: str, value: int) -> None:
        metric = self._metrics.get(name)
        if metric is not None:
            metric.set(value)  # type: ignore[union-attr]

    async def gather(self, pool: PoolStats, queue: QueueStats) -> Snapshot:
        """
        Refresh pool, queue and process gauges, then snapshot every registered family.

        The first failing read aborts the call and propagates unchanged; no
        partial snapshot is returned. Gauges set before the failure keep their
        new values.
        """
        for metric_name, reader in POOL_GAUGES:
            self._set_gauge(metric_name, getattr(pool, reader)())

        try:
            for metric_name, reader in QUEUE_GAUGES:
                self._set_gauge(metric_name, await getattr(queue, reader)())
            self._gather_process_stats()
        except Exception as e:
            logger.error(f"Metrics gather aborted: {type(e).__name__}: {e}")
            raise

        return Snapshot(list(self._registry.collect()))

    def _gather_process_stats(self) -> None:
        if self._process_stats is None:
            return
        for metric_name, reader in PROCESS_GAUGES:
            self._set_gauge(metric_name, getattr(self._process_stats, reader)())
