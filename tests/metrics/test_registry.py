"""
Tests for MetricsRegistry construction, ambient accessors and gather.
"""

import psutil
import pytest
from prometheus_client.core import CollectorRegistry

from docbuilder.build_queue.queue import BuildQueueError
from docbuilder.metrics.errors import MetricRegistrationError, SchemaError
from docbuilder.metrics.registry import MetricsRegistry, Snapshot
from docbuilder.metrics.schema import METRIC_DESCRIPTORS, counter, counter_vec, gauge, histogram_vec, is_linux
from docbuilder.utils.config_loader import MetricsConfig
from tests.fakes import FakePool, FakeProcessStats, FakeQueue


class TestConstruction:
    def test_registers_every_applicable_descriptor(self, metrics):
        expected = [d.name for d in METRIC_DESCRIPTORS if d.is_available()]
        assert metrics.names() == expected
        for name in expected:
            assert getattr(metrics, name) is metrics.get(name)

    def test_names_are_prefixed_with_namespace(self, metrics):
        assert metrics.namespace == "docsrs"
        assert metrics.full_name("total_builds") == "docsrs_total_builds"
        assert metrics.family_name("queued_crates_count") == "docsrs_queued_crates_count"
        # prometheus_client exports counters ending in _total under the stripped family name
        assert metrics.family_name("uploaded_files_total") == "docsrs_uploaded_files"

    def test_custom_namespace(self, collector_registry):
        registry = MetricsRegistry(
            MetricsConfig(namespace="staging"),
            descriptors=[gauge("depth", "Depth")],
            collector_registry=collector_registry,
        )
        assert registry.family_name("depth") == "staging_depth"

    def test_same_names_twice_in_one_backend_fails(self, collector_registry):
        MetricsRegistry(collector_registry=collector_registry, process_stats=FakeProcessStats())

        with pytest.raises(MetricRegistrationError, match="docsrs_"):
            MetricsRegistry(collector_registry=collector_registry, process_stats=FakeProcessStats())

    def test_same_names_in_separate_namespaces_coexist(self, collector_registry):
        descriptors = [counter("total_builds", "Number of crates built")]
        MetricsRegistry(MetricsConfig(namespace="a"), descriptors, collector_registry)
        MetricsRegistry(MetricsConfig(namespace="b"), descriptors, collector_registry)

        assert collector_registry.get_sample_value("a_total_builds_total") == 0.0
        assert collector_registry.get_sample_value("b_total_builds_total") == 0.0

    def test_duplicate_declaration_is_a_schema_error(self, collector_registry):
        descriptors = [gauge("depth", "Depth"), gauge("depth", "Depth")]
        with pytest.raises(SchemaError):
            MetricsRegistry(descriptors=descriptors, collector_registry=collector_registry)

    def test_name_colliding_with_registry_attribute_is_rejected(self, collector_registry):
        with pytest.raises(SchemaError, match="gather"):
            MetricsRegistry(descriptors=[gauge("gather", "Oops")], collector_registry=collector_registry)

    @pytest.mark.parametrize("name", ["bad-name", "has space", "9starts_digit", "_registry", "_config"])
    def test_malformed_name_is_rejected_before_registration(self, collector_registry, name):
        with pytest.raises(SchemaError):
            MetricsRegistry(
                descriptors=[gauge("depth", "Depth"), gauge(name, "Oops")], collector_registry=collector_registry
            )

        assert collector_registry.get_sample_value("docsrs_depth") is None
        assert list(collector_registry.collect()) == []

    def test_names_differing_only_by_dash_are_rejected(self, collector_registry):
        descriptors = [gauge("queue-depth", "Depth"), gauge("queue_depth", "Depth")]
        with pytest.raises(SchemaError, match="queue-depth"):
            MetricsRegistry(descriptors=descriptors, collector_registry=collector_registry)

        assert collector_registry.get_sample_value("docsrs_queue_depth") is None

    def test_platform_absent_metric_has_no_accessor(self, collector_registry):
        registry = MetricsRegistry(
            descriptors=[gauge("present", "Present"), gauge("absent", "Absent", platform=lambda: False)],
            collector_registry=collector_registry,
        )

        assert registry.has("present")
        assert not registry.has("absent")
        assert not hasattr(registry, "absent")
        with pytest.raises(KeyError, match="absent"):
            registry.get("absent")

    @pytest.mark.skipif(not is_linux(), reason="process metrics are registered on Linux only")
    def test_process_metrics_registered_on_linux(self, metrics):
        assert metrics.has("open_file_descriptors")
        assert metrics.has("running_threads")


class TestAmbientAccessors:
    @pytest.mark.asyncio
    async def test_gauge_reports_exact_value(self, collector_registry, fake_pool, fake_queue):
        registry = MetricsRegistry(descriptors=[gauge("depth", "Depth")], collector_registry=collector_registry)
        registry.depth.set(-17.25)

        snapshot = await registry.gather(fake_pool, fake_queue)

        assert snapshot.sample_value("docsrs_depth") == -17.25

    @pytest.mark.asyncio
    async def test_counter_reports_cumulative_sum(self, metrics, fake_pool, fake_queue):
        for _ in range(3):
            metrics.total_builds.inc()
        metrics.total_builds.inc(4)
        metrics.uploaded_files_total.inc(2)

        snapshot = await metrics.gather(fake_pool, fake_queue)

        assert snapshot.sample_value("docsrs_total_builds_total") == 7.0
        assert snapshot.sample_value("docsrs_uploaded_files_total") == 2.0

    def test_counter_rejects_decrement(self, metrics):
        with pytest.raises(ValueError):
            metrics.failed_builds.inc(-1)

    @pytest.mark.asyncio
    async def test_counter_vec_creates_series_per_label(self, metrics, fake_pool, fake_queue):
        metrics.routes_visited.labels(route="foo").inc()
        first = await metrics.gather(fake_pool, fake_queue)
        assert first.sample_value("docsrs_routes_visited_total", {"route": "foo"}) == 1.0

        metrics.routes_visited.labels(route="foo").inc()
        metrics.routes_visited.labels(route="bar").inc()
        second = await metrics.gather(fake_pool, fake_queue)

        assert second.sample_value("docsrs_routes_visited_total", {"route": "foo"}) == 2.0
        assert second.sample_value("docsrs_routes_visited_total", {"route": "bar"}) == 1.0
        assert second.sample_value("docsrs_routes_visited_total", {"route": "baz"}) is None

    @pytest.mark.asyncio
    async def test_histogram_vec_observations(self, collector_registry, fake_pool, fake_queue):
        registry = MetricsRegistry(
            MetricsConfig(histogram_buckets=[0.1, 1.0]),
            descriptors=[histogram_vec("rustdoc_rendering_times", "step", "Render time")],
            collector_registry=collector_registry,
        )
        registry.rustdoc_rendering_times.labels(step="parse").observe(0.05)
        registry.rustdoc_rendering_times.labels(step="parse").observe(0.5)

        snapshot = await registry.gather(fake_pool, fake_queue)

        labels = {"step": "parse"}
        assert snapshot.sample_value("docsrs_rustdoc_rendering_times_count", labels) == 2.0
        assert snapshot.sample_value("docsrs_rustdoc_rendering_times_sum", labels) == pytest.approx(0.55)
        assert snapshot.sample_value("docsrs_rustdoc_rendering_times_bucket", {"step": "parse", "le": "0.1"}) == 1.0


class TestGather:
    @pytest.mark.asyncio
    async def test_end_to_end_gauges(self, metrics):
        snapshot = await metrics.gather(
            FakePool(idle=3, used=7, max_size=10), FakeQueue(pending=42, prioritized=5, failed=1)
        )

        assert snapshot.sample_value("docsrs_idle_db_connections") == 3.0
        assert snapshot.sample_value("docsrs_used_db_connections") == 7.0
        assert snapshot.sample_value("docsrs_max_db_connections") == 10.0
        assert snapshot.sample_value("docsrs_queued_crates_count") == 42.0
        assert snapshot.sample_value("docsrs_prioritized_crates_count") == 5.0
        assert snapshot.sample_value("docsrs_failed_crates_count") == 1.0

    @pytest.mark.asyncio
    async def test_every_registered_metric_is_in_snapshot(self, metrics, fake_pool, fake_queue):
        snapshot = await metrics.gather(fake_pool, fake_queue)

        help_texts = {d.name: d.help for d in METRIC_DESCRIPTORS}
        assert isinstance(snapshot, Snapshot)
        assert len(snapshot) == len(metrics.names())
        for name in metrics.names():
            family = snapshot.family(metrics.family_name(name))
            assert family is not None, name
            assert family.documentation == help_texts[name]

    @pytest.mark.asyncio
    async def test_snapshot_is_point_in_time(self, metrics, fake_pool, fake_queue):
        metrics.total_builds.inc()
        snapshot = await metrics.gather(fake_pool, fake_queue)
        metrics.total_builds.inc()

        assert snapshot.sample_value("docsrs_total_builds_total") == 1.0

    @pytest.mark.asyncio
    async def test_pending_count_failure_aborts_gather(self, metrics, collector_registry, fake_pool):
        queue = FakeQueue(fail_on="pending_count")

        with pytest.raises(BuildQueueError):
            await metrics.gather(fake_pool, queue)

        assert queue.calls == ["pending_count"]
        # Pool reads happened before the failure and are kept
        assert collector_registry.get_sample_value("docsrs_idle_db_connections") == 3.0

    @pytest.mark.asyncio
    async def test_later_queue_failure_propagates_unchanged(self, metrics, fake_pool):
        queue = FakeQueue(fail_on="failed_count")

        with pytest.raises(BuildQueueError, match="unavailable"):
            await metrics.gather(fake_pool, queue)

        assert queue.calls == ["pending_count", "prioritized_count", "failed_count"]

    @pytest.mark.skipif(not is_linux(), reason="process metrics are registered on Linux only")
    @pytest.mark.asyncio
    async def test_process_stats_refreshed(self, metrics, fake_pool, fake_queue):
        snapshot = await metrics.gather(fake_pool, fake_queue)

        assert snapshot.sample_value("docsrs_open_file_descriptors") == 12.0
        assert snapshot.sample_value("docsrs_running_threads") == 4.0

    @pytest.mark.skipif(not is_linux(), reason="process metrics are registered on Linux only")
    @pytest.mark.asyncio
    async def test_process_stats_failure_propagates(self, collector_registry, fake_pool, fake_queue):
        error = psutil.AccessDenied(pid=1)
        registry = MetricsRegistry(collector_registry=collector_registry, process_stats=FakeProcessStats(error=error))

        with pytest.raises(psutil.AccessDenied):
            await registry.gather(fake_pool, fake_queue)

    @pytest.mark.skipif(not is_linux(), reason="process metrics are registered on Linux only")
    @pytest.mark.asyncio
    async def test_real_process_stats(self, collector_registry, fake_pool, fake_queue):
        registry = MetricsRegistry(collector_registry=collector_registry)

        snapshot = await registry.gather(fake_pool, fake_queue)

        assert snapshot.sample_value("docsrs_open_file_descriptors") > 0
        assert snapshot.sample_value("docsrs_running_threads") >= 1

    @pytest.mark.asyncio
    async def test_schema_without_pulled_gauges_still_gathers(self, collector_registry, fake_pool, fake_queue):
        registry = MetricsRegistry(
            descriptors=[counter_vec("routes_visited", "route", "Traffic")], collector_registry=collector_registry
        )

        snapshot = await registry.gather(fake_pool, fake_queue)

        assert [family.name for family in snapshot] == ["docsrs_routes_visited"]
        assert fake_queue.calls == ["pending_count", "prioritized_count", "failed_count"]


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_render_uses_text_exposition_format(self, metrics, fake_pool, fake_queue):
        metrics.routes_visited.labels(route="/crate/:name").inc()

        text = (await metrics.gather(fake_pool, fake_queue)).render().decode("utf-8")

        assert "# HELP docsrs_total_builds_total Number of crates built" in text
        assert "# TYPE docsrs_total_builds_total counter" in text
        assert "# TYPE docsrs_queued_crates_count gauge" in text
        assert "docsrs_queued_crates_count 42.0" in text
        assert 'docsrs_routes_visited_total{route="/crate/:name"} 1.0' in text

    def test_unknown_family_and_sample(self):
        snapshot = Snapshot([])
        assert snapshot.family("missing") is None
        assert snapshot.sample_value("missing") is None
        assert list(snapshot) == []

    def test_independent_backends_do_not_collide(self):
        MetricsRegistry(collector_registry=CollectorRegistry(), process_stats=FakeProcessStats())
        MetricsRegistry(collector_registry=CollectorRegistry(), process_stats=FakeProcessStats())
