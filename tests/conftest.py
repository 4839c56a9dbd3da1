import pytest
from prometheus_client.core import CollectorRegistry

from docbuilder.metrics.registry import MetricsRegistry
from tests.fakes import FakePool, FakeProcessStats, FakeQueue


@pytest.fixture
def collector_registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(collector_registry):
    return MetricsRegistry(collector_registry=collector_registry, process_stats=FakeProcessStats())


@pytest.fixture
def fake_pool():
    return FakePool()


@pytest.fixture
def fake_queue():
    return FakeQueue()
