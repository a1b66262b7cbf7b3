"""
Pytest configuration and shared fixtures.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from cloud_bridge.config.models import BridgeConfig, ProviderConfig, ScheduleConfig
from cloud_bridge.models.core import (
    PROVIDER_ID_PROPERTY, PROVIDER_TYPE_PROPERTY,
    DiscoveredNode, Metric, MetricBatch, Resource, RunKind, ValidationResult
)
from cloud_bridge.monitoring.execution_history import ExecutionHistoryTracker
from cloud_bridge.monitoring.status_tracker import RunStatusTracker
from cloud_bridge.orchestration.cache import ResultCache
from cloud_bridge.providers.base import CloudProvider
from cloud_bridge.providers.registry import ProviderRegistry
from cloud_bridge.service import BridgeService
from cloud_bridge.sinks.base import ReconciliationSink
from cloud_bridge.utils.errors import DownstreamPushError, ProviderError


def make_resource(
    resource_id: str,
    provider_id: str = "p1",
    region: str = "us-east-1",
    status: str = "running",
    resource_type: str = "EC2",
    **properties
) -> Resource:
    """Build an EC2-like resource owned by ``provider_id``."""
    props = {
        PROVIDER_ID_PROPERTY: provider_id,
        PROVIDER_TYPE_PROPERTY: "aws",
        "private_ip_address": "10.0.0.1",
    }
    props.update(properties)
    return Resource(
        id=resource_id,
        display_name=f"Instance {resource_id}",
        resource_type=resource_type,
        region=region,
        status=status,
        tags={"Name": f"Instance {resource_id}"},
        properties=props,
    )


class FakeProvider(CloudProvider):
    """
    Scripted provider.

    Each discover() call returns the next scripted result; the last one
    repeats. collect() returns one metric per call unless the resource is
    listed in ``failing``. Setting ``collect_gate`` blocks collect() until
    the event is set.
    """

    provider_type = "aws"

    def __init__(
        self,
        provider_id: str = "p1",
        discoveries: Optional[List[Iterable[Resource]]] = None,
        failing: Iterable[str] = ()
    ):
        super().__init__(ProviderConfig(provider_id=provider_id, backend="mock"))
        self.discoveries = [frozenset(result) for result in (discoveries or [])]
        self.failing = set(failing)
        self.discover_error: Optional[Exception] = None
        self.collect_error: Optional[Exception] = None
        self.collect_gate: Optional[threading.Event] = None
        self.discover_calls = 0
        self.collect_calls: List[str] = []
        self.closed = False

    def validate(self) -> ValidationResult:
        return ValidationResult.valid()

    def discover(self):
        self.discover_calls += 1
        if self.discover_error is not None:
            raise self.discover_error
        if not self.discoveries:
            return frozenset()
        if len(self.discoveries) > 1:
            return self.discoveries.pop(0)
        return self.discoveries[0]

    def collect(self, resource: Resource) -> MetricBatch:
        self.collect_calls.append(resource.id)
        if self.collect_gate is not None:
            self.collect_gate.wait(5)
        if self.collect_error is not None:
            raise self.collect_error
        if resource.id in self.failing:
            raise ProviderError(
                self.provider_id,
                f"Collection failed for {resource.id}",
                error_code="COLLECTION_FAILED",
                resource_id=resource.id
            )
        return MetricBatch(
            resource_id=resource.id,
            metrics=[Metric("CPUUtilization.Average", 42.0, {"resource_id": resource.id})],
            tags={"provider_id": self.provider_id},
        )

    def close(self) -> None:
        self.closed = True


class RecordingSink(ReconciliationSink):
    """
    Sink that records every call.

    Upserted nodes are provisioned immediately, so a later lookup of the
    same foreign id finds a node.
    """

    def __init__(self, node_ids: Optional[Dict[str, str]] = None, provision_on_upsert: bool = True):
        self.node_ids: Dict[str, str] = dict(node_ids or {})
        self.provision_on_upsert = provision_on_upsert
        self.upserts: List[Tuple[str, List[DiscoveredNode]]] = []
        self.synchronized: List[str] = []
        self.submitted: List[Tuple[str, MetricBatch]] = []
        self.lookups: List[Tuple[str, str]] = []
        self.fail_upsert = False
        self.fail_submit = False
        self.closed = False

    async def upsert_nodes(self, foreign_source, nodes):
        if self.fail_upsert:
            raise DownstreamPushError("upsert_nodes", "OpenNMS unavailable", foreign_source=foreign_source)
        nodes = list(nodes)
        self.upserts.append((foreign_source, nodes))
        if self.provision_on_upsert:
            for node in nodes:
                self.node_ids.setdefault(node.foreign_id, str(len(self.node_ids) + 1))

    async def synchronize(self, foreign_source):
        self.synchronized.append(foreign_source)

    async def submit_metrics(self, node_id, batch):
        if self.fail_submit:
            raise DownstreamPushError("submit_metrics", "OpenNMS unavailable", node_id=node_id)
        self.submitted.append((node_id, batch))

    async def find_node_by_foreign_id(self, foreign_source, foreign_id):
        self.lookups.append((foreign_source, foreign_id))
        return self.node_ids.get(foreign_id)

    async def close(self):
        self.closed = True


@pytest.fixture
def resources():
    """Three resources of provider p1."""
    return [make_resource("i-1"), make_resource("i-2"), make_resource("i-3")]


@pytest.fixture
def provider(resources):
    """Fake provider p1 discovering the three resources."""
    return FakeProvider("p1", discoveries=[resources])


@pytest.fixture
def registry(provider):
    registry = ProviderRegistry()
    registry.register(provider)
    return registry


@pytest.fixture
def cache():
    return ResultCache()


@pytest.fixture
def history():
    return ExecutionHistoryTracker(max_records_per_entity=50)


@pytest.fixture
def discovery_tracker(history):
    return RunStatusTracker(RunKind.DISCOVERY, history)


@pytest.fixture
def collection_tracker(history):
    return RunStatusTracker(RunKind.COLLECTION, history)


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def schedule():
    """A schedule that never fires during a test."""
    return ScheduleConfig(interval=timedelta(hours=1), initial_delay=timedelta(hours=1))


@pytest.fixture
def service(provider, sink):
    """Bridge service with provider p1 and a recording sink."""
    bridge = BridgeService(BridgeConfig(), sink=sink)
    bridge.register_provider(provider)
    yield bridge
    bridge.executor.shutdown(wait=False)
