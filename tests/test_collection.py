"""
Tests for the collection orchestrator.
"""

import pytest

from cloud_bridge.models.core import MetricBatch, RunState
from cloud_bridge.orchestration.collection import CollectionOrchestrator
from cloud_bridge.orchestration.discovery import DiscoveryOrchestrator
from cloud_bridge.utils.errors import ConfigurationError, ProviderError

from tests.conftest import FakeProvider, make_resource


@pytest.fixture
def discovery(registry, discovery_tracker, cache, executor):
    return DiscoveryOrchestrator(registry, discovery_tracker, cache, executor=executor)


@pytest.fixture
def orchestrator(registry, collection_tracker, discovery, executor, sink):
    return CollectionOrchestrator(registry, collection_tracker, discovery, executor=executor, sink=sink)


@pytest.mark.asyncio
async def test_collect_requires_mapping(orchestrator, collection_tracker, provider):
    result = await orchestrator.collect(make_resource("i-1"))

    assert isinstance(result.error, ConfigurationError)
    assert result.error.error_code == "NO_PROVIDER_MAPPING"
    assert provider.collect_calls == []
    assert "i-1" not in collection_tracker


@pytest.mark.asyncio
async def test_collect_for_records_mapping(orchestrator, collection_tracker):
    resource = make_resource("i-1")

    result = await orchestrator.collect_for("p1", resource, push=False)

    assert result.success
    assert isinstance(result.value, MetricBatch)
    assert orchestrator.provider_for("i-1") == "p1"

    status = collection_tracker.get("i-1")
    assert status.state == RunState.COMPLETED
    assert status.last_result_count == 1
    assert status.entity_type == "EC2"
    assert status.provider_id == "p1"

    again = await orchestrator.collect(resource, push=False)
    assert again.success


@pytest.mark.asyncio
async def test_collect_for_unknown_provider(orchestrator):
    result = await orchestrator.collect_for("nope", make_resource("i-1"))

    assert isinstance(result.error, ConfigurationError)
    assert orchestrator.provider_for("i-1") is None


@pytest.mark.asyncio
async def test_collection_failure(orchestrator, provider, collection_tracker):
    provider.failing.add("i-1")

    result = await orchestrator.collect_for("p1", make_resource("i-1"), push=False)

    assert isinstance(result.error, ProviderError)
    status = collection_tracker.get("i-1")
    assert status.state == RunState.FAILED
    assert status.consecutive_failure_count == 1


@pytest.mark.asyncio
async def test_collect_all_partial_failure(orchestrator, provider, collection_tracker):
    provider.failing.add("i-2")

    batches = await orchestrator.collect_all("p1", push=False)

    assert [batch.resource_id for batch in batches] == ["i-1", "i-3"]
    assert collection_tracker.get("i-1").state == RunState.COMPLETED
    assert collection_tracker.get("i-2").state == RunState.FAILED
    assert collection_tracker.get("i-3").state == RunState.COMPLETED
    assert orchestrator.mapped_resources("p1") == ["i-1", "i-2", "i-3"]


@pytest.mark.asyncio
async def test_collect_all_empty_provider(registry, collection_tracker, discovery, executor):
    registry.register(FakeProvider("empty"))
    orchestrator = CollectionOrchestrator(registry, collection_tracker, discovery, executor=executor)

    assert await orchestrator.collect_all("empty") == []


@pytest.mark.asyncio
async def test_collect_all_discovery_failure(orchestrator, provider):
    provider.discover_error = ProviderError("p1", "denied", error_code="AuthFailure")

    with pytest.raises(ProviderError):
        await orchestrator.collect_all("p1")


@pytest.mark.asyncio
async def test_collect_all_unknown_provider(orchestrator):
    with pytest.raises(ConfigurationError):
        await orchestrator.collect_all("nope")


@pytest.mark.asyncio
async def test_batch_submitted_to_provisioned_node(orchestrator, sink):
    sink.node_ids["i-1"] = "42"

    await orchestrator.collect_for("p1", make_resource("i-1"))
    assert await orchestrator.pushes.drain(timeout=5)

    assert sink.lookups == [("cloud-aws-p1", "i-1")]
    node_id, batch = sink.submitted[0]
    assert node_id == "42"
    assert batch.resource_id == "i-1"


@pytest.mark.asyncio
async def test_batch_dropped_without_node(orchestrator, sink, collection_tracker):
    result = await orchestrator.collect_for("p1", make_resource("i-1"))
    assert await orchestrator.pushes.drain(timeout=5)

    assert result.success
    assert sink.submitted == []
    assert collection_tracker.get("i-1").state == RunState.COMPLETED


@pytest.mark.asyncio
async def test_submit_failure_is_contained(orchestrator, sink, collection_tracker):
    sink.node_ids["i-1"] = "42"
    sink.fail_submit = True

    result = await orchestrator.collect_for("p1", make_resource("i-1"))
    assert await orchestrator.pushes.drain(timeout=5)

    assert result.success
    assert collection_tracker.get("i-1").state == RunState.COMPLETED


def test_empty_batch_not_pushed(orchestrator, provider):
    resource = make_resource("i-1")
    assert orchestrator.push_batch(provider, resource, MetricBatch("i-1")) is None


def test_mapping_helpers(orchestrator):
    orchestrator.map_resource("i-1", "p1")
    orchestrator.map_resource("i-2", "p2")
    orchestrator.map_resource("i-1", "p2")

    assert orchestrator.mapped_resources() == ["i-1", "i-2"]
    assert orchestrator.mapped_resources("p1") == []
    assert orchestrator.unmap_resource("i-1") == "p2"
    assert orchestrator.unmap_resource("i-1") is None


def test_push_disabled_without_sink(registry, collection_tracker, discovery, provider):
    orchestrator = CollectionOrchestrator(registry, collection_tracker, discovery)
    resource = make_resource("i-1")

    assert not orchestrator.push_enabled
    assert orchestrator.push_batch(provider, resource, provider.collect(resource)) is None
