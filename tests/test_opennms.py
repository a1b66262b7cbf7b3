"""
Tests for the OpenNMS REST sink.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from cloud_bridge.config.models import OpenNMSConfig
from cloud_bridge.models.core import DiscoveredNode, Metric, MetricBatch
from cloud_bridge.sinks.base import foreign_source_for
from cloud_bridge.sinks.opennms import OpenNMSClient, normalize_base_url
from cloud_bridge.utils.errors import DownstreamPushError

from tests.conftest import make_resource


def _response(status=200, body=None, text=""):
    response = MagicMock()
    response.status = status
    response.content_type = "application/json" if body is not None else "text/plain"
    response.json = AsyncMock(return_value=body)
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


@pytest.fixture
def session():
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    session.request.return_value = _response(204)
    return session


@pytest.fixture
def client(session):
    return OpenNMSClient(OpenNMSConfig(base_url="http://nms:8980/opennms"), session=session)


@pytest.mark.parametrize("base_url,expected", [
    ("http://nms:8980/opennms", "http://nms:8980/opennms/"),
    ("http://nms:8980/opennms/", "http://nms:8980/opennms/"),
    ("http://nms:8980", "http://nms:8980/opennms/"),
])
def test_normalize_base_url(base_url, expected):
    assert normalize_base_url(base_url) == expected


def test_foreign_source_for():
    assert foreign_source_for("aws", "prod") == "cloud-aws-prod"


def test_build_requisition(client):
    resource = make_resource("i-2", public_ip_address="54.1.2.3", instance_type="t3.micro")
    nodes = [
        DiscoveredNode.from_resource(resource, "p1"),
        DiscoveredNode.from_resource(make_resource("i-1"), "p1"),
    ]

    requisition = client.build_requisition("cloud-aws-p1", nodes)

    assert requisition["foreign-source"] == "cloud-aws-p1"
    assert [n["foreign-id"] for n in requisition["nodes"]] == ["i-1", "i-2"]

    entry = requisition["nodes"][1]
    assert entry["node-label"] == "Instance i-2"
    assert entry["location"] == "Default"
    assert entry["interfaces"] == [
        {"ip-addr": "10.0.0.1", "snmp-primary": "P"},
        {"ip-addr": "54.1.2.3", "snmp-primary": "N"},
    ]
    metadata = {item["key"]: item["value"] for item in entry["meta-data"]}
    assert metadata["providerId"] == "p1"
    assert metadata["instance_type"] == "t3.micro"
    assert metadata["region"] == "us-east-1"
    assert metadata["tag:Name"] == "Instance i-2"


def test_build_measurements():
    batch = MetricBatch("i-1", datetime(2024, 1, 1, 12, 0), [Metric("cpu", 1.5)])

    payload = OpenNMSClient.build_measurements("42", batch)

    assert payload["node"] == "42"
    assert payload["metrics"] == {"cpu": 1.5}
    assert payload["timestamp"] == int(batch.timestamp.timestamp() * 1000)


@pytest.mark.asyncio
async def test_upsert_and_synchronize(client, session):
    nodes = [DiscoveredNode.from_resource(make_resource("i-1"), "p1")]

    await client.upsert_nodes("cloud-aws-p1", nodes)
    await client.synchronize("cloud-aws-p1")

    upsert, sync = session.request.call_args_list
    assert upsert.args == ("POST", "http://nms:8980/opennms/api/v2/requisitions")
    assert upsert.kwargs["json"]["nodes"][0]["foreign-id"] == "i-1"
    assert sync.args == ("PUT", "http://nms:8980/opennms/api/v2/requisitions/cloud-aws-p1/import")


@pytest.mark.asyncio
async def test_create_location(client, session):
    await client.create_location("aws-us-east-1", "us-east-1")

    call = session.request.call_args
    assert call.args == ("POST", "http://nms:8980/opennms/api/v2/monitoringLocations")
    assert call.kwargs["json"] == {"location": "aws-us-east-1", "monitoringArea": "us-east-1", "geolocation": {}}


@pytest.mark.asyncio
async def test_create_location_rejected(client, session):
    session.request.return_value = _response(409, text="Conflict")

    with pytest.raises(DownstreamPushError) as exc_info:
        await client.create_location("aws-us-east-1", "us-east-1")
    assert exc_info.value.status_code == 409
    session.request.return_value = _response(500, text="Internal Server Error")

    with pytest.raises(DownstreamPushError) as exc_info:
        await client.submit_metrics("42", MetricBatch("i-1", metrics=[Metric("cpu", 1.0)]))

    assert exc_info.value.status_code == 500
    assert exc_info.value.node_id == "42"


@pytest.mark.asyncio
async def test_transport_error_raises(client, session):
    session.request.side_effect = aiohttp.ClientConnectionError("refused")

    with pytest.raises(DownstreamPushError):
        await client.synchronize("cloud-aws-p1")


@pytest.mark.asyncio
async def test_find_node(client, session):
    session.request.return_value = _response(200, body={"node": [{"id": 17}]})

    assert await client.find_node_by_foreign_id("cloud-aws-p1", "i-1") == "17"
    params = session.request.call_args.kwargs["params"]
    assert params == {"foreignSource": "cloud-aws-p1", "foreignId": "i-1", "limit": 1}


@pytest.mark.asyncio
async def test_find_node_missing(client, session):
    session.request.return_value = _response(200, body={"node": []})
    assert await client.find_node_by_foreign_id("cloud-aws-p1", "i-1") is None

    session.request.return_value = _response(404, text="Not Found")
    assert await client.find_node_by_foreign_id("cloud-aws-p1", "i-1") is None


@pytest.mark.asyncio
async def test_test_connection_falls_back(client, session):
    session.request.side_effect = [_response(404), _response(200, body={"version": "33.0.0"})]

    assert await client.test_connection() is True
    assert session.request.call_args.args[1].endswith("api/v2/info")


@pytest.mark.asyncio
async def test_test_connection_fails(client, session):
    session.request.side_effect = asyncio.TimeoutError()

    assert await client.test_connection() is False


@pytest.mark.asyncio
async def test_injected_session_not_closed(client, session):
    await client.close()
    session.close.assert_not_called()


@pytest.mark.asyncio
async def test_owned_session_closed():
    async with OpenNMSClient(OpenNMSConfig()) as client:
        session = client._get_session()
        assert not session.closed

    assert session.closed
