"""
Tests for the AWS provider with a mocked boto3 session.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from cloud_bridge.config.models import ProviderConfig
from cloud_bridge.providers.aws import AwsCloudProvider
from cloud_bridge.utils.errors import ProviderError

from tests.conftest import make_resource


def _client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "DescribeInstances")


def _instance(instance_id, name, state="running"):
    return {
        "InstanceId": instance_id,
        "InstanceType": "t3.micro",
        "State": {"Name": state},
        "Placement": {"AvailabilityZone": "us-east-1a"},
        "PrivateIpAddress": "10.0.0.5",
        "VpcId": "vpc-1",
        "Tags": [{"Key": "Name", "Value": name}, {"Key": "Environment", "Value": "Production"}],
    }


@pytest.fixture
def ec2():
    client = MagicMock()
    paginator = MagicMock()
    paginator.paginate.return_value = [
        {"Reservations": [{"Instances": [_instance("i-1", "web-1")]}]},
        {"Reservations": [{"Instances": [_instance("i-2", "web-2")]}]},
    ]
    client.get_paginator.return_value = paginator
    client.describe_regions.return_value = {"Regions": [{"RegionName": "us-east-1"}]}
    return client


@pytest.fixture
def cloudwatch():
    client = MagicMock()
    client.get_metric_data.return_value = {
        "MetricDataResults": [
            {
                "Id": "q0",
                "Values": [12.5, 10.0],
                "Timestamps": [datetime(2024, 1, 1, tzinfo=timezone.utc)],
            },
            {"Id": "q1", "Values": []},
        ]
    }
    return client


@pytest.fixture
def session(ec2, cloudwatch):
    session = MagicMock()
    session.client.side_effect = lambda service_name, **kwargs: {"ec2": ec2, "cloudwatch": cloudwatch}[service_name]
    return session


@pytest.fixture
def aws_provider(session):
    config = ProviderConfig(
        "prod",
        backend="aws",
        regions=["us-east-1"],
    )
    config.cloudwatch.metrics = ["CPUUtilization"]
    config.cloudwatch.statistics = ["Average", "Maximum"]
    return AwsCloudProvider(config, session=session)


def test_discover(aws_provider, ec2):
    resources = aws_provider.discover()

    assert {r.id for r in resources} == {"i-1", "i-2"}
    resource = sorted(resources, key=lambda r: r.id)[0]
    assert resource.display_name == "web-1"
    assert resource.resource_type == "EC2"
    assert resource.region == "us-east-1"
    assert resource.status == "running"
    assert resource.provider_id == "prod"
    assert resource.properties["availability_zone"] == "us-east-1a"
    assert resource.properties["tag_Environment"] == "Production"
    assert "public_ip_address" not in resource.properties

    filters = ec2.get_paginator.return_value.paginate.call_args.kwargs["Filters"]
    assert {"Name": "instance-state-name", "Values": ["running"]} in filters


def test_discover_with_tag_filters(aws_provider, ec2):
    aws_provider.config.ec2_discovery.filter_by_tags = ["Environment=Production"]

    aws_provider.discover()

    filters = ec2.get_paginator.return_value.paginate.call_args.kwargs["Filters"]
    assert {"Name": "tag:Environment", "Values": ["Production"]} in filters


def test_discover_region_error(aws_provider, ec2):
    ec2.get_paginator.return_value.paginate.side_effect = _client_error("UnauthorizedOperation")

    with pytest.raises(ProviderError) as exc_info:
        aws_provider.discover()
    assert exc_info.value.error_code == "UnauthorizedOperation"


def test_discovery_disabled(aws_provider, session):
    aws_provider.config.ec2_discovery.enabled = False

    assert aws_provider.discover() == frozenset()
    session.client.assert_not_called()


def test_collect(aws_provider, cloudwatch):
    resource = make_resource("i-1", provider_id="prod")

    batch = aws_provider.collect(resource)

    assert batch.resource_id == "i-1"
    assert batch.as_measurements() == {"CPUUtilization.Average": 12.5}
    metric = batch.metrics[0]
    assert metric.tags["type"] == "GAUGE"
    assert metric.tags["timestamp"] == "2024-01-01T00:00:00+00:00"

    queries = cloudwatch.get_metric_data.call_args.kwargs["MetricDataQueries"]
    assert [q["MetricStat"]["Stat"] for q in queries] == ["Average", "Maximum"]
    assert queries[0]["MetricStat"]["Period"] == 300


def test_collect_metric_error_is_skipped(aws_provider, cloudwatch):
    cloudwatch.get_metric_data.side_effect = _client_error("Throttling")

    batch = aws_provider.collect(make_resource("i-1", provider_id="prod"))

    assert batch.metric_count == 0


@pytest.mark.parametrize("resource,code", [
    (make_resource("i-1", provider_id="other"), "FOREIGN_RESOURCE"),
    (make_resource("i-1", provider_id="prod", region=None), "MISSING_REGION"),
    (make_resource("db-1", provider_id="prod", resource_type="RDS"), "UNSUPPORTED_RESOURCE_TYPE"),
])
def test_collect_rejects_resource(aws_provider, resource, code):
    with pytest.raises(ProviderError) as exc_info:
        aws_provider.collect(resource)
    assert exc_info.value.error_code == code


def test_validate(aws_provider, ec2):
    assert aws_provider.validate().is_valid

    aws_provider.config.regions = ["us-east-1", "mars-north-1"]
    result = aws_provider.validate()
    assert not result.is_valid
    assert "mars-north-1" in result.errors[0]

    ec2.describe_regions.side_effect = _client_error("AuthFailure")
    assert not aws_provider.validate().is_valid


def test_clients_are_cached_and_closed(aws_provider, session, ec2):
    assert aws_provider.get_client("ec2", "us-east-1") is aws_provider.get_client("ec2", "us-east-1")
    assert session.client.call_count == 1

    aws_provider.close()

    ec2.close.assert_called_once()
    aws_provider.get_client("ec2", "us-east-1")
    assert session.client.call_count == 2


def test_configuration_change_resets_clients(aws_provider, session):
    aws_provider.get_client("ec2", "us-east-1")

    aws_provider.update_configuration({"read_timeout": 60.0})

    # validate() recreated the client after the reset
    assert session.client.call_count == 2
    assert aws_provider.config.read_timeout == 60.0
