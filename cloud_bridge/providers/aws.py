"""
AWS provider backed by EC2 discovery and CloudWatch metrics.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cloud_bridge.config.models import ProviderConfig
from cloud_bridge.models.core import (
    PROVIDER_ID_PROPERTY, PROVIDER_TYPE_PROPERTY,
    Metric, MetricBatch, Resource, ValidationResult
)
from cloud_bridge.providers.base import CloudProvider
from cloud_bridge.utils.errors import ProviderError

NAMESPACE_EC2 = "AWS/EC2"
DEFAULT_REGION = "us-east-1"
EC2_RESOURCE_TYPE = "EC2"


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "ClientError")
    return type(error).__name__


class AwsCloudProvider(CloudProvider):
    """Discovers EC2 instances and collects their CloudWatch metrics."""

    provider_type = "aws"

    def __init__(self, config: ProviderConfig, session: Optional[boto3.Session] = None):
        super().__init__(config)
        self._session = session
        self._injected_session = session is not None
        self._clients: Dict[str, Any] = {}
        self._clients_lock = threading.Lock()

    @property
    def regions(self) -> List[str]:
        return self.config.regions or [DEFAULT_REGION]

    def get_available_regions(self) -> FrozenSet[str]:
        return frozenset(self.regions)

    def get_supported_metrics(self) -> FrozenSet[str]:
        return frozenset(
            f"{metric}.{statistic}"
            for metric in self.config.cloudwatch.metrics
            for statistic in self.config.cloudwatch.statistics
        )

    def _get_session(self) -> boto3.Session:
        if self._session is not None:
            return self._session

        cfg = self.config
        if cfg.access_key_id:
            session = boto3.Session(
                aws_access_key_id=cfg.access_key_id,
                aws_secret_access_key=cfg.secret_access_key,
                aws_session_token=cfg.session_token
            )
        elif cfg.profile:
            session = boto3.Session(profile_name=cfg.profile)
        else:
            session = boto3.Session()

        if cfg.role_arn:
            sts = session.client("sts", region_name=self.regions[0])
            credentials = sts.assume_role(
                RoleArn=cfg.role_arn,
                RoleSessionName=f"cloud-bridge-{self.provider_id}"
            )["Credentials"]
            session = boto3.Session(
                aws_access_key_id=credentials["AccessKeyId"],
                aws_secret_access_key=credentials["SecretAccessKey"],
                aws_session_token=credentials["SessionToken"]
            )

        self._session = session
        return session

    def get_client(self, service_name: str, region: str):
        """Get cached AWS client for service and region."""
        key = f"{service_name}:{region}"
        with self._clients_lock:
            if key not in self._clients:
                boto_config = Config(
                    retries={"max_attempts": self.config.max_retries + 1, "mode": "standard"},
                    connect_timeout=self.config.connection_timeout,
                    read_timeout=self.config.read_timeout
                )
                self._clients[key] = self._get_session().client(
                    service_name, region_name=region, config=boto_config
                )
            return self._clients[key]

    def validate(self) -> ValidationResult:
        try:
            response = self.get_client("ec2", self.regions[0]).describe_regions()
        except (ClientError, BotoCoreError) as e:
            return ValidationResult.invalid(f"AWS validation failed: {e}")

        available = {region["RegionName"] for region in response.get("Regions", [])}
        unknown = [region for region in self.config.regions if region not in available]
        if unknown:
            return ValidationResult(is_valid=False, errors=[f"Unknown regions: {', '.join(unknown)}"])
        return ValidationResult.valid()

    def discover(self) -> FrozenSet[Resource]:
        if not self.config.ec2_discovery.enabled:
            self.logger.info(f"EC2 discovery disabled for provider {self.provider_id}")
            return frozenset()

        resources = set()
        for region in self.regions:
            resources.update(self._discover_region(region))
        return frozenset(resources)

    def _build_filters(self) -> List[Dict[str, Any]]:
        filters = []
        states = self.config.ec2_discovery.instance_states
        if states:
            filters.append({"Name": "instance-state-name", "Values": list(states)})
        for tag_filter in self.config.ec2_discovery.filter_by_tags:
            key, sep, value = tag_filter.partition("=")
            if sep:
                filters.append({"Name": f"tag:{key}", "Values": [value]})
        return filters

    def _discover_region(self, region: str) -> List[Resource]:
        self.logger.info(f"Discovering EC2 instances in region {region}")
        filters = self._build_filters()

        resources = []
        try:
            paginator = self.get_client("ec2", region).get_paginator("describe_instances")
            for page in paginator.paginate(Filters=filters):
                for reservation in page.get("Reservations", []):
                    for instance in reservation.get("Instances", []):
                        resources.append(self._convert_instance(instance, region))
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(
                self.provider_id,
                f"Error discovering EC2 instances in region {region}: {e}",
                error_code=_error_code(e)
            ) from e

        self.logger.info(f"Discovered {len(resources)} EC2 instances in region {region}")
        return resources

    def _convert_instance(self, instance: Dict[str, Any], region: str) -> Resource:
        tags = {tag["Key"]: tag["Value"] for tag in instance.get("Tags", [])}
        instance_id = instance["InstanceId"]

        properties: Dict[str, Any] = {
            PROVIDER_ID_PROPERTY: self.provider_id,
            PROVIDER_TYPE_PROPERTY: self.provider_type,
            "instance_id": instance_id,
            "instance_type": instance.get("InstanceType"),
            "availability_zone": instance.get("Placement", {}).get("AvailabilityZone"),
            "private_ip_address": instance.get("PrivateIpAddress"),
            "public_ip_address": instance.get("PublicIpAddress"),
            "vpc_id": instance.get("VpcId"),
            "subnet_id": instance.get("SubnetId"),
            "platform": instance.get("Platform", "linux"),
            "platform_details": instance.get("PlatformDetails"),
        }
        for tag_name in self.config.ec2_discovery.include_tags:
            if tag_name in tags:
                properties[f"tag_{tag_name}"] = tags[tag_name]

        return Resource(
            id=instance_id,
            display_name=tags.get("Name", instance_id),
            resource_type=EC2_RESOURCE_TYPE,
            region=region,
            status=instance.get("State", {}).get("Name"),
            tags=tags,
            properties={key: value for key, value in properties.items() if value is not None},
        )

    def collect(self, resource: Resource) -> MetricBatch:
        if resource.provider_id and resource.provider_id != self.provider_id:
            raise ProviderError(
                self.provider_id,
                f"Resource {resource.id} belongs to provider {resource.provider_id}",
                error_code="FOREIGN_RESOURCE",
                resource_id=resource.id
            )
        if not resource.region:
            raise ProviderError(
                self.provider_id, f"Resource {resource.id} has no region",
                error_code="MISSING_REGION", resource_id=resource.id
            )
        if resource.resource_type != EC2_RESOURCE_TYPE:
            raise ProviderError(
                self.provider_id,
                f"Unsupported resource type {resource.resource_type} for {resource.id}",
                error_code="UNSUPPORTED_RESOURCE_TYPE",
                resource_id=resource.id
            )

        batch = MetricBatch(
            resource_id=resource.id,
            timestamp=datetime.now(),
            tags={"provider_id": self.provider_id, "region": resource.region},
        )
        if not self.config.cloudwatch.enabled:
            return batch

        client = self.get_client("cloudwatch", resource.region)
        for metric_name in self.config.cloudwatch.metrics:
            try:
                batch.metrics.extend(self._collect_metric(client, resource, metric_name))
            except (ClientError, BotoCoreError) as e:
                self.logger.warning(
                    f"Error collecting CloudWatch metric {metric_name} for instance {resource.id}: {e}"
                )

        self.logger.info(f"Collected {batch.metric_count} CloudWatch metrics for EC2 instance {resource.id}")
        return batch

    def _collect_metric(self, client, resource: Resource, metric_name: str) -> List[Metric]:
        period = self.config.cloudwatch.period
        end_time = datetime.now(timezone.utc)
        start_time = end_time - period

        statistics = {f"q{index}": statistic for index, statistic in enumerate(self.config.cloudwatch.statistics)}
        queries = [
            {
                "Id": query_id,
                "MetricStat": {
                    "Metric": {
                        "Namespace": NAMESPACE_EC2,
                        "MetricName": metric_name,
                        "Dimensions": [{"Name": "InstanceId", "Value": resource.id}],
                    },
                    "Period": int(period.total_seconds()),
                    "Stat": statistic,
                },
                "ReturnData": True,
            }
            for query_id, statistic in statistics.items()
        ]

        response = client.get_metric_data(
            MetricDataQueries=queries,
            StartTime=start_time,
            EndTime=end_time,
            ScanBy="TimestampDescending"
        )

        metrics = []
        for result in response.get("MetricDataResults", []):
            values = result.get("Values", [])
            statistic = statistics.get(result.get("Id"))
            if not values or statistic is None:
                continue
            timestamps = result.get("Timestamps", [])
            tags = {
                "resource_id": resource.id,
                "provider_id": self.provider_id,
                "type": "GAUGE",
            }
            if timestamps:
                tags["timestamp"] = timestamps[0].isoformat()
            # Newest datapoint first
            metrics.append(Metric(f"{metric_name}.{statistic}", float(values[0]), tags))
        return metrics

    def _on_configuration_changed(self) -> None:
        self.close()
        if not self._injected_session:
            self._session = None

    def close(self) -> None:
        with self._clients_lock:
            for client in self._clients.values():
                close = getattr(client, "close", None)
                if close is not None:
                    close()
            self._clients.clear()
