"""
In-process AWS-like provider for demos and tests.
"""

import hashlib
import random
import threading
import zlib
from datetime import datetime
from typing import FrozenSet, Optional, Set

from cloud_bridge.config.models import ProviderConfig
from cloud_bridge.models.core import (
    PROVIDER_ID_PROPERTY, PROVIDER_TYPE_PROPERTY,
    Metric, MetricBatch, Resource, ValidationResult
)
from cloud_bridge.providers.base import CloudProvider
from cloud_bridge.utils.errors import ProviderError

DEFAULT_REGIONS = ("us-east-1", "us-west-2", "eu-west-1")

# (low, spread) of the generated value per metric name
_METRIC_RANGES = {
    "CPUUtilization": (5.0, 80.0),
    "NetworkIn": (50000.0, 75000.0),
    "NetworkOut": (40000.0, 60000.0),
    "DiskReadBytes": (20000.0, 30000.0),
    "DiskWriteBytes": (15000.0, 25000.0),
    "StatusCheckFailed": (0.0, 0.0),
}


class MockCloudProvider(CloudProvider):
    """
    Provider that fabricates EC2-like instances.

    Instance ids are derived from the provider id, region and index so
    repeated discoveries report the same resources. Failures can be
    injected with ``fail_discovery`` and ``fail_collection_for``.
    """

    provider_type = "aws"

    def __init__(self, config: ProviderConfig, seed: Optional[int] = None):
        super().__init__(config)
        self._random = random.Random(seed)
        self._lock = threading.Lock()
        self.fail_discovery: Optional[str] = None
        self.fail_collection_for: Set[str] = set()
        self.discover_calls = 0
        self.collect_calls = 0

    @property
    def regions(self):
        return self.config.regions or list(DEFAULT_REGIONS)

    def get_available_regions(self) -> FrozenSet[str]:
        return frozenset(self.regions)

    def get_supported_metrics(self) -> FrozenSet[str]:
        return frozenset(
            f"{metric}.{statistic}"
            for metric in self.config.cloudwatch.metrics
            for statistic in self.config.cloudwatch.statistics
        )

    def validate(self) -> ValidationResult:
        if not self.config.enabled:
            return ValidationResult.invalid(f"Provider {self.provider_id} is disabled")
        return ValidationResult.valid()

    def discover(self) -> FrozenSet[Resource]:
        with self._lock:
            self.discover_calls += 1

        if self.fail_discovery:
            raise ProviderError(self.provider_id, self.fail_discovery, error_code="DISCOVERY_FAILED")

        self.logger.info(f"Mock discovering resources for provider {self.provider_id}")
        resources = set()
        for region in self.regions:
            for index in range(1, self.config.instances_per_region + 1):
                resources.add(self._build_instance(region, index))
        return frozenset(resources)

    def _instance_id(self, region: str, index: int) -> str:
        digest = hashlib.sha1(f"{self.provider_id}/{region}/{index}".encode()).hexdigest()
        return f"i-{digest[:17]}"

    def _build_instance(self, region: str, index: int) -> Resource:
        octet = zlib.crc32(region.encode()) % 256
        tags = {
            "Name": f"Instance {index} ({region})",
            "Environment": "Production" if index % 3 == 0 else "Development",
            "Service": "Demo",
        }
        include = set(self.config.ec2_discovery.include_tags)
        return Resource(
            id=self._instance_id(region, index),
            display_name=f"EC2 Instance {index} ({region})",
            resource_type="EC2",
            region=region,
            status="running",
            tags={key: value for key, value in tags.items() if not include or key in include},
            properties={
                PROVIDER_ID_PROPERTY: self.provider_id,
                PROVIDER_TYPE_PROPERTY: self.provider_type,
                "instance_type": "t3.micro",
                "private_ip_address": f"10.0.{octet}.{index}",
                "public_ip_address": f"54.123.{octet}.{index}",
            },
        )

    def collect(self, resource: Resource) -> MetricBatch:
        with self._lock:
            self.collect_calls += 1

        if resource.id in self.fail_collection_for:
            raise ProviderError(
                self.provider_id,
                f"Injected collection failure for {resource.id}",
                error_code="COLLECTION_FAILED",
                resource_id=resource.id
            )
        if resource.provider_id and resource.provider_id != self.provider_id:
            raise ProviderError(
                self.provider_id,
                f"Resource {resource.id} belongs to provider {resource.provider_id}",
                error_code="FOREIGN_RESOURCE",
                resource_id=resource.id
            )

        timestamp = datetime.now()
        metric_tags = {
            "resource_id": resource.id,
            "resource_type": resource.resource_type,
            "region": resource.region or "",
        }
        metrics = []
        for name in self.config.cloudwatch.metrics:
            low, spread = _METRIC_RANGES.get(name, (0.0, 100.0))
            for statistic in self.config.cloudwatch.statistics:
                with self._lock:
                    value = low + self._random.random() * spread
                metrics.append(Metric(f"{name}.{statistic}", value, dict(metric_tags)))

        return MetricBatch(
            resource_id=resource.id,
            timestamp=timestamp,
            metrics=metrics,
            tags={"provider_id": self.provider_id, "region": resource.region or ""},
        )

    def close(self) -> None:
        self.logger.info(f"Closing mock provider {self.provider_id}")
