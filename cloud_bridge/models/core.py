"""
Core data models for the cloud bridge.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, Generic, List, Optional, TypeVar

from cloud_bridge.utils.errors import BridgeError

T = TypeVar("T")

# Resource property keys that point back at the owning provider
PROVIDER_ID_PROPERTY = "provider_id"
PROVIDER_TYPE_PROPERTY = "provider_type"

# Resource property keys that carry interface addresses, primary first
IP_ADDRESS_PROPERTIES = ("private_ip_address", "public_ip_address")


@dataclass(frozen=True, eq=False)
class Resource:
    """
    A cloud entity reported by a provider's discovery call.

    Resources are immutable snapshots. Two resources are equal when their
    ids match, regardless of which provider reported them.
    """
    id: str
    display_name: str
    resource_type: str
    region: Optional[str] = None
    status: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)
    properties: Dict[str, Any] = field(default_factory=dict)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Resource):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def provider_id(self) -> Optional[str]:
        """Id of the provider that discovered this resource."""
        return self.properties.get(PROVIDER_ID_PROPERTY)

    @property
    def provider_type(self) -> Optional[str]:
        """Type of the provider that discovered this resource."""
        return self.properties.get(PROVIDER_TYPE_PROPERTY)

    def to_dict(self) -> Dict[str, Any]:
        """Convert resource to dictionary."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "resource_type": self.resource_type,
            "region": self.region,
            "status": self.status,
            "tags": dict(self.tags),
            "properties": dict(self.properties),
        }


@dataclass(frozen=True, eq=False)
class DiscoveredNode:
    """A resource translated into monitoring-system vocabulary."""
    id: str
    name: str
    type: str
    provider_id: str
    region: Optional[str] = None
    ip_addresses: FrozenSet[str] = frozenset()
    tags: Dict[str, str] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)
    resource: Optional[Resource] = None
    discovery_time: datetime = field(default_factory=datetime.now)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DiscoveredNode):
            return NotImplemented
        return (self.id, self.provider_id) == (other.id, other.provider_id)

    def __hash__(self) -> int:
        return hash((self.id, self.provider_id))

    @property
    def foreign_id(self) -> str:
        return self.id

    @property
    def node_label(self) -> str:
        return self.name or self.id

    @property
    def primary_ip_address(self) -> Optional[str]:
        """Address used as the primary interface, if any."""
        if self.resource is not None:
            for key in IP_ADDRESS_PROPERTIES:
                address = self.resource.properties.get(key)
                if address:
                    return address
        return min(self.ip_addresses) if self.ip_addresses else None

    @classmethod
    def from_resource(cls, resource: Resource, provider_id: Optional[str] = None) -> "DiscoveredNode":
        """
        Build a node from a discovered resource.

        Args:
            resource: Resource to translate
            provider_id: Owning provider, defaults to the resource's back-reference

        Returns:
            DiscoveredNode for the resource
        """
        owner = provider_id or resource.provider_id or ""
        addresses = frozenset(
            resource.properties[key] for key in IP_ADDRESS_PROPERTIES
            if resource.properties.get(key)
        )
        attributes = dict(resource.properties)
        if resource.status is not None:
            attributes.setdefault("status", resource.status)

        return cls(
            id=resource.id,
            name=resource.display_name,
            type=resource.resource_type,
            provider_id=owner,
            region=resource.region,
            ip_addresses=addresses,
            tags=dict(resource.tags),
            attributes=attributes,
            resource=resource,
        )


@dataclass
class Metric:
    """A single named metric value."""
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass(eq=False)
class MetricBatch:
    """One resource's metric snapshot from a single collection run."""
    resource_id: str
    timestamp: datetime = field(default_factory=datetime.now)
    metrics: List[Metric] = field(default_factory=list)
    tags: Dict[str, str] = field(default_factory=dict)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MetricBatch):
            return NotImplemented
        return (self.resource_id, self.timestamp) == (other.resource_id, other.timestamp)

    def __hash__(self) -> int:
        return hash((self.resource_id, self.timestamp))

    @property
    def metric_count(self) -> int:
        return len(self.metrics)

    def as_measurements(self) -> Dict[str, float]:
        """Flatten metrics to a name to value mapping, last value wins."""
        return {metric.name: metric.value for metric in self.metrics}

    def to_dict(self) -> Dict[str, Any]:
        """Convert metric batch to dictionary."""
        return {
            "resource_id": self.resource_id,
            "timestamp": self.timestamp.isoformat(),
            "tags": dict(self.tags),
            "metrics": [
                {"name": m.name, "value": m.value, "tags": dict(m.tags)}
                for m in self.metrics
            ],
        }


@dataclass
class ValidationResult:
    """Result of a provider or configuration validation."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def valid(cls) -> "ValidationResult":
        return cls(is_valid=True)

    @classmethod
    def invalid(cls, message: str) -> "ValidationResult":
        return cls(is_valid=False, errors=[message])


class RunState(Enum):
    """Run state of a tracked discovery or collection entity."""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    DISABLED = "disabled"


class RunKind(Enum):
    """Kind of work tracked for an entity."""
    DISCOVERY = "discovery"
    COLLECTION = "collection"


@dataclass
class RunStatus:
    """
    Mutable run record for one provider (discovery) or resource (collection).

    Instances owned by the status tracker are only mutated under that
    entity's lock; callers receive copies.
    """
    entity_id: str
    kind: RunKind
    state: RunState = RunState.PENDING
    entity_type: Optional[str] = None
    provider_id: Optional[str] = None
    last_start_time: Optional[datetime] = None
    last_end_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    last_error_message: Optional[str] = None
    consecutive_failure_count: int = 0
    last_result_count: int = 0
    scheduled: bool = False
    schedule_interval: Optional[timedelta] = None
    next_scheduled_run: Optional[datetime] = None
    job_id: Optional[str] = None
    run_count: int = 0
    active_runs: int = 0

    def copy(self) -> "RunStatus":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert run status to dictionary."""
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "entity_id": self.entity_id,
            "kind": self.kind.value,
            "state": self.state.value,
            "entity_type": self.entity_type,
            "provider_id": self.provider_id,
            "last_start_time": _iso(self.last_start_time),
            "last_end_time": _iso(self.last_end_time),
            "last_success_time": _iso(self.last_success_time),
            "last_error_message": self.last_error_message,
            "consecutive_failure_count": self.consecutive_failure_count,
            "last_result_count": self.last_result_count,
            "scheduled": self.scheduled,
            "schedule_interval_seconds": (
                self.schedule_interval.total_seconds() if self.schedule_interval else None
            ),
            "next_scheduled_run": _iso(self.next_scheduled_run),
            "job_id": self.job_id,
            "run_count": self.run_count,
        }


@dataclass
class ScheduleEntry:
    """Binds an entity id to its live scheduler job."""
    entity_id: str
    job_id: str
    interval: timedelta
    initial_delay: timedelta
    first_run_time: datetime
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class OrchestrationResult(Generic[T]):
    """
    Outcome of one discovery or collection run.

    Scheduled paths inspect the result and log failures; on-demand paths
    call unwrap() so the carried error reaches the caller.
    """
    entity_id: str
    value: Optional[T] = None
    error: Optional[Exception] = None
    skipped: bool = False

    @property
    def success(self) -> bool:
        return self.error is None and not self.skipped

    @classmethod
    def ok(cls, entity_id: str, value: T) -> "OrchestrationResult[T]":
        return cls(entity_id=entity_id, value=value)

    @classmethod
    def failed(cls, entity_id: str, error: Exception) -> "OrchestrationResult[T]":
        return cls(entity_id=entity_id, error=error)

    @classmethod
    def skip(cls, entity_id: str) -> "OrchestrationResult[T]":
        return cls(entity_id=entity_id, skipped=True)

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        if self.skipped:
            raise BridgeError(
                f"Run for {self.entity_id} was skipped because another run is active",
                error_code="RUN_SKIPPED"
            )
        return self.value
