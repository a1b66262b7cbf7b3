"""
Configuration validation using Pydantic.
"""

import re
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from cloud_bridge.utils.durations import parse_duration
from cloud_bridge.utils.errors import ConfigurationError

_PROVIDER_ID_PATTERN = re.compile(r'^[A-Za-z0-9_.-]+$')

DEFAULT_SCHEDULES = {
    "discovery": {"enabled": True, "initial_delay": "30s", "interval": "5m"},
    "collection": {"enabled": True, "initial_delay": "1m", "interval": "60s"},
}


class ProviderBackendEnum(str, Enum):
    """Supported provider backends."""
    AWS = "aws"
    MOCK = "mock"


class StatisticEnum(str, Enum):
    """Supported CloudWatch statistics."""
    AVERAGE = "Average"
    MAXIMUM = "Maximum"
    MINIMUM = "Minimum"
    SUM = "Sum"
    SAMPLE_COUNT = "SampleCount"


class LogLevelEnum(str, Enum):
    """Supported log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class OpenNMSConfigValidator(BaseModel):
    """Pydantic model for OpenNMS connection validation."""
    base_url: str = Field(default="http://localhost:8980/opennms", description="OpenNMS base URL")
    username: str = Field(default="admin", description="REST API user")
    password: str = Field(default="admin", description="REST API password")
    timeout: int = Field(default=30, ge=1, le=300, description="Request timeout in seconds")
    default_location: str = Field(default="Default", min_length=1, description="Monitoring location for nodes")
    enabled: bool = Field(default=True, description="Push to OpenNMS")

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v):
        """Validate OpenNMS base URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError("OpenNMS base URL must start with http:// or https://")
        return v.rstrip('/')


class ScheduleConfigValidator(BaseModel):
    """Pydantic model for a global schedule."""
    enabled: bool = Field(default=True, description="Whether the schedule is armed")
    initial_delay: timedelta = Field(description="Delay before the first run")
    interval: timedelta = Field(description="Period between run starts")

    @field_validator('initial_delay', 'interval', mode='before')
    @classmethod
    def parse_durations(cls, v):
        return parse_duration(v)

    @field_validator('interval')
    @classmethod
    def validate_interval(cls, v):
        if v <= timedelta(0):
            raise ValueError("Schedule interval must be positive")
        return v


class SchedulingConfigValidator(BaseModel):
    """Pydantic model for scheduler and worker pool validation."""
    timezone: str = Field(default="UTC", description="Scheduler timezone")
    max_workers: int = Field(default=10, ge=1, le=200, description="Worker threads for provider calls")
    misfire_grace_time: int = Field(default=300, ge=1, description="Seconds a late tick may still run")
    history_size: int = Field(default=100, ge=1, le=10000, description="Execution records kept per entity")
    discovery: ScheduleConfigValidator = Field(
        default_factory=lambda: ScheduleConfigValidator(**DEFAULT_SCHEDULES["discovery"])
    )
    collection: ScheduleConfigValidator = Field(
        default_factory=lambda: ScheduleConfigValidator(**DEFAULT_SCHEDULES["collection"])
    )

    @model_validator(mode='before')
    @classmethod
    def fill_schedule_defaults(cls, data):
        """Merge partial discovery/collection sections onto their defaults."""
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        for target, defaults in DEFAULT_SCHEDULES.items():
            section = data.get(target)
            if isinstance(section, Mapping):
                data[target] = {**defaults, **section}
        return data


class Ec2DiscoveryConfigValidator(BaseModel):
    """Pydantic model for EC2 discovery settings."""
    enabled: bool = True
    include_tags: List[str] = Field(default_factory=lambda: ["Name", "Environment", "Service"])
    filter_by_tags: List[str] = Field(default_factory=list)
    instance_states: List[str] = Field(default_factory=lambda: ["running"])

    @field_validator('filter_by_tags')
    @classmethod
    def validate_tag_filters(cls, v):
        for tag_filter in v:
            key, sep, _ = tag_filter.partition("=")
            if not sep or not key:
                raise ValueError(f"Invalid tag filter '{tag_filter}', expected Key=Value")
        return v


class CloudWatchConfigValidator(BaseModel):
    """Pydantic model for CloudWatch collection settings."""
    enabled: bool = True
    metrics: List[str] = Field(default_factory=lambda: [
        "CPUUtilization", "NetworkIn", "NetworkOut",
        "DiskReadBytes", "DiskWriteBytes", "StatusCheckFailed"
    ])
    statistics: List[StatisticEnum] = Field(
        default_factory=lambda: ["Average", "Maximum", "Minimum"],
        min_length=1
    )
    period: timedelta = Field(default=timedelta(minutes=5))

    model_config = {
        "use_enum_values": True
    }

    @field_validator('period', mode='before')
    @classmethod
    def parse_period(cls, v):
        return parse_duration(v)

    @field_validator('period')
    @classmethod
    def validate_period(cls, v):
        if v < timedelta(minutes=1) or v.total_seconds() % 60:
            raise ValueError("CloudWatch period must be a whole number of minutes")
        return v


class ProviderConfigValidator(BaseModel):
    """Pydantic model for one provider entry."""
    provider_id: str = Field(min_length=1, description="Unique provider id")
    backend: ProviderBackendEnum = Field(default="mock")
    display_name: Optional[str] = None
    enabled: bool = True
    regions: List[str] = Field(default_factory=list)
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    role_arn: Optional[str] = None
    profile: Optional[str] = None
    max_retries: int = Field(default=3, ge=0, le=10)
    connection_timeout: float = Field(default=10.0, gt=0, le=300)
    read_timeout: float = Field(default=30.0, gt=0, le=600)
    instances_per_region: int = Field(default=5, ge=0, le=1000)
    ec2_discovery: Ec2DiscoveryConfigValidator = Field(default_factory=Ec2DiscoveryConfigValidator)
    cloudwatch: CloudWatchConfigValidator = Field(default_factory=CloudWatchConfigValidator)

    model_config = {
        "extra": "forbid",
        "use_enum_values": True
    }

    @field_validator('provider_id')
    @classmethod
    def validate_provider_id(cls, v):
        if not _PROVIDER_ID_PATTERN.match(v):
            raise ValueError(f"Invalid provider id: {v}")
        return v

    @model_validator(mode='after')
    def validate_credentials(self):
        """Static keys must be given as a pair."""
        if bool(self.access_key_id) != bool(self.secret_access_key):
            raise ValueError(
                f"Provider {self.provider_id}: access_key_id and secret_access_key must be set together"
            )
        return self

    def to_config(self) -> 'ProviderConfig':
        """Convert to the runtime ProviderConfig dataclass."""
        from cloud_bridge.config.models import CloudWatchConfig, Ec2DiscoveryConfig, ProviderConfig

        data = self.model_dump(exclude={"ec2_discovery", "cloudwatch"})
        return ProviderConfig(
            **data,
            ec2_discovery=Ec2DiscoveryConfig(**self.ec2_discovery.model_dump()),
            cloudwatch=CloudWatchConfig(**self.cloudwatch.model_dump())
        )


class LoggingConfigValidator(BaseModel):
    """Pydantic model for logging configuration."""
    level: LogLevelEnum = Field(default="INFO")
    file: Optional[str] = None
    structured: bool = False
    max_file_size: int = Field(default=10 * 1024 * 1024, ge=1024)
    backup_count: int = Field(default=5, ge=0, le=100)

    model_config = {
        "use_enum_values": True
    }

    @field_validator('level', mode='before')
    @classmethod
    def normalize_level(cls, v):
        return v.upper() if isinstance(v, str) else v


class BridgeConfigValidator(BaseModel):
    """Main configuration validator."""
    opennms: OpenNMSConfigValidator = Field(default_factory=OpenNMSConfigValidator)
    scheduling: SchedulingConfigValidator = Field(default_factory=SchedulingConfigValidator)
    providers: List[ProviderConfigValidator] = Field(default_factory=list)
    logging: LoggingConfigValidator = Field(default_factory=LoggingConfigValidator)

    model_config = {
        "validate_assignment": True,
        "extra": "forbid",  # Prevent extra fields
        "use_enum_values": True
    }

    @model_validator(mode='after')
    def validate_unique_providers(self):
        seen = set()
        for provider in self.providers:
            if provider.provider_id in seen:
                raise ValueError(f"Duplicate provider id: {provider.provider_id}")
            seen.add(provider.provider_id)
        return self

    def to_config(self) -> 'BridgeConfig':
        """Convert to the runtime BridgeConfig dataclasses."""
        from cloud_bridge.config.models import (
            BridgeConfig, LoggingConfig, OpenNMSConfig, ScheduleConfig, SchedulingConfig
        )

        def _schedule(validator: ScheduleConfigValidator) -> ScheduleConfig:
            return ScheduleConfig(
                interval=validator.interval,
                initial_delay=validator.initial_delay,
                enabled=validator.enabled
            )

        return BridgeConfig(
            opennms=OpenNMSConfig(**self.opennms.model_dump()),
            scheduling=SchedulingConfig(
                timezone=self.scheduling.timezone,
                max_workers=self.scheduling.max_workers,
                misfire_grace_time=self.scheduling.misfire_grace_time,
                history_size=self.scheduling.history_size,
                discovery=_schedule(self.scheduling.discovery),
                collection=_schedule(self.scheduling.collection)
            ),
            providers=[p.to_config() for p in self.providers],
            logging=LoggingConfig(**self.logging.model_dump())
        )


class ScheduleUpdate(BaseModel):
    """
    A partial update to a global schedule.

    Bare numbers and numeric strings are minutes; unit strings such as
    '30s' and timedeltas are taken as given. Both snake_case and camelCase
    keys are accepted and unknown keys are ignored.
    """
    enabled: Optional[bool] = None
    initial_delay: Optional[timedelta] = Field(default=None, alias="initialDelay")
    interval: Optional[timedelta] = None

    model_config = {
        "populate_by_name": True,
        "extra": "ignore"
    }

    @field_validator('initial_delay', 'interval', mode='before')
    @classmethod
    def parse_minutes(cls, v):
        if v is None:
            return None
        return parse_duration(v, numeric_unit="m")

    @field_validator('interval')
    @classmethod
    def validate_interval(cls, v):
        if v is not None and v <= timedelta(0):
            raise ValueError("Schedule interval must be positive")
        return v

    def apply_to(self, current: 'ScheduleConfig') -> 'ScheduleConfig':
        """Return a copy of ``current`` with the given fields replaced."""
        from dataclasses import replace

        changes = {
            key: value for key, value in (
                ("enabled", self.enabled),
                ("initial_delay", self.initial_delay),
                ("interval", self.interval),
            )
            if value is not None
        }
        return replace(current, **changes)


def validate_schedule_update(data: Any) -> ScheduleUpdate:
    """
    Validate a loose schedule update mapping.

    Raises:
        ConfigurationError: If the mapping is not usable
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError(
            f"Schedule update must be a mapping, got {type(data).__name__}",
            error_code="INVALID_SCHEDULE"
        )
    try:
        return ScheduleUpdate.model_validate(dict(data))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid schedule update: {e}", error_code="INVALID_SCHEDULE") from e


def validate_config_dict(config_data: Dict[str, Any]) -> BridgeConfigValidator:
    """
    Validate configuration dictionary using Pydantic.

    Args:
        config_data: Configuration dictionary

    Returns:
        Validated configuration object

    Raises:
        ConfigurationError: If validation fails
    """
    try:
        return BridgeConfigValidator(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def get_env_var_mappings() -> Dict[str, str]:
    """
    Get mapping of environment variables to configuration paths.

    Returns:
        Dictionary mapping environment variable names to config paths
    """
    return {
        # OpenNMS configuration
        'BRIDGE_OPENNMS_URL': 'opennms.base_url',
        'BRIDGE_OPENNMS_USERNAME': 'opennms.username',
        'BRIDGE_OPENNMS_PASSWORD': 'opennms.password',
        'BRIDGE_OPENNMS_TIMEOUT': 'opennms.timeout',
        'BRIDGE_OPENNMS_LOCATION': 'opennms.default_location',
        'BRIDGE_OPENNMS_ENABLED': 'opennms.enabled',

        # Scheduling configuration
        'BRIDGE_TIMEZONE': 'scheduling.timezone',
        'BRIDGE_MAX_WORKERS': 'scheduling.max_workers',
        'BRIDGE_MISFIRE_GRACE_TIME': 'scheduling.misfire_grace_time',
        'BRIDGE_HISTORY_SIZE': 'scheduling.history_size',
        'BRIDGE_DISCOVERY_ENABLED': 'scheduling.discovery.enabled',
        'BRIDGE_DISCOVERY_INITIAL_DELAY': 'scheduling.discovery.initial_delay',
        'BRIDGE_DISCOVERY_INTERVAL': 'scheduling.discovery.interval',
        'BRIDGE_COLLECTION_ENABLED': 'scheduling.collection.enabled',
        'BRIDGE_COLLECTION_INITIAL_DELAY': 'scheduling.collection.initial_delay',
        'BRIDGE_COLLECTION_INTERVAL': 'scheduling.collection.interval',

        # Logging configuration
        'BRIDGE_LOG_LEVEL': 'logging.level',
        'BRIDGE_LOG_FILE': 'logging.file',
        'BRIDGE_LOG_STRUCTURED': 'logging.structured',
    }
