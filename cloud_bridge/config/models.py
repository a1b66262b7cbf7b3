"""
Configuration data models and validation.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

SUPPORTED_BACKENDS = ("aws", "mock")
SUPPORTED_STATISTICS = ("Average", "Maximum", "Minimum", "Sum", "SampleCount")


@dataclass
class ScheduleConfig:
    """Recurring schedule for one entity or one global run."""
    interval: timedelta = timedelta(minutes=5)
    initial_delay: timedelta = timedelta(seconds=30)
    enabled: bool = True
    timeout: Optional[timedelta] = None
    retries: int = 0
    metric_names: List[str] = field(default_factory=list)
    provider_id: Optional[str] = None

    def validate(self) -> List[str]:
        """
        Validate schedule settings.

        Returns:
            List of validation errors, empty if valid
        """
        errors = []
        if self.interval <= timedelta(0):
            errors.append(f"Interval must be positive: {self.interval}")
        if self.initial_delay < timedelta(0):
            errors.append(f"Initial delay must be non-negative: {self.initial_delay}")
        if self.timeout is not None and self.timeout <= timedelta(0):
            errors.append(f"Timeout must be positive: {self.timeout}")
        if self.retries < 0:
            errors.append("Retries must be non-negative")
        return errors


@dataclass
class OpenNMSConfig:
    """OpenNMS REST API connection configuration."""
    base_url: str = "http://localhost:8980/opennms"
    username: str = "admin"
    password: str = "admin"
    timeout: int = 30
    default_location: str = "Default"
    enabled: bool = True


@dataclass
class SchedulingConfig:
    """Scheduler, worker pool and global schedule configuration."""
    timezone: str = "UTC"
    max_workers: int = 10
    misfire_grace_time: int = 300  # seconds
    history_size: int = 100
    discovery: ScheduleConfig = field(default_factory=lambda: ScheduleConfig(
        interval=timedelta(minutes=5),
        initial_delay=timedelta(seconds=30)
    ))
    collection: ScheduleConfig = field(default_factory=lambda: ScheduleConfig(
        interval=timedelta(seconds=60),
        initial_delay=timedelta(minutes=1)
    ))


@dataclass
class Ec2DiscoveryConfig:
    """EC2 instance discovery settings."""
    enabled: bool = True
    include_tags: List[str] = field(default_factory=lambda: ["Name", "Environment", "Service"])
    filter_by_tags: List[str] = field(default_factory=list)  # "Key=Value" entries
    instance_states: List[str] = field(default_factory=lambda: ["running"])


@dataclass
class CloudWatchConfig:
    """CloudWatch metric collection settings."""
    enabled: bool = True
    metrics: List[str] = field(default_factory=lambda: [
        "CPUUtilization", "NetworkIn", "NetworkOut",
        "DiskReadBytes", "DiskWriteBytes", "StatusCheckFailed"
    ])
    statistics: List[str] = field(default_factory=lambda: ["Average", "Maximum", "Minimum"])
    period: timedelta = timedelta(minutes=5)


@dataclass
class ProviderConfig:
    """Configuration of one cloud provider instance."""
    provider_id: str
    backend: str = "mock"
    display_name: Optional[str] = None
    enabled: bool = True
    regions: List[str] = field(default_factory=list)
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    role_arn: Optional[str] = None
    profile: Optional[str] = None
    max_retries: int = 3
    connection_timeout: float = 10.0  # seconds
    read_timeout: float = 30.0  # seconds
    instances_per_region: int = 5  # mock backend only
    ec2_discovery: Ec2DiscoveryConfig = field(default_factory=Ec2DiscoveryConfig)
    cloudwatch: CloudWatchConfig = field(default_factory=CloudWatchConfig)

    def validate(self) -> List[str]:
        """
        Validate provider settings.

        Returns:
            List of validation errors, empty if valid
        """
        errors = []
        if not self.provider_id:
            errors.append("Provider id cannot be empty")
        if self.backend not in SUPPORTED_BACKENDS:
            errors.append(f"Unsupported provider backend '{self.backend}' for {self.provider_id}")
        if self.max_retries < 0:
            errors.append(f"Max retries must be non-negative for {self.provider_id}")
        if self.connection_timeout <= 0 or self.read_timeout <= 0:
            errors.append(f"Timeouts must be positive for {self.provider_id}")
        if bool(self.access_key_id) != bool(self.secret_access_key):
            errors.append(f"Access key id and secret access key must be set together for {self.provider_id}")
        for tag_filter in self.ec2_discovery.filter_by_tags:
            if "=" not in tag_filter:
                errors.append(f"Invalid tag filter '{tag_filter}', expected Key=Value")
        for statistic in self.cloudwatch.statistics:
            if statistic not in SUPPORTED_STATISTICS:
                errors.append(f"Unsupported CloudWatch statistic: {statistic}")
        if self.cloudwatch.period < timedelta(minutes=1):
            errors.append("CloudWatch period must be at least one minute")
        return errors


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    structured: bool = False
    max_file_size: int = 10 * 1024 * 1024
    backup_count: int = 5


@dataclass
class BridgeConfig:
    """Main bridge configuration container."""
    opennms: OpenNMSConfig = field(default_factory=OpenNMSConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    providers: List[ProviderConfig] = field(default_factory=list)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> List[str]:
        """
        Validate configuration settings.

        Returns:
            List of validation errors, empty if valid
        """
        errors = []

        if not self.opennms.base_url.startswith(("http://", "https://")):
            errors.append("OpenNMS base URL must start with http:// or https://")

        if self.scheduling.max_workers < 1:
            errors.append("Max workers must be at least 1")

        for name, schedule in (("discovery", self.scheduling.discovery),
                               ("collection", self.scheduling.collection)):
            errors.extend(f"{name} schedule: {error}" for error in schedule.validate())

        seen = set()
        for provider in self.providers:
            if provider.provider_id in seen:
                errors.append(f"Duplicate provider id: {provider.provider_id}")
            seen.add(provider.provider_id)
            errors.extend(provider.validate())

        return errors

    def get_provider_config(self, provider_id: str) -> Optional[ProviderConfig]:
        for provider in self.providers:
            if provider.provider_id == provider_id:
                return provider
        return None
