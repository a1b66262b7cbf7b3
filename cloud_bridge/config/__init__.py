"""
Configuration management for the cloud bridge.
"""

from .models import (
    BridgeConfig,
    OpenNMSConfig,
    SchedulingConfig,
    ScheduleConfig,
    ProviderConfig,
    Ec2DiscoveryConfig,
    CloudWatchConfig,
    LoggingConfig
)
from .manager import ConfigManager, DEFAULT_CONFIG
from .validation import (
    BridgeConfigValidator,
    ScheduleUpdate,
    validate_config_dict,
    validate_schedule_update,
    get_env_var_mappings,
    ProviderBackendEnum,
    StatisticEnum
)

__all__ = [
    # Runtime models
    'BridgeConfig',
    'OpenNMSConfig',
    'SchedulingConfig',
    'ScheduleConfig',
    'ProviderConfig',
    'Ec2DiscoveryConfig',
    'CloudWatchConfig',
    'LoggingConfig',

    # Manager
    'ConfigManager',
    'DEFAULT_CONFIG',

    # Validation
    'BridgeConfigValidator',
    'ScheduleUpdate',
    'validate_config_dict',
    'validate_schedule_update',
    'get_env_var_mappings',
    'ProviderBackendEnum',
    'StatisticEnum',
]
