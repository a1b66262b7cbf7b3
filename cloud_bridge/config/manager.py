"""
Configuration manager with hot-reloading support.
"""

import hashlib
import json
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from cloud_bridge.config.models import BridgeConfig
from cloud_bridge.config.validation import get_env_var_mappings, validate_config_dict
from cloud_bridge.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

_INT_ENV_VARS = {
    'BRIDGE_OPENNMS_TIMEOUT', 'BRIDGE_MAX_WORKERS',
    'BRIDGE_MISFIRE_GRACE_TIME', 'BRIDGE_HISTORY_SIZE',
}
_BOOL_ENV_VARS = {
    'BRIDGE_OPENNMS_ENABLED', 'BRIDGE_DISCOVERY_ENABLED',
    'BRIDGE_COLLECTION_ENABLED', 'BRIDGE_LOG_STRUCTURED',
}

DEFAULT_CONFIG: Dict[str, Any] = {
    'opennms': {
        'base_url': 'http://localhost:8980/opennms',
        'username': 'admin',
        'password': 'admin',
        'timeout': 30,
        'default_location': 'Default',
        'enabled': True
    },
    'scheduling': {
        'timezone': 'UTC',
        'max_workers': 10,
        'misfire_grace_time': 300,
        'history_size': 100,
        'discovery': {
            'enabled': True,
            'initial_delay': '30s',
            'interval': '5m'
        },
        'collection': {
            'enabled': True,
            'initial_delay': '1m',
            'interval': '60s'
        }
    },
    'providers': [
        {
            'provider_id': 'demo',
            'backend': 'mock',
            'display_name': 'Demo AWS account',
            'regions': ['us-east-1'],
            'instances_per_region': 3
        }
    ],
    'logging': {
        'level': 'INFO',
        'file': None,
        'structured': False
    }
}


class ConfigFileHandler(FileSystemEventHandler):
    """File system event handler for configuration file changes."""

    def __init__(self, config_manager: 'ConfigManager'):
        self.config_manager = config_manager
        self._last_reload_time = 0.0
        self._reload_debounce = 1.0  # Debounce reloads within 1 second

    def on_modified(self, event):
        """Handle file modification events."""
        if not event.is_directory:
            self._maybe_reload(event.src_path)

    def on_moved(self, event):
        """Handle file move events (e.g., atomic writes)."""
        if not event.is_directory:
            self._maybe_reload(event.dest_path)

    def _maybe_reload(self, path: str) -> None:
        if os.path.abspath(path) != self.config_manager.config_file_path:
            return
        current_time = time.time()
        if current_time - self._last_reload_time > self._reload_debounce:
            self._last_reload_time = current_time
            # Small delay so the write is complete before reading
            threading.Timer(0.1, self.config_manager._reload_config).start()


class ConfigManager:
    """
    Configuration manager with hot-reloading capabilities.

    Supports YAML and JSON configuration files with environment variable
    overrides and automatic reloading when files change.
    """

    def __init__(self, config_file_path: str = "config.yaml"):
        """
        Initialize configuration manager.

        Args:
            config_file_path: Path to the configuration file
        """
        self.config_file_path = os.path.abspath(config_file_path)
        self._config: Optional[BridgeConfig] = None
        self._observer: Optional[Observer] = None
        self._change_callbacks: List[Callable[[BridgeConfig], None]] = []
        self._config_hash: Optional[str] = None
        self._reload_lock = threading.Lock()
        self._validation_errors: List[str] = []
        self._last_successful_config: Optional[BridgeConfig] = None

    def load_config(self) -> BridgeConfig:
        """
        Load configuration from file with environment variable overrides.

        Returns:
            Loaded and validated configuration

        Raises:
            ConfigurationError: If configuration is invalid and no previous
                configuration is available
        """
        with self._reload_lock:
            if not os.path.exists(self.config_file_path):
                self.create_default_config()

            current_hash = self._calculate_config_hash()
            if self._config_hash == current_hash and self._config is not None:
                return self._config

            try:
                config_data = self._load_config_file()
                config_data = self._apply_env_overrides(config_data)
                config = validate_config_dict(config_data).to_config()

                errors = config.validate()
                if errors:
                    raise ConfigurationError("; ".join(errors))

                self._config = config
                self._config_hash = current_hash
                self._validation_errors = []
                self._last_successful_config = config
                return config

            except (ConfigurationError, ValueError, OSError, yaml.YAMLError) as e:
                self._validation_errors = [str(e)]

                if self._last_successful_config is not None:
                    logger.warning(f"Config validation failed, using last known good config: {e}")
                    return self._last_successful_config

                if isinstance(e, ConfigurationError):
                    raise
                raise ConfigurationError(f"Configuration validation failed: {e}") from e

    def get_config(self) -> BridgeConfig:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config

    def get_validation_errors(self) -> List[str]:
        return self._validation_errors.copy()

    def is_config_valid(self) -> bool:
        return len(self._validation_errors) == 0

    def validate_config_file(self) -> Tuple[bool, List[str]]:
        """
        Validate configuration file without loading it.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        if not os.path.exists(self.config_file_path):
            return False, ["Configuration file does not exist"]

        try:
            config_data = self._load_config_file()
            config_data = self._apply_env_overrides(config_data)
            errors = validate_config_dict(config_data).to_config().validate()
        except (ConfigurationError, ValueError, OSError, yaml.YAMLError) as e:
            return False, [str(e)]

        return not errors, errors

    def start_hot_reload(self) -> None:
        """Start watching configuration file for changes."""
        if self._observer is not None:
            return  # Already watching

        config_dir = os.path.dirname(self.config_file_path) or "."
        os.makedirs(config_dir, exist_ok=True)

        self._observer = Observer()
        self._observer.schedule(ConfigFileHandler(self), config_dir, recursive=False)
        self._observer.start()

        logger.info(f"Started watching configuration file: {self.config_file_path}")

    def stop_hot_reload(self) -> None:
        """Stop watching configuration file for changes."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
            logger.info(f"Stopped watching configuration file: {self.config_file_path}")

    def is_hot_reload_active(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def add_change_callback(self, callback: Callable[[BridgeConfig], None]) -> None:
        """
        Add a callback to be called when configuration changes.

        Args:
            callback: Function to call with new configuration
        """
        self._change_callbacks.append(callback)

    def remove_change_callback(self, callback: Callable[[BridgeConfig], None]) -> None:
        if callback in self._change_callbacks:
            self._change_callbacks.remove(callback)

    def _reload_config(self) -> None:
        """Reload configuration from file and notify callbacks."""
        old_config = self._config
        if self._config_hash == self._calculate_config_hash():
            return

        logger.info(f"Configuration file changed, reloading: {self.config_file_path}")

        try:
            new_config = self.load_config()
        except ConfigurationError as e:
            logger.error(f"Error reloading configuration: {e}")
            return

        if new_config == old_config:
            logger.info("Configuration content unchanged after reload")
            return

        logger.info("Configuration successfully reloaded with changes")

        for callback in self._change_callbacks:
            try:
                callback(new_config)
            except Exception as e:
                logger.error(f"Error in config change callback: {e}", exc_info=True)

    def _load_config_file(self) -> Dict[str, Any]:
        """Load configuration data from file."""
        with open(self.config_file_path, 'r') as f:
            if self.config_file_path.endswith(('.yaml', '.yml')):
                return yaml.safe_load(f) or {}
            elif self.config_file_path.endswith('.json'):
                return json.load(f)
            else:
                raise ConfigurationError(f"Unsupported config file format: {self.config_file_path}")

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration."""
        for env_var, config_path_str in get_env_var_mappings().items():
            env_value = os.getenv(env_var)
            if env_value is None:
                continue

            config_path = config_path_str.split('.')
            current = config_data
            for key in config_path[:-1]:
                current = current.setdefault(key, {})

            current[config_path[-1]] = self._convert_env_value(env_var, env_value)

        return config_data

    def _convert_env_value(self, env_var: str, env_value: str) -> Any:
        """Convert environment variable value to appropriate type."""
        if env_var in _INT_ENV_VARS:
            return int(env_value)
        elif env_var in _BOOL_ENV_VARS:
            return env_value.lower() in ('true', '1', 'yes', 'on')
        else:
            return env_value

    def create_default_config(self, overwrite: bool = False) -> None:
        """
        Write the default configuration file.

        Args:
            overwrite: Replace an existing file
        """
        if os.path.exists(self.config_file_path) and not overwrite:
            raise ConfigurationError(f"Configuration file already exists: {self.config_file_path}")

        os.makedirs(os.path.dirname(self.config_file_path) or ".", exist_ok=True)
        with open(self.config_file_path, 'w') as f:
            if self.config_file_path.endswith('.json'):
                json.dump(DEFAULT_CONFIG, f, indent=2)
            else:
                yaml.dump(DEFAULT_CONFIG, f, default_flow_style=False, indent=2, sort_keys=False)

        logger.info(f"Created default configuration file: {self.config_file_path}")

    def _calculate_config_hash(self) -> str:
        """Calculate hash of configuration file content and env overrides."""
        if not os.path.exists(self.config_file_path):
            return ""

        try:
            with open(self.config_file_path, 'rb') as f:
                content = f.read()
        except OSError:
            return ""

        env_vars = [
            f"{env_var}={os.getenv(env_var)}"
            for env_var in get_env_var_mappings()
            if os.getenv(env_var) is not None
        ]
        combined_content = content + "|".join(sorted(env_vars)).encode()
        return hashlib.sha256(combined_content).hexdigest()
