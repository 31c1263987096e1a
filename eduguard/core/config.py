"""
Configuration Management Module

Thread-safe configuration management with support for:
- YAML configuration files
- Environment-based overrides
- Dynamic configuration updates
- Dot-notation access to nested values

SecuritySettings turns the ``security`` section into a validated,
typed object that is injected into the rate limiter, the validator,
the batch processor and the SecurityContext facade.
"""

import copy
import os
import yaml
from enum import Enum
from threading import RLock
from typing import Any, Dict, List, Optional, TypeVar
from pathlib import Path
from loguru import logger
from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_MAX_REQUESTS,
    DEFAULT_WINDOW_MS,
    DEFAULT_CLEANUP_INTERVAL_MS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_FLUSH_INTERVAL_MS,
    DEFAULT_WRITE_TIMEOUT_MS,
    DEFAULT_QUEUE_WARNING_SIZE,
    DEFAULT_FALLBACK_CAPACITY,
    DEFAULT_PROBE_THRESHOLD,
    DEFAULT_PROBE_WINDOW_MS,
    MAX_INPUT_LENGTH,
    MAX_TITLE_LENGTH,
    MAX_CONTENT_LENGTH,
    MAX_FILE_SIZE,
    DEFAULT_ALLOWED_FILE_TYPES,
    DEFAULT_SINK_TABLE,
)
from .exceptions import ConfigurationError


T = TypeVar('T')


DEFAULT_CONFIG: Dict[str, Any] = {
    'server': {
        'host': '0.0.0.0',
        'port': 8000,
        'cors_origins': ['*'],
    },
    'logging': {
        'level': 'INFO',
        'enable_file': False,
        'file_path': 'eduguard.log',
        'rotation': '10 MB',
        'retention': '30 days',
    },
    'security': {
        'security_level': 'medium',
        'enable_rate_limit': True,
        'enable_input_validation': True,
        'enable_audit_logging': True,
        'audit_checks': True,
        'max_requests': DEFAULT_MAX_REQUESTS,
        'window_ms': DEFAULT_WINDOW_MS,
        'cleanup_interval_ms': DEFAULT_CLEANUP_INTERVAL_MS,
        'batch_size': DEFAULT_BATCH_SIZE,
        'flush_interval_ms': DEFAULT_FLUSH_INTERVAL_MS,
        'write_timeout_ms': DEFAULT_WRITE_TIMEOUT_MS,
        'queue_warning_size': DEFAULT_QUEUE_WARNING_SIZE,
        'fallback_capacity': DEFAULT_FALLBACK_CAPACITY,
        'fallback_path': None,
        'probe_threshold': DEFAULT_PROBE_THRESHOLD,
        'probe_window_ms': DEFAULT_PROBE_WINDOW_MS,
        'max_input_length': MAX_INPUT_LENGTH,
        'max_title_length': MAX_TITLE_LENGTH,
        'max_content_length': MAX_CONTENT_LENGTH,
        'max_file_size': MAX_FILE_SIZE,
        'allowed_file_types': list(DEFAULT_ALLOWED_FILE_TYPES),
    },
    'tracing': {
        'otlp_endpoint': None,
    },
    'audit_sink': {
        'type': 'memory',
        'base_url': None,
        'table': DEFAULT_SINK_TABLE,
        'api_key': None,
    },
}


class Config:
    """
    Thread-safe configuration manager.

    Features:
    - Built-in defaults, merged with an optional YAML file
    - Environment-specific overrides (config.{env}.yaml)
    - Dynamic runtime configuration updates
    - Dot-notation key access (e.g., 'security.max_requests')
    - Type-safe value retrieval with defaults

    Example:
        >>> config = Config()
        >>> window = config.get('security.window_ms', expected_type=int)
        >>> config.set('security.batch_size', 25)
    """

    def __init__(self, config_path: Optional[str] = None, env: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to a config.yaml file. When omitted, the
                EDUGUARD_CONFIG environment variable or ./config.yaml is
                used, and a missing file just leaves the defaults in place.
            env: Environment name for overrides (default: from ENV environment variable)

        Raises:
            ConfigurationError: If an explicit configuration file cannot be loaded
        """
        self._lock = RLock()
        self._base_config: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}
        self.env = env or os.getenv('ENV', 'production')

        self._required = config_path is not None
        if config_path is None:
            config_path = os.getenv('EDUGUARD_CONFIG', 'config.yaml')

        self._config_path = Path(config_path)
        self._load_config()

    def _load_config(self) -> None:
        """Load defaults, then the YAML file and its environment overrides."""
        self._base_config = copy.deepcopy(DEFAULT_CONFIG)

        if not self._config_path.exists():
            if self._required:
                raise ConfigurationError(
                    f"Configuration file not found: {self._config_path}",
                    details={'path': str(self._config_path)}
                )
            logger.debug(f"No configuration file at {self._config_path}, using defaults")
            return

        try:
            with open(self._config_path, 'r') as f:
                self._merge_config(self._base_config, yaml.safe_load(f) or {})

            logger.info(f"Configuration loaded from {self._config_path}")

            env_config_path = self._config_path.parent / f'config.{self.env}.yaml'
            if env_config_path.exists():
                with open(env_config_path, 'r') as f:
                    env_overrides = yaml.safe_load(f) or {}
                    self._merge_config(self._base_config, env_overrides)
                    logger.info(f"Environment overrides loaded from {env_config_path}")

        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {e}",
                details={'path': str(self._config_path)}
            )

    def _merge_config(self, base: Dict, override: Dict) -> None:
        """Recursively merge override config into base config."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def _get_nested_value(self, config_dict: Dict, key_path: str) -> Any:
        keys = key_path.split('.')
        value = config_dict

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                raise KeyError(f"Configuration key not found: {key_path}")

        return value

    def _set_nested_value(self, config_dict: Dict, key_path: str, value: Any) -> None:
        keys = key_path.split('.')
        current = config_dict

        for key in keys[:-1]:
            if key not in current or not isinstance(current[key], dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def get(
        self,
        key_path: str,
        default: Optional[T] = None,
        expected_type: Optional[type] = None
    ) -> Any:
        """
        Get configuration value by dot-notation path.

        Checks overrides first, then base configuration.

        Args:
            key_path: Dot-separated key path (e.g., 'security.window_ms')
            default: Default value if key not found
            expected_type: Expected type of the value (validates and converts)

        Returns:
            Configuration value

        Raises:
            ConfigurationError: If key not found and no default provided
            TypeError: If value doesn't match expected_type
        """
        with self._lock:
            try:
                value = self._get_nested_value(self._overrides, key_path)
                if isinstance(value, dict):
                    # Section overrides are layered over the file section
                    try:
                        base = self._get_nested_value(self._base_config, key_path)
                    except KeyError:
                        base = None
                    if isinstance(base, dict):
                        merged = copy.deepcopy(base)
                        self._merge_config(merged, copy.deepcopy(value))
                        value = merged
            except KeyError:
                try:
                    value = self._get_nested_value(self._base_config, key_path)
                except KeyError:
                    if default is not None:
                        value = default
                    else:
                        raise ConfigurationError(
                            f"Configuration key '{key_path}' not found and no default provided",
                            config_key=key_path
                        )

            if expected_type is not None:
                if value is None:
                    return value

                if expected_type == bool and isinstance(value, str):
                    value = value.lower() in ('true', '1', 'yes', 'on')
                elif expected_type in (int, float):
                    try:
                        value = expected_type(value)
                    except (ValueError, TypeError):
                        raise TypeError(
                            f"Cannot convert '{key_path}' value to {expected_type.__name__}: {value}"
                        )
                elif not isinstance(value, expected_type):
                    raise TypeError(
                        f"Configuration key '{key_path}' has type {type(value).__name__}, "
                        f"expected {expected_type.__name__}"
                    )

            return value

    def set(self, key_path: str, value: Any) -> None:
        """
        Set configuration value (runtime override).

        Args:
            key_path: Dot-separated key path
            value: Value to set
        """
        with self._lock:
            self._set_nested_value(self._overrides, key_path, value)
            logger.info(f"Configuration override set: {key_path} = {value}")

    def to_dict(self) -> Dict[str, Any]:
        """Get complete configuration (base merged with overrides)."""
        with self._lock:
            result = copy.deepcopy(self._base_config)
            self._merge_config(result, copy.deepcopy(self._overrides))
            return result


class SecurityLevel(str, Enum):
    """Configured strictness of the security facade."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecuritySettings(BaseModel):
    """
    Validated settings for the security and audit pipeline.

    Durations keep the millisecond units of the configuration surface;
    components convert to seconds where they need to.
    """

    security_level: SecurityLevel = SecurityLevel.MEDIUM
    enable_rate_limit: bool = True
    enable_input_validation: bool = True
    enable_audit_logging: bool = True
    audit_checks: bool = True

    max_requests: int = Field(default=DEFAULT_MAX_REQUESTS, ge=1)
    window_ms: int = Field(default=DEFAULT_WINDOW_MS, ge=1)
    cleanup_interval_ms: int = Field(default=DEFAULT_CLEANUP_INTERVAL_MS, ge=1)

    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    flush_interval_ms: int = Field(default=DEFAULT_FLUSH_INTERVAL_MS, ge=1)
    write_timeout_ms: int = Field(default=DEFAULT_WRITE_TIMEOUT_MS, ge=1)
    queue_warning_size: int = Field(default=DEFAULT_QUEUE_WARNING_SIZE, ge=1)
    fallback_capacity: int = Field(default=DEFAULT_FALLBACK_CAPACITY, ge=1)
    fallback_path: Optional[str] = None

    probe_threshold: int = Field(default=DEFAULT_PROBE_THRESHOLD, ge=1)
    probe_window_ms: int = Field(default=DEFAULT_PROBE_WINDOW_MS, ge=1)

    max_input_length: int = Field(default=MAX_INPUT_LENGTH, ge=1)
    max_title_length: int = Field(default=MAX_TITLE_LENGTH, ge=1)
    max_content_length: int = Field(default=MAX_CONTENT_LENGTH, ge=1)
    max_file_size: int = Field(default=MAX_FILE_SIZE, ge=1)
    allowed_file_types: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_FILE_TYPES)
    )

    @field_validator('security_level', mode='before')
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.lower()
        return v

    @field_validator('allowed_file_types')
    @classmethod
    def normalize_file_types(cls, v: List[str]) -> List[str]:
        return [t.strip().lower() for t in v if t and t.strip()]

    @classmethod
    def from_config(cls, config_obj: "Config") -> "SecuritySettings":
        """
        Build settings from the ``security`` section of a Config.

        Raises:
            ConfigurationError: If the section fails validation
        """
        section = config_obj.get('security', default={}, expected_type=dict)
        try:
            return cls(**{k: v for k, v in section.items() if v is not None})
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid security configuration: {e}",
                config_key='security'
            ) from e


# Global configuration instance for the CLI and the app factory.
# Library components never read it directly; they receive SecuritySettings.
config = Config()
