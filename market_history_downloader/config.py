"""
Configuration Management for Market History Downloader

This module handles all configuration settings including environment variables,
file-based configuration, and validation.
"""

import os
import yaml
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from pathlib import Path
import logging
from dotenv import load_dotenv

from .utils.error_handler import ConfigurationError

logger = logging.getLogger(__name__)


def _raise_if_invalid(section: str, validation_errors):
    if validation_errors:
        error_message = f"{section} configuration validation failed:\n" + "\n".join(f"  - {error}" for error in validation_errors)
        raise ConfigurationError(error_message)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class FeedConfig:
    """Historical lookup feed configuration"""
    host: str = "127.0.0.1"
    lookup_port: int = 9100
    protocol: str = "6.2"
    max_sessions: int = 8  # concurrent session cap enforced by the feed
    timeout: int = 60
    save_on_disk: bool = False
    temp_dir: Optional[str] = None
    datapoints_per_send: int = 500

    def __post_init__(self):
        """Validate feed configuration"""
        validation_errors = []

        if not self.host:
            validation_errors.append("Feed host is required - set IQFEED_HOST environment variable")
        if not 0 < self.lookup_port < 65536:
            validation_errors.append(f"Lookup port must be between 1 and 65535, got {self.lookup_port}")
        if self.max_sessions <= 0:
            validation_errors.append(f"Max sessions must be positive, got {self.max_sessions}")
        if self.timeout <= 0:
            validation_errors.append(f"Timeout must be positive, got {self.timeout}")
        if self.datapoints_per_send <= 0:
            validation_errors.append(f"Datapoints per send must be positive, got {self.datapoints_per_send}")
        if self.temp_dir and not Path(self.temp_dir).is_dir():
            validation_errors.append(f"Temporary directory not found: {self.temp_dir}")

        _raise_if_invalid("Feed", validation_errors)


@dataclass
class OutputConfig:
    """Writer sink configuration"""
    data_folder: str = "../../../Data"
    format: str = "parquet"  # 'parquet', 'csv'
    destination: str = "local"  # 'local', 'gcs'
    gcs_bucket: Optional[str] = None
    compression: str = "snappy"  # 'snappy', 'gzip', 'zstd'

    def __post_init__(self):
        """Validate output configuration"""
        validation_errors = []

        valid_formats = ['parquet', 'csv']
        if self.format not in valid_formats:
            validation_errors.append(f"Invalid output format: {self.format} (expected one of {valid_formats})")

        valid_destinations = ['local', 'gcs']
        if self.destination not in valid_destinations:
            validation_errors.append(f"Invalid output destination: {self.destination} (expected one of {valid_destinations})")
        elif self.destination == 'gcs' and not self.gcs_bucket:
            validation_errors.append("GCS bucket name is required for gcs destination - set GCS_BUCKET environment variable")

        valid_compressions = ['snappy', 'gzip', 'zstd']
        if self.compression not in valid_compressions:
            validation_errors.append(f"Invalid compression: {self.compression}")

        if not self.data_folder:
            validation_errors.append("Data folder is required - set DATA_FOLDER environment variable")

        _raise_if_invalid("Output", validation_errors)


@dataclass
class ServiceConfig:
    """Service configuration"""
    log_level: str = "INFO"
    log_file: Optional[str] = None
    max_workers: Optional[int] = None  # defaults to feed.max_sessions

    def __post_init__(self):
        """Validate service configuration"""
        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.log_level.upper() not in valid_log_levels:
            raise ConfigurationError(f"Invalid log level: {self.log_level}")
        if self.max_workers is not None and self.max_workers <= 0:
            raise ConfigurationError("Max workers must be positive")


@dataclass
class Config:
    """Main configuration class"""
    feed: FeedConfig = field(default_factory=FeedConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)

    def __post_init__(self):
        """Validate cross-section settings"""
        if self.service.max_workers is None:
            self.service.max_workers = self.feed.max_sessions
        elif self.service.max_workers > self.feed.max_sessions:
            raise ConfigurationError(
                f"Max workers ({self.service.max_workers}) exceeds the feed session limit ({self.feed.max_sessions})"
            )


class ConfigManager:
    """Configuration manager for loading and validating settings"""

    ENV_MAPPING = {
        'IQFEED_HOST': ('feed', 'host', str),
        'IQFEED_LOOKUP_PORT': ('feed', 'lookup_port', int),
        'IQFEED_PROTOCOL': ('feed', 'protocol', str),
        'IQFEED_MAX_SESSIONS': ('feed', 'max_sessions', int),
        'IQFEED_TIMEOUT': ('feed', 'timeout', int),
        'IQFEED_SAVE_ON_DISK': ('feed', 'save_on_disk', _as_bool),
        'IQFEED_TEMP_DIR': ('feed', 'temp_dir', str),
        'DATA_FOLDER': ('output', 'data_folder', str),
        'OUTPUT_FORMAT': ('output', 'format', str),
        'OUTPUT_DESTINATION': ('output', 'destination', str),
        'GCS_BUCKET': ('output', 'gcs_bucket', str),
        'COMPRESSION': ('output', 'compression', str),
        'LOG_LEVEL': ('service', 'log_level', str),
        'LOG_FILE': ('service', 'log_file', str),
        'MAX_WORKERS': ('service', 'max_workers', int),
    }

    def __init__(self, config_file: Optional[str] = None, env_file: Optional[str] = None):
        self.config_file = config_file or self._find_config_file()
        self._config: Optional[Config] = None

        env_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.info(f"Loaded environment variables from {env_path}")
        elif env_file:
            raise ConfigurationError(f"Environment file not found: {env_file}")

    def _find_config_file(self) -> Optional[str]:
        """Find configuration file in standard locations"""
        config_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".market-history" / "config.yaml",
        ]

        for path in config_paths:
            if path.exists():
                return str(path)

        return None

    def load_config(self) -> Config:
        """Load configuration from file and environment variables"""
        if self._config is not None:
            return self._config

        config_dict: Dict[str, Dict[str, Any]] = {'feed': {}, 'output': {}, 'service': {}}

        if self.config_file:
            for section, values in self._load_from_file(self.config_file).items():
                if section in config_dict and isinstance(values, dict):
                    config_dict[section].update(values)

        # Environment overrides file
        for section, values in self._load_from_env().items():
            config_dict[section].update(values)

        self._config = self._create_config(config_dict)
        return self._config

    def _load_from_file(self, config_file: str) -> Dict[str, Any]:
        """Load configuration from YAML file"""
        path = Path(config_file)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_file}")
        try:
            with open(path, 'r') as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse config file {config_file}: {e}") from e

    def _load_from_env(self) -> Dict[str, Dict[str, Any]]:
        """Load configuration from environment variables"""
        config: Dict[str, Dict[str, Any]] = {}
        for env_name, (section, key, cast) in self.ENV_MAPPING.items():
            raw = os.getenv(env_name)
            if raw is None or raw == '':
                continue
            try:
                config.setdefault(section, {})[key] = cast(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}") from e
        return config

    def _create_config(self, config_dict: Dict[str, Dict[str, Any]]) -> Config:
        """Create Config object from dictionary"""
        try:
            return Config(
                feed=FeedConfig(**config_dict.get('feed', {})),
                output=OutputConfig(**config_dict.get('output', {})),
                service=ServiceConfig(**config_dict.get('service', {}))
            )
        except TypeError as e:
            raise ConfigurationError(f"Unknown configuration key: {e}") from e


_config_manager: Optional[ConfigManager] = None


def get_config(config_file: Optional[str] = None, env_file: Optional[str] = None) -> Config:
    """Get the process configuration, loading it on first use"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_file=config_file, env_file=env_file)
    return _config_manager.load_config()


def reload_config(config_file: Optional[str] = None, env_file: Optional[str] = None) -> Config:
    """Reload configuration from sources"""
    global _config_manager
    _config_manager = ConfigManager(config_file=config_file, env_file=env_file)
    return _config_manager.load_config()
