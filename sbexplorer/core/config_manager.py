"""
Configuration management for sbexplorer.

Handles loading, validation, and access to client settings.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from enum import Enum

import yaml
from pydantic import BaseModel, Field, ValidationError, ConfigDict

from sbexplorer.servicebus.constants import (
    API_VERSION,
    DEFAULT_PEEK_COUNT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_BACKOFF_MAX,
    DEFAULT_TOKEN_VALIDITY,
    PURGE_BATCH_SIZE,
    PURGE_MAX_EMPTY_RECEIVES,
    PURGE_MAX_ITERATIONS,
    PURGE_RECEIVE_TIMEOUT,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "SBEXPLORER_"


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    format: str = "json"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'azure': 'WARNING'}"
    )


class ManagementConfig(BaseModel):
    """Management REST API settings."""
    api_version: str = API_VERSION
    token_validity_seconds: int = Field(default=DEFAULT_TOKEN_VALIDITY, ge=60)
    request_timeout: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT,
        gt=0.0,
        description="Per-request timeout in seconds"
    )


class MessagingConfig(BaseModel):
    """AMQP data-plane settings."""
    default_peek_count: int = Field(default=DEFAULT_PEEK_COUNT, ge=1)
    purge_batch_size: int = Field(default=PURGE_BATCH_SIZE, ge=1)
    purge_receive_timeout: float = Field(default=PURGE_RECEIVE_TIMEOUT, gt=0.0)
    purge_max_empty_receives: int = Field(default=PURGE_MAX_EMPTY_RECEIVES, ge=1)
    purge_max_iterations: int = Field(default=PURGE_MAX_ITERATIONS, ge=1)
    retry_total: int = Field(default=3, ge=0)
    retry_backoff_max: float = Field(default=DEFAULT_RETRY_BACKOFF_MAX, ge=0.0)


class ExplorerConfig(BaseModel):
    """Main sbexplorer configuration schema."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    management: ManagementConfig = Field(default_factory=ManagementConfig)

    messaging: MessagingConfig = Field(default_factory=MessagingConfig)

    model_config = ConfigDict(use_enum_values=True)


class ConfigManager:
    """
    Manages sbexplorer configuration loading and validation.

    Configuration precedence (highest to lowest):
    1. Explicit overrides
    2. Environment variables (SBEXPLORER_*)
    3. Configuration file (YAML/JSON)
    4. Defaults
    """

    def __init__(self):
        self._config: Optional[ExplorerConfig] = None
        self._config_file: Optional[Path] = None

    def load(
        self,
        config_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None
    ) -> ExplorerConfig:
        """
        Load and validate configuration from multiple sources.

        Args:
            config_file: Path to configuration file (YAML or JSON)
            overrides: Nested dictionary of explicit overrides

        Returns:
            Validated ExplorerConfig instance

        Raises:
            ValidationError: If configuration is invalid
            FileNotFoundError: If specified config file doesn't exist
        """
        config_dict: Dict[str, Any] = {}

        if config_file:
            config_dict = self._load_from_file(config_file)
            self._config_file = Path(config_file)
            logger.info(f"Loaded configuration from file: {config_file}")

        env_config = self._load_from_env()
        config_dict = self._merge_configs(config_dict, env_config)
        if env_config:
            logger.info(f"Applied {len(env_config)} environment variable override sections")

        if overrides:
            config_dict = self._merge_configs(config_dict, overrides)

        try:
            self._config = ExplorerConfig(**config_dict)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

        logger.debug(f"Active configuration: {json.dumps(self._config.model_dump(), indent=2)}")
        return self._config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file."""
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(path, 'r') as f:
            if path.suffix in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif path.suffix == '.json':
                return json.load(f)
            else:
                raise ValueError(f"Unsupported config file format: {path.suffix}")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from SBEXPLORER_* environment variables."""
        config: Dict[str, Any] = {}

        if log_level := os.getenv(f"{ENV_PREFIX}LOG_LEVEL"):
            config.setdefault("logging", {})["level"] = log_level.upper()
        if log_format := os.getenv(f"{ENV_PREFIX}LOG_FORMAT"):
            config.setdefault("logging", {})["format"] = log_format.lower()
        if log_file := os.getenv(f"{ENV_PREFIX}LOG_FILE"):
            config.setdefault("logging", {})["file"] = log_file

        if api_version := os.getenv(f"{ENV_PREFIX}API_VERSION"):
            config.setdefault("management", {})["api_version"] = api_version
        if timeout := os.getenv(f"{ENV_PREFIX}REQUEST_TIMEOUT"):
            config.setdefault("management", {})["request_timeout"] = float(timeout)
        if validity := os.getenv(f"{ENV_PREFIX}TOKEN_VALIDITY"):
            config.setdefault("management", {})["token_validity_seconds"] = int(validity)

        if peek_count := os.getenv(f"{ENV_PREFIX}PEEK_COUNT"):
            config.setdefault("messaging", {})["default_peek_count"] = int(peek_count)
        if max_iterations := os.getenv(f"{ENV_PREFIX}PURGE_MAX_ITERATIONS"):
            config.setdefault("messaging", {})["purge_max_iterations"] = int(max_iterations)
        if retry_total := os.getenv(f"{ENV_PREFIX}RETRY_TOTAL"):
            config.setdefault("messaging", {})["retry_total"] = int(retry_total)

        return config

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def get_config(self) -> ExplorerConfig:
        """
        Get the loaded configuration.

        Raises:
            RuntimeError: If configuration hasn't been loaded
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def reload(self) -> ExplorerConfig:
        """Reload configuration from the same sources."""
        config_file = str(self._config_file) if self._config_file else None
        return self.load(config_file=config_file)
