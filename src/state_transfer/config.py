"""
Configuration management for state transfer operations.

This module handles loading and validating configuration from files and environment variables.
"""

import os
import yaml
from typing import Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from .exceptions import ConfigurationError
from .logging import logger


def _to_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value}")


class AppConfig(BaseModel):
    """Application configuration with Pydantic validation.

    Configuration can be loaded from:
    1. Explicit config file path
    2. Default config file locations
    3. Environment variables (highest priority)

    Environment variables:
    - STATE_TRANSFER_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - STATE_TRANSFER_SOURCE_KUBECONFIG: kubeconfig for the source cluster
    - STATE_TRANSFER_SOURCE_CONTEXT: kubeconfig context for the source cluster
    - STATE_TRANSFER_DESTINATION_KUBECONFIG: kubeconfig for the destination cluster
    - STATE_TRANSFER_DESTINATION_CONTEXT: kubeconfig context for the destination cluster
    - STATE_TRANSFER_IN_CLUSTER: use the in-cluster service account for both sides
    - STATE_TRANSFER_SUBDOMAIN: subdomain used to build routed endpoint hostnames
    - STATE_TRANSFER_ENDPOINT_TYPE: default endpoint type
    - STATE_TRANSFER_TRANSPORT_TYPE: default transport type (stunnel, null)
    - STATE_TRANSFER_RSYNC_BANDWIDTH_LIMIT: rsync --bwlimit in KiB/s
    - STATE_TRANSFER_CA_VERIFY_LEVEL: stunnel verify level
    - STATE_TRANSFER_NO_VERIFY_CA: skip CA verification on the tunnel client
    - STATE_TRANSFER_PROXY_URL: HTTP CONNECT proxy for the tunnel client
    - STATE_TRANSFER_QUIESCE_POLL_INTERVAL: seconds between pod termination checks
    - STATE_TRANSFER_HEALTH_POLL_INTERVAL: seconds between endpoint health checks
    """

    model_config = ConfigDict(extra="forbid")  # Reject unknown fields

    log_level: str = Field(default="INFO", description="Logging level")

    source_kubeconfig: Optional[str] = None
    source_context: Optional[str] = None
    destination_kubeconfig: Optional[str] = None
    destination_context: Optional[str] = None
    in_cluster: bool = False

    subdomain: Optional[str] = Field(
        default=None, description="Subdomain appended to routed endpoint hostnames"
    )
    endpoint_type: str = Field(default="passthrough", description="Endpoint type")
    transport_type: str = Field(default="stunnel", description="Transport type")

    # Images
    rsync_server_image: str = "quay.io/konveyor/rsync-transfer:latest"
    rsync_client_image: str = "quay.io/konveyor/rsync-transfer:latest"
    rclone_image: str = "quay.io/jmontleon/rclone-transfer:latest"
    blockrsync_image: str = "quay.io/awels/blockrsync:latest"
    stunnel_image: str = "quay.io/konveyor/rsync-transfer:latest"

    rsync_bandwidth_limit: int = Field(
        default=102400, gt=0, description="rsync --bwlimit in KiB/s"
    )

    # Tunnel options
    ca_verify_level: Optional[str] = Field(default=None, pattern=r"^[0-4]$")
    no_verify_ca: bool = True
    proxy_url: Optional[str] = None
    proxy_username: Optional[str] = None
    proxy_password: Optional[str] = None

    quiesce_poll_interval: float = Field(
        default=5.0, gt=0, description="Seconds between pod termination checks"
    )
    health_poll_interval: float = Field(
        default=5.0, gt=0, description="Seconds between endpoint health checks"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        v = v.upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v

    @field_validator("endpoint_type")
    @classmethod
    def validate_endpoint_type(cls, v: str) -> str:
        valid_types = [
            "edge",
            "passthrough",
            "ingress",
            "loadbalancer",
            "clusterip",
            "nodeport",
            "local",
        ]
        v = v.lower()
        if v not in valid_types:
            raise ValueError(f"endpoint_type must be one of {valid_types}")
        return v

    @field_validator("transport_type")
    @classmethod
    def validate_transport_type(cls, v: str) -> str:
        v = v.lower()
        if v not in ("stunnel", "null"):
            raise ValueError("transport_type must be one of ['stunnel', 'null']")
        return v


class ConfigLoader:
    """Loads and validates configuration."""

    def __init__(self) -> None:
        self.logger = logger

    def load_config(self, config_path: Optional[str] = None) -> AppConfig:
        """
        Load configuration from file and environment variables.

        Priority (highest to lowest):
        1. Environment variables
        2. Config file (explicit path or default locations)
        3. Default values

        Args:
            config_path: Path to configuration file. If None, looks in default locations.

        Returns:
            AppConfig: Loaded configuration

        Raises:
            ConfigurationError: If the file cannot be parsed or fails validation
        """
        if config_path:
            config_data = self._load_data_from_file(config_path)
        else:
            default_paths = [
                os.path.expanduser("~/.config/state-transfer/config.yaml"),
                "/etc/state-transfer/config.yaml",
                "config.yaml",
            ]

            config_data = {}
            for path in default_paths:
                if os.path.exists(path):
                    self.logger.info(f"Loading configuration from {path}", path=path)
                    config_data = self._load_data_from_file(path)
                    break

            if not config_data:
                self.logger.debug(
                    "No configuration file found, using defaults and environment variables"
                )

        config_data = self._apply_env_overrides(config_data)

        try:
            return AppConfig(**config_data)
        except ValueError as e:
            self.logger.error(f"Invalid configuration: {e}")
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def _apply_env_overrides(self, config_data: dict) -> dict:
        """Apply environment variable overrides to config data."""
        env_mappings = {
            "STATE_TRANSFER_LOG_LEVEL": "log_level",
            "STATE_TRANSFER_SOURCE_KUBECONFIG": "source_kubeconfig",
            "STATE_TRANSFER_SOURCE_CONTEXT": "source_context",
            "STATE_TRANSFER_DESTINATION_KUBECONFIG": "destination_kubeconfig",
            "STATE_TRANSFER_DESTINATION_CONTEXT": "destination_context",
            "STATE_TRANSFER_IN_CLUSTER": ("in_cluster", _to_bool),
            "STATE_TRANSFER_SUBDOMAIN": "subdomain",
            "STATE_TRANSFER_ENDPOINT_TYPE": "endpoint_type",
            "STATE_TRANSFER_TRANSPORT_TYPE": "transport_type",
            "STATE_TRANSFER_RSYNC_BANDWIDTH_LIMIT": ("rsync_bandwidth_limit", int),
            "STATE_TRANSFER_CA_VERIFY_LEVEL": "ca_verify_level",
            "STATE_TRANSFER_NO_VERIFY_CA": ("no_verify_ca", _to_bool),
            "STATE_TRANSFER_PROXY_URL": "proxy_url",
            "STATE_TRANSFER_PROXY_USERNAME": "proxy_username",
            "STATE_TRANSFER_PROXY_PASSWORD": "proxy_password",
            "STATE_TRANSFER_QUIESCE_POLL_INTERVAL": ("quiesce_poll_interval", float),
            "STATE_TRANSFER_HEALTH_POLL_INTERVAL": ("health_poll_interval", float),
        }

        for env_var, mapping in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is None:
                continue
            if isinstance(mapping, tuple):
                config_key, converter = mapping
                try:
                    config_data[config_key] = converter(env_value)
                    self.logger.debug(f"Applied environment override: {env_var}")
                except (ValueError, TypeError) as e:
                    self.logger.warning(
                        f"Invalid value for {env_var}: {env_value}, ignoring. Error: {e}"
                    )
            else:
                config_data[mapping] = env_value
                self.logger.debug(f"Applied environment override: {env_var}")

        return config_data

    def _load_data_from_file(self, path: str) -> dict:
        """Load configuration data from a specific file."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            self.logger.error(
                f"Failed to parse configuration file {path}: {e}", path=path
            )
            raise ConfigurationError(f"Failed to parse configuration file: {e}") from e
        except OSError as e:
            self.logger.error(
                f"Failed to load configuration from {path}: {e}", path=path
            )
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

        if data is None:
            return {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid configuration format in {path}")

        return data


# Global config loader
config_loader = ConfigLoader()
