"""
Configuration module for the Claim Provisioner.

Loads configuration from environment variables.
Supports plugin-based architecture with plugin-specific configuration.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Retry settings below these floors are raised to them
DEFAULT_RETRY_INTERVAL = 3.0  # seconds
DEFAULT_RETRY_TIMEOUT = 60.0  # seconds


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "claim_provisioner"
    user: str = "provisioner"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 5
    max_pool_size: int = 20

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "claim_provisioner"),
            user=os.getenv("DB_USER", "provisioner"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "5")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "20")),
        )


@dataclass
class ReconcilerOptions:
    """Retry settings for the create-until-visible loops of a reconcile pass."""

    retry_interval: float = DEFAULT_RETRY_INTERVAL
    retry_timeout: float = DEFAULT_RETRY_TIMEOUT

    def __post_init__(self):
        if self.retry_interval < DEFAULT_RETRY_INTERVAL:
            self.retry_interval = DEFAULT_RETRY_INTERVAL
        if self.retry_timeout < DEFAULT_RETRY_TIMEOUT:
            self.retry_timeout = DEFAULT_RETRY_TIMEOUT


@dataclass
class ReconcilerConfig:
    """Claim reconciler configuration."""

    # Resource classes whose provisioner field matches this name are ours
    provisioner_name: str = ""
    # Registry name of the provisioner plugin doing the actual work
    provisioner_plugin: str = "webhook"
    retry_interval: float = DEFAULT_RETRY_INTERVAL
    retry_timeout: float = DEFAULT_RETRY_TIMEOUT

    def __post_init__(self):
        self.provisioner_name = self.provisioner_name.lower()

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        provisioner_name = os.getenv("PROVISIONER_NAME", "")
        if not provisioner_name:
            raise ValueError(
                "PROVISIONER_NAME environment variable must be set. "
                "It selects which resource classes this instance handles."
            )

        return cls(
            provisioner_name=provisioner_name,
            provisioner_plugin=os.getenv("PROVISIONER_PLUGIN", "webhook"),
            retry_interval=float(
                os.getenv("RETRY_INTERVAL", str(DEFAULT_RETRY_INTERVAL))
            ),
            retry_timeout=float(os.getenv("RETRY_TIMEOUT", str(DEFAULT_RETRY_TIMEOUT))),
        )

    def options(self) -> ReconcilerOptions:
        """Build the (floor-clamped) retry options for the reconciler."""
        return ReconcilerOptions(
            retry_interval=self.retry_interval,
            retry_timeout=self.retry_timeout,
        )


@dataclass
class ControllerConfig:
    """Dispatch loop configuration."""

    reconcile_interval: int = 60  # seconds
    max_concurrent_reconciles: int = 5

    # Exponential backoff configuration
    backoff_base_delay: int = 5  # base delay in seconds
    backoff_max_delay: int = 300  # max delay in seconds (5 minutes)
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            reconcile_interval=int(os.getenv("RECONCILE_INTERVAL", "60")),
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            backoff_base_delay=int(os.getenv("BACKOFF_BASE_DELAY", "5")),
            backoff_max_delay=int(os.getenv("BACKOFF_MAX_DELAY", "300")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.1")),
        )


@dataclass
class APIConfig:
    """API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class PluginConfig:
    """Plugin system configuration."""

    # List of enabled input plugin names (empty = use all registered plugins)
    enabled_input_plugins: List[str] = field(default_factory=list)

    # Plugin-specific configurations keyed by plugin name
    plugin_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        enabled_inputs_str = os.getenv("ENABLED_INPUT_PLUGINS", "")
        enabled_inputs = (
            [p.strip() for p in enabled_inputs_str.split(",") if p.strip()]
            if enabled_inputs_str
            else []
        )

        # Load plugin configs from JSON environment variable
        plugin_configs = {}
        if os.getenv("PLUGIN_CONFIGS"):
            try:
                plugin_configs = json.loads(os.getenv("PLUGIN_CONFIGS"))
            except json.JSONDecodeError:
                logger.warning("Ignoring PLUGIN_CONFIGS: not valid JSON")

        return cls(
            enabled_input_plugins=enabled_inputs,
            plugin_configs=plugin_configs,
        )

    def get_plugin_config(self, plugin_name: str) -> Dict[str, Any]:
        """Get configuration for a specific plugin."""
        return self.plugin_configs.get(plugin_name, {})


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    reconciler: ReconcilerConfig
    controller: ControllerConfig
    api: APIConfig
    plugins: PluginConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            reconciler=ReconcilerConfig.from_env(),
            controller=ControllerConfig.from_env(),
            api=APIConfig.from_env(),
            plugins=PluginConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            reconciler=ReconcilerConfig(),
            controller=ControllerConfig(),
            api=APIConfig(),
            plugins=PluginConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
