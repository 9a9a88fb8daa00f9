"""
castctl Configuration System.

Priority order (highest to lowest):
1. Command-line arguments
2. Environment variables
3. Configuration file (YAML)
4. Default values
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)


# Valid log levels
VALID_LOG_LEVELS = {"debug", "info", "warning", "error"}

# Environment variable mappings
ENV_MAPPINGS = {
    # Connection
    "CASTCTL_VERIFY_TLS": ("connection", "verify_tls"),
    # Discovery
    "CASTCTL_DISCOVERY_TIMEOUT": ("discovery", "timeout"),
    "CASTCTL_DISCOVERY_EXPIRY": ("discovery", "expiry"),
    # Device
    "CASTCTL_DEVICE": ("device", "name"),
    # Server
    "CASTCTL_MEDIA_PORT": ("server", "media_port"),
    "CASTCTL_BIND": ("server", "bind_address"),
    # Logging
    "CASTCTL_LOG_LEVEL": ("logging", "level"),
}

_INT_VARS = {"CASTCTL_MEDIA_PORT"}
_FLOAT_VARS = {"CASTCTL_DISCOVERY_TIMEOUT", "CASTCTL_DISCOVERY_EXPIRY"}
_BOOL_VARS = {"CASTCTL_VERIFY_TLS"}


class ConfigError(Exception):
    """Configuration error."""

    pass


@dataclass
class ConnectionConfig:
    """Control-channel configuration."""

    # Receivers present self-signed certificates; verification breaks them
    verify_tls: bool = False
    sender_id: str = "sender-0"


@dataclass
class DiscoveryConfig:
    """mDNS discovery configuration."""

    timeout: float = 5.0  # Seconds the CLI scans before giving up
    expiry: float = 0.0  # Seconds before an unseen device is dropped (0 = never)


@dataclass
class DeviceConfig:
    """Default target device."""

    name: str = ""  # Device id or friendly name


@dataclass
class ServerConfig:
    """Local media server configuration."""

    media_port: int = 8090
    bind_address: str = "0.0.0.0"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class Config:
    """Complete castctl configuration."""

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def validate_port(port: int) -> bool:
    """Validate port number."""
    return isinstance(port, int) and 1 <= port <= 65535


def validate_config(config: Config) -> None:
    """
    Validate configuration.

    Raises:
        ConfigError: If configuration is invalid
    """
    errors = []

    if not isinstance(config.connection.verify_tls, bool):
        errors.append(f"Invalid verify_tls: {config.connection.verify_tls!r} (expected true/false)")
    if not config.connection.sender_id:
        errors.append("Sender id must not be empty")

    if not isinstance(config.discovery.timeout, (int, float)) or config.discovery.timeout <= 0:
        errors.append(f"Invalid discovery timeout: {config.discovery.timeout}")
    if not isinstance(config.discovery.expiry, (int, float)) or config.discovery.expiry < 0:
        errors.append(f"Invalid discovery expiry: {config.discovery.expiry}")

    if not validate_port(config.server.media_port):
        errors.append(f"Invalid media port: {config.server.media_port}")

    if str(config.logging.level).lower() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid log level: {config.logging.level}. "
            f"Valid values: {sorted(VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigError("Configuration validation failed:\n  - " + "\n  - ".join(errors))


def load_yaml_config(path: Path) -> dict:
    """
    Load configuration from YAML file.

    Args:
        path: Path to YAML file

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    if not path.exists():
        logger.debug(f"Config file not found: {path}")
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML config: {e}")
    except IOError as e:
        raise ConfigError(f"Error reading config file: {e}")

    if data and not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return data if data else {}


def _set_nested(d: dict, path: tuple, value: Any) -> None:
    """Set a nested dictionary value using a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def load_env_config() -> dict:
    """
    Load configuration from environment variables.

    Returns:
        Configuration dictionary with values from environment
    """
    result: dict = {}

    for env_var, path in ENV_MAPPINGS.items():
        value: Any = os.environ.get(env_var)
        if value is None:
            continue

        if env_var in _INT_VARS:
            try:
                value = int(value)
            except ValueError:
                logger.warning(f"Invalid integer for {env_var}: {value}")
                continue
        elif env_var in _FLOAT_VARS:
            try:
                value = float(value)
            except ValueError:
                logger.warning(f"Invalid number for {env_var}: {value}")
                continue
        elif env_var in _BOOL_VARS:
            value = value.lower() in ("true", "1", "yes", "on")

        _set_nested(result, path, value)

    return result


def _deep_merge(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def merge_configs(*configs: dict) -> dict:
    """
    Deep merge multiple configuration dictionaries.
    Later configs override earlier ones.
    """
    result: dict = {}
    for config in configs:
        _deep_merge(result, config)
    return result


def dict_to_config(d: dict) -> Config:
    """Convert a dictionary to Config dataclass."""
    config = Config()

    # Connection
    if "connection" in d:
        c = d["connection"] or {}
        config.connection.verify_tls = c.get("verify_tls", config.connection.verify_tls)
        config.connection.sender_id = c.get("sender_id", config.connection.sender_id)

    # Discovery
    if "discovery" in d:
        disc = d["discovery"] or {}
        config.discovery.timeout = disc.get("timeout", config.discovery.timeout)
        config.discovery.expiry = disc.get("expiry", config.discovery.expiry)

    # Device
    if "device" in d:
        dev = d["device"] or {}
        config.device.name = str(dev.get("name") or config.device.name)

    # Server
    if "server" in d:
        s = d["server"] or {}
        config.server.media_port = s.get("media_port", config.server.media_port)
        config.server.bind_address = s.get("bind_address", config.server.bind_address)

    # Logging
    if "logging" in d:
        config.logging.level = (d["logging"] or {}).get("level", config.logging.level)

    return config


def load_config(
    config_path: Optional[Path] = None,
    cli_args: Optional[dict] = None,
) -> Config:
    """
    Load configuration from all sources.

    Priority (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Config file
    4. Defaults

    Args:
        config_path: Path to YAML config file
        cli_args: Dictionary of CLI arguments

    Returns:
        Merged Config object

    Raises:
        ConfigError: If configuration is invalid
    """
    configs = []

    if config_path:
        file_config = load_yaml_config(config_path)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_path}")

    env_config = load_env_config()
    if env_config:
        configs.append(env_config)
        logger.debug("Loaded config from environment variables")

    if cli_args:
        configs.append(cli_args)
        logger.debug("Loaded config from CLI arguments")

    merged = merge_configs(*configs) if configs else {}

    # Convert to Config object (fills in defaults)
    config = dict_to_config(merged)

    validate_config(config)

    return config
