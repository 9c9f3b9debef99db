"""
Configuration management for mediasync.

This module loads config.yaml into frozen dataclasses, applies overrides
from the environment (a .env file in the working directory is honoured),
and validates values.

Every section is optional. A missing config.yaml yields the defaults, so
a fresh install can run `mediasync discover` without any setup.

Example config.yaml:
    device:
      name: "Living room laptop"
      camera_roll_directories:
        - "~/Pictures/Camera"

    storage:
      data_directory: "~/.mediasync"

    network:
      request_timeout: 30
      probe_timeout: 2

    discovery:
      timeout: 2

    sync:
      camera_upload: true
      camera_upload_weight: 0.25

    logging:
      level: "INFO"
      file: "mediasync.log"

Environment Overrides:
    MEDIASYNC_DATA_DIR, MEDIASYNC_DEVICE_ID, MEDIASYNC_DEVICE_NAME,
    MEDIASYNC_LOG_LEVEL
"""

import os
import socket
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from mediasync import __version__
from mediasync.core.exceptions import ConfigError


CONFIG_FILENAME = "config.yaml"

DEFAULT_DATA_DIRECTORY = "~/.mediasync"
DISCOVERY_PORT = 7359
DISCOVERY_PROBE = "who is MediaBrowserServer_v2?"
DISCOVERY_RESPONSE_PREFIX = "MediaBrowserServer"

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class DeviceConfig:
    """
    Identity this client presents to servers.

    Attributes:
        device_id: Stable identifier. Defaults to a UUID derived from the
                   host name so it survives restarts without being stored.
        name: Friendly device name shown in the server dashboard.
        app_name: Client application name sent in the auth header.
        app_version: Client application version sent in the auth header.
        camera_roll_directories: Folders scanned for photos and videos
                                 to upload when camera upload is enabled.
    """
    device_id: str
    name: str
    app_name: str = "mediasync"
    app_version: str = __version__
    camera_roll_directories: tuple[Path, ...] = ()


@dataclass(frozen=True)
class StorageConfig:
    """
    Local storage locations.

    Attributes:
        data_directory: Root for the database, media files and images.
    """
    data_directory: Path

    @property
    def database_path(self) -> Path:
        return self.data_directory / "mediasync.db"

    @property
    def media_directory(self) -> Path:
        return self.data_directory / "media"

    @property
    def image_directory(self) -> Path:
        return self.data_directory / "images"

    @property
    def credentials_path(self) -> Path:
        return self.data_directory / "servers.json"


@dataclass(frozen=True)
class NetworkConfig:
    """
    HTTP behaviour.

    Attributes:
        request_timeout: Seconds allowed for a regular API call.
        probe_timeout: Seconds allowed for a reachability probe of one
                       candidate address. Independent of the discovery window.
        user_agent: User-Agent header sent with every request.
    """
    request_timeout: float = 30.0
    probe_timeout: float = 2.0
    user_agent: str = f"mediasync/{__version__}"


@dataclass(frozen=True)
class DiscoveryConfig:
    """LAN discovery settings."""
    port: int = DISCOVERY_PORT
    timeout: float = 2.0
    probe: str = DISCOVERY_PROBE
    response_prefix: str = DISCOVERY_RESPONSE_PREFIX


@dataclass(frozen=True)
class SyncConfig:
    """
    Sync behaviour.

    Attributes:
        supports_offline_access: Cache authorized users for offline sign-in.
        camera_upload: Upload local photos and videos when the server
                       has enabled camera upload for this device.
        camera_upload_weight: Share of a server's progress given to the
                              camera upload step (the rest goes to media sync).
    """
    supports_offline_access: bool = True
    camera_upload: bool = True
    camera_upload_weight: float = 0.25


@dataclass(frozen=True)
class LoggingConfig:
    """
    Logging settings.

    Attributes:
        level: Console log level.
        file: Log file name inside <data_directory>/logs, or None to disable.
        console_output: Whether to log to the console at all.
        colored_output: Colour level names on the console.
        max_size: Rotate the log file after this many bytes.
        backup_count: Number of rotated log files kept.
    """
    level: str = "INFO"
    file: str | None = "mediasync.log"
    console_output: bool = True
    colored_output: bool = True
    max_size: int = 10 * 1024 * 1024
    backup_count: int = 3


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    Created by load_config(); immutable afterwards.

    Example:
        config = load_config()
        print(f"Data in: {config.storage.data_directory}")
    """
    device: DeviceConfig
    storage: StorageConfig
    network: NetworkConfig = field(default_factory=NetworkConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def default_device_id() -> str:
    """Derive a stable device id from the host name."""
    return uuid.uuid5(uuid.NAMESPACE_DNS, socket.gethostname()).hex


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration.

    Args:
        config_path: Optional explicit path to config file. If None, looks
                     for config.yaml in the current working directory and
                     falls back to defaults when it does not exist.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If an explicit config path does not exist, the file has
                     invalid YAML syntax, a section is not a mapping, or a
                     value is out of range.
    """
    load_dotenv()

    explicit = config_path is not None
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    raw_config: dict[str, Any] = {}
    if config_path.exists():
        raw_config = _read_yaml(config_path)
    elif explicit:
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    device = _parse_device(_section(raw_config, "device", config_path))
    storage = _parse_storage(_section(raw_config, "storage", config_path))
    network = _parse_network(_section(raw_config, "network", config_path))
    discovery = _parse_discovery(_section(raw_config, "discovery", config_path))
    sync = _parse_sync(_section(raw_config, "sync", config_path))
    logging_config = _parse_logging(_section(raw_config, "logging", config_path))

    return Config(
        device=device,
        storage=storage,
        network=network,
        discovery=discovery,
        sync=sync,
        logging=logging_config,
    )


def _read_yaml(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )
    return raw_config


def _section(raw_config: dict[str, Any], name: str, config_path: Path) -> dict[str, Any]:
    section = raw_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(
            f"Section '{name}' must be a mapping",
            details={"file_path": str(config_path), "section": name}
        )
    return section


def _positive_number(section: dict[str, Any], key: str, default: float, name: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(
            f"'{name}.{key}' must be a positive number, got {value!r}",
            details={"field": f"{name}.{key}", "value": value}
        )
    return float(value)


def _parse_device(section: dict[str, Any]) -> DeviceConfig:
    device_id = os.getenv("MEDIASYNC_DEVICE_ID") or section.get("id") or default_device_id()
    name = os.getenv("MEDIASYNC_DEVICE_NAME") or section.get("name") or socket.gethostname()

    directories = section.get("camera_roll_directories") or []
    if not isinstance(directories, list):
        raise ConfigError(
            "'device.camera_roll_directories' must be a list of paths",
            details={"field": "device.camera_roll_directories"}
        )

    return DeviceConfig(
        device_id=str(device_id),
        name=str(name),
        app_name=str(section.get("app_name", "mediasync")),
        app_version=str(section.get("app_version", __version__)),
        camera_roll_directories=tuple(Path(str(d)).expanduser() for d in directories),
    )


def _parse_storage(section: dict[str, Any]) -> StorageConfig:
    data_dir = os.getenv("MEDIASYNC_DATA_DIR") or section.get("data_directory") or DEFAULT_DATA_DIRECTORY
    return StorageConfig(data_directory=Path(str(data_dir)).expanduser().resolve())


def _parse_network(section: dict[str, Any]) -> NetworkConfig:
    defaults = NetworkConfig()
    return NetworkConfig(
        request_timeout=_positive_number(section, "request_timeout", defaults.request_timeout, "network"),
        probe_timeout=_positive_number(section, "probe_timeout", defaults.probe_timeout, "network"),
        user_agent=str(section.get("user_agent", defaults.user_agent)),
    )


def _parse_discovery(section: dict[str, Any]) -> DiscoveryConfig:
    defaults = DiscoveryConfig()
    port = section.get("port", defaults.port)
    if not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigError(
            f"'discovery.port' must be a valid port number, got {port!r}",
            details={"field": "discovery.port", "value": port}
        )
    return DiscoveryConfig(
        port=port,
        timeout=_positive_number(section, "timeout", defaults.timeout, "discovery"),
        probe=str(section.get("probe", defaults.probe)),
        response_prefix=str(section.get("response_prefix", defaults.response_prefix)),
    )


def _parse_sync(section: dict[str, Any]) -> SyncConfig:
    defaults = SyncConfig()
    weight = section.get("camera_upload_weight", defaults.camera_upload_weight)
    if isinstance(weight, bool) or not isinstance(weight, (int, float)) or not 0 <= weight < 1:
        raise ConfigError(
            f"'sync.camera_upload_weight' must be in [0, 1), got {weight!r}",
            details={"field": "sync.camera_upload_weight", "value": weight}
        )
    return SyncConfig(
        supports_offline_access=bool(section.get("supports_offline_access", defaults.supports_offline_access)),
        camera_upload=bool(section.get("camera_upload", defaults.camera_upload)),
        camera_upload_weight=float(weight),
    )


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    defaults = LoggingConfig()
    level = str(os.getenv("MEDIASYNC_LOG_LEVEL") or section.get("level", defaults.level)).upper()
    if level not in _VALID_LOG_LEVELS:
        raise ConfigError(
            f"'logging.level' must be one of {', '.join(_VALID_LOG_LEVELS)}, got {level!r}",
            details={"field": "logging.level", "value": level}
        )
    return LoggingConfig(
        level=level,
        file=section.get("file", defaults.file),
        console_output=bool(section.get("console_output", defaults.console_output)),
        colored_output=bool(section.get("colored_output", defaults.colored_output)),
        max_size=int(section.get("max_size", defaults.max_size)),
        backup_count=int(section.get("backup_count", defaults.backup_count)),
    )
