# utilreg/config.py
"""
Configuration loading for the registry service.

Settings come from a YAML file, then environment variables, then
command-line flags, each layer overriding the one before.

Example utilreg.yml:
    data_dir: /var/lib/utilreg
    log_level: INFO
    server:
      host: 0.0.0.0
      port: 8420
      require_signatures: true
      max_body_bytes: 1048576
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

DEFAULT_CONFIG_PATH = Path("utilreg.yml")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ServerConfig:
    """HTTP service settings."""

    host: str = "127.0.0.1"
    port: int = 8420
    require_signatures: bool = True
    max_body_bytes: int = 1024 * 1024

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerConfig":
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=int(data.get("port", 8420)),
            require_signatures=bool(data.get("require_signatures", True)),
            max_body_bytes=int(data.get("max_body_bytes", 1024 * 1024)),
        )


@dataclass
class RegistryConfig:
    """Top-level settings."""

    data_dir: Path = Path("./utilreg_data")
    log_level: str = "INFO"
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RegistryConfig":
        return cls(
            data_dir=Path(data.get("data_dir", "./utilreg_data")),
            log_level=str(data.get("log_level", "INFO")).upper(),
            server=ServerConfig.from_dict(data.get("server") or {}),
        )

    def apply_env(self, environ: Mapping[str, str] = None) -> "RegistryConfig":
        """Override settings from UTILREG_* environment variables."""
        environ = os.environ if environ is None else environ
        if environ.get("UTILREG_DATA_DIR"):
            self.data_dir = Path(environ["UTILREG_DATA_DIR"])
        if environ.get("UTILREG_HOST"):
            self.server.host = environ["UTILREG_HOST"]
        if environ.get("UTILREG_PORT"):
            self.server.port = int(environ["UTILREG_PORT"])
        if environ.get("UTILREG_LOG_LEVEL"):
            self.log_level = environ["UTILREG_LOG_LEVEL"].upper()
        return self


def load_config(config_path: str | Path | None = None, environ: Mapping[str, str] = None) -> RegistryConfig:
    """
    Load configuration from a YAML file and the environment.

    Args:
        config_path: Path to config file. If None, uses ./utilreg.yml
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated RegistryConfig; defaults when the file doesn't exist

    Raises:
        yaml.YAMLError: If config file is invalid YAML
        ValueError: If config validation fails
    """
    config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    data = None
    if config_path.exists():
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)

    if data and not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping")

    config = RegistryConfig.from_dict(data or {})
    config.apply_env(environ)
    validate_config(config)
    return config


def validate_config(config: RegistryConfig) -> None:
    """
    Validate configuration.

    Raises:
        ValueError: If configuration is invalid
    """
    if config.log_level not in LOG_LEVELS:
        raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {config.log_level}")

    if not config.server.host:
        raise ValueError("server.host must not be empty")

    if not 0 <= config.server.port <= 65535:
        raise ValueError(f"server.port out of range: {config.server.port}")

    if config.server.max_body_bytes <= 0:
        raise ValueError("server.max_body_bytes must be positive")
