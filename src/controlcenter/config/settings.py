"""Configuration management for controlcenter.

Loads settings from a YAML configuration file with environment variable
overrides for the relay server address. Supports .env files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/controlcenter.yaml")


class ConnectionConfig(BaseModel):
    host: str = Field(default="127.0.0.1", description="Relay server host")
    port: int = Field(default=8888, ge=1, le=65535)
    connect_timeout: float = Field(default=5.0, gt=0)
    read_timeout: float = Field(default=5.0, gt=0)
    keepalive: bool = Field(default=True)
    encoding: str = Field(default="utf-8")
    reconnect_delay: float = Field(default=5.0, gt=0)
    heartbeat_interval: float = Field(default=30.0, gt=0)
    identify_delay: float = Field(default=0.2, ge=0)
    heartbeat_start_delay: float = Field(default=1.2, ge=0)


class ApiConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1, le=65535)


class SnapshotConfig(BaseModel):
    save_dir: str | None = Field(default=None, description="Directory for decoded snapshots")
    extension: str = Field(default=".png")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the controlcenter client.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "CONTROLCENTER_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    YAML values are passed as init arguments, so they win over prefixed
    environment variables; prefixed variables fill in any key the YAML
    file leaves out. Defaults apply last.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    # Load .env file manually for non-prefixed vars
    _load_dotenv()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _load_dotenv() -> None:
    """Load .env file into os.environ if it exists."""
    env_path = Path(".env")
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                if not os.environ.get(key):
                    os.environ[key] = value


def _apply_env_overrides(yaml_data: dict) -> None:
    """Apply non-prefixed SERVER_IP / SERVER_PORT overrides.

    These only fill in values the YAML file left unset.
    """
    server_ip = os.environ.get("SERVER_IP", "")
    server_port = os.environ.get("SERVER_PORT", "")

    if "connection" not in yaml_data or yaml_data["connection"] is None:
        yaml_data["connection"] = {}

    if server_ip and not yaml_data["connection"].get("host"):
        yaml_data["connection"]["host"] = server_ip

    if server_port and not yaml_data["connection"].get("port"):
        yaml_data["connection"]["port"] = server_port
