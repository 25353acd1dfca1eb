"""Configuration loading from environment and YAML files."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SERVER_CONFIG: dict[str, Any] = {"enabled_providers": ["example"]}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Logging (always written to stderr, stdout carries the protocol)
    log_level: str = "INFO"
    log_format: str = "json"

    # Server info
    server_name: str = "mcpengine-server"
    server_version: str = "0.1.0"
    protocol_version: str = "2025-03-26"

    # Reject requests other than initialize until the handshake completed
    require_initialize: bool = False

    # Client info
    client_name: str = "mcpengine-client"
    client_version: str = "0.1.0"

    # Timeouts (seconds)
    request_timeout: float = 30.0
    shutdown_grace: float = 5.0

    # Transport
    transport_queue_max_size: int = 0  # 0 = unbounded
    transport_line_limit: int = 16 * 1024 * 1024

    # Optional path to the server YAML config
    config_path: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_server_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """
    Load server configuration from YAML file.

    Args:
        config_path: Path to the config file. If None, uses the ``config_path``
            setting, then the default locations.

    Returns:
        Dictionary with configuration data.
    """
    if config_path is None and get_settings().config_path:
        config_path = get_settings().config_path

    if config_path is None:
        possible_paths = [
            Path("config/server.yaml"),
            Path(__file__).parent.parent.parent / "config" / "server.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = path
                break
        else:
            return dict(DEFAULT_SERVER_CONFIG)

    config_path = Path(config_path)
    if not config_path.exists():
        return dict(DEFAULT_SERVER_CONFIG)

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    return config


def get_enabled_providers(config: dict[str, Any] | None = None) -> list[str]:
    """Get list of enabled provider names."""
    if config is None:
        config = load_server_config()
    return list(config.get("enabled_providers", DEFAULT_SERVER_CONFIG["enabled_providers"]))
