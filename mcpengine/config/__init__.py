"""Configuration loading and management."""

from mcpengine.config.loader import Settings, get_settings, load_server_config, get_enabled_providers

__all__ = ["Settings", "get_settings", "load_server_config", "get_enabled_providers"]
