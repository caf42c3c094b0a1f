"""Configuration management for controlcenter.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides for connection parameters.
"""

from controlcenter.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
