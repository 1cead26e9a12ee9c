"""Configuration management module.

This module provides:
- Environment-based configuration with validation
- Component settings (Hetzner, k3s, SSH, secret store)
- Cached settings access via get_settings()
"""

from .settings import (
    Environment,
    HetznerSettings,
    K3sSettings,
    LogFormat,
    LogLevel,
    SecretStoreSettings,
    Settings,
    SSHSettings,
    get_settings,
)

__all__ = [
    # Main settings
    "Settings",
    "get_settings",
    # Enums
    "Environment",
    "LogLevel",
    "LogFormat",
    # Component settings
    "HetznerSettings",
    "K3sSettings",
    "SSHSettings",
    "SecretStoreSettings",
]
