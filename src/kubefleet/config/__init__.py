"""Environment-driven settings for KubeFleet processes."""

from .settings import (
    ClusterManagerSettings,
    DatabaseSettings,
    Environment,
    LogFormat,
    LogLevel,
    Settings,
    get_settings,
)

__all__ = [
    "ClusterManagerSettings",
    "DatabaseSettings",
    "Environment",
    "LogFormat",
    "LogLevel",
    "Settings",
    "get_settings",
]
