"""
Configuration package for the TripShare collaboration service.
"""

from .settings import (
    Settings,
    Environment,
    LogLevel,
    DatabaseSettings,
    RedisSettings,
    CacheSettings,
    StoreSettings,
    settings,
    get_settings,
    reload_settings,
)

__all__ = [
    "Settings",
    "Environment",
    "LogLevel",
    "DatabaseSettings",
    "RedisSettings",
    "CacheSettings",
    "StoreSettings",
    "settings",
    "get_settings",
    "reload_settings",
]
