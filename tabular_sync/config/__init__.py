"""Configuration management for tabular-sync."""

from __future__ import annotations


from tabular_sync.config.settings import (
    Settings,
    SyncOptions,
    TargetConfig,
    ProcessingOption,
    RoleMemberPolicy,
    load_settings,
    get_settings,
)

__all__ = [
    "Settings",
    "SyncOptions",
    "TargetConfig",
    "ProcessingOption",
    "RoleMemberPolicy",
    "load_settings",
    "get_settings",
]
