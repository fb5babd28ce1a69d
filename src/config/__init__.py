"""Configuration management for bucket-sync."""

from .settings import Settings, SyncConfig

__all__ = ["Settings", "SyncConfig"]
