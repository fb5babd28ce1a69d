"""Data layer: remote storage access and sync services."""
