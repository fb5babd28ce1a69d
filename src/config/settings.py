"""Application-wide settings and runtime sync configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from data.errors import ValidationError


class Settings:
    """Centralized application defaults."""

    # Remote layout
    REMOTE_SCHEME = "gs://"
    LOCK_FILE_NAME = ".bucket-sync.lock"

    # Distributed lock
    LOCK_STALE_AFTER_SECONDS = 60
    LOCK_MAX_WAIT_SECONDS = 180
    LOCK_RETRY_JITTER_SECONDS = 30

    # Polling loop
    POLL_INTERVAL_SECONDS = 30
    POLL_INTERVAL_MAX_SECONDS = 3600
    MAX_CONSECUTIVE_FAILURES = 3

    # CDN invalidation
    CDN_INVALIDATION_PATH = "/*"

    # External tooling
    GCLOUD_EXECUTABLE = "gcloud"

    # Logging
    LOGGER_NAME = "bucket_sync"
    LOG_LEVEL = "ERROR"


@dataclass(frozen=True)
class SyncConfig:
    """Immutable runtime configuration, built once at startup.

    Every component receives this value (or the parts of it it needs)
    through its constructor.
    """

    local_path: str
    remote_uri: str
    distributed: bool = False
    lock_stale_after_seconds: int = Settings.LOCK_STALE_AFTER_SECONDS
    lock_max_wait_seconds: int = Settings.LOCK_MAX_WAIT_SECONDS
    lock_retry_jitter_seconds: int = Settings.LOCK_RETRY_JITTER_SECONDS
    lock_conditional_put: bool = False
    poll_interval_seconds: int = Settings.POLL_INTERVAL_SECONDS
    max_consecutive_failures: int = Settings.MAX_CONSECUTIVE_FAILURES
    excluded_subpaths: tuple[str, ...] = ()
    upload_only: bool = False
    download_only: bool = False
    init_sync_up: bool = False
    init_sync_down: bool = False
    notify_on_any_change: bool = False
    cdn_url_map: Optional[str] = None
    cdn_invalidation_path: str = Settings.CDN_INVALIDATION_PATH
    transfer_options: tuple[str, ...] = ()
    transfer_options_up: tuple[str, ...] = ()
    transfer_options_down: tuple[str, ...] = ()
    gcloud_options: tuple[str, ...] = ()
    project: Optional[str] = None
    credentials_path: Optional[str] = None
    log_level: str = Settings.LOG_LEVEL
    log_dir: Optional[str] = None

    # Derived values

    @property
    def local_root(self) -> Path:
        return Path(self.local_path)

    @property
    def bucket(self) -> str:
        return self.remote_uri[len(Settings.REMOTE_SCHEME):].split("/", 1)[0]

    @property
    def prefix(self) -> str:
        """Object prefix below the bucket, without leading/trailing slash."""
        parts = self.remote_uri[len(Settings.REMOTE_SCHEME):].split("/", 1)
        return parts[1].strip("/") if len(parts) > 1 else ""

    @property
    def lock_key(self) -> str:
        if not self.prefix:
            return Settings.LOCK_FILE_NAME
        return f"{self.prefix}/{Settings.LOCK_FILE_NAME}"

    @property
    def lock_uri(self) -> str:
        return f"{Settings.REMOTE_SCHEME}{self.bucket}/{self.lock_key}"

    @property
    def excluded_paths(self) -> tuple[Path, ...]:
        return tuple(self._resolve_excluded(p) for p in self.excluded_subpaths)

    @property
    def upload_options(self) -> tuple[str, ...]:
        return self.transfer_options + self.transfer_options_up

    @property
    def download_options(self) -> tuple[str, ...]:
        options = self.transfer_options + self.transfer_options_down
        if self.distributed:
            # keep the peer-visible lock object out of the local tree
            lock_pattern = Settings.LOCK_FILE_NAME.replace(".", r"\.")
            options += (f"--exclude=(^|.*/){lock_pattern}$",)
        return options

    @property
    def deletes_remote_on_upload(self) -> bool:
        return any(
            opt.split("=", 1)[0] in ("--delete-unmatched-destination-objects", "--delete")
            for opt in self.upload_options
        )

    @property
    def single_shot(self) -> bool:
        return self.poll_interval_seconds == 0

    def validate(self) -> None:
        """Check option values and combinations.

        Raises:
            ValidationError: On the first malformed or conflicting option.
        """
        if not self.local_path or not self.remote_uri:
            raise ValidationError("<LocalPath> and <RemoteUri> are required")

        if self.local_path.endswith(os.sep) or self.remote_uri.endswith("/"):
            raise ValidationError(
                "<LocalPath> and <RemoteUri> should not include trailing slashes"
            )

        if not self.remote_uri.startswith(Settings.REMOTE_SCHEME) or not self.bucket:
            raise ValidationError(
                f"<RemoteUri> {self.remote_uri} must look like gs://bucket[/prefix]"
            )

        if not 0 <= self.poll_interval_seconds <= Settings.POLL_INTERVAL_MAX_SECONDS:
            raise ValidationError(
                f"--poll {self.poll_interval_seconds} is invalid - it must be an integer "
                f"between 0-{Settings.POLL_INTERVAL_MAX_SECONDS}"
            )

        if self.max_consecutive_failures < 0:
            raise ValidationError("--max-failures must be 0 (unlimited) or a positive integer")

        if self.lock_stale_after_seconds <= 0:
            raise ValidationError("--lock-timeout must be a positive number of seconds")

        if self.lock_max_wait_seconds < 0 or self.lock_retry_jitter_seconds < 0:
            raise ValidationError("--lock-wait and --lock-jitter cannot be negative")

        if self.upload_only and self.download_only:
            raise ValidationError("--upload-only and --download-only are mutually exclusive")

        if self.init_sync_up and self.init_sync_down:
            raise ValidationError("--init-sync-up and --init-sync-down are mutually exclusive")

        if (self.upload_only or self.download_only) and (self.init_sync_up or self.init_sync_down):
            raise ValidationError(
                "--upload-only/--download-only cannot be combined with --init-sync-up/--init-sync-down"
            )

        root = self.local_root.resolve()
        for subpath in self.excluded_subpaths:
            if subpath.endswith(os.sep) or subpath.endswith("/"):
                raise ValidationError(
                    f"Excluded path {subpath} should not include a trailing slash"
                )
            resolved = self._resolve_excluded(subpath).resolve()
            if resolved == root or root not in resolved.parents:
                raise ValidationError(
                    f"Excluded path {subpath} must be a child of <LocalPath> {self.local_path}"
                )

    def _resolve_excluded(self, subpath: str) -> Path:
        path = Path(subpath).expanduser()
        return path if path.is_absolute() else self.local_root / path
