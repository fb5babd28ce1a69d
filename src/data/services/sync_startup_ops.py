"""Startup validation and initial synchronization for the sync orchestrator."""

from __future__ import annotations

import tempfile
import uuid
from typing import Any

from data.errors import TransferError, ValidationError
from data.services.sync_transfer_ops import upload_with_lock
from data.services.sync_types import SyncDirection
from data.storage.object_lock import LockStatus


def validate_environment(service: Any) -> None:
    """Check options and everything the loop relies on before it starts.

    Raises:
        ValidationError: On the first failed check.
    """
    config = service.config
    config.validate()
    service.logger.debug(f"<LocalPath> [{config.local_path}] and <RemoteUri> [{config.remote_uri}] are valid")

    root = config.local_root
    if not root.is_dir():
        raise ValidationError(f"<LocalPath> {root} is not a directory")
    try:
        with tempfile.NamedTemporaryFile(dir=root, prefix=".bucket-sync-probe-"):
            pass
    except OSError as exc:
        raise ValidationError(f"<LocalPath> {root} is not writable: {exc}") from exc
    service.logger.debug(f"<LocalPath> {root} is writable")

    if not service.transfer.is_available():
        raise ValidationError("gcloud cli is not installed")
    service.logger.debug("gcloud cli is installed")

    probe = f"{config.prefix}/.bucket-sync-probe-{uuid.uuid4().hex}".lstrip("/")
    if not service.storage.check_writable(probe):
        raise ValidationError(f"<RemoteUri> {config.remote_uri} is not writable")
    service.logger.debug(f"<RemoteUri> {config.remote_uri} is valid and writable")

    if config.cdn_url_map:
        service.logger.debug(f"Validating CDN URL map [id={config.cdn_url_map}]")
        if service.notifier is None or not service.notifier.validate_target(config.cdn_url_map):
            raise ValidationError(f"CDN URL map {config.cdn_url_map} is not valid")
        service.logger.debug("Successfully validated CDN URL map")

    if config.distributed:
        validate_distributed_lock(service)


def validate_distributed_lock(service: Any) -> None:
    """Round-trip an acquire and release so lock problems surface before the loop."""
    config = service.config
    service.logger.debug(f"Validating distributed locking [bucket={config.bucket}; lock={config.lock_key}]")
    status = service.lock_client.acquire(
        config.bucket,
        config.lock_key,
        config.lock_stale_after_seconds,
        config.lock_max_wait_seconds,
        service.identity,
    )
    if status is not LockStatus.HELD:
        raise ValidationError("Unable to validate obtaining a distributed lock")
    if service.lock_client.release(config.bucket, config.lock_key, service.identity) is not LockStatus.RELEASED:
        raise ValidationError("Unable to validate releasing a distributed lock")
    service.logger.debug("Successfully validated obtaining and releasing a distributed lock")


def initial_sync(service: Any) -> bool:
    """Run the unconditional --init-sync-down / --init-sync-up transfer, if requested."""
    config = service.config
    if config.init_sync_down:
        service.logger.debug("Invoking downlink synchronization for --init-sync-down option")
        ok = service.transfer.transfer(
            SyncDirection.DOWN, config.local_root, config.remote_uri, config.download_options
        )
    elif config.init_sync_up:
        service.logger.debug("Invoking uplink synchronization for --init-sync-up option")
        transferred, lock_ok = upload_with_lock(service)
        ok = transferred and lock_ok
    else:
        return True

    if ok:
        service.logger.debug("Initial synchronization successful")
    else:
        service.logger.error(TransferError("Initial synchronization failed").message)
    return ok
