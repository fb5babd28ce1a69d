"""Uplink/downlink phases of a sync cycle."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from config.settings import Settings
from data.errors import LockError, NotificationError, TransferError
from data.services.sync_types import SyncDirection
from data.storage.object_lock import LockStatus


def current_fingerprint(service: Any) -> str:
    config = service.config
    return service.detector.fingerprint(config.local_root, config.excluded_paths)


def uplink_phase(service: Any) -> bool:
    """Upload local changes, if any, under the distributed lock.

    The first call only records the baseline. The baseline advances only
    after the upload transfer succeeded.
    """
    state = service.state
    fingerprint = current_fingerprint(service)

    if not state.has_baseline:
        state.previous_fingerprint = fingerprint
        service.logger.debug(f"Recorded initial fingerprint {fingerprint} - skipping uplink synchronization")
        return True

    if fingerprint == state.previous_fingerprint:
        service.logger.debug("No local changes detected - skipping uplink synchronization")
        return True

    service.logger.info(
        f"Local changes detected [{state.previous_fingerprint} -> {fingerprint}] - invoking uplink synchronization"
    )
    transferred, lock_ok = upload_with_lock(service)
    if transferred:
        state.previous_fingerprint = fingerprint
        notify_change(service)
    return transferred and lock_ok


def unconditional_uplink(service: Any) -> bool:
    """Upload the local tree without a change check; used when no baseline exists yet."""
    fingerprint = current_fingerprint(service)
    service.logger.debug("No fingerprint baseline recorded yet - invoking uplink synchronization")
    transferred, lock_ok = upload_with_lock(service)
    if transferred:
        service.state.previous_fingerprint = fingerprint
        notify_change(service)
    return transferred and lock_ok


def upload_with_lock(service: Any) -> tuple[bool, bool]:
    """Run the upload transfer inside the lock's critical section.

    Returns:
        (transfer succeeded, lock acquired and released cleanly)
    """
    config = service.config
    if config.distributed:
        status = service.lock_client.acquire(
            config.bucket,
            config.lock_key,
            config.lock_stale_after_seconds,
            config.lock_max_wait_seconds,
            service.identity,
        )
        if status is not LockStatus.HELD:
            error = LockError(f"Unable to obtain distributed lock {config.lock_uri} - uplink skipped")
            service.logger.error(error.message)
            return False, False

    artifact = None
    lock_ok = True
    transferred = False
    try:
        protect_lock = config.distributed and config.deletes_remote_on_upload
        if protect_lock:
            artifact = fetch_lock_artifact(service)
        if protect_lock and artifact is None:
            error = TransferError(
                f"Uplink synchronization skipped - it would delete the lock object {config.lock_uri}"
            )
            service.logger.error(error.message)
        else:
            transferred = service.transfer.transfer(
                SyncDirection.UP, config.local_root, config.remote_uri, config.upload_options
            )
            if not transferred:
                error = TransferError(f"Uplink synchronization to {config.remote_uri} failed")
                service.logger.error(error.message)
    finally:
        if artifact is not None:
            remove_lock_artifact(service, artifact)
        if config.distributed:
            released = service.lock_client.release(config.bucket, config.lock_key, service.identity)
            if released is not LockStatus.RELEASED:
                error = LockError(f"Unable to release distributed lock {config.lock_uri}")
                service.logger.error(error.message)
                lock_ok = False
    return transferred, lock_ok


def fetch_lock_artifact(service: Any) -> Path | None:
    """Copy the held lock object into the local tree.

    With deletion enabled the upload would otherwise remove the lock
    object, since it has no local counterpart.
    """
    config = service.config
    local_copy = config.local_root / Settings.LOCK_FILE_NAME
    if service.storage.download_file(config.lock_key, local_copy):
        service.logger.debug(f"Fetched lock object to {local_copy}")
        return local_copy
    service.logger.warning(f"Unable to fetch lock object {config.lock_uri} into {local_copy}")
    return None


def remove_lock_artifact(service: Any, local_copy: Path) -> None:
    try:
        local_copy.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        service.logger.warning(f"Unable to remove local lock copy {local_copy}: {exc}")


def notify_change(service: Any) -> None:
    """Trigger the notification sink. Failures are only logged."""
    config = service.config
    if not config.cdn_url_map or service.notifier is None:
        return
    try:
        ok = service.notifier.notify(config.cdn_url_map, config.cdn_invalidation_path)
    except Exception as exc:
        ok = False
        service.logger.debug(f"Notification raised: {exc}", exc_info=True)
    if not ok:
        error = NotificationError(
            f"CDN invalidation failed for {config.cdn_url_map} [{config.cdn_invalidation_path}]"
        )
        service.logger.warning(error.message)


def downlink_phase(service: Any) -> bool:
    """Pull remote changes and move the baseline to the resulting tree."""
    config = service.config
    state = service.state
    transferred = service.transfer.transfer(
        SyncDirection.DOWN, config.local_root, config.remote_uri, config.download_options
    )
    if not transferred:
        error = TransferError(f"Downlink synchronization from {config.remote_uri} failed")
        service.logger.error(error.message)
        return False

    if config.notify_on_any_change and state.has_baseline:
        # next uplink phase sees the remote change and notifies
        service.logger.debug("Keeping previous fingerprint so remote changes trigger notification")
        return True

    state.previous_fingerprint = current_fingerprint(service)
    return True
