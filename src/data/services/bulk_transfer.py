"""Bulk directory transfer between the local tree and the bucket prefix."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol, Sequence

from data.services.sync_types import SyncDirection
from utils.gcloud_cli import GcloudCli


class BulkTransfer(Protocol):
    """Directory diff-and-copy primitive. Returns True on success."""

    def transfer(
        self,
        direction: SyncDirection,
        local_path: Path,
        remote_uri: str,
        options: Sequence[str] = (),
    ) -> bool: ...

    def is_available(self) -> bool: ...


class GcloudRsyncTransfer:
    """Delegates file movement to ``gcloud storage rsync``.

    ``up`` runs ``rsync <local> <remote>`` and ``down`` the reverse; all
    diffing, copying and (optional) deletion is left to gcloud. The call
    blocks until gcloud exits.
    """

    def __init__(self, gcloud: GcloudCli, logger_obj: Optional[logging.Logger] = None) -> None:
        self.gcloud = gcloud
        self.logger = logger_obj or logging.getLogger(__name__)

    def is_available(self) -> bool:
        return self.gcloud.is_installed()

    def build_args(
        self,
        direction: SyncDirection,
        local_path: Path,
        remote_uri: str,
        options: Sequence[str] = (),
    ) -> list[str]:
        if direction is SyncDirection.UP:
            source, destination = str(local_path), remote_uri
        else:
            source, destination = remote_uri, str(local_path)
        args = ["storage", "rsync", source, destination]
        if "--recursive" not in options and "-r" not in options:
            args.append("--recursive")
        args.extend(options)
        return args

    def transfer(
        self,
        direction: SyncDirection,
        local_path: Path,
        remote_uri: str,
        options: Sequence[str] = (),
    ) -> bool:
        label = "Uplink" if direction is SyncDirection.UP else "Downlink"
        self.logger.debug(f"Invoking {label.lower()} synchronization")
        ok = self.gcloud.succeeded(*self.build_args(direction, local_path, remote_uri, options))
        if ok:
            self.logger.debug(f"{label} synchronization successful")
        else:
            self.logger.error(f"{label} synchronization failed")
        return ok
