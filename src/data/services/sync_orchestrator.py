"""Polling loop that keeps a local directory and a bucket prefix in sync."""

import logging
from typing import Optional

from config.settings import SyncConfig
from data.errors import ValidationError, categorize_error
from data.services import sync_startup_ops, sync_transfer_ops
from data.services.bulk_transfer import BulkTransfer
from data.services.cdn_invalidation import NotificationSink
from data.services.change_detector import ChangeDetector
from data.services.sync_types import CycleOutcome, ExitCode, SyncState
from data.storage.cloud_storage import CloudStorageManager
from data.storage.object_lock import ObjectStoreLockClient
from utils.cancellation import CancellationToken


class SyncOrchestrator:
    """
    Top-level control loop for one sync process.

    Each cycle runs an uplink phase (fingerprint the local tree, upload
    under the distributed lock when it changed) followed by a downlink
    phase (pull remote changes, move the baseline). Any failure inside a
    cycle becomes a failed cycle; only the consecutive-failure ceiling
    ends the process. A cancellation (SIGINT/SIGTERM) is honoured at the
    start of the next cycle with one last upload.
    """

    def __init__(
        self,
        config: SyncConfig,
        identity: str,
        storage: CloudStorageManager,
        lock_client: ObjectStoreLockClient,
        detector: ChangeDetector,
        transfer: BulkTransfer,
        notifier: Optional[NotificationSink] = None,
        cancel_token: Optional[CancellationToken] = None,
        logger_obj: Optional[logging.Logger] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Immutable runtime configuration
            identity: This node's identity, used as lock ownership proof
            storage: Object-store manager for the remote bucket
            lock_client: Distributed lock client
            detector: Local tree fingerprinting
            transfer: Bulk directory transfer collaborator
            notifier: Optional notification sink (CDN invalidation)
            cancel_token: Token set by signal handlers to request termination
            logger_obj: Logger instance
        """
        self.config = config
        self.identity = identity
        self.storage = storage
        self.lock_client = lock_client
        self.detector = detector
        self.transfer = transfer
        self.notifier = notifier
        self.cancel_token = cancel_token or CancellationToken()
        self.logger = logger_obj or logging.getLogger(__name__)
        self.state = SyncState()

    def run(self) -> int:
        """Validate, run any initial sync, then poll until done. Returns the exit status."""
        try:
            sync_startup_ops.validate_environment(self)
        except ValidationError as e:
            self.logger.error(e.message)
            return ExitCode.FAILURE

        if not sync_startup_ops.initial_sync(self):
            return ExitCode.FAILURE

        return self.run_loop()

    def run_loop(self) -> int:
        """Poll until single-shot completion, termination, or the failure ceiling."""
        config = self.config
        while True:
            if self.cancel_token.cancelled:
                self.state.termination_requested = True
                self.logger.warning(
                    "SIGINT or SIGTERM signal received - attempting 1 final uplink synchronization and exiting"
                )
                self.final_upload()
                return ExitCode.OK

            self.state.cycles += 1
            outcome = self.run_cycle()

            if self.cancel_token.cancelled:
                # a cycle cut short by termination is not a failure
                continue

            if outcome is CycleOutcome.FAILED:
                self.state.consecutive_failures += 1
                self.logger.error(
                    f"Synchronization failed [#{self.state.consecutive_failures} of max "
                    f"{config.max_consecutive_failures}]"
                )
                if 0 < config.max_consecutive_failures <= self.state.consecutive_failures:
                    self.logger.error(
                        f"Max failures threshold {config.max_consecutive_failures} reached - exiting"
                    )
                    return ExitCode.FAILURE
            else:
                self.state.consecutive_failures = 0
                self.logger.debug(
                    f"Successfully invoked synchronization [#{self.state.cycles}]"
                    + ("" if config.single_shot else
                       f" - sleeping {config.poll_interval_seconds} secs before next synchronization")
                )

            if config.single_shot and not self.cancel_token.cancelled:
                self.logger.debug("Exiting due to --poll 0")
                return ExitCode.OK if outcome is CycleOutcome.SUCCEEDED else ExitCode.FAILURE

            self.cancel_token.wait(config.poll_interval_seconds)

    def run_cycle(self) -> CycleOutcome:
        """One uplink + downlink pass."""
        if not self.config.download_only:
            if not self._guarded(sync_transfer_ops.uplink_phase, "uplink"):
                # downloading now would fold unsent local changes into the baseline
                self.logger.debug("Skipping downlink synchronization until the pending uplink succeeds")
                return CycleOutcome.FAILED

        if not self.config.upload_only:
            if not self._guarded(sync_transfer_ops.downlink_phase, "downlink"):
                return CycleOutcome.FAILED

        return CycleOutcome.SUCCEEDED

    def final_upload(self) -> bool:
        """Single upload-direction attempt performed on termination."""
        if self.config.download_only:
            self.logger.debug("Download-only mode - no final uplink synchronization")
            return True
        if not self.state.has_baseline:
            return self._guarded(sync_transfer_ops.unconditional_uplink, "final uplink")
        return self._guarded(sync_transfer_ops.uplink_phase, "final uplink")

    def _guarded(self, phase, label: str) -> bool:
        try:
            return phase(self)
        except Exception as e:
            self.logger.error(
                f"Unexpected {categorize_error(e).value} error during {label} phase: {e}",
                exc_info=True,
            )
            return False
