"""Dependency injection container for the application."""

from pathlib import Path
from typing import Optional

from config.settings import Settings, SyncConfig
from data.services.bulk_transfer import GcloudRsyncTransfer
from data.services.cdn_invalidation import CdnInvalidationSink
from data.services.change_detector import ChangeDetector
from data.services.sync_orchestrator import SyncOrchestrator
from data.storage.cloud_storage import CloudStorageManager
from data.storage.credential_resolver import GCSCredentialResolver
from data.storage.object_lock import ObjectStoreLockClient
from utils.cancellation import CancellationToken
from utils.gcloud_cli import GcloudCli
from utils.logger_setup import parse_debug_level, setup_logging
from utils.node_identity import NodeIdentityResolver


class DependencyContainer:
    """Builds every component from one immutable SyncConfig."""

    def __init__(
        self,
        config: SyncConfig,
        logger_name: str = Settings.LOGGER_NAME,
        cancel_token: Optional[CancellationToken] = None
    ):
        self.config = config
        self.logger = setup_logging(
            logger_name,
            log_level=parse_debug_level(config.log_level),
            log_dir=Path(config.log_dir) if config.log_dir else None,
        )
        self.cancel_token = cancel_token or CancellationToken()

        # Lazily created services
        self._identity = None
        self._storage_managers = {}
        self._gcloud = None
        self._orchestrator = None

    @property
    def identity(self) -> str:
        """Node identity, resolved once."""
        if self._identity is None:
            self._identity = NodeIdentityResolver(logger_obj=self.logger).resolve()
        return self._identity

    def storage_for(self, bucket: str) -> CloudStorageManager:
        """Get or create the storage manager for a bucket."""
        if bucket not in self._storage_managers:
            credentials = GCSCredentialResolver.resolve(self.config.credentials_path, self.logger)
            self._storage_managers[bucket] = CloudStorageManager(
                bucket_name=bucket,
                credentials_dict=credentials,
                project=self.config.project,
                logger_obj=self.logger,
            )
        return self._storage_managers[bucket]

    @property
    def gcloud(self) -> GcloudCli:
        if self._gcloud is None:
            global_options = list(self.config.gcloud_options)
            if self.config.project:
                global_options.append(f"--project={self.config.project}")
            self._gcloud = GcloudCli(
                executable=Settings.GCLOUD_EXECUTABLE,
                global_options=global_options,
                logger_obj=self.logger,
            )
        return self._gcloud

    def lock_client(self) -> ObjectStoreLockClient:
        return ObjectStoreLockClient(
            self.storage_for,
            retry_jitter_seconds=self.config.lock_retry_jitter_seconds,
            conditional_put=self.config.lock_conditional_put,
            cancel_token=self.cancel_token,
            logger_obj=self.logger,
        )

    @property
    def orchestrator(self) -> SyncOrchestrator:
        """Get or create the sync orchestrator."""
        if self._orchestrator is None:
            self._orchestrator = SyncOrchestrator(
                config=self.config,
                identity=self.identity,
                storage=self.storage_for(self.config.bucket),
                lock_client=self.lock_client(),
                detector=ChangeDetector(logger_obj=self.logger),
                transfer=GcloudRsyncTransfer(self.gcloud, logger_obj=self.logger),
                notifier=CdnInvalidationSink(self.gcloud, logger_obj=self.logger) if self.config.cdn_url_map else None,
                cancel_token=self.cancel_token,
                logger_obj=self.logger,
            )
        return self._orchestrator
