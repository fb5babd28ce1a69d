"""Google Cloud Storage manager for the remote side of a sync."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any

from google.cloud import storage
from google.oauth2 import service_account

from data.storage import cloud_storage_ops as ops


class CloudStorageManager:
    """
    Object-level operations against one Google Cloud Storage bucket.

    Provides the list/get/put/delete primitives the distributed lock is
    built on, plus the small helpers used by startup validation.
    """

    def __init__(
        self,
        bucket_name: str,
        credentials_dict: Optional[Dict[str, Any]] = None,
        project: Optional[str] = None,
        logger_obj: Optional[logging.Logger] = None
    ):
        """
        Initialize GCS manager.

        Args:
            bucket_name: Name of the GCS bucket
            credentials_dict: Service account credentials as dict (None for application default credentials)
            project: Optional GCP project used for billing and listing
            logger_obj: Logger instance
        """
        self.logger = logger_obj or logging.getLogger(__name__)
        ops.initialize_manager(
            self,
            bucket_name=bucket_name,
            credentials_dict=credentials_dict,
            project=project,
            storage_module=storage,
            service_account_module=service_account,
            required_fields=ops.REQUIRED_CREDENTIAL_FIELDS,
        )

    def list_objects(
        self,
        prefix: str = "",
        modified_since: Optional[datetime] = None
    ) -> Optional[List[Dict[str, Any]]]:
        """
        List objects under a prefix.

        Args:
            prefix: Key prefix to list
            modified_since: Only include objects updated at or after this time

        Returns:
            List of dicts with ``name``, ``updated`` and ``size``; None if listing failed
        """
        return ops.list_objects(self, prefix, modified_since)

    def write_text(self, gcs_path: str, text: str, if_absent: bool = False) -> bool:
        """
        Put a small text object.

        Args:
            gcs_path: Destination key
            text: Object body
            if_absent: Only create the object if no live version exists

        Returns:
            True if written, False otherwise
        """
        return ops.upload_text(self, gcs_path, text, if_generation_match=0 if if_absent else None)

    def read_text(self, gcs_path: str) -> Optional[str]:
        """Get a small text object, or None if missing/unreadable."""
        return ops.read_text(self, gcs_path)

    def download_file(self, gcs_path: str, local_path: Path) -> bool:
        """Download a single object to a local file."""
        return ops.download_file(self, gcs_path, local_path)

    def file_exists(self, gcs_path: str) -> bool:
        """Check if an object exists."""
        return ops.file_exists(self, gcs_path)

    def delete_file(self, gcs_path: str) -> bool:
        """Delete an object. False when missing or on error."""
        return ops.delete_file(self, gcs_path)

    def check_writable(self, probe_path: str) -> bool:
        """Prove write + delete access under the bucket with a probe object."""
        return ops.check_writable(self, probe_path)

