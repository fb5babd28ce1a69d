"""Internal operations for CloudStorageManager.

Every function takes the manager as its first argument and reports
failure through its return value (False/None) after logging, so callers
in the lock and startup code never see google-cloud exceptions.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from google.api_core import exceptions as gcs_exceptions


REQUIRED_CREDENTIAL_FIELDS = {"type", "client_email", "private_key", "token_uri"}

PROBE_BODY = "bucket-sync write probe\n"


def _uri(manager: Any, gcs_path: str) -> str:
    return f"gs://{manager.bucket_name}/{gcs_path}"


def validate_credentials_dict(
    credentials_dict: dict[str, Any],
    required_fields: set[str],
) -> None:
    """Raise ValueError when a service-account dict lacks required keys."""
    missing = sorted(required_fields - set(credentials_dict))
    if missing:
        raise ValueError(f"GCS credentials missing required fields: {missing}")


def initialize_manager(
    manager: Any,
    *,
    bucket_name: str,
    credentials_dict: Optional[dict[str, Any]],
    project: Optional[str],
    storage_module: Any,
    service_account_module: Any,
    required_fields: set[str],
) -> None:
    """Attach credentials, client and bucket handle to the manager."""
    manager.bucket_name = bucket_name
    manager.credentials = None
    if credentials_dict:
        validate_credentials_dict(credentials_dict, required_fields)
        manager.credentials = service_account_module.Credentials.from_service_account_info(
            credentials_dict
        )

    manager.client = storage_module.Client(project=project, credentials=manager.credentials)
    manager.bucket = manager.client.bucket(bucket_name)
    manager.logger.debug(
        f"Storage client ready for gs://{bucket_name} "
        f"[{'service account' if manager.credentials else 'application default credentials'}]"
    )


def upload_text(
    manager: Any,
    gcs_path: str,
    text: str,
    if_generation_match: Optional[int] = None,
) -> bool:
    """Put a small text object.

    ``if_generation_match=0`` makes the put create-only: it is rejected
    with 412 when a live object already exists.
    """
    try:
        manager.bucket.blob(gcs_path).upload_from_string(
            text,
            content_type="text/plain",
            if_generation_match=if_generation_match,
        )
    except gcs_exceptions.PreconditionFailed:
        manager.logger.info(f"Create-only put rejected, {_uri(manager, gcs_path)} already exists")
        return False
    except Exception as exc:
        manager.logger.error(f"Unable to put {_uri(manager, gcs_path)}: {exc}", exc_info=True)
        return False
    manager.logger.debug(f"Put {_uri(manager, gcs_path)}")
    return True


def read_text(manager: Any, gcs_path: str) -> Optional[str]:
    """Get a small text object; None when it is missing or cannot be read."""
    try:
        return manager.bucket.blob(gcs_path).download_as_text()
    except gcs_exceptions.NotFound:
        manager.logger.info(f"{_uri(manager, gcs_path)} does not exist")
    except Exception as exc:
        manager.logger.error(f"Unable to get {_uri(manager, gcs_path)}: {exc}", exc_info=True)
    return None


def download_file(manager: Any, gcs_path: str, local_path: Path) -> bool:
    """Copy one object to a local file, creating parent directories."""
    try:
        blob = manager.bucket.blob(gcs_path)
        if not blob.exists():
            manager.logger.info(f"{_uri(manager, gcs_path)} does not exist")
            return False
        local_path.parent.mkdir(parents=True, exist_ok=True)
        blob.download_to_filename(str(local_path))
    except Exception as exc:
        manager.logger.error(f"Unable to copy {_uri(manager, gcs_path)} to {local_path}: {exc}", exc_info=True)
        return False
    manager.logger.debug(f"Copied {_uri(manager, gcs_path)} to {local_path}")
    return True


def file_exists(manager: Any, gcs_path: str) -> bool:
    try:
        return bool(manager.bucket.blob(gcs_path).exists())
    except Exception as exc:
        manager.logger.error(f"Unable to stat {_uri(manager, gcs_path)}: {exc}", exc_info=True)
        return False


def list_objects(
    manager: Any,
    prefix: str = "",
    modified_since: Optional[datetime] = None,
) -> Optional[list[dict[str, Any]]]:
    """List objects under a prefix, optionally only those updated at or after a time.

    GCS has no server-side time filter, so ``modified_since`` is applied to
    the ``updated`` metadata returned with each listed object. Returns None
    (not an empty list) when the listing itself failed.
    """
    try:
        objects = []
        for blob in manager.client.list_blobs(manager.bucket_name, prefix=prefix):
            if blob.name.endswith("/"):
                continue
            if modified_since is not None and (blob.updated is None or blob.updated < modified_since):
                continue
            objects.append({"name": blob.name, "updated": blob.updated, "size": blob.size})
    except Exception as exc:
        manager.logger.error(f"Unable to list {_uri(manager, prefix)}: {exc}", exc_info=True)
        return None
    return objects


def delete_file(manager: Any, gcs_path: str) -> bool:
    """Delete one object; False when it was already gone or deletion failed."""
    try:
        manager.bucket.blob(gcs_path).delete()
    except gcs_exceptions.NotFound:
        manager.logger.warning(f"{_uri(manager, gcs_path)} was already deleted")
        return False
    except Exception as exc:
        manager.logger.error(f"Unable to delete {_uri(manager, gcs_path)}: {exc}", exc_info=True)
        return False
    manager.logger.debug(f"Deleted {_uri(manager, gcs_path)}")
    return True


def check_writable(manager: Any, probe_path: str) -> bool:
    """Put then delete a probe object to prove write access under the prefix."""
    return upload_text(manager, probe_path, PROBE_BODY) and delete_file(manager, probe_path)
