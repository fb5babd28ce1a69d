"""Cloud CDN cache invalidation after successful uploads."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from utils.gcloud_cli import GcloudCli


class NotificationSink(Protocol):
    """Fire-and-forget notification that remote content changed."""

    def notify(self, target_id: str, path_pattern: str) -> bool: ...


class CdnInvalidationSink:
    """Invalidates a Cloud CDN URL map via ``gcloud compute url-maps invalidate-cdn-cache``.

    ``--async`` is passed so the call returns once the invalidation is
    accepted rather than when it completes at the edge.
    """

    def __init__(self, gcloud: GcloudCli, logger_obj: Optional[logging.Logger] = None) -> None:
        self.gcloud = gcloud
        self.logger = logger_obj or logging.getLogger(__name__)

    def notify(self, target_id: str, path_pattern: str) -> bool:
        self.logger.debug(f"Triggering CDN invalidation [url-map={target_id}] [path={path_pattern}]")
        ok = self.gcloud.succeeded(
            "compute", "url-maps", "invalidate-cdn-cache", target_id,
            f"--path={path_pattern}", "--async",
        )
        if ok:
            self.logger.info(f"CDN invalidation requested for {target_id} [{path_pattern}]")
        return ok

    def validate_target(self, target_id: str) -> bool:
        """Check the URL map exists and is visible to the current credentials."""
        return self.gcloud.succeeded("compute", "url-maps", "describe", target_id)
