"""Distributed lock built from plain object-store operations.

The store offers list/get/put/delete and read-after-write consistency,
but no atomic compare-and-swap. A lock is a small object whose body is
the owner's node identity:

1. list the lock key, keeping only objects updated within ``stale_after``
2. no fresh object: delete any stale one (whoever owns it), then put our
   identity and read it back - the lock is ours only if the read-back
   body is our identity
3. fresh object holding our own identity: a leftover from this node,
   delete it and start over (once)
4. fresh object holding another identity: the attempt fails

A failed attempt is retried with random jitter until ``max_wait`` has
elapsed. The read-back is a last-write-wins confirmation, not a
linearizable one: two writers racing inside the same put/get window, or
exactly at the staleness boundary, can both believe they won.
When ``conditional_put`` is enabled the put is create-only
(``if_generation_match=0`` on GCS), which closes that window.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import backoff

from data.errors import LockError
from utils.cancellation import CancellationToken


class LockStatus(str, Enum):
    """Outcome of acquire/release calls."""

    HELD = "held"
    FAILED = "failed"
    RELEASED = "released"


class LockState(str, Enum):
    """Lifecycle of a lock key as seen by this client."""

    UNLOCKED = "unlocked"
    ACQUIRING = "acquiring"
    HELD = "held"
    FAILED = "failed"
    RELEASED = "released"


class _Attempt(str, Enum):
    HELD = "held"
    CONTENDED = "contended"
    ERROR = "error"


class ObjectStore(Protocol):
    """The subset of CloudStorageManager the lock needs."""

    def list_objects(
        self, prefix: str = "", modified_since: Optional[datetime] = None
    ) -> Optional[list[dict[str, Any]]]: ...

    def read_text(self, gcs_path: str) -> Optional[str]: ...

    def write_text(self, gcs_path: str, text: str, if_absent: bool = False) -> bool: ...

    def delete_file(self, gcs_path: str) -> bool: ...

    def file_exists(self, gcs_path: str) -> bool: ...


MIN_RETRY_DELAY_SECONDS = 1.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ObjectStoreLockClient:
    """Acquire and release locks stored as objects in a bucket.

    Usage::

        client = ObjectStoreLockClient(lambda bucket: manager)
        if client.acquire("b", "d/.bucket-sync.lock", 60, 180, "node-a") is LockStatus.HELD:
            ...
            client.release("b", "d/.bucket-sync.lock", "node-a")
    """

    def __init__(
        self,
        store_for_bucket: Callable[[str], ObjectStore],
        retry_jitter_seconds: float = 30,
        conditional_put: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        jitter: Callable[[float], float] = backoff.full_jitter,
        logger_obj: Optional[logging.Logger] = None,
    ) -> None:
        self._store_for_bucket = store_for_bucket
        self.retry_jitter_seconds = retry_jitter_seconds
        self.conditional_put = conditional_put
        self.cancel_token = cancel_token or CancellationToken()
        self._clock = clock
        self._monotonic = monotonic
        self._jitter = jitter
        self.logger = logger_obj or logging.getLogger(__name__)
        self._states: dict[tuple[str, str], LockState] = {}

    def state_of(self, bucket: str, key: str) -> LockState:
        return self._states.get((bucket, key), LockState.UNLOCKED)

    def acquire(
        self,
        bucket: str,
        key: str,
        stale_after: float = 60,
        max_wait: float = 180,
        identity: str = "",
    ) -> LockStatus:
        """Try to take the lock at ``gs://bucket/key`` for ``identity``.

        Contended attempts are retried after a full-jitter sleep of up to
        ``retry_jitter_seconds`` (at least one second, never past the
        deadline) while less than ``max_wait`` seconds have passed since the
        first attempt. Storage errors end the acquisition immediately, as does a
        cancellation signalled during the backoff sleep.
        """
        if not bucket or not key or not identity:
            self.logger.error(
                f"Missing required arguments [bucket={bucket}] [path={key}] [uid={identity}]"
            )
            self._states[(bucket, key)] = LockState.FAILED
            return LockStatus.FAILED

        self._states[(bucket, key)] = LockState.ACQUIRING
        store = self._store_for_bucket(bucket)
        started = self._monotonic()
        attempt_number = 0
        delays = backoff.constant(interval=self.retry_jitter_seconds)
        delays.send(None)

        while True:
            attempt_number += 1
            self.logger.debug(
                f"Attempting to obtain distributed lock using gs://{bucket}/{key} "
                f"[uid={identity}] [timeout={stale_after}] [wait={max_wait}] [attempt={attempt_number}]"
            )
            result = self._attempt(store, bucket, key, stale_after, identity)
            if result is _Attempt.HELD:
                self.logger.info(f"Distributed lock acquired: gs://{bucket}/{key} [uid={identity}]")
                self._states[(bucket, key)] = LockState.HELD
                return LockStatus.HELD

            runtime = self._monotonic() - started
            if result is _Attempt.ERROR or runtime >= max_wait:
                break

            # never busy-loop, never sleep past the deadline
            delay = min(max(self._jitter(next(delays)), MIN_RETRY_DELAY_SECONDS), max_wait - runtime)
            self.logger.debug(
                f"Unable to obtain lock but still within max wait period [{runtime:.0f} < {max_wait}] "
                f"- sleeping {delay:.1f} secs and retrying"
            )
            if self.cancel_token.wait(delay):
                self.logger.warning("Termination requested while waiting for distributed lock")
                break

        error = LockError(f"Unable to obtain distributed lock gs://{bucket}/{key} [uid={identity}]")
        self.logger.error(error.message)
        self._states[(bucket, key)] = LockState.FAILED
        return LockStatus.FAILED

    def _attempt(
        self,
        store: ObjectStore,
        bucket: str,
        key: str,
        stale_after: float,
        identity: str,
    ) -> _Attempt:
        restarted = False
        while True:
            threshold = self._clock() - timedelta(seconds=stale_after)
            fresh = store.list_objects(prefix=key, modified_since=threshold)
            if fresh is None:
                self.logger.error(f"Unable to list gs://{bucket}/{key}")
                return _Attempt.ERROR

            if not any(obj["name"] == key for obj in fresh):
                break

            self.logger.debug("Found existing lock - checking contents")
            owner = store.read_text(key)
            if owner is None:
                self.logger.warning("Lock object vanished before it could be read - lock unsuccessful")
                return _Attempt.CONTENDED

            owner = owner.strip()
            if owner == identity and not restarted:
                self.logger.warning(
                    f"Stale lock file for this UID discovered [gs://{bucket}/{key}] - deleting"
                )
                if not store.delete_file(key):
                    self.logger.error("Unable to delete stale lock file")
                    return _Attempt.ERROR
                restarted = True
                continue

            self.logger.warning(
                f"Existing lock file UID [{owner}] does not match this machine [{identity}] "
                f"- lock unsuccessful"
            )
            return _Attempt.CONTENDED

        # nothing fresh; an older object is abandoned and always reclaimable
        if store.file_exists(key):
            self.logger.warning(f"Expired lock found at gs://{bucket}/{key} - deleting")
            if not store.delete_file(key) and store.file_exists(key):
                self.logger.error("Unable to delete expired lock file")
                return _Attempt.ERROR

        self.logger.debug(f"Attempting to put-object [gs://{bucket}/{key}]")
        if not store.write_text(key, identity, if_absent=self.conditional_put):
            if self.conditional_put:
                return _Attempt.CONTENDED
            self.logger.error("Unable to put-object")
            return _Attempt.ERROR

        confirmed = store.read_text(key)
        if confirmed is None:
            self.logger.warning("Lock object vanished before read-back - lock unsuccessful")
            return _Attempt.CONTENDED
        if confirmed.strip() != identity:
            self.logger.warning("UID does not match - lock unsuccessful")
            return _Attempt.CONTENDED
        self.logger.debug("UID matches - lock successful")
        return _Attempt.HELD

    def release(self, bucket: str, key: str, identity: str) -> LockStatus:
        """Delete the lock at ``gs://bucket/key`` if, and only if, ``identity`` owns it.

        A lock that is already gone counts as released. A lock held by
        another identity is left in place and reported as FAILED.
        """
        if not bucket or not key or not identity:
            self.logger.error(f"Missing required arguments [bucket={bucket}] [path={key}]")
            return LockStatus.FAILED

        store = self._store_for_bucket(bucket)
        self.logger.debug(f"Attempting to release distributed lock from gs://{bucket}/{key} [uid={identity}]")

        objects = store.list_objects(prefix=key)
        if objects is None:
            self.logger.error(f"Unable to list gs://{bucket}/{key}")
            return LockStatus.FAILED
        if not any(obj["name"] == key for obj in objects):
            self.logger.warning(f"No lock found at gs://{bucket}/{key} - nothing to release")
            self._states[(bucket, key)] = LockState.RELEASED
            return LockStatus.RELEASED

        owner = store.read_text(key)
        if owner is None:
            self.logger.error(f"Unable to read lock file gs://{bucket}/{key}")
            return LockStatus.FAILED

        owner = owner.strip()
        if owner != identity:
            self.logger.error(f"Lock file UID [{owner}] does not match this machine [{identity}]")
            return LockStatus.FAILED

        if not store.delete_file(key):
            self.logger.error("Unable to delete lock file")
            return LockStatus.FAILED

        self.logger.info(f"Distributed lock released: gs://{bucket}/{key}")
        self._states[(bucket, key)] = LockState.RELEASED
        return LockStatus.RELEASED
