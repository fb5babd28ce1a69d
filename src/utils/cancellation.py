"""Cooperative cancellation for the polling loop."""

import threading
from typing import Optional


class CancellationToken:
    """A flag set asynchronously (e.g. from a signal handler) and checked cooperatively.

    ``wait`` doubles as an interruptible sleep: it returns as soon as the
    token is cancelled instead of running out the full timeout.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        if reason and self.reason is None:
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds. Returns True if cancelled."""
        if timeout <= 0:
            return self._event.is_set()
        return self._event.wait(timeout)
