"""Cooperative cancellation shared by schedulers and runners."""
import threading


class CycleCancelled(Exception):
    """Raised at an item boundary once shutdown has been requested."""


class CancellationToken:
    """Thread-safe shutdown flag that can also interrupt a wait."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout=None) -> bool:
        """Block up to `timeout` seconds. Returns True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise CycleCancelled()


def check(cancel):
    """Raise CycleCancelled if an optional token has been cancelled."""
    if cancel is not None:
        cancel.raise_if_cancelled()
