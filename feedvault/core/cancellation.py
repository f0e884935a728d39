"""
Cooperative cancellation shared between a task run and the parent syncs it spawns.
"""

from typing import Optional

from feedvault.exceptions import SessionAbortedError


class CancellationToken:
    """
    A polled abort flag. A child token reports cancelled when it or any of its
    ancestors has been cancelled, so stopping a task reaches every parent sync.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._parent = parent
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._parent is not None and self._parent.cancelled

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def raise_if_cancelled(self) -> None:
        """Checkpoint: raises SessionAbortedError when an abort was requested."""
        if self.cancelled:
            raise SessionAbortedError("Abort requested")
