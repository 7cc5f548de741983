"""Cooperative cancellation shared by every long-running operation."""

from __future__ import annotations

import threading

from rollwright.core.errors import DeploymentCancelled


class CancelToken:
    """A one-shot abort signal.

    Waits go through :meth:`wait` so a cancellation interrupts backoff
    sleeps and process polling instead of waiting them out.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled by operator") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise DeploymentCancelled(self._reason)

    def wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; return True if cancelled meanwhile."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)
