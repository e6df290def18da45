"""Process-wide cancellation and signal wiring."""

from __future__ import annotations

import logging
import signal
import threading

from core.errors import InspectionCancelled

L = logging.getLogger("cvx_trigger.runtime")


class CancelToken:
    """Cooperative cancellation flag shared by every blocking call site.

    Set once (typically from a signal handler) and never cleared. Waiting on
    the token doubles as an interruptible sleep.
    """

    def __init__(self):
        self._evt = threading.Event()

    def cancel(self):
        self._evt.set()

    @property
    def cancelled(self) -> bool:
        return self._evt.is_set()

    def raise_if_cancelled(self):
        if self._evt.is_set():
            raise InspectionCancelled("Cancelled")

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to `timeout` seconds; True when cancellation was requested."""
        return self._evt.wait(timeout)


def install_signal_handlers(token: CancelToken):
    """Route SIGINT/SIGTERM to `token`. A second SIGINT falls back to default."""
    if threading.current_thread() is not threading.main_thread():
        L.warning("Signal handlers can only be installed from the main thread")
        return

    def _on_signal(signum, _frame):
        if token.cancelled and signum == signal.SIGINT:
            signal.signal(signal.SIGINT, signal.default_int_handler)
        L.info("Cancellation requested (signal %d)", signum)
        token.cancel()

    signal.signal(signal.SIGINT, _on_signal)
    sigterm = getattr(signal, "SIGTERM", None)
    if sigterm is not None:
        signal.signal(sigterm, _on_signal)


__all__ = ["CancelToken", "install_signal_handlers"]
