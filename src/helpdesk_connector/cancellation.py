"""
Cooperative cancellation for long-running exports.

Every blocking wait in the pipeline (rate limiter, pre-request delay,
Retry-After backoff) goes through a CancellationToken, so an operator
can abort an export and have it stop at the next suspension point.
"""

import threading


class ExportCancelled(Exception):
    """Raised when an export is cancelled by the operator."""
    pass


class CancellationToken:
    """
    Thread-safe cancellation flag with an interruptible sleep.

    Example:
        token = CancellationToken()

        # From a signal handler or another thread
        token.cancel()

        # Inside the pipeline
        token.sleep(2.0)  # raises ExportCancelled immediately
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. Safe to call more than once."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExportCancelled("Export cancelled by operator")

    def sleep(self, seconds: float) -> None:
        """
        Sleep for up to `seconds`, waking early if cancelled.

        Raises:
            ExportCancelled: If cancellation was requested before or during the wait
        """
        self.raise_if_cancelled()
        if seconds > 0 and self._event.wait(seconds):
            self.raise_if_cancelled()
