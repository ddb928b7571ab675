"""Cooperative cancellation for a pipeline run.

A single CancellationToken is shared by the StageRunner and every tool
invocation. Signal handlers set it; running commands poll it and terminate
their process when it fires.
"""

from __future__ import annotations

import signal
import threading
from typing import Callable, Dict, Optional

from shipgate.core.logging import get_logger

LOGGER = get_logger(__name__)


class PipelineCancelled(Exception):
    """Raised when the run was cancelled while work was in flight."""

    def __init__(self, reason: str = "cancelled") -> None:
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """Thread-safe cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. Only the first reason is kept."""
        with self._lock:
            if not self._event.is_set():
                self._reason = reason
                self._event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or ``timeout`` elapses."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelled(self._reason or "cancelled")


def install_signal_handlers(token: CancellationToken) -> Callable[[], None]:
    """Route SIGINT/SIGTERM to ``token.cancel``.

    Must be called from the main thread.

    Returns:
        A callable restoring the previous handlers.
    """
    previous: Dict[int, object] = {}

    def _handler(signum: int, frame: object) -> None:
        name = signal.Signals(signum).name
        LOGGER.warning(f"Received {name}, cancelling pipeline run")
        token.cancel(f"received {name}")

    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.getsignal(signum)
        signal.signal(signum, _handler)

    def _restore() -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)  # type: ignore[arg-type]

    return _restore
