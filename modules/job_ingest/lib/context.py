from __future__ import annotations

import threading
import time

from .errors import RunCancelled


class RunContext:
    """
    Cancellation + deadline carried through one ingestion run.

    Providers must call ``check()`` before network I/O and bound each request
    with ``timeout_for(default)`` so a hung source cannot stall the run.
    """

    def __init__(self, timeout_sec: float | None = None, cancel_event: threading.Event | None = None) -> None:
        self._cancel = cancel_event or threading.Event()
        self._deadline = time.monotonic() + float(timeout_sec) if timeout_sec else None
        self._reason = ""

    @classmethod
    def background(cls, timeout_sec: float | None = None) -> RunContext:
        return cls(timeout_sec=timeout_sec)

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set() or self.expired

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def reason(self) -> str:
        if self._cancel.is_set():
            return self._reason or "cancelled"
        if self.expired:
            return "deadline exceeded"
        return ""

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def timeout_for(self, default: float) -> float:
        """Per-request timeout: the smaller of `default` and the time left in the run."""
        left = self.remaining()
        if left is None:
            return default
        return min(default, left)

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns early (True) if the run is cancelled meanwhile."""
        if seconds <= 0:
            return self._cancel.is_set()
        return self._cancel.wait(seconds)

    def check(self) -> None:
        if self.cancelled:
            raise RunCancelled(self.reason)
