# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/utils/execution.py

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Optional


class DeadlineExceeded(RuntimeError):
    """Raised when an invocation's deadline expires or it is cancelled."""


@dataclass
class Deadline:
    """
    Invocation-wide cancellable deadline.

    Every blocking remote operation and every sleep in talosvm takes one of
    these. ``timeout`` of None means "no time limit, only cancellation".
    """

    timeout: Optional[float] = None
    _started: float = field(default_factory=time.monotonic, init=False, repr=False)
    _cancelled: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(timeout=seconds)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    def remaining(self) -> Optional[float]:
        if self.timeout is None:
            return None
        return max(0.0, self.timeout - self.elapsed)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def done(self) -> bool:
        if self._cancelled.is_set():
            return True
        rem = self.remaining()
        return rem is not None and rem <= 0

    def reason(self) -> str:
        return "context canceled" if self.cancelled else "context deadline exceeded"

    def check(self) -> None:
        if self.done():
            raise DeadlineExceeded(self.reason())

    def wait(self, seconds: float) -> bool:
        """
        Sleep for ``seconds`` unless the deadline fires first.
        Returns True when the deadline fired.
        """
        if self.done():
            return True
        rem = self.remaining()
        if rem is not None and rem < seconds:
            self._cancelled.wait(rem)
            return True
        return self._cancelled.wait(seconds)

    def bound(self, seconds: Optional[float]) -> Optional[float]:
        """Clamp a per-call timeout to what is left of the deadline."""
        rem = self.remaining()
        if rem is None:
            return seconds
        if seconds is None:
            return rem
        return min(seconds, rem)

    def child(self, seconds: float) -> "Deadline":
        """
        Sub-deadline of at most ``seconds``, never outliving this one.
        Cancelling either deadline cancels both.
        """
        sub = Deadline(timeout=self.bound(seconds))
        sub._cancelled = self._cancelled
        return sub
