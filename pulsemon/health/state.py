"""Per-probe health cells and the shared HTTP cache watermark.

Writers are the probe loops, readers are the HTTP handlers running in
worker threads. Every read and write of a (failed, since, error) triple
happens under the cell's lock, so readers never see a partial update.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime


def etag(ts_ns: int) -> str:
    """Weak validator built from a nanosecond timestamp."""
    return f'W/"{ts_ns}"'


def iso_timestamp(ts: datetime) -> str:
    return ts.isoformat(timespec="seconds")


@dataclass(frozen=True)
class StateSnapshot:
    failed: bool
    since: str
    error: str


class HealthState:
    """Thread-safe status cell of one probe."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._failed = False
        self._since = ""
        self._error = ""

    @property
    def failed(self) -> bool:
        with self._lock:
            return self._failed

    def snapshot(self) -> StateSnapshot:
        with self._lock:
            return StateSnapshot(self._failed, self._since, self._error)

    def mark_failed(self, message: str, ts: datetime) -> bool:
        """Healthy → Failed. Returns False when the probe was already failed."""
        with self._lock:
            if self._failed:
                return False
            self._failed = True
            self._since = iso_timestamp(ts)
            self._error = message
            return True

    def mark_healthy(self, ts: datetime) -> bool:
        """Failed → Healthy. Returns False when the probe was already healthy."""
        with self._lock:
            if not self._failed:
                return False
            self._failed = False
            self._since = iso_timestamp(ts)
            self._error = ""
            return True

    def disable(self, message: str) -> None:
        """Mark a misconfigured probe as permanently failed.

        This is not a transition: ``since`` is left untouched.
        """
        with self._lock:
            self._failed = True
            self._error = message


class CacheWatermark:
    """Version token of the aggregate status document.

    Values are strictly increasing even when two bumps land on the same
    clock reading.
    """

    def __init__(self, ts_ns: int | None = None) -> None:
        self._lock = threading.Lock()
        self._ns = ts_ns if ts_ns is not None else time.time_ns()
        self._value = etag(self._ns)

    @property
    def value(self) -> str:
        with self._lock:
            return self._value

    def bump(self) -> str:
        ns = time.time_ns()
        with self._lock:
            self._ns = max(ns, self._ns + 1)
            self._value = etag(self._ns)
            return self._value
