"""Log-stream readiness detection for dbtestbed.

Database images do not publish a structured "ready" event; the only
signal is a phrase in the engine's own startup log. ``ReadinessWatcher``
is a write-sink for that log: it accumulates every chunk it is handed and
fires a single-shot signal the first time the marker is present in the
accumulated content.

Key Concepts:
    ReadinessSignal: Single-fire event (pending → fired). Firing is an
        idempotent state transition; any number of threads may wait on it,
        before or after the fire, without missed wake-ups.
    ReadinessWatcher: Append-only accumulator + marker scan. Chunks may
        split the marker anywhere; the scan keeps enough of the tail to
        complete a match across chunk boundaries.

Example::

    watcher = ReadinessWatcher(b"ready")
    watcher.consume(b"ser")
    watcher.fired            # False
    watcher.consume(b"ver ready")
    watcher.wait_ready()     # returns True immediately

Tags:
    readiness, logs, signal, threading, marker
"""

from __future__ import annotations

import threading

from dbtestbed.core.logging import get_logger

logger = get_logger(__name__)


class ReadinessSignal:
    """A one-shot event with states *pending* and *fired*."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    def fire(self) -> bool:
        """Transition to *fired*.

        Returns ``True`` only for the call that performed the transition;
        later calls are no-ops that return ``False``.
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until fired. Returns ``False`` if ``timeout`` elapsed first."""
        return self._event.wait(timeout)


class ReadinessWatcher:
    """Accumulates a live byte stream and signals when a marker appears.

    Parameters
    ----------
    marker
        Substring that defines "ready". ``str`` markers are UTF-8 encoded.
    occurrences
        Number of non-overlapping marker matches required before the
        signal fires. The default of 1 means "first appearance".
    """

    def __init__(self, marker: str | bytes, occurrences: int = 1) -> None:
        if isinstance(marker, str):
            marker = marker.encode("utf-8")
        if not marker:
            raise ValueError("readiness marker must not be empty")
        if occurrences < 1:
            raise ValueError("occurrences must be >= 1")

        self.marker = marker
        self.occurrences = occurrences
        self.signal = ReadinessSignal()
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._scan_from = 0
        self._matches = 0

    @property
    def fired(self) -> bool:
        return self.signal.fired

    @property
    def matches(self) -> int:
        with self._lock:
            return self._matches

    @property
    def content(self) -> bytes:
        """Snapshot of everything consumed so far."""
        with self._lock:
            return bytes(self._buffer)

    def consume(self, chunk: bytes) -> int:
        """Append ``chunk`` and fire the signal if the marker is now present.

        Never blocks on the signal and never rejects input: the return value
        is always ``len(chunk)``.
        """
        with self._lock:
            self._buffer.extend(chunk)
            satisfied = self._scan()
            bytes_seen = len(self._buffer)

        if satisfied and self.signal.fire():
            logger.debug(
                "readiness.fired",
                marker=self.marker.decode("utf-8", "replace"),
                bytes_seen=bytes_seen,
            )
        return len(chunk)

    write = consume

    def wait_ready(self, timeout: float | None = None) -> bool:
        """Block until the marker has been seen.

        Safe to call before, during or after the signal fires. With
        ``timeout=None`` this blocks indefinitely; otherwise it returns
        ``False`` when the timeout elapses first.
        """
        return self.signal.wait(timeout)

    def _scan(self) -> bool:
        # Caller holds self._lock.
        if self._matches >= self.occurrences:
            return True
        marker_len = len(self.marker)
        idx = self._buffer.find(self.marker, self._scan_from)
        while idx != -1:
            self._matches += 1
            self._scan_from = idx + marker_len
            if self._matches >= self.occurrences:
                return True
            idx = self._buffer.find(self.marker, self._scan_from)
        # A partial marker can only start in the last marker_len - 1 bytes.
        self._scan_from = max(self._scan_from, len(self._buffer) - marker_len + 1)
        return False
