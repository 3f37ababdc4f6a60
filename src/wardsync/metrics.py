"""Transfer accounting shared by the server and the client."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable


class TransferMetrics:
    """Byte and message counters plus a sliding-window update frequency.

    Only substantive (non-meta) messages should be recorded. The frequency
    is ``(n - 1) / span`` over the last ``window`` recordings and is ``0``
    until two samples exist with a positive span between them.
    """

    def __init__(self, window: int = 10, *, clock: Callable[[], float] = time.monotonic) -> None:
        if window < 2:
            raise ValueError(f"window must be >= 2, got {window}")
        self._clock = clock
        self._samples: deque[float] = deque(maxlen=window)
        self.total_bytes = 0
        self.messages = 0

    def record(self, size: int) -> None:
        self.total_bytes += size
        self.messages += 1
        self._samples.append(self._clock())

    @property
    def average_size(self) -> float:
        return self.total_bytes / self.messages if self.messages else 0.0

    @property
    def last_update(self) -> float | None:
        """Clock reading of the most recent recording."""
        return self._samples[-1] if self._samples else None

    @property
    def update_frequency(self) -> float:
        """Messages per second over the sliding window."""
        if len(self._samples) < 2:
            return 0.0
        span = self._samples[-1] - self._samples[0]
        if span <= 0:
            return 0.0
        return (len(self._samples) - 1) / span

    def throughput(self, seconds: float) -> float:
        """Bytes per second over an externally measured duration."""
        return self.total_bytes / seconds if seconds > 0 else 0.0

    def reset(self) -> None:
        self._samples.clear()
        self.total_bytes = 0
        self.messages = 0


class RuntimeClock:
    """Accumulates time spent in the running state.

    :meth:`start` and :meth:`stop` are no-ops when the clock is already in
    the requested state, so paired pause/resume calls can be repeated freely.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._accumulated = 0.0
        self._started_at: float | None = None

    @property
    def running(self) -> bool:
        return self._started_at is not None

    def start(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock()

    def stop(self) -> None:
        if self._started_at is not None:
            self._accumulated += self._clock() - self._started_at
            self._started_at = None

    @property
    def elapsed(self) -> float:
        """Seconds accumulated so far, including the current running span."""
        if self._started_at is None:
            return self._accumulated
        return self._accumulated + (self._clock() - self._started_at)

    def reset(self) -> None:
        """Clear the accumulated time; a running clock keeps running from now."""
        self._accumulated = 0.0
        if self._started_at is not None:
            self._started_at = self._clock()
