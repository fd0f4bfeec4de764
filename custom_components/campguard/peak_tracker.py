"""Rolling-window peak tracking for the switch's power readings."""

from __future__ import annotations

import math
from typing import Optional


class RollingPeakTracker:
    """Keep the power samples of the last *window_s* seconds and their maximum.

    Samples are ``(timestamp, power_w)`` pairs kept in arrival order.  The
    window must be cleared whenever the relay turns off or trips so that a
    later peak never blends load from before and after the event.
    """

    def __init__(self, window_s: float) -> None:
        self.window_s = window_s
        self.peak_w: float = 0.0
        self._samples: list[tuple[float, float]] = []
        self._last_sample: Optional[tuple[int, float]] = None

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def samples(self) -> list[tuple[float, float]]:
        """Return a copy of the samples currently in the window."""
        return list(self._samples)

    def record(self, power_w: float, now: float) -> bool:
        """Add a power sample taken at *now*.

        A reading identical to the previous one within the same whole second
        is dropped as noise.

        Returns:
            True when the sample was added, False when it was dropped.
        """
        key = (math.floor(now), power_w)
        if key == self._last_sample:
            return False
        self._last_sample = key
        self._samples.append((now, power_w))
        self.prune_and_peak(now)
        return True

    def prune_and_peak(self, now: float) -> float:
        """Drop samples older than the window and return the remaining peak.

        Returns 0 when no sample is left.
        """
        self._samples = [
            (ts, power_w)
            for ts, power_w in self._samples
            if now - ts <= self.window_s
        ]
        self.peak_w = max((power_w for _, power_w in self._samples), default=0.0)
        return self.peak_w

    def clear(self) -> None:
        """Empty the window."""
        self._samples = []
        self._last_sample = None
        self.peak_w = 0.0
