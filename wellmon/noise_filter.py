"""Rolling-window sample filter with outlier rejection and smoothing."""

from __future__ import annotations

import math
from collections import deque


class NoiseFilter:
    """Keep the last ``size`` accepted samples and derive statistics from them.

    Samples that are NaN or infinite are ignored. Once more than three samples
    have been accepted, a sample that deviates from the current average by more
    than ``outlier_threshold * average`` (never less than 0.1) is rejected.
    """

    _MIN_OUTLIER_BAND = 0.1
    _OUTLIER_WARMUP = 3

    def __init__(self, size: int, outlier_threshold: float = 2.0, smoothing: float = 0.1) -> None:
        if size <= 0:
            raise ValueError("filter size must be positive")
        self._size = size
        self._samples: deque[float] = deque(maxlen=size)
        self._outlier_threshold = outlier_threshold
        self._smoothing = smoothing
        self._filtered = 0.0
        self._last_average = 0.0
        self._initialized = False

    def reset(self) -> None:
        """Discard all samples and smoothing state."""
        self._samples.clear()
        self._filtered = 0.0
        self._last_average = 0.0
        self._initialized = False

    def add_sample(self, sample: float) -> None:
        """Add a sample unless it is not finite or is an outlier."""
        if math.isnan(sample) or math.isinf(sample):
            return
        if len(self._samples) > self._OUTLIER_WARMUP and self._is_outlier(sample):
            return
        self._samples.append(float(sample))
        self._update_statistics()

    def average(self) -> float:
        if not self._samples:
            return 0.0
        return sum(self._samples) / len(self._samples)

    def filtered(self) -> float:
        """Exponentially smoothed running average."""
        return self._filtered

    def minimum(self) -> float:
        return min(self._samples, default=0.0)

    def maximum(self) -> float:
        return max(self._samples, default=0.0)

    def rms(self) -> float:
        if not self._samples:
            return 0.0
        return math.sqrt(sum(s * s for s in self._samples) / len(self._samples))

    def is_ready(self) -> bool:
        """True once at least half of the window is filled."""
        return len(self._samples) >= self._size // 2

    def sample_count(self) -> int:
        return len(self._samples)

    def set_outlier_threshold(self, threshold: float) -> None:
        self._outlier_threshold = threshold

    def set_smoothing_factor(self, factor: float) -> None:
        """Set the smoothing factor, clamped to the range [0.01, 1.0]."""
        self._smoothing = min(max(factor, 0.01), 1.0)

    def _is_outlier(self, sample: float) -> bool:
        if not self._samples:
            return False
        current = self.average()
        deviation = abs(sample - current)
        band = max(self._outlier_threshold * current, self._MIN_OUTLIER_BAND)
        return deviation > band

    def _update_statistics(self) -> None:
        if not self._samples:
            return
        current = self.average()
        if not self._initialized:
            self._filtered = current
            self._initialized = True
        else:
            self._filtered = self._smoothing * current + (1.0 - self._smoothing) * self._filtered
        self._last_average = current