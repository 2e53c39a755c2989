"""
pulsebeats - Band Beat Detector
Adaptive-threshold beat detection over a rolling window of feature samples.

Each band owns one detector. A sample becomes a beat when it exceeds
``mean + stdDev * sensitivity`` of the recent window (or ``mean * sensitivity``
with the mean-only policy) and the band is not cooling down from its
previous beat. The returned value is the margin above the threshold, which
downstream visuals use as the beat intensity.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from config import BandId, ThresholdPolicy
from errors import InvalidConfiguration
from logging_utils import log_event


class RollingHistory:
    """Fixed-capacity FIFO of the most recent sample values for one band."""
    __slots__ = ('capacity', '_values')

    def __init__(self, capacity: int):
        if int(capacity) <= 0:
            raise InvalidConfiguration(f"history size must be positive, got {capacity}")
        self.capacity = int(capacity)
        self._values: deque[float] = deque(maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self):
        return iter(self._values)

    @property
    def is_full(self) -> bool:
        return len(self._values) >= self.capacity

    def push(self, value: float) -> None:
        """Append ``value``; once full the oldest value is evicted."""
        self._values.append(float(value))

    def mean(self) -> float:
        if not self._values:
            return 0.0
        window = np.fromiter(self._values, dtype=np.float64, count=len(self._values))
        # Summation error must not push the mean outside the window's range,
        # so a constant window has a mean equal to its value.
        return float(np.clip(np.mean(window), window.min(), window.max()))

    def std(self) -> float:
        """Population standard deviation of the window."""
        if not self._values:
            return 0.0
        window = np.fromiter(self._values, dtype=np.float64, count=len(self._values))
        if window.min() == window.max():
            return 0.0
        return float(np.std(window))

    def clear(self) -> None:
        self._values.clear()


@dataclass
class DetectorState:
    """Mutable per-band state. Owned by exactly one detector."""
    history: RollingHistory
    threshold_multiplier: float = 1.4
    last_beat_time: Optional[float] = None  # None until the first beat

    def in_cooldown(self, now: float, cooldown: float) -> bool:
        if self.last_beat_time is None:
            return False
        return (now - self.last_beat_time) < cooldown


def compute_threshold(mean: float, std: float, multiplier: float,
                      policy: ThresholdPolicy = ThresholdPolicy.STATISTICAL) -> float:
    if policy == ThresholdPolicy.MEAN_ONLY:
        return mean * multiplier
    return mean + std * multiplier


def observe(state: DetectorState, value: float, now: float, cooldown: float,
            policy: ThresholdPolicy = ThresholdPolicy.STATISTICAL,
            observe_during_cooldown: bool = True) -> float:
    """Feed one sample into ``state``. Returns the beat intensity, 0.0 when no beat.

    Ordering:
      1. cooldown check (the sample still feeds the window when
         ``observe_during_cooldown`` is set)
      2. warm-up until the window is full
      3. threshold from the window as it was before this sample
      4. the sample enters the window
      5. beat if the sample is strictly above the threshold
    """
    value = float(value)

    if state.in_cooldown(now, cooldown):
        if observe_during_cooldown:
            state.history.push(value)
        return 0.0

    if not state.history.is_full:
        state.history.push(value)
        return 0.0

    threshold = compute_threshold(state.history.mean(), state.history.std(),
                                  state.threshold_multiplier, policy)
    state.history.push(value)

    if value > threshold:
        state.last_beat_time = now
        return value - threshold
    return 0.0


@dataclass
class BandBeatDetector:
    """Beat detector for a single band, wrapping its own DetectorState."""
    band: BandId
    history_size: int = 30
    sensitivity: float = 1.4
    policy: ThresholdPolicy = ThresholdPolicy.STATISTICAL
    observe_during_cooldown: bool = True
    state: DetectorState = field(init=False)

    def __post_init__(self):
        if int(self.history_size) <= 0:
            log_event("ERROR", "Detector", "Rejected history size", band=BandId(self.band).name,
                      history_size=self.history_size)
            raise InvalidConfiguration(f"history_size must be positive, got {self.history_size}")
        self.band = BandId(self.band)
        self.history_size = int(self.history_size)
        self.state = self._fresh_state()

    def _fresh_state(self) -> DetectorState:
        return DetectorState(history=RollingHistory(self.history_size),
                             threshold_multiplier=self.sensitivity)

    @property
    def warmed_up(self) -> bool:
        return self.state.history.is_full

    def observe(self, value: float, now: float, cooldown: float) -> float:
        intensity = observe(self.state, value, now, cooldown,
                            policy=self.policy,
                            observe_during_cooldown=self.observe_during_cooldown)
        if intensity > 0:
            log_event("DEBUG", "Detector", "Beat", band=self.band.name,
                      value=value, intensity=intensity, t=now)
        return intensity

    def set_sensitivity(self, sensitivity: float) -> None:
        self.sensitivity = float(sensitivity)
        self.state.threshold_multiplier = self.sensitivity

    def reset(self) -> None:
        """Discard history and cooldown; the next samples warm up again."""
        self.state = self._fresh_state()
