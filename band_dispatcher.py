"""
pulsebeats - Multi-Band Dispatcher
Routes feature samples to the per-band detectors active under the current
filter mode and turns detector output into beat events.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from beat_detector import BandBeatDetector
from config import BandId, Config, FilterMode, active_bands, validate_config
from errors import InvalidConfiguration
from logging_utils import log_event
from tempo_cooldown import effective_cooldown


@dataclass(frozen=True)
class FeatureSample:
    """One energy/loudness reading for one band"""
    band: BandId
    value: float              # >= 0
    timestamp: float          # Monotonic seconds


@dataclass(frozen=True)
class BeatEvent:
    """A detected beat on one band"""
    band: BandId
    intensity: float          # Margin above the adaptive threshold (> 0)
    timestamp: float


class MultiBandDispatcher:
    def __init__(self, config: Config, baseline_s: float):
        validate_config(config)
        self.config = config
        self.baseline_s = float(baseline_s)
        self.detectors: dict[BandId, BandBeatDetector] = {
            band: self._build_detector(band) for band in BandId
        }
        self._cooldowns: dict[BandId, float] = {}
        self._recompute_cooldowns()

    def _build_detector(self, band: BandId) -> BandBeatDetector:
        band_cfg = self.config.bands.for_band(band)
        return BandBeatDetector(
            band=band,
            history_size=band_cfg.history_size,
            sensitivity=self.config.beat.sensitivity,
            policy=self.config.beat.threshold_policy,
            observe_during_cooldown=band_cfg.observe_during_cooldown,
        )

    def _recompute_cooldowns(self) -> None:
        multiplier = self.config.cooldown.cooldown_multiplier
        self._cooldowns = {
            band: effective_cooldown(self.baseline_s, multiplier,
                                     self.config.bands.for_band(band).cooldown_factor)
            for band in BandId
        }
        log_event("INFO", "Dispatch", "Cooldowns updated",
                  baseline_ms=f"{self.baseline_s * 1000:.1f}",
                  **{band.name.lower() + "_ms": f"{cd * 1000:.1f}" for band, cd in self._cooldowns.items()})

    def cooldown_for(self, band: BandId) -> float:
        return self._cooldowns[BandId(band)]

    def set_baseline(self, baseline_s: float) -> None:
        if baseline_s <= 0:
            raise InvalidConfiguration(f"cooldown baseline must be positive, got {baseline_s}")
        self.baseline_s = float(baseline_s)
        self._recompute_cooldowns()

    def update_settings(self, sensitivity: Optional[float] = None,
                        cooldown_multiplier: Optional[float] = None) -> None:
        """Apply runtime slider changes. Detector history and cooldown timers are kept."""
        if cooldown_multiplier is not None:
            if cooldown_multiplier <= 0:
                raise InvalidConfiguration(f"cooldown multiplier must be positive, got {cooldown_multiplier}")
            self.config.cooldown.cooldown_multiplier = float(cooldown_multiplier)
            self._recompute_cooldowns()
        if sensitivity is not None:
            self.config.beat.sensitivity = float(sensitivity)
            for detector in self.detectors.values():
                detector.set_sensitivity(sensitivity)

    def dispatch(self, sample: FeatureSample, mode: FilterMode) -> Optional[BeatEvent]:
        """Route one sample. Muted bands do not see the sample at all."""
        band = BandId(sample.band)
        if band not in active_bands(mode):
            return None

        intensity = self.detectors[band].observe(sample.value, sample.timestamp, self._cooldowns[band])
        if intensity <= 0:
            return None
        return BeatEvent(band=band, intensity=intensity, timestamp=sample.timestamp)

    def dispatch_frame(self, samples: Iterable[FeatureSample], mode: FilterMode) -> list[BeatEvent]:
        """Dispatch samples from one audio frame; each band reports independently."""
        events = []
        for sample in samples:
            event = self.dispatch(sample, mode)
            if event is not None:
                events.append(event)
        return events

    def reset(self) -> None:
        for detector in self.detectors.values():
            detector.reset()
