"""Tempo-derived cooldown baseline.

The baseline debounce is half of one beat interval at the detected tempo
(an eighth note in 4/4). Each band scales it by the global cooldown
multiplier and its own factor, so one tempo estimate yields different beat
densities per band.
"""

import math
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from config import CooldownConfig
from errors import InvalidConfiguration, TempoEstimationFailed
from logging_utils import log_event

DEFAULT_FALLBACK_BASELINE_S = 0.2


class TempoEstimator(Protocol):
    def estimate_tempo(self, audio: Any) -> float: ...


@dataclass(frozen=True)
class TempoResult:
    bpm: Optional[float]      # None when the fallback was used
    baseline_s: float
    fallback_used: bool


def _usable_bpm(bpm) -> bool:
    if bpm is None:
        return False
    try:
        bpm = float(bpm)
    except (TypeError, ValueError):
        return False
    return math.isfinite(bpm) and bpm > 0


def compute_baseline(bpm: Optional[float], fallback_s: float = DEFAULT_FALLBACK_BASELINE_S) -> float:
    """Baseline cooldown in seconds: ``(60 / bpm) / 2``, or ``fallback_s`` without a usable tempo."""
    if not _usable_bpm(bpm):
        return fallback_s
    return (60.0 / float(bpm)) / 2.0


def effective_cooldown(baseline_s: float, cooldown_multiplier: float, band_factor: float) -> float:
    """Cooldown actually applied to one band's detector."""
    if baseline_s <= 0:
        raise InvalidConfiguration(f"cooldown baseline must be positive, got {baseline_s}")
    if cooldown_multiplier <= 0:
        raise InvalidConfiguration(f"cooldown multiplier must be positive, got {cooldown_multiplier}")
    if band_factor <= 0:
        raise InvalidConfiguration(f"band cooldown factor must be positive, got {band_factor}")
    return baseline_s * cooldown_multiplier * band_factor


def estimate_bpm(estimator: Optional[TempoEstimator], audio: Any, round_bpm: bool = True) -> float:
    """Run the estimator once; raise TempoEstimationFailed when it gives nothing usable."""
    if estimator is None:
        raise TempoEstimationFailed("no tempo estimator configured")
    try:
        bpm = estimator.estimate_tempo(audio)
    except TempoEstimationFailed:
        raise
    except Exception as e:
        raise TempoEstimationFailed(f"tempo estimator raised {type(e).__name__}: {e}") from e

    if not _usable_bpm(bpm):
        raise TempoEstimationFailed(f"unusable tempo estimate: {bpm!r}")
    bpm = float(bpm)
    if round_bpm:
        bpm = float(round(bpm))
        if bpm <= 0:
            raise TempoEstimationFailed("tempo estimate rounds to zero")
    return bpm


def resolve_session_baseline(estimator: Optional[TempoEstimator], audio: Any,
                             cooldown_config: CooldownConfig) -> TempoResult:
    """Compute the baseline for a playback session, falling back when estimation fails.

    Estimation failures never abort playback; they are logged and the fixed
    fallback baseline is used instead.
    """
    fallback_s = float(cooldown_config.fallback_baseline_ms) / 1000.0
    if fallback_s <= 0:
        raise InvalidConfiguration(f"fallback baseline must be positive, got {cooldown_config.fallback_baseline_ms} ms")

    try:
        bpm = estimate_bpm(estimator, audio, round_bpm=cooldown_config.round_bpm)
    except TempoEstimationFailed as e:
        log_event("WARNING", "Tempo", "Estimation failed, using fallback cooldown",
                  error=e, fallback_ms=cooldown_config.fallback_baseline_ms)
        return TempoResult(bpm=None, baseline_s=fallback_s, fallback_used=True)

    baseline_s = compute_baseline(bpm, fallback_s)
    log_event("INFO", "Tempo", "Tempo detected", bpm=f"{bpm:.1f}", baseline_ms=f"{baseline_s * 1000:.1f}")
    return TempoResult(bpm=bpm, baseline_s=baseline_s, fallback_used=False)


class FixedTempo:
    """Estimator that reports a tempo known in advance (e.g. from the command line)."""

    def __init__(self, bpm: Optional[float]):
        self.bpm = bpm

    def estimate_tempo(self, audio: Any) -> float:
        if self.bpm is None:
            raise TempoEstimationFailed("no tempo supplied")
        return self.bpm
