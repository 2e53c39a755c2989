# pulsebeats Configuration
# All default values and constants

from dataclasses import dataclass, field, is_dataclass
from enum import IntEnum

from errors import InvalidConfiguration
from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1

class BandId(IntEnum):
    """Frequency bands analysed independently"""
    BASS = 1
    MIDS = 2
    OVERALL = 3

class FilterMode(IntEnum):
    """Which bands are listened to (others are muted entirely)"""
    FULL = 1               # Every band
    BASS = 2               # Low-pass, bass detector only
    MIDS = 3               # Band-pass, mids detector only

class ThresholdPolicy(IntEnum):
    STATISTICAL = 1        # mean + stdDev * sensitivity
    MEAN_ONLY = 2          # mean * sensitivity


_ACTIVE_BANDS = {
    FilterMode.FULL: frozenset((BandId.BASS, BandId.MIDS, BandId.OVERALL)),
    FilterMode.BASS: frozenset((BandId.BASS,)),
    FilterMode.MIDS: frozenset((BandId.MIDS,)),
}


def active_bands(mode: FilterMode) -> frozenset:
    """Return the bands whose detectors run under ``mode``."""
    return _ACTIVE_BANDS[FilterMode(mode)]


@dataclass
class BandConfig:
    """Per-band detector settings"""
    history_size: int = 30                # Rolling window length (samples); also the warm-up length
    cooldown_factor: float = 1.0          # Scales the tempo baseline for this band
    observe_during_cooldown: bool = True  # Keep feeding the baseline while debouncing

@dataclass
class BandsConfig:
    """Detector settings for each band"""
    bass: BandConfig = field(default_factory=lambda: BandConfig(cooldown_factor=2.0))
    mids: BandConfig = field(default_factory=lambda: BandConfig(cooldown_factor=0.5))
    overall: BandConfig = field(default_factory=lambda: BandConfig(cooldown_factor=1.0))

    def for_band(self, band: BandId) -> BandConfig:
        return getattr(self, BandId(band).name.lower())

@dataclass
class BeatDetectionConfig:
    """Adaptive threshold parameters"""
    threshold_policy: ThresholdPolicy = ThresholdPolicy.STATISTICAL
    sensitivity: float = 1.4          # Threshold multiplier - higher = fewer beats

@dataclass
class CooldownConfig:
    """Tempo-derived debounce"""
    cooldown_multiplier: float = 1.0  # Higher = fewer beats per unit time (slider 0.25-4)
    fallback_baseline_ms: float = 200.0  # Used when no tempo estimate is available
    round_bpm: bool = True            # Round the estimate to a whole BPM before use

@dataclass
class PulseConfig:
    """Background pulse decay and fade-out"""
    pulse_gain: float = 0.5           # level += intensity * gain per beat
    decay_factor: float = 0.95        # Per-tick multiplier (tick-rate dependent)
    fade_start_delay_ms: float = 500.0  # Full opacity for this long after the last beat
    fade_duration_ms: float = 1500.0  # Then fade linearly to zero over this long
    level_floor: float = 0.001        # Levels below this snap to 0

@dataclass
class VisualConfig:
    """Settings forwarded to the shape spawner with every beat"""
    max_scale: float = 10.0
    animation_duration_ms: int = 2000

@dataclass
class AudioConfig:
    """Feature extraction settings"""
    sample_rate: int = 44100
    buffer_size: int = 1024           # One feature sample per buffer (~23 ms at 44.1 kHz)
    bass_cutoff_hz: float = 150.0     # Low-pass cutoff for the bass band
    mids_center_hz: float = 1500.0    # Band-pass centre for the mids band
    mids_q: float = 2.0               # Band-pass quality (bandwidth = centre / Q)
    filter_order: int = 4             # Butterworth order

@dataclass
class Config:
    """Master configuration"""
    version: int = CURRENT_CONFIG_VERSION  # Schema version for persisted configs
    beat: BeatDetectionConfig = field(default_factory=BeatDetectionConfig)
    bands: BandsConfig = field(default_factory=BandsConfig)
    cooldown: CooldownConfig = field(default_factory=CooldownConfig)
    pulse: PulseConfig = field(default_factory=PulseConfig)
    visual: VisualConfig = field(default_factory=VisualConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)

    # Global
    filter_mode: FilterMode = FilterMode.FULL
    frame_interval_ms: float = 1000.0 / 60.0  # Animation tick cadence
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)
    report_generation_enabled: bool = True


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; IntEnum fields are coerced when possible."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        if isinstance(current, IntEnum):
            try:
                setattr(target, key, current.__class__(value))
            except (ValueError, TypeError):
                log_event("WARNING", "Config", "Unknown enum value, keeping default",
                          key=key, value=value, default=current.name)
            continue

        setattr(target, key, value)


def _float_or(value, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Fills defaults for values stored as null and clamps ranges, then bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    if version < 1:
        defaults = Config()
        for section in ("beat", "cooldown", "pulse", "visual", "audio"):
            current = getattr(config, section)
            default_section = getattr(defaults, section)
            for name, default_value in vars(default_section).items():
                if getattr(current, name, None) is None:
                    setattr(current, name, default_value)
        for band in BandId:
            current = config.bands.for_band(band)
            default_band = defaults.bands.for_band(band)
            for name, default_value in vars(default_band).items():
                if getattr(current, name, None) is None:
                    setattr(current, name, default_value)

    if getattr(config, 'report_generation_enabled', True) is None:
        config.report_generation_enabled = True
    if not getattr(config, 'log_level', None):
        config.log_level = "INFO"

    low, high = SENSITIVITY_LIMITS
    sensitivity = _float_or(config.beat.sensitivity, 1.4)
    config.beat.sensitivity = max(low, min(high, sensitivity))

    low, high = COOLDOWN_MULTIPLIER_LIMITS
    multiplier = _float_or(config.cooldown.cooldown_multiplier, 1.0)
    config.cooldown.cooldown_multiplier = max(low, min(high, multiplier))

    # Decay must stay strictly inside (0, 1) or the pulse never settles
    decay = _float_or(config.pulse.decay_factor, 0.95)
    if not 0.0 < decay < 1.0:
        config.pulse.decay_factor = max(0.001, min(0.999, decay))
    else:
        config.pulse.decay_factor = decay

    config.version = CURRENT_CONFIG_VERSION


def validate_config(config: Config) -> None:
    """Raise InvalidConfiguration for settings the core cannot run with."""
    for band in BandId:
        band_cfg = config.bands.for_band(band)
        if int(band_cfg.history_size) <= 0:
            raise InvalidConfiguration(f"{band.name} history_size must be positive, got {band_cfg.history_size}")
        if band_cfg.cooldown_factor <= 0:
            raise InvalidConfiguration(f"{band.name} cooldown_factor must be positive, got {band_cfg.cooldown_factor}")
    if config.cooldown.cooldown_multiplier <= 0:
        raise InvalidConfiguration(f"cooldown_multiplier must be positive, got {config.cooldown.cooldown_multiplier}")
    if config.cooldown.fallback_baseline_ms <= 0:
        raise InvalidConfiguration(f"fallback_baseline_ms must be positive, got {config.cooldown.fallback_baseline_ms}")
    validate_pulse_config(config.pulse)
    if config.visual.max_scale <= 0:
        raise InvalidConfiguration(f"max_scale must be positive, got {config.visual.max_scale}")
    if config.frame_interval_ms <= 0:
        raise InvalidConfiguration(f"frame_interval_ms must be positive, got {config.frame_interval_ms}")


def validate_pulse_config(pulse: PulseConfig) -> None:
    if not 0.0 < pulse.decay_factor < 1.0:
        raise InvalidConfiguration(f"decay_factor must be in (0, 1), got {pulse.decay_factor}")
    if pulse.pulse_gain <= 0:
        raise InvalidConfiguration(f"pulse_gain must be positive, got {pulse.pulse_gain}")
    if pulse.fade_duration_ms <= 0:
        raise InvalidConfiguration(f"fade_duration_ms must be positive, got {pulse.fade_duration_ms}")
    if pulse.fade_start_delay_ms < 0:
        raise InvalidConfiguration(f"fade_start_delay_ms must not be negative, got {pulse.fade_start_delay_ms}")


# Default config instance
DEFAULT_CONFIG = Config()

# Slider ranges, enforced when a saved config is loaded
SENSITIVITY_LIMITS = (0.1, 5.0)
COOLDOWN_MULTIPLIER_LIMITS = (0.25, 4.0)
