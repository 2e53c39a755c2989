"""
pulsebeats - Beat Session
Owns one playback session: resolves the tempo baseline, feeds feature
samples through the band dispatcher and fans beats out to the shape
spawner and the pulse engine.
"""

import time
from typing import Any, Callable, Iterable, Optional

from band_dispatcher import BeatEvent, FeatureSample, MultiBandDispatcher
from config import BandId, Config, FilterMode, VisualConfig, active_bands
from logging_utils import log_event
from pulse_engine import PulseDecayEngine
from session_reporter import BeatSessionReporter
from tempo_cooldown import TempoEstimator, TempoResult, resolve_session_baseline

BeatCallback = Callable[[BeatEvent, VisualConfig], None]


class BeatSession:
    def __init__(self, config: Config, pulse_engine: PulseDecayEngine,
                 beat_callback: Optional[BeatCallback] = None,
                 estimator: Optional[TempoEstimator] = None,
                 reporter: Optional[BeatSessionReporter] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.pulse_engine = pulse_engine
        self.beat_callback = beat_callback
        self.estimator = estimator
        self.reporter = reporter
        self._clock = clock

        self.filter_mode = FilterMode(config.filter_mode)
        self.dispatcher: Optional[MultiBandDispatcher] = None
        self.tempo: Optional[TempoResult] = None  # Cached per loaded file
        self.playing = False

        self._session_started_at: float = 0.0
        self._session_samples: int = 0
        self._session_beats: dict[BandId, int] = {}
        self._session_intensity_sum: float = 0.0
        self._session_intensity_max: float = 0.0
        self._session_manual_triggers: int = 0
        self._session_frames_at_start: int = 0
        self._reset_session_stats()

    def _reset_session_stats(self) -> None:
        self._session_started_at = time.time()
        self._session_samples = 0
        self._session_beats = {band: 0 for band in BandId}
        self._session_intensity_sum = 0.0
        self._session_intensity_max = 0.0
        self._session_manual_triggers = 0
        self._session_frames_at_start = self.pulse_engine.frames_rendered

    def start(self, audio: Any = None) -> TempoResult:
        """Begin (or restart) playback of the loaded file.

        The tempo is estimated once per file; later starts reuse it.
        """
        if self.playing:
            return self.tempo

        if self.tempo is None:
            self.tempo = resolve_session_baseline(self.estimator, audio, self.config.cooldown)

        if self.dispatcher is None:
            self.dispatcher = MultiBandDispatcher(self.config, self.tempo.baseline_s)
        else:
            self.dispatcher.set_baseline(self.tempo.baseline_s)

        self._reset_session_stats()
        self.playing = True
        log_event("INFO", "Session", "Playback started", mode=self.filter_mode.name,
                  bpm=self.tempo.bpm if self.tempo.bpm is not None else "n/a",
                  fallback=self.tempo.fallback_used)
        return self.tempo

    def pause(self) -> None:
        """Suspend playback; detector and pulse state are kept."""
        if self.playing:
            self.playing = False
            log_event("INFO", "Session", "Paused")

    def resume(self) -> None:
        if self.dispatcher is not None and not self.playing:
            self.playing = True
            log_event("INFO", "Session", "Resumed")

    def set_filter_mode(self, mode: FilterMode) -> None:
        self.filter_mode = FilterMode(mode)
        self.config.filter_mode = self.filter_mode
        log_event("INFO", "Session", "Filter mode changed", mode=self.filter_mode.name)

    def update_settings(self, sensitivity: Optional[float] = None,
                        cooldown_multiplier: Optional[float] = None) -> None:
        if self.dispatcher is not None:
            self.dispatcher.update_settings(sensitivity=sensitivity, cooldown_multiplier=cooldown_multiplier)
            return
        if sensitivity is not None:
            self.config.beat.sensitivity = float(sensitivity)
        if cooldown_multiplier is not None:
            self.config.cooldown.cooldown_multiplier = float(cooldown_multiplier)

    def on_samples(self, samples: Iterable[FeatureSample]) -> list[BeatEvent]:
        """Feature callback: detect beats in one frame's samples and fan them out."""
        if not self.playing or self.dispatcher is None:
            return []

        samples = list(samples)
        self._session_samples += len(samples)
        events = self.dispatcher.dispatch_frame(samples, self.filter_mode)
        for event in events:
            self._emit(event)
        return events

    def manual_trigger(self, now: Optional[float] = None) -> list[BeatEvent]:
        """Fire a full-strength beat on every active band, bypassing detection."""
        now = self._clock() if now is None else now
        events = [BeatEvent(band=band, intensity=1.0, timestamp=now)
                  for band in sorted(active_bands(self.filter_mode))]
        self._session_manual_triggers += 1
        for event in events:
            self._emit(event)
        return events

    def _emit(self, event: BeatEvent) -> None:
        self._session_beats[event.band] += 1
        self._session_intensity_sum += event.intensity
        self._session_intensity_max = max(self._session_intensity_max, event.intensity)

        if self.beat_callback is not None:
            self.beat_callback(event, self.config.visual)
        self.pulse_engine.trigger_pulse(event.intensity, now=event.timestamp)

    def stop(self) -> None:
        """End playback: summarise, then clear detector and pulse state."""
        was_active = self.dispatcher is not None
        self.playing = False
        if was_active:
            self._log_shutdown_summary()
            self.dispatcher.reset()
        self.pulse_engine.reset()
        self._reset_session_stats()
        log_event("INFO", "Session", "Stopped")

    def load_new_file(self) -> None:
        """Forget everything tied to the previous file, tempo included."""
        self.stop()
        self.dispatcher = None
        self.tempo = None

    def session_summary(self) -> dict:
        ended_at = time.time()
        beats_total = sum(self._session_beats.values())
        tempo = self.tempo
        return {
            "session_started_at": self._session_started_at,
            "session_ended_at": ended_at,
            "seconds": max(0.0, ended_at - self._session_started_at),
            "filter_mode": self.filter_mode.name,
            "bpm": tempo.bpm if tempo is not None else None,
            "fallback_cooldown": tempo.fallback_used if tempo is not None else True,
            "baseline_ms": tempo.baseline_s * 1000.0 if tempo is not None else None,
            "samples": self._session_samples,
            "beats_total": beats_total,
            "beats_bass": self._session_beats[BandId.BASS],
            "beats_mids": self._session_beats[BandId.MIDS],
            "beats_overall": self._session_beats[BandId.OVERALL],
            "intensity_mean": self._session_intensity_sum / beats_total if beats_total else 0.0,
            "intensity_max": self._session_intensity_max,
            "manual_triggers": self._session_manual_triggers,
            "frames_rendered": self.pulse_engine.frames_rendered - self._session_frames_at_start,
        }

    def _log_shutdown_summary(self) -> None:
        if self._session_samples <= 0 and self._session_manual_triggers <= 0:
            return

        summary = self.session_summary()
        log_event(
            "INFO",
            "Session",
            "Session summary",
            samples=summary["samples"],
            seconds=f"{summary['seconds']:.1f}",
            beats=summary["beats_total"],
            bass=summary["beats_bass"],
            mids=summary["beats_mids"],
            overall=summary["beats_overall"],
            intensity_mean=f"{summary['intensity_mean']:.4f}",
            intensity_max=f"{summary['intensity_max']:.4f}",
            frames=summary["frames_rendered"],
        )

        if self.reporter is not None and self.config.report_generation_enabled:
            try:
                self.reporter.save_session(summary)
            except OSError as e:
                log_event("WARNING", "Report", "Failed to write session report", error=e)
