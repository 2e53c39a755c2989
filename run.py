#!/usr/bin/env python3
"""
pulsebeats - Beat decision replay

Replays a recorded feature stream (CSV of band,value,timestamp) or a decoded
mono sample array (.npy) through the beat detectors and the pulse engine,
ticking the animation loop at the configured frame rate.
"""

import argparse
import cProfile
import csv
import sys
from itertools import groupby
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from band_dispatcher import BeatEvent, FeatureSample
from band_energy import BandEnergyExtractor
from beat_session import BeatSession
from config import BandId, Config, FilterMode, VisualConfig
from config_persistence import load_config
from errors import InvalidConfiguration
from logging_utils import log_event, set_log_level
from pulse_engine import ManualTickScheduler, PulseDecayEngine, RenderFrame
from session_reporter import BeatSessionReporter
from tempo_cooldown import FixedTempo

MODE_CHOICES = {mode.name.lower(): mode for mode in FilterMode}
MAX_DRAIN_TICKS = 100_000


class ReplaySink:
    """Render sink that keeps just enough to summarise a replay."""

    def __init__(self):
        self.frames = 0
        self.peak_level = 0.0
        self.clears = 0

    def render(self, frame: RenderFrame) -> None:
        self.frames += 1
        self.peak_level = max(self.peak_level, frame.level)

    def clear(self) -> None:
        self.clears += 1


def parse_band(text: str) -> BandId:
    text = text.strip()
    if text.isdigit():
        return BandId(int(text))
    return BandId[text.upper()]


def read_feature_csv(path: Path) -> Iterator[list[FeatureSample]]:
    """Yield frames of samples; consecutive rows sharing a timestamp form one frame."""
    with open(path, "r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        samples = (
            FeatureSample(band=parse_band(row["band"]), value=float(row["value"]),
                          timestamp=float(row["timestamp"]))
            for row in reader
        )
        for _, frame in groupby(samples, key=lambda s: s.timestamp):
            yield list(frame)


def read_sample_array(path: Path, config: Config) -> Iterator[list[FeatureSample]]:
    signal = np.load(path)
    extractor = BandEnergyExtractor(config.audio)
    log_event("INFO", "Run", "Extracting band energy", samples=len(signal),
              block_ms=f"{extractor.block_duration_s * 1000:.1f}")
    return extractor.iter_feature_samples(signal)


def replay(session: BeatSession, scheduler: ManualTickScheduler,
           frames: Iterator[list[FeatureSample]], frame_interval_s: float) -> int:
    """Drive the session and the tick loop on the recording's timeline. Returns beats seen."""
    beats = 0
    next_tick: Optional[float] = None
    last_time = 0.0

    for samples in frames:
        if not samples:
            continue
        now = samples[0].timestamp
        if next_tick is None:
            next_tick = now
        while next_tick <= now:
            scheduler.advance(next_tick)
            next_tick += frame_interval_s
        beats += len(session.on_samples(samples))
        last_time = now

    # Let the pulse fade out on its own
    tick_time = next_tick if next_tick is not None else last_time
    for _ in range(MAX_DRAIN_TICKS):
        if not scheduler.pending:
            break
        scheduler.advance(tick_time)
        tick_time += frame_interval_s
    return beats


def log_beat(event: BeatEvent, visual: VisualConfig) -> None:
    log_event("INFO", "Run", "Beat", band=event.band.name, t=f"{event.timestamp:.3f}",
              intensity=f"{event.intensity:.4f}",
              scale=f"{min(visual.max_scale, visual.max_scale * event.intensity):.2f}")


def run(args: argparse.Namespace) -> int:
    config = load_config(Path(args.config)) if args.config else Config()
    set_log_level(args.log_level or config.log_level)
    if args.mode:
        config.filter_mode = MODE_CHOICES[args.mode]

    input_path = Path(args.input)
    if not input_path.exists():
        log_event("ERROR", "Run", "Input not found", path=input_path)
        return 1

    scheduler = ManualTickScheduler()
    sink = ReplaySink()
    try:
        engine = PulseDecayEngine(config.pulse, scheduler, sink)
        reporter = BeatSessionReporter(Path(args.report_dir)) if args.report_dir else None
        session = BeatSession(config, engine, beat_callback=log_beat,
                              estimator=FixedTempo(args.bpm), reporter=reporter)
        session.start()
    except InvalidConfiguration as e:
        log_event("ERROR", "Run", "Invalid configuration", error=e)
        return 2

    if input_path.suffix.lower() == ".npy":
        frames = read_sample_array(input_path, config)
    else:
        frames = read_feature_csv(input_path)

    try:
        beats = replay(session, scheduler, frames, config.frame_interval_ms / 1000.0)
    except (KeyError, ValueError) as e:
        log_event("ERROR", "Run", "Unreadable input", path=input_path, error=repr(e))
        session.stop()
        return 1
    log_event("INFO", "Run", "Replay finished", beats=beats, frames=sink.frames,
              peak_level=f"{sink.peak_level:.3f}", pulse_running=engine.running)
    session.stop()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay a feature stream through pulsebeats")
    parser.add_argument("input", help="Feature CSV (band,value,timestamp) or mono .npy sample array")
    parser.add_argument("--mode", choices=sorted(MODE_CHOICES), help="Filter mode (default: from config)")
    parser.add_argument("--bpm", type=float, default=None,
                        help="Known tempo; without it the fallback cooldown is used")
    parser.add_argument("--config", default=None, help="Path to a saved config.json")
    parser.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR")
    parser.add_argument("--report-dir", default=None, help="Write session reports into this directory")
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile and save stats to --profile-out",
    )
    parser.add_argument(
        "--profile-out",
        default="profile.prof",
        help="Path to save cProfile stats (default: profile.prof)",
    )
    args = parser.parse_args()

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        exit_code = run(args)
        profiler.disable()
        profiler.dump_stats(args.profile_out)
    else:
        exit_code = run(args)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
