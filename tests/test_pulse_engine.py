import unittest

import logging_utils
from config import PulseConfig
from errors import InvalidConfiguration
from logging_utils import set_log_level
from pulse_engine import ManualTickScheduler, PulseDecayEngine, RenderFrame

FRAME_S = 1.0 / 60.0


class RecordingSink:
    def __init__(self):
        self.frames: list[RenderFrame] = []
        self.clears = 0

    def render(self, frame: RenderFrame) -> None:
        self.frames.append(frame)

    def clear(self) -> None:
        self.clears += 1


class CountingScheduler(ManualTickScheduler):
    def __init__(self):
        super().__init__()
        self.requests = 0
        self.cancels = 0

    def request_tick(self, callback):
        self.requests += 1
        return super().request_tick(callback)

    def cancel_tick(self, handle):
        self.cancels += 1
        super().cancel_tick(handle)


def make_engine(**overrides):
    cfg = PulseConfig(**overrides)
    scheduler = CountingScheduler()
    sink = RecordingSink()
    engine = PulseDecayEngine(cfg, scheduler, sink, clock=lambda: 0.0)
    return engine, scheduler, sink


def run_ticks(scheduler, start, count):
    now = start
    for _ in range(count):
        scheduler.advance(now)
        now += FRAME_S
    return now


class TestPulseDecayEngine(unittest.TestCase):
    def test_first_pulse_starts_tick_loop(self):
        engine, scheduler, _ = make_engine(pulse_gain=0.5)
        self.assertFalse(engine.running)

        engine.trigger_pulse(1.0, now=0.0)

        self.assertTrue(engine.running)
        self.assertEqual(engine.level, 0.5)
        self.assertEqual(scheduler.pending, 1)

    def test_start_is_logged_with_pulse_level(self):
        engine, _, _ = make_engine(pulse_gain=0.5)
        set_log_level("DEBUG")
        self.addCleanup(set_log_level, "INFO")

        with self.assertLogs(logging_utils.LOGGER_NAME, level="DEBUG") as captured:
            engine.trigger_pulse(1.0, now=0.0)

        self.assertTrue(engine.running)
        self.assertIn("Started | pulse_level=0.5000", captured.records[0].getMessage())

    def test_direct_tick_replaces_scheduled_tick(self):
        engine, scheduler, sink = make_engine(pulse_gain=1.0, decay_factor=0.5)
        engine.trigger_pulse(1.0, now=0.0)

        engine.tick(FRAME_S)
        scheduler.advance(FRAME_S)

        self.assertEqual(engine.level, 0.5)
        self.assertEqual(len(sink.frames), 1)
        self.assertEqual(scheduler.pending, 1)

        scheduler.advance(2 * FRAME_S)
        self.assertEqual(engine.level, 0.25)

    def test_level_is_capped(self):
        engine, _, _ = make_engine(pulse_gain=0.5)
        engine.state.level = 0.9

        engine.trigger_pulse(2.0, now=0.0)

        self.assertEqual(engine.level, 1.0)

    def test_pulse_while_running_keeps_single_schedule(self):
        engine, scheduler, _ = make_engine()
        engine.trigger_pulse(0.4, now=0.0)
        engine.trigger_pulse(0.4, now=0.01)
        engine.trigger_pulse(0.4, now=0.02)

        self.assertEqual(scheduler.requests, 1)
        self.assertEqual(scheduler.pending, 1)
        self.assertEqual(engine.state.last_beat_time, 0.02)

    def test_each_tick_decays_and_renders(self):
        engine, scheduler, sink = make_engine(pulse_gain=1.0, decay_factor=0.5)
        engine.trigger_pulse(1.0, now=0.0)

        scheduler.advance(FRAME_S)
        scheduler.advance(2 * FRAME_S)

        self.assertEqual([f.level for f in sink.frames], [0.5, 0.25])
        self.assertEqual([f.fade_multiplier for f in sink.frames], [1.0, 1.0])
        self.assertEqual(scheduler.pending, 1)

    def test_decay_is_monotonic_and_reaches_zero(self):
        engine, scheduler, sink = make_engine(pulse_gain=1.0, decay_factor=0.9,
                                              fade_start_delay_ms=60_000, fade_duration_ms=60_000)
        engine.trigger_pulse(1.0, now=0.0)

        run_ticks(scheduler, FRAME_S, 200)

        levels = [f.level for f in sink.frames]
        self.assertTrue(all(b <= a for a, b in zip(levels, levels[1:])))
        self.assertEqual(levels[-1], 0.0)

    def test_fade_multiplier_is_linear_after_delay(self):
        engine, _, _ = make_engine(fade_start_delay_ms=500, fade_duration_ms=1000)
        engine.trigger_pulse(1.0, now=10.0)

        self.assertEqual(engine.fade_multiplier(10.4), 1.0)
        self.assertAlmostEqual(engine.fade_multiplier(11.0), 0.5, places=9)
        self.assertEqual(engine.fade_multiplier(11.6), 0.0)

    def test_fade_out_stops_loop_until_next_pulse(self):
        engine, scheduler, sink = make_engine(fade_start_delay_ms=100, fade_duration_ms=200)
        engine.trigger_pulse(1.0, now=0.0)

        end = run_ticks(scheduler, FRAME_S, 30)  # 0.5 s, well past 0.3 s

        self.assertFalse(engine.running)
        self.assertEqual(scheduler.pending, 0)
        self.assertEqual(sink.clears, 1)
        self.assertTrue(all(f.timestamp < 0.3 for f in sink.frames))
        frames_after_stop = len(sink.frames)

        run_ticks(scheduler, end, 10)
        self.assertIsNone(engine.tick(end + 1.0))
        self.assertEqual(len(sink.frames), frames_after_stop)

        engine.trigger_pulse(0.5, now=end + 2.0)
        self.assertTrue(engine.running)
        self.assertEqual(scheduler.pending, 1)
        scheduler.advance(end + 2.0 + FRAME_S)
        self.assertEqual(len(sink.frames), frames_after_stop + 1)

    def test_reset_cancels_pending_tick(self):
        engine, scheduler, sink = make_engine()
        engine.trigger_pulse(1.0, now=0.0)

        engine.reset()

        self.assertFalse(engine.running)
        self.assertEqual(engine.level, 0.0)
        self.assertIsNone(engine.state.last_beat_time)
        self.assertEqual(scheduler.pending, 0)
        self.assertEqual(sink.clears, 1)

    def test_non_positive_intensity_is_ignored(self):
        engine, scheduler, _ = make_engine()
        engine.trigger_pulse(0.0, now=0.0)
        engine.trigger_pulse(-1.0, now=0.0)

        self.assertFalse(engine.running)
        self.assertEqual(scheduler.requests, 0)

    def test_invalid_configuration(self):
        scheduler = ManualTickScheduler()
        with self.assertRaises(InvalidConfiguration):
            PulseDecayEngine(PulseConfig(decay_factor=1.0), scheduler)
        with self.assertRaises(InvalidConfiguration):
            PulseDecayEngine(PulseConfig(fade_duration_ms=0), scheduler)
        with self.assertRaises(InvalidConfiguration):
            PulseDecayEngine(PulseConfig(pulse_gain=0), scheduler)

    def test_uses_clock_when_no_time_given(self):
        now = [5.0]
        engine = PulseDecayEngine(PulseConfig(), ManualTickScheduler(), clock=lambda: now[0])

        engine.trigger_pulse(1.0)
        now[0] = 5.1
        frame = engine.tick()

        self.assertEqual(engine.state.last_beat_time, 5.0)
        self.assertEqual(frame.timestamp, 5.1)


if __name__ == "__main__":
    unittest.main()
