import math
import unittest
from unittest import mock

from config import CooldownConfig
from errors import InvalidConfiguration, TempoEstimationFailed
from tempo_cooldown import (
    FixedTempo,
    compute_baseline,
    effective_cooldown,
    estimate_bpm,
    resolve_session_baseline,
)


class BrokenEstimator:
    def estimate_tempo(self, audio):
        raise RuntimeError("not enough onsets")


class TestTempoCooldown(unittest.TestCase):
    def test_baseline_is_half_a_beat(self):
        self.assertAlmostEqual(compute_baseline(120.0), 0.25, places=9)
        self.assertAlmostEqual(compute_baseline(60.0), 0.5, places=9)

    def test_missing_or_bad_tempo_uses_fallback(self):
        self.assertEqual(compute_baseline(None), 0.2)
        self.assertEqual(compute_baseline(0.0, fallback_s=0.25), 0.25)
        self.assertEqual(compute_baseline(-90.0), 0.2)
        self.assertEqual(compute_baseline(math.nan), 0.2)

    def test_effective_cooldown_scales_by_multiplier_and_band(self):
        baseline = compute_baseline(120.0)
        self.assertAlmostEqual(effective_cooldown(baseline, 2.0, 1.0), 0.5, places=9)
        self.assertAlmostEqual(effective_cooldown(baseline, 1.0, 0.5), 0.125, places=9)
        self.assertAlmostEqual(effective_cooldown(baseline, 1.0, 2.0), 0.5, places=9)

    def test_effective_cooldown_rejects_non_positive_inputs(self):
        with self.assertRaises(InvalidConfiguration):
            effective_cooldown(0.25, 0.0, 1.0)
        with self.assertRaises(InvalidConfiguration):
            effective_cooldown(0.25, 1.0, -1.0)
        with self.assertRaises(InvalidConfiguration):
            effective_cooldown(0.0, 1.0, 1.0)

    def test_estimate_bpm_rounds(self):
        self.assertEqual(estimate_bpm(FixedTempo(127.6), None), 128.0)
        self.assertEqual(estimate_bpm(FixedTempo(127.6), None, round_bpm=False), 127.6)

    def test_estimate_bpm_wraps_estimator_errors(self):
        with self.assertRaises(TempoEstimationFailed):
            estimate_bpm(BrokenEstimator(), None)
        with self.assertRaises(TempoEstimationFailed):
            estimate_bpm(None, None)
        with self.assertRaises(TempoEstimationFailed):
            estimate_bpm(FixedTempo(float("inf")), None)

    def test_resolve_session_baseline_success(self):
        with mock.patch("tempo_cooldown.log_event"):
            result = resolve_session_baseline(FixedTempo(120.0), None, CooldownConfig())

        self.assertEqual(result.bpm, 120.0)
        self.assertAlmostEqual(result.baseline_s, 0.25, places=9)
        self.assertFalse(result.fallback_used)

    def test_resolve_session_baseline_recovers_from_failure(self):
        with mock.patch("tempo_cooldown.log_event") as log_event_mock:
            result = resolve_session_baseline(BrokenEstimator(), b"audio", CooldownConfig(fallback_baseline_ms=250))

        self.assertIsNone(result.bpm)
        self.assertAlmostEqual(result.baseline_s, 0.25, places=9)
        self.assertTrue(result.fallback_used)
        level, tag = log_event_mock.call_args[0][:2]
        self.assertEqual((level, tag), ("WARNING", "Tempo"))

    def test_resolve_session_baseline_rejects_bad_fallback(self):
        with self.assertRaises(InvalidConfiguration):
            resolve_session_baseline(None, None, CooldownConfig(fallback_baseline_ms=0))


if __name__ == "__main__":
    unittest.main()
