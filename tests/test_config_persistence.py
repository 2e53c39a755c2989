import json
import tempfile
import unittest
from dataclasses import asdict
from pathlib import Path
from unittest import mock

from config import Config, CURRENT_CONFIG_VERSION, FilterMode
import config_persistence


class TestConfigPersistence(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch("config_persistence.log_event")
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_save_and_load_roundtrip(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            cfg = Config()
            cfg.beat.sensitivity = 2.5
            cfg.filter_mode = FilterMode.BASS

            with mock.patch.object(config_persistence, "get_config_file", return_value=cfg_file):
                self.assertTrue(config_persistence.save_config(cfg))
                loaded = config_persistence.load_config()

            self.assertAlmostEqual(loaded.beat.sensitivity, 2.5, places=6)
            self.assertIs(loaded.filter_mode, FilterMode.BASS)

    def test_explicit_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "nested" / "pulse.json"
            cfg = Config()
            cfg.pulse.decay_factor = 0.9

            self.assertTrue(config_persistence.save_config(cfg, cfg_file))
            loaded = config_persistence.load_config(cfg_file)

            self.assertAlmostEqual(loaded.pulse.decay_factor, 0.9, places=6)

    def test_fast_decay_survives_load(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            cfg = Config()
            cfg.pulse.decay_factor = 0.3

            self.assertTrue(config_persistence.save_config(cfg, cfg_file))
            loaded = config_persistence.load_config(cfg_file)

            self.assertAlmostEqual(loaded.pulse.decay_factor, 0.3, places=6)

    def test_load_default_when_missing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            with mock.patch.object(config_persistence, "get_config_file", return_value=cfg_file):
                loaded = config_persistence.load_config()
            self.assertIsInstance(loaded, Config)

    def test_load_migrates_and_autosaves(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            legacy = Config()
            legacy.version = 0
            legacy_data = asdict(legacy)
            legacy_data["pulse"]["pulse_gain"] = None
            with open(cfg_file, "w", encoding="utf-8") as f:
                json.dump(legacy_data, f)

            loaded = config_persistence.load_config(cfg_file)

            self.assertEqual(loaded.version, CURRENT_CONFIG_VERSION)
            self.assertEqual(loaded.pulse.pulse_gain, 0.5)
            with open(cfg_file, "r", encoding="utf-8") as f:
                self.assertEqual(json.load(f)["version"], CURRENT_CONFIG_VERSION)

    def test_load_invalid_json_returns_default(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            with open(cfg_file, "w", encoding="utf-8") as f:
                f.write("{invalid json")

            loaded = config_persistence.load_config(cfg_file)

            self.assertIsInstance(loaded, Config)

    def test_save_failure_returns_false(self):
        cfg = Config()

        with mock.patch.object(config_persistence, "get_config_file", side_effect=OSError("boom")):
            self.assertFalse(config_persistence.save_config(cfg))


if __name__ == "__main__":
    unittest.main()
