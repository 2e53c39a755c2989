import unittest

import logging_utils
from logging_utils import get_log_level, log_event, set_log_level


class TestLoggingUtils(unittest.TestCase):
    def setUp(self):
        self._previous = get_log_level()
        self.addCleanup(set_log_level, self._previous)

    def test_set_and_get_level(self):
        set_log_level("debug")
        self.assertEqual(get_log_level(), "DEBUG")

        set_log_level("nonsense")
        self.assertEqual(get_log_level(), "INFO")

    def test_fields_are_appended_with_tag(self):
        set_log_level("INFO")
        with self.assertLogs(logging_utils.LOGGER_NAME, level="INFO") as captured:
            log_event("WARNING", "Tempo", "Estimation failed", bpm=None, baseline=0.25)

        record = captured.records[0]
        self.assertEqual(record.levelname, "WARNING")
        self.assertEqual(record.tag, "Tempo")
        self.assertEqual(record.getMessage(), "Estimation failed | bpm=None baseline=0.2500")

    def test_empty_tag_falls_back_to_default(self):
        set_log_level("INFO")
        with self.assertLogs(logging_utils.LOGGER_NAME, level="INFO") as captured:
            log_event("INFO", "", "Ready")

        self.assertEqual(captured.records[0].tag, logging_utils.DEFAULT_TAG)


if __name__ == "__main__":
    unittest.main()
