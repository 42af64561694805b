"""Tests for the pieces around the timer core.

Covers: tt.common.logger, tt.core.cache, tt.core.config, tt.core.materializer, tt.core.reports, tt.core.ticker
"""

import csv
import json
import os
import shutil
import tempfile
import unittest
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

USER = "a" * 24
PROJECT = "b" * 24
TASK = "c" * 24
T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


class TempDirTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self._tmppath = Path(self.tmpdir)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)


# ──────────────────────────────────────────────────────────────────────────
# cache.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestTimerCache(TempDirTestCase):

    def build(self):
        from tt.core.cache import TimerCache
        return TimerCache(self._tmppath / "active_timer.json")

    def test_absent_means_idle(self):
        self.assertIsNone(self.build().read())

    def test_write_read_clear(self):
        from tt.core.timer_state import ActiveTimer
        cache = self.build()
        cache.write(ActiveTimer(USER, PROJECT, TASK, T0, "Docs"))
        record = cache.read()
        self.assertEqual(record["taskId"], TASK)
        self.assertEqual(record["projectId"], PROJECT)
        self.assertEqual(record["startTime"], "2026-03-02T09:00:00Z")
        self.assertEqual(record["description"], "Docs")
        self.assertFalse(record["isPaused"])
        cache.clear()
        self.assertIsNone(cache.read())

    def test_clear_when_absent_is_fine(self):
        self.build().clear()

    def test_incomplete_record_is_discarded(self):
        cache = self.build()
        with open(cache.path, "w") as f:
            json.dump({"taskId": TASK}, f)
        self.assertIsNone(cache.read())
        self.assertFalse(cache.path.exists())


# ──────────────────────────────────────────────────────────────────────────
# config.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestConfig(TempDirTestCase):

    def setUp(self):
        super().setUp()
        from tt.core import config
        self._orig_settings_path = config.SETTINGS_PATH
        config.SETTINGS_PATH = self._tmppath / "settings.json"

        self._env = patch.dict(os.environ)
        self._env.start()
        os.environ.pop("TT_API_BASE_URL", None)
        os.environ.pop("TT_USER_ID", None)
        os.environ.pop("TT_LOG_LEVEL", None)

    def tearDown(self):
        from tt.core import config
        config.SETTINGS_PATH = self._orig_settings_path
        self._env.stop()
        super().tearDown()

    def test_missing_file_gives_defaults(self):
        from tt.core.config import load_settings
        settings = load_settings()
        self.assertEqual(settings["request_timeout"], 10.0)
        self.assertEqual(settings["tick_interval_ms"], 1000)
        self.assertIsNone(settings["user_id"])

    def test_save_and_load_roundtrip(self):
        from tt.core import config
        settings = config.load_settings()
        settings["user_id"] = USER
        settings["api_base_url"] = "https://pm.example.com/api/v1"
        config.save_settings(settings)
        loaded = config.load_settings()
        self.assertEqual(loaded["user_id"], USER)
        self.assertEqual(loaded["api_base_url"], "https://pm.example.com/api/v1")

    def test_invalid_values_are_defaulted(self):
        from tt.core import config
        with open(config.SETTINGS_PATH, "w") as f:
            json.dump({"tick_interval_ms": "fast", "request_timeout": 3, "user_id": 42}, f)
        settings = config.load_settings()
        self.assertEqual(settings["tick_interval_ms"], 1000)
        self.assertEqual(settings["request_timeout"], 3.0)
        self.assertIsInstance(settings["request_timeout"], float)
        self.assertIsNone(settings["user_id"])

    def test_corrupt_file_gives_defaults(self):
        from tt.core import config
        with open(config.SETTINGS_PATH, "w") as f:
            f.write("{invalid json!!")
        self.assertEqual(config.load_settings(), config.build_default_settings())

    def test_environment_overrides_file(self):
        from tt.core import config
        config.save_settings(dict(config.build_default_settings(), user_id="f" * 24))
        os.environ["TT_USER_ID"] = USER
        os.environ["TT_API_BASE_URL"] = "http://other/api"
        settings = config.load_settings()
        self.assertEqual(settings["user_id"], USER)
        self.assertEqual(settings["api_base_url"], "http://other/api")

    def test_log_settings_default_and_override(self):
        """Logging starts at INFO without console output, and TT_LOG_LEVEL wins over the file."""
        from tt.core import config
        settings = config.load_settings()
        self.assertEqual(settings["log_level"], "INFO")
        self.assertFalse(settings["log_console"])

        config.save_settings(dict(settings, log_level="WARNING", log_console=True))
        os.environ["TT_LOG_LEVEL"] = "DEBUG"
        settings = config.load_settings()
        self.assertEqual(settings["log_level"], "DEBUG")
        self.assertTrue(settings["log_console"])


# ──────────────────────────────────────────────────────────────────────────
# logger.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestLogging(TempDirTestCase):

    def setUp(self):
        super().setUp()
        import logging
        from tt.common.logger import get_logger
        self.logger = get_logger(name=f"tasktimer-test-{id(self)}", log_dir=self._tmppath)
        self.addCleanup(logging.Logger.manager.loggerDict.pop, self.logger.name, None)

    def tearDown(self):
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()
        super().tearDown()

    def handler(self, suffix):
        return next((h for h in self.logger.handlers if h.get_name() == f"{self.logger.name}:{suffix}"), None)

    def test_file_handler_attached_once(self):
        """Building the same logger twice doesn't stack a second file handler."""
        from tt.common.logger import get_logger
        get_logger(name=self.logger.name, log_dir=self._tmppath)
        self.assertEqual(len(self.logger.handlers), 1)
        self.assertIsNotNone(self.handler("file"))

    def test_level_from_settings(self):
        """log_level is applied to the file handler, the logger itself keeps passing DEBUG through."""
        import logging
        from tt.common.logger import configure_logging
        level = configure_logging({"log_level": "warning", "log_console": False}, self.logger)
        self.assertEqual(level, logging.WARNING)
        self.assertEqual(self.handler("file").level, logging.WARNING)
        self.assertEqual(self.logger.level, logging.DEBUG)

        self.logger.info("not written")
        self.logger.warning("written")
        self.handler("file").flush()
        text = (self._tmppath / f"{self.logger.name}.log").read_text(encoding="utf-8")
        self.assertIn("written", text)
        self.assertNotIn("not written", text)

    def test_unknown_level_falls_back_to_info(self):
        import logging
        from tt.common.logger import configure_logging
        with self.assertLogs(self.logger, "WARNING") as cm:
            level = configure_logging({"log_level": "chatty"}, self.logger)
        self.assertEqual(level, logging.INFO)
        self.assertIn("CHATTY", cm.output[0])

    def test_console_toggles_with_settings(self):
        """log_console adds a console handler once, and turning it off removes it again."""
        import logging
        from tt.common.logger import configure_logging
        configure_logging({"log_level": "DEBUG", "log_console": True}, self.logger)
        configure_logging({"log_level": "DEBUG", "log_console": True}, self.logger)
        console = self.handler("console")
        self.assertIsInstance(console, logging.StreamHandler)
        self.assertEqual(console.level, logging.DEBUG)
        self.assertEqual(len(self.logger.handlers), 2)

        configure_logging({"log_level": "DEBUG", "log_console": False}, self.logger)
        self.assertIsNone(self.handler("console"))
        self.assertEqual(len(self.logger.handlers), 1)


# ──────────────────────────────────────────────────────────────────────────
# materializer.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestMaterializer(unittest.TestCase):

    def test_duration_excludes_paused_time(self):
        """90 minutes with 10 paused -> 80."""
        from tt.core.materializer import compute_duration_minutes
        end = T0 + timedelta(minutes=90)
        self.assertEqual(compute_duration_minutes(T0, end, 10 * 60 * 1000), 80)

    def test_duration_rounds_half_up(self):
        from tt.core.materializer import compute_duration_minutes
        self.assertEqual(compute_duration_minutes(T0, T0 + timedelta(seconds=150)), 3)
        self.assertEqual(compute_duration_minutes(T0, T0 + timedelta(seconds=89)), 1)
        self.assertEqual(compute_duration_minutes(T0, T0 + timedelta(seconds=29)), 0)

    def test_negative_duration_clamps_and_logs(self):
        from tt.core.materializer import compute_duration_minutes
        with self.assertLogs("tasktimer", level="WARNING"):
            self.assertEqual(compute_duration_minutes(T0, T0 + timedelta(minutes=5), 20 * 60 * 1000), 0)

    def test_materialize_closed_record(self):
        from tt.core.materializer import materialize
        entry = materialize({
            "_id": "e" * 24, "user": USER, "project": {"_id": PROJECT}, "task": TASK,
            "startTime": "2026-03-02T23:30:00.000Z", "endTime": "2026-03-03T01:00:00.000Z",
            "totalPausedTime": 600000, "description": "", "createdAt": "2026-03-02T23:30:01.000Z",
        })
        self.assertEqual(entry.duration, 80)
        self.assertEqual(entry.date, date(2026, 3, 2))
        self.assertEqual(entry.project_id, PROJECT)
        self.assertEqual(entry.description, "Timer session")
        self.assertAlmostEqual(entry.hours, 80 / 60)

    def test_materialize_falls_back_to_recorded_duration(self):
        from tt.core.materializer import materialize
        entry = materialize({"_id": "e" * 24, "duration": 25, "createdAt": "2026-03-02T10:00:00Z"}, USER)
        self.assertEqual(entry.duration, 25)
        self.assertEqual(entry.user_id, USER)
        self.assertEqual(entry.date, date(2026, 3, 2))

    def test_manual_window(self):
        from tt.core.materializer import manual_window
        start, end = manual_window(date(2026, 3, 1), 45)
        self.assertEqual(start, datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
        self.assertEqual(end - start, timedelta(minutes=45))


# ──────────────────────────────────────────────────────────────────────────
# reports.py tests
# ──────────────────────────────────────────────────────────────────────────

class TestReports(TempDirTestCase):

    def entries(self):
        from tt.core.materializer import TimeEntry
        other_task = "d" * 24
        other_project = "9" * 24
        return [
            TimeEntry("1", USER, PROJECT, TASK, date(2026, 3, 1), 60, "a", T0 - timedelta(days=1)),
            TimeEntry("2", USER, PROJECT, other_task, date(2026, 3, 2), 30, "b", T0),
            TimeEntry("3", USER, other_project, TASK, date(2026, 3, 3), 45, "c", T0 + timedelta(days=1)),
            TimeEntry("4", "f" * 24, PROJECT, TASK, date(2026, 3, 3), 15, "d", T0 + timedelta(days=1)),
        ]

    def test_filters(self):
        from tt.core.reports import filter_entries
        entries = self.entries()
        self.assertEqual([e.id for e in filter_entries(entries, user_id=USER)], ["1", "2", "3"])
        self.assertEqual([e.id for e in filter_entries(entries, project_id=PROJECT, task_id=TASK)], ["1", "4"])
        self.assertEqual([e.id for e in filter_entries(entries, since=date(2026, 3, 2), until=date(2026, 3, 2))],
                         ["2"])

    def test_filters_accept_datetime_bounds(self):
        """Datetime bounds filter by their UTC calendar day, just like plain dates."""
        from tt.core.reports import filter_entries
        entries = self.entries()
        since = datetime(2026, 3, 2, 23, 30, tzinfo=timezone.utc)
        until = datetime(2026, 3, 3, 1, 0, tzinfo=timezone(timedelta(hours=5)))
        self.assertEqual([e.id for e in filter_entries(entries, since=since, until=until)], ["2"])
        self.assertEqual([e.id for e in filter_entries(entries, since=datetime(2026, 3, 3, 12, 0))], ["3", "4"])

    def test_totals(self):
        from tt.core.reports import hours_by_project, hours_by_task, total_minutes
        entries = self.entries()
        self.assertEqual(total_minutes(entries), 150)
        self.assertEqual(hours_by_task(entries)[TASK], 2.0)
        self.assertEqual(hours_by_project(entries)[PROJECT], 1.75)

    def test_export_csv(self):
        from tt.core.reports import CSV_HEADER, export_csv
        path = export_csv(self.entries()[:2], self._tmppath / "out.csv", project_names={PROJECT: "Website"})
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        self.assertEqual(rows[0], CSV_HEADER)
        self.assertEqual(rows[1], ["2026-03-02", "Website", "d" * 24, "b", "30", "0.50"])
        self.assertEqual(rows[2][0], "2026-03-01")


# ──────────────────────────────────────────────────────────────────────────
# ticker.py tests
# ──────────────────────────────────────────────────────────────────────────

_app = None

def setUpModule():
    global _app
    from PySide6.QtCore import QCoreApplication
    _app = QCoreApplication.instance() or QCoreApplication([])


class TestTicker(unittest.TestCase):

    def setUp(self):
        from tt.core.ticker import ElapsedTicker
        from tt.core.timer_state import ActiveTimer
        self.now = T0 + timedelta(minutes=5)
        self.ticks = []
        self.ticker = ElapsedTicker(self.ticks.append, interval_ms=1000, clock=lambda: self.now)
        self.timer = ActiveTimer(USER, PROJECT, TASK, T0)

    def tearDown(self):
        self.ticker.stop()

    def test_start_ticks_immediately_and_schedules(self):
        self.ticker.start(self.timer)
        self.assertTrue(self.ticker.active)
        self.assertEqual(self.ticks, [300.0])

    def test_tick_recomputes_from_start(self):
        self.ticker.start(self.timer)
        self.now += timedelta(seconds=2)
        self.ticker._tick()
        self.assertEqual(self.ticks[-1], 302.0)

    def test_restart_replaces_previous_schedule(self):
        from tt.core.timer_state import ActiveTimer
        self.ticker.start(self.timer)
        other = ActiveTimer(USER, PROJECT, TASK, T0 + timedelta(minutes=4))
        self.ticker.start(other)
        self.ticker._tick()
        self.assertTrue(self.ticker.active)
        self.assertEqual(self.ticks[-1], 60.0)

    def test_stop_cancels_and_clears_display(self):
        self.ticker.start(self.timer)
        self.ticker.stop()
        self.assertFalse(self.ticker.active)
        self.assertEqual(self.ticks[-1], 0.0)
        # a tick already queued before stop() must not repaint
        self.ticker._tick()
        self.assertEqual(self.ticks[-1], 0.0)

    def test_hold_freezes_display(self):
        self.ticker.start(self.timer)
        self.timer.pause(self.now)
        self.ticker.hold(self.timer)
        self.assertFalse(self.ticker.active)
        self.assertEqual(self.ticks[-1], 300.0)

    def test_format_elapsed(self):
        from tt.core.ticker import format_elapsed
        self.assertEqual(format_elapsed(0), "0:00:00")
        self.assertEqual(format_elapsed(3725.9), "1:02:05")


if __name__ == "__main__":
    unittest.main()
