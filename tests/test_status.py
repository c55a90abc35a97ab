"""
Unit tests for status trackers

Tests:
- SQLiteStatusTracker: busy guard, stage transitions, event log, log limit
- LoggingStatusTracker: log output
"""

import logging

import pytest

from catalogsync.exceptions import SyncBusyError
from catalogsync.status.tracker import LoggingStatusTracker, SQLiteStatusTracker


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def status_path(tmp_path):
    return str(tmp_path / "db" / "status.db")


@pytest.fixture
def tracker(status_path):
    tracker = SQLiteStatusTracker(status_path, job="catalog", max_errors=5)
    yield tracker
    tracker.close()


# ============================================================================
# TEST: Busy guard
# ============================================================================


class TestBusyGuard:
    """Tests for acquire/reset"""

    def test_acquire_sets_running(self, tracker):
        tracker.acquire("Sync gestartet")
        status = tracker.get_status()
        assert status["state"] == "running"
        assert status["message"] == "Sync gestartet"
        assert status["started_at"]

    def test_second_acquire_is_refused(self, tracker, status_path):
        tracker.acquire()
        other = SQLiteStatusTracker(status_path, job="catalog")
        try:
            with pytest.raises(SyncBusyError):
                other.acquire()
        finally:
            other.close()

    def test_other_job_is_independent(self, tracker, status_path):
        tracker.acquire()
        other = SQLiteStatusTracker(status_path, job="media")
        other.acquire()
        assert other.get_status()["state"] == "running"
        other.close()

    def test_acquire_after_complete(self, tracker):
        tracker.acquire()
        tracker.complete()
        tracker.acquire()
        assert tracker.get_status()["state"] == "running"

    def test_reset_clears_stale_run(self, tracker):
        tracker.acquire()
        tracker.reset()
        assert tracker.get_status()["state"] == "idle"
        tracker.acquire()


# ============================================================================
# TEST: Stage transitions
# ============================================================================


class TestStages:
    """Tests for begin/advance/complete/fail"""

    def test_progress(self, tracker):
        tracker.acquire()
        tracker.begin("artikel", "Artikel werden synchronisiert")
        tracker.advance("artikel", {"processed": 2, "total": 5, "ignored": "x"})

        status = tracker.get_status()
        assert status["stage"] == "artikel"
        assert (status["processed"], status["total"]) == (2, 5)

    def test_complete(self, tracker):
        tracker.acquire()
        tracker.complete({"processed": 5, "total": 5})
        status = tracker.get_status()
        assert status["state"] == "ready"
        assert status["finished_at"]

    def test_fail(self, tracker):
        tracker.acquire()
        tracker.fail("Datenbank gesperrt", "artikel")
        status = tracker.get_status()
        assert status["state"] == "error"
        assert status["message"] == "Datenbank gesperrt"
        assert status["stage"] == "artikel"


# ============================================================================
# TEST: Event log
# ============================================================================


class TestEventLog:
    """Tests for persisted log events"""

    def test_events_are_persisted(self, tracker):
        tracker.log_info("Start", stage="artikel")
        tracker.log_warning("EAN doppelt", {"ean": "4001", "key": "A-2", "conflict_with": "A-1"}, "artikel")
        tracker.log_error("Zeile kaputt", {"row": 3}, "artikel")

        logs = tracker.get_logs()
        assert [log["level"] for log in logs] == ["error", "warning", "info"]
        assert logs[1]["context"] == {"ean": "4001", "key": "A-2", "conflict_with": "A-1"}
        assert logs[2]["context"] is None

    def test_filter_by_level(self, tracker):
        tracker.log_info("a")
        tracker.log_error("b")
        errors = tracker.get_errors()
        assert [log["message"] for log in errors] == ["b"]

    def test_log_limit_keeps_newest(self, tracker):
        for n in range(8):
            tracker.log_error(f"Fehler {n}")

        logs = tracker.get_logs(limit=100)
        assert len(logs) == 5
        assert logs[0]["message"] == "Fehler 7"
        assert logs[-1]["message"] == "Fehler 3"

    def test_clear_log(self, tracker):
        tracker.log_info("a")
        tracker.clear_log()
        assert tracker.get_logs() == []


# ============================================================================
# TEST: LoggingStatusTracker
# ============================================================================


class TestLoggingStatusTracker:
    """Tests for the logging-only tracker"""

    def test_warning_is_logged_with_context(self, caplog):
        tracker = LoggingStatusTracker()
        with caplog.at_level(logging.INFO, logger="catalogsync.status.tracker"):
            tracker.log_warning("EAN doppelt", {"ean": "4001"}, "artikel")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "[artikel] EAN doppelt" in record.getMessage()
        assert '"ean": "4001"' in record.getMessage()
