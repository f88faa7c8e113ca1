"""Tests for the sync run journal."""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from quotesync.db.engine import create_store_engine
from quotesync.models.sync import SyncRun
from quotesync.sync.journal import SyncJournal


def _run(status="success", minutes=0, **kwargs) -> SyncRun:
    return SyncRun(
        timestamp=datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes),
        direction="bidirectional",
        status=status,
        **kwargs,
    )


class TestSyncJournal:
    def test_log_and_read_back(self, local_engine):
        journal = SyncJournal(local_engine)
        journal.log_sync(_run(records_pulled=3, records_pushed=1, conflicts=1, duration_ms=420))

        history = journal.get_sync_history()
        assert len(history) == 1
        assert history[0].records_pulled == 3
        assert history[0].records_pushed == 1
        assert history[0].conflicts == 1
        assert history[0].duration_ms == 420
        assert history[0].id is not None

    def test_history_newest_first(self, local_engine):
        journal = SyncJournal(local_engine)
        for i, status in enumerate(["success", "error", "partial"]):
            journal.log_sync(_run(status=status, minutes=i))

        history = journal.get_sync_history()
        assert [r.status for r in history] == ["partial", "error", "success"]

    def test_history_respects_limit(self, local_engine):
        journal = SyncJournal(local_engine)
        for i in range(5):
            journal.log_sync(_run(minutes=i))
        history = journal.get_sync_history(limit=2)
        assert len(history) == 2
        assert history[0].timestamp.replace(tzinfo=None) == datetime(2025, 3, 1, 10, 4)

    def test_missing_table_returns_empty(self, tmp_path):
        engine = create_store_engine(str(tmp_path / "empty.db"))
        try:
            assert SyncJournal(engine).get_sync_history() == []
        finally:
            engine.dispose()

    def test_unexpected_error_does_not_raise(self, local_engine, caplog):
        journal = SyncJournal(local_engine)
        with patch("quotesync.sync.journal.Session", side_effect=ValueError("bad datetime")):
            journal.log_sync(_run())
        assert "Failed to log sync run" in caplog.text

    def test_timezone_aware_timestamp_persisted(self, local_engine):
        journal = SyncJournal(local_engine)
        run = SyncRun(direction="bidirectional", status="success")
        assert run.timestamp.tzinfo is not None

        journal.log_sync(run)

        assert [r.id for r in journal.get_sync_history()] == [run.id]

    def test_log_failure_does_not_raise(self, tmp_path, caplog):
        """No sync_log table: logging degrades to a logged no-op."""
        engine = create_store_engine(str(tmp_path / "empty.db"))
        try:
            SyncJournal(engine).log_sync(_run())
        finally:
            engine.dispose()
        assert "Failed to log sync run" in caplog.text

    def test_read_error_degrades_to_empty(self, local_engine):
        journal = SyncJournal(local_engine)
        with patch("quotesync.sync.journal.Session") as mock_session:
            mock_session.return_value.__enter__.return_value.exec.side_effect = OperationalError(
                "SELECT", {}, Exception("database is locked")
            )
            assert journal.get_sync_history() == []
