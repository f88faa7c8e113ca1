"""Tests for store engine helpers."""
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import text

from quotesync.db.engine import create_store_engine, remote_store


class TestRemoteStore:
    def test_opens_usable_engine(self, tmp_path):
        path = tmp_path / "share" / "server.db"
        with remote_store(str(path)) as engine:
            with engine.connect() as conn:
                assert conn.execute(text("SELECT 1")).scalar() == 1
        assert path.exists()

    def test_disposed_on_success(self, tmp_path):
        engine = MagicMock()
        with patch("quotesync.db.engine.create_store_engine", return_value=engine):
            with remote_store(str(tmp_path / "server.db")):
                pass
        engine.dispose.assert_called_once()

    def test_disposed_on_error(self, tmp_path):
        engine = MagicMock()
        with patch("quotesync.db.engine.create_store_engine", return_value=engine):
            with pytest.raises(RuntimeError):
                with remote_store(str(tmp_path / "server.db")):
                    raise RuntimeError("network share went away")
        engine.dispose.assert_called_once()


class TestCreateStoreEngine:
    def test_sqlite_file_url(self, tmp_path):
        engine = create_store_engine(str(tmp_path / "local.db"))
        try:
            assert engine.url.drivername == "sqlite"
            assert engine.url.database.endswith("local.db")
        finally:
            engine.dispose()
