"""Shared test fixtures: a file-backed local store and a master store on a fake NAS path."""
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import text

from quotesync.config import Settings, TableDescriptor
from quotesync.db.engine import create_store_engine
from quotesync.db.migrations import ensure_journal_tables

TABLES = [
    TableDescriptor(name="customers", primary_key="customerCode"),
    TableDescriptor(name="projects", primary_key="projectId"),
]

CUSTOMERS_DDL = """
CREATE TABLE customers (
    customerCode TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT,
    updated_at DATETIME,
    updated_by TEXT,
    synced_at DATETIME
)
"""

PROJECTS_DDL = """
CREATE TABLE projects (
    projectId TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    budget REAL,
    customerCode TEXT,
    updated_at DATETIME,
    updated_by TEXT,
    synced_at DATETIME
)
"""


def _create_domain_tables(engine) -> None:
    with engine.begin() as conn:
        conn.execute(text(CUSTOMERS_DDL))
        conn.execute(text(PROJECTS_DDL))


@pytest.fixture(name="local_path")
def local_path_fixture(tmp_path: Path) -> Path:
    path = tmp_path / "local" / "server.db"
    path.parent.mkdir(parents=True)
    return path


@pytest.fixture(name="remote_path")
def remote_path_fixture(tmp_path: Path) -> Path:
    """Master DB path on a 'mounted' share. The directory exists, the file may not."""
    path = tmp_path / "nas" / "master" / "server.db"
    path.parent.mkdir(parents=True)
    return path


@pytest.fixture(name="local_engine")
def local_engine_fixture(local_path):
    engine = create_store_engine(str(local_path))
    _create_domain_tables(engine)
    ensure_journal_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="remote_engine")
def remote_engine_fixture(remote_path):
    engine = create_store_engine(str(remote_path))
    _create_domain_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="settings")
def settings_fixture(local_path, remote_path) -> Settings:
    return Settings(
        local_db_path=str(local_path),
        remote_db_path=str(remote_path),
        sync_interval_minutes=30,
        username="alice",
        tables=TABLES,
        auto_sync=False,
        _env_file=None,
    )


@pytest.fixture(name="insert_row")
def insert_row_fixture():
    """Callable: insert_row(engine, table, **values)."""

    def _insert(engine, table: str, **values: Any) -> None:
        cols = list(values)
        with engine.begin() as conn:
            conn.execute(
                text(
                    f"INSERT INTO {table} ({', '.join(cols)}) "
                    f"VALUES ({', '.join(':' + c for c in cols)})"
                ),
                values,
            )

    return _insert


@pytest.fixture(name="fetch_row")
def fetch_row_fixture():
    """Callable: fetch_row(engine, table, pk, key) -> dict or None."""

    def _fetch(engine, table: str, pk: str, key: Any) -> Optional[Dict[str, Any]]:
        with engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT * FROM {table} WHERE {pk} = :key"), {"key": key}
            ).mappings().first()
        return dict(row) if row is not None else None

    return _fetch


@pytest.fixture(name="fetch_all")
def fetch_all_fixture():
    """Callable: fetch_all(engine, table) -> list of dicts ordered by rowid."""

    def _fetch(engine, table: str) -> List[Dict[str, Any]]:
        with engine.connect() as conn:
            rows = conn.execute(text(f"SELECT * FROM {table} ORDER BY rowid")).mappings()
            return [dict(r) for r in rows]

    return _fetch
