"""
Schema evolution for replicated tables.

Every replicated table, in both stores, carries three tracking columns used
for last-write-wins reconciliation. They are added with SQLite
ALTER TABLE ADD COLUMN after checking PRAGMA table_info, so running the
evolver repeatedly is safe and a failed ALTER is a real error rather than
"column already exists".
"""
import logging
from typing import Iterable, List

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel

from quotesync.config import TableDescriptor
from quotesync.errors import SchemaEvolutionError

logger = logging.getLogger(__name__)

# (column, SQLite type). No defaults: SQLite rejects non-constant defaults
# in ADD COLUMN, and a NULL timestamp reads as the epoch.
TRACKING_COLUMNS = [
    ("updated_at", "DATETIME"),
    ("updated_by", "TEXT"),
    ("synced_at", "DATETIME"),
]


def ensure_tracking_columns(engine, tables: Iterable[TableDescriptor]) -> List[str]:
    """Add any missing tracking columns to every existing replicated table.

    Tables that don't exist yet are skipped.

    Args:
        engine: SQLAlchemy engine for either store.
        tables: Table descriptors from configuration.

    Returns:
        The columns that were added, as "table.column" strings.

    Raises:
        SchemaEvolutionError: An ALTER TABLE failed for a missing column.
    """
    added: List[str] = []
    with engine.connect() as conn:
        for table in tables:
            if not table_exists(conn, table.name):
                continue
            for column, col_type in TRACKING_COLUMNS:
                if _add_column_if_missing(conn, table.name, column, col_type):
                    added.append(f"{table.name}.{column}")
        conn.commit()

    if added:
        logger.info("Tracking columns added: %s", ", ".join(added))
    return added


def ensure_journal_tables(engine) -> None:
    """Create sync_log and sync_conflicts if absent."""
    from quotesync.models.sync import SyncConflict, SyncRun  # noqa: F401

    SQLModel.metadata.create_all(
        engine, tables=[SyncRun.__table__, SyncConflict.__table__]
    )


def table_exists(conn, table: str) -> bool:
    row = conn.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name=:name"),
        {"name": table},
    ).first()
    return row is not None


def table_columns(conn, table: str) -> List[str]:
    """Column names of a table, in declaration order."""
    result = conn.execute(text(f'PRAGMA table_info("{table}")'))
    return [row[1] for row in result]


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> bool:
    """Add a column to a table if it doesn't already exist.

    Returns:
        True if the column was added.
    """
    if column in table_columns(conn, table):
        return False
    try:
        conn.execute(text(f'ALTER TABLE "{table}" ADD COLUMN "{column}" {col_type}'))
    except SQLAlchemyError as exc:
        raise SchemaEvolutionError(table, column, exc) from exc
    return True
