"""
Schema registry for replicated tables.

When push finds a table missing on the master database it has to create
it. Tables with declared columns are created from that declaration,
including the primary key constraint. Tables without one fall back to
bootstrapping from a sample row: one TEXT column per key. That fallback
loses numeric and date typing and is logged as a degraded mode.
"""
import logging
import re
from typing import Any, Dict, List, Mapping

from sqlalchemy import text

from quotesync.config import TableDescriptor
from quotesync.db.migrations import TRACKING_COLUMNS, table_exists
from quotesync.errors import ConfigError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SchemaRegistry:
    """Declared schemas for the replicated tables, keyed by table name."""

    def __init__(self, tables: List[TableDescriptor], version: int = SCHEMA_VERSION):
        self.version = version
        self._tables: Dict[str, TableDescriptor] = {}
        self._duplicates: List[str] = []
        for table in tables:
            if table.name in self._tables:
                self._duplicates.append(table.name)
            self._tables[table.name] = table

    @property
    def tables(self) -> List[TableDescriptor]:
        return list(self._tables.values())

    def get(self, name: str) -> TableDescriptor:
        return self._tables[name]

    def validate(self) -> None:
        """Check every descriptor. Raises ConfigError on the first problem."""
        if self._duplicates:
            raise ConfigError(f"Duplicate table descriptors: {', '.join(self._duplicates)}")

        for table in self._tables.values():
            for ident in (table.name, table.primary_key, *table.columns):
                if not _IDENTIFIER.match(ident):
                    raise ConfigError(f"Invalid SQL identifier in {table.name}: {ident!r}")
            if table.columns and table.primary_key not in table.columns:
                raise ConfigError(
                    f"{table.name}: primary key {table.primary_key!r} "
                    "is not among the declared columns"
                )

    def create_table(self, engine, name: str, sample_row: Mapping[str, Any]) -> None:
        """Create `name` on `engine` unless it already exists."""
        table = self._tables[name]
        with engine.connect() as conn:
            if table_exists(conn, name):
                return
            if table.columns:
                ddl = _declared_ddl(table)
                logger.info("Creating %s from registry (schema v%d)", name, self.version)
            else:
                ddl = _bootstrap_ddl(name, sample_row)
                logger.warning(
                    "No declared schema for %s; bootstrapping TEXT columns from a sample row",
                    name,
                )
            conn.execute(text(ddl))
            conn.commit()


def _declared_ddl(table: TableDescriptor) -> str:
    cols = []
    for column, col_type in table.columns.items():
        suffix = " PRIMARY KEY" if column == table.primary_key else ""
        cols.append(f'"{column}" {col_type}{suffix}')
    for column, col_type in TRACKING_COLUMNS:
        if column not in table.columns:
            cols.append(f'"{column}" {col_type}')
    return f'CREATE TABLE IF NOT EXISTS "{table.name}" ({", ".join(cols)})'


def _bootstrap_ddl(name: str, sample_row: Mapping[str, Any]) -> str:
    cols = [f'"{column}" TEXT' for column in sample_row]
    for column, col_type in TRACKING_COLUMNS:
        if column not in sample_row:
            cols.append(f'"{column}" {col_type}')
    return f'CREATE TABLE IF NOT EXISTS "{name}" ({", ".join(cols)})'
