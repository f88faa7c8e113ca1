"""
TableReplicator: per-table pull and push between the local and master stores.

Pull (master → local):
  1. Skip if the table doesn't exist on the master
  2. Mirror the master's CREATE TABLE locally if the table is new here
  3. Select candidate master rows (see pull_cursor below)
  4. Insert rows missing locally; update rows where the master is newer;
     count a conflict where the local row is newer
  5. Stamp synced_at on every row written or found equal

Push (local → master):
  1. Select local rows changed since their own synced_at
  2. Create the table on the master through the schema registry if missing
  3. Insert rows missing remotely; update rows where local is newer
  4. After the master commits, stamp synced_at on the rows handled

pull_cursor:
  "table"  only master rows with updated_at above the local table's
           highest synced_at are considered
  "row"    every master row is compared against its own local counterpart

Row values are moved with plain text() statements so column values are
copied exactly as stored, with no type coercion on either side. synced_at is
bookkeeping for the store it lives in and is never copied across.
"""
import base64
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, text, update
from sqlalchemy.engine import Connection

from quotesync.config import TableDescriptor
from quotesync.db.migrations import table_columns, table_exists
from quotesync.db.schema import SchemaRegistry
from quotesync.models.sync import SyncConflict, aware_utcnow
from quotesync.sync.resolver import (
    EPOCH,
    Resolution,
    format_timestamp,
    parse_timestamp,
    resolve,
    utcnow,
)
from quotesync.sync.state import PullResult, PushResult

logger = logging.getLogger(__name__)

PULL_CURSORS = ("table", "row")


class TableReplicator:
    """Moves rows of the replicated tables between two open stores."""

    def __init__(
        self,
        local_engine,
        remote_engine,
        registry: SchemaRegistry,
        *,
        pull_cursor: str = "table",
    ):
        if pull_cursor not in PULL_CURSORS:
            raise ValueError(f"pull_cursor must be one of {PULL_CURSORS}, got {pull_cursor!r}")
        self.local_engine = local_engine
        self.remote_engine = remote_engine
        self.registry = registry
        self.pull_cursor = pull_cursor

    # ─── Pull ────────────────────────────────────────────────────────────────

    def pull(self, table: TableDescriptor) -> PullResult:
        """Bring newer master rows into the local store."""
        result = PullResult()
        name, pk = table.name, table.primary_key

        with self.remote_engine.connect() as rconn:
            if not table_exists(rconn, name):
                logger.info("%s doesn't exist on the master, skipping pull", name)
                return result
            remote_ddl = _create_statement(rconn, name)
            remote_rows = _fetch_all(rconn, name)

        if not _local_table_ready(self.local_engine, name):
            self._mirror_table(name, remote_ddl)

        now = format_timestamp(utcnow())

        with self.local_engine.begin() as lconn:
            local_cols = table_columns(lconn, name)

            if self.pull_cursor == "table":
                high_water = _high_water_mark(lconn, name)
                remote_rows = [
                    r for r in remote_rows
                    if parse_timestamp(r.get("updated_at")) > high_water
                ]

            for remote_row in remote_rows:
                key = remote_row.get(pk)
                if key is None:
                    logger.warning("%s: master row without %s, skipped", name, pk)
                    continue

                local_row = _fetch_one(lconn, name, pk, key)
                values = _payload(remote_row, local_cols, now)

                if local_row is None:
                    _insert(lconn, name, values)
                    result.pulled += 1
                    continue

                outcome = resolve(local_row.get("updated_at"), remote_row.get("updated_at"))
                if outcome is Resolution.REMOTE_WINS:
                    _update(lconn, name, pk, key, values)
                    result.pulled += 1
                elif outcome is Resolution.LOCAL_WINS:
                    # Local edit is newer and goes out on push.
                    result.conflicts += 1
                    _record_conflict(lconn, name, key, local_row, remote_row)
                else:
                    _stamp(lconn, name, pk, key, now)

        if result.pulled or result.conflicts:
            logger.info("%s: pulled %d, conflicts %d", name, result.pulled, result.conflicts)
        return result

    def _mirror_table(self, name: str, ddl: Optional[str]) -> None:
        if not ddl:
            raise RuntimeError(f"No CREATE TABLE statement for {name} on the master")
        with self.local_engine.begin() as lconn:
            lconn.execute(text(ddl))
        logger.info("Created %s locally from the master's schema", name)

    # ─── Push ────────────────────────────────────────────────────────────────

    def push(self, table: TableDescriptor) -> PushResult:
        """Send locally changed rows to the master."""
        result = PushResult()
        name, pk = table.name, table.primary_key

        with self.local_engine.connect() as lconn:
            if not table_exists(lconn, name):
                return result
            candidates = [
                row for row in _fetch_all(lconn, name)
                if parse_timestamp(row.get("updated_at")) > parse_timestamp(row.get("synced_at"))
            ]

        if not candidates:
            return result

        self.registry.create_table(self.remote_engine, name, candidates[0])

        now = format_timestamp(utcnow())
        handled: List[Any] = []

        with self.remote_engine.begin() as rconn:
            remote_cols = table_columns(rconn, name)
            for local_row in candidates:
                key = local_row.get(pk)
                if key is None:
                    logger.warning("%s: local row without %s, skipped", name, pk)
                    continue

                remote_row = _fetch_one(rconn, name, pk, key)
                values = _payload(local_row, remote_cols, now)

                if remote_row is None:
                    _insert(rconn, name, values)
                    result.pushed += 1
                    handled.append(key)
                    continue

                outcome = resolve(local_row.get("updated_at"), remote_row.get("updated_at"))
                if outcome is Resolution.LOCAL_WINS:
                    _update(rconn, name, pk, key, values)
                    result.pushed += 1
                    handled.append(key)
                elif outcome is Resolution.EQUAL:
                    handled.append(key)
                # REMOTE_WINS: leave unstamped so the next pull can take it

        # Stamp only once the master has committed.
        with self.local_engine.begin() as lconn:
            for key in handled:
                _stamp(lconn, name, pk, key, now)

        if result.pushed:
            logger.info("%s: pushed %d", name, result.pushed)
        return result


def apply_local_edit(
    conn: Connection,
    table: TableDescriptor,
    key: Any,
    values: Dict[str, Any],
    username: str = "",
) -> None:
    """
    Overwrite a local row as if a user had just edited it.

    updated_at moves to now, so the next push carries the values to the
    master. Keys the table doesn't have are ignored.
    """
    cols = table_columns(conn, table.name)
    edit = {
        k: v for k, v in values.items()
        if k in cols and k not in (table.primary_key, "synced_at")
    }
    if "updated_at" in cols:
        edit["updated_at"] = format_timestamp(utcnow())
    if "updated_by" in cols:
        edit["updated_by"] = username or None
    _update(conn, table.name, table.primary_key, key, edit)


# ─── Conflict snapshots ──────────────────────────────────────────────────────

BYTES_MARKER = "$base64"


def dump_snapshot(row: Dict[str, Any]) -> str:
    """Serialize a row to JSON. BLOB values become {"$base64": "..."}."""
    return json.dumps(row, default=_encode_value)


def load_snapshot(data: str) -> Dict[str, Any]:
    """Inverse of dump_snapshot: BLOB values come back as bytes."""
    return json.loads(data, object_hook=_decode_value)


def _encode_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {BYTES_MARKER: base64.b64encode(bytes(value)).decode("ascii")}
    return str(value)


def _decode_value(obj: Dict[str, Any]) -> Any:
    if len(obj) == 1 and BYTES_MARKER in obj:
        return base64.b64decode(obj[BYTES_MARKER])
    return obj


# ─── SQL helpers ─────────────────────────────────────────────────────────────

def _q(identifier: str) -> str:
    """Quote an SQL identifier."""
    return '"' + identifier.replace('"', '""') + '"'


def _local_table_ready(engine, name: str) -> bool:
    with engine.connect() as conn:
        return table_exists(conn, name)


def _create_statement(conn: Connection, name: str) -> Optional[str]:
    return conn.execute(
        text("SELECT sql FROM sqlite_master WHERE type='table' AND name=:name"),
        {"name": name},
    ).scalar()


def _fetch_all(conn: Connection, name: str) -> List[Dict[str, Any]]:
    rows = conn.execute(text(f"SELECT * FROM {_q(name)}")).mappings()
    return [dict(row) for row in rows]


def _fetch_one(conn: Connection, name: str, pk: str, key: Any) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        text(f"SELECT * FROM {_q(name)} WHERE {_q(pk)} = :key"),
        {"key": key},
    ).mappings().first()
    return dict(row) if row is not None else None


def _high_water_mark(conn: Connection, name: str) -> datetime:
    """Latest synced_at across the whole local table, or the epoch."""
    stamps = conn.execute(text(f"SELECT synced_at FROM {_q(name)}")).scalars()
    return max((parse_timestamp(s) for s in stamps if s is not None), default=EPOCH)


def _payload(row: Dict[str, Any], target_cols: List[str], now: str) -> Dict[str, Any]:
    """Row values the target table can hold, with synced_at set to now."""
    values = {k: v for k, v in row.items() if k in target_cols and k != "synced_at"}
    if "synced_at" in target_cols:
        values["synced_at"] = now
    return values


def _insert(conn: Connection, name: str, values: Dict[str, Any]) -> None:
    columns = list(values)
    params = {f"p{i}": values[c] for i, c in enumerate(columns)}
    conn.execute(
        text(
            f"INSERT INTO {_q(name)} ({', '.join(_q(c) for c in columns)}) "
            f"VALUES ({', '.join(f':p{i}' for i in range(len(columns)))})"
        ),
        params,
    )


def _update(conn: Connection, name: str, pk: str, key: Any, values: Dict[str, Any]) -> None:
    columns = [c for c in values if c != pk]
    if not columns:
        return
    params = {f"p{i}": values[c] for i, c in enumerate(columns)}
    params["key"] = key
    assignments = ", ".join(f"{_q(c)} = :p{i}" for i, c in enumerate(columns))
    conn.execute(
        text(f"UPDATE {_q(name)} SET {assignments} WHERE {_q(pk)} = :key"),
        params,
    )


def _stamp(conn: Connection, name: str, pk: str, key: Any, now: str) -> None:
    conn.execute(
        text(f"UPDATE {_q(name)} SET synced_at = :now WHERE {_q(pk)} = :key"),
        {"now": now, "key": key},
    )


def _record_conflict(
    conn: Connection,
    name: str,
    key: Any,
    local_row: Dict[str, Any],
    remote_row: Dict[str, Any],
) -> None:
    """Keep the superseded master version. One open record per row."""
    conflicts = SyncConflict.__table__
    local_data = dump_snapshot(local_row)
    remote_data = dump_snapshot(remote_row)

    existing_id = conn.execute(
        select(conflicts.c.id).where(
            conflicts.c.table_name == name,
            conflicts.c.record_key == str(key),
            conflicts.c.resolved == False,  # noqa: E712
        )
    ).scalar()

    if existing_id is not None:
        conn.execute(
            update(conflicts)
            .where(conflicts.c.id == existing_id)
            .values(local_data=local_data, remote_data=remote_data, created_at=aware_utcnow())
        )
    else:
        conn.execute(
            conflicts.insert().values(
                table_name=name,
                record_key=str(key),
                local_data=local_data,
                remote_data=remote_data,
                conflict_type="update_conflict",
                resolved=False,
                created_at=aware_utcnow(),
            )
        )
