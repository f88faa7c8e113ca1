"""
SyncManager: runs full reconciliations between the local and master stores.

One run:
  1. Refuse if a run is already in flight (single-flight, no queue)
  2. Probe the master's directory; unreachable ends the run in IDLE
  3. Open the master store for the duration of the run
  4. Evolve tracking columns on both stores
  5. Pull every table, then push every table
  6. Close the master store, record last_sync_time, append a SyncRun

A failing table is logged and the remaining tables continue; the run is
then journaled as "partial". Anything else that escapes is journaled as
"error" and returned as a failed result. The local store is never left
unusable.

Blocking database work runs in worker threads so the event loop (and any
status polling on it) stays responsive while a run is in progress.
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from quotesync.config import Settings, get_settings
from quotesync.db.engine import create_store_engine, remote_store
from quotesync.db.migrations import ensure_journal_tables, ensure_tracking_columns
from quotesync.db.schema import SchemaRegistry
from quotesync.errors import ConfigError, ConflictNotFoundError, QuoteSyncError, SchemaEvolutionError
from quotesync.models.status import SyncStatus
from quotesync.models.sync import SyncConflict, SyncRun, aware_utcnow
from quotesync.sync.journal import SyncJournal
from quotesync.sync.prober import check_remote_access
from quotesync.sync.replicator import (
    TableReplicator,
    apply_local_edit,
    dump_snapshot,
    load_snapshot,
)
from quotesync.sync.resolver import utcnow
from quotesync.sync.state import EngineState, SyncPhase, SyncResult, SyncStats

logger = logging.getLogger(__name__)

SCHEDULED_JOB_ID = "scheduled_sync"
NAS_UNAVAILABLE_MESSAGE = (
    "NAS master database not accessible. Working offline with local database."
)


class SyncManager:
    """Owns the engine state, the local store handle and the scheduler."""

    def __init__(self, settings: Optional[Settings] = None, *, local_engine=None):
        """
        Args:
            settings: Engine configuration. Defaults to get_settings().
            local_engine: Pre-built local store engine (tests). Created from
                settings.local_db_path by initialize() when omitted.
        """
        settings = settings or get_settings()
        self.settings = settings
        self.local_db_path = settings.local_db_path
        self.remote_db_path = settings.remote_db_path
        self.interval_minutes = settings.sync_interval_minutes
        self.username = settings.username
        self.pull_cursor = settings.pull_cursor
        self.registry = SchemaRegistry(settings.tables)

        self.local_engine = local_engine
        self.journal: Optional[SyncJournal] = None
        self.state = EngineState()
        self._scheduler: Optional[AsyncIOScheduler] = None

    def initialize(self) -> bool:
        """Open the local store and prepare its tables. Returns False on failure."""
        logger.info("Initializing sync manager (local=%s, master=%s)",
                    self.local_db_path, self.remote_db_path or "not configured")
        try:
            self.registry.validate()
            if self.local_engine is None:
                self.local_engine = create_store_engine(self.local_db_path)
            ensure_journal_tables(self.local_engine)
            ensure_tracking_columns(self.local_engine, self.registry.tables)
        except (QuoteSyncError, SQLAlchemyError) as exc:
            logger.error("Failed to initialize sync manager: %s", exc)
            return False
        self.journal = SyncJournal(self.local_engine)
        return True

    # ─── Run ─────────────────────────────────────────────────────────────────

    async def sync(self) -> SyncResult:
        """Run one bidirectional reconciliation."""
        if self.state.is_syncing:
            logger.info("Sync already in progress, skipping")
            return SyncResult(success=False, reason="already_syncing")

        if self.journal is None and not self.initialize():
            return SyncResult(
                success=False, status="error", error="Sync manager failed to initialize"
            )

        started = time.monotonic()
        self.state.phase = SyncPhase.CONNECTING
        try:
            return await self._run(started)
        finally:
            # Cancellation or a BaseException must not wedge the guard.
            if self.state.is_syncing:
                self.state.phase = SyncPhase.FAILED

    async def _run(self, started: float) -> SyncResult:
        if not await check_remote_access(self.remote_db_path):
            logger.warning("Master database not accessible, sync skipped")
            self.state.phase = SyncPhase.IDLE
            return SyncResult(
                success=False, reason="nas_unavailable", message=NAS_UNAVAILABLE_MESSAGE
            )

        logger.info("Starting database synchronization")
        stats = SyncStats()
        self.state.stats = stats
        errors: List[str] = []

        try:
            with remote_store(self.remote_db_path) as remote_engine:
                errors.extend(await self._evolve_schemas(remote_engine))

                replicator = TableReplicator(
                    self.local_engine,
                    remote_engine,
                    self.registry,
                    pull_cursor=self.pull_cursor,
                )

                self.state.phase = SyncPhase.PULLING
                for table in self.registry.tables:
                    try:
                        pulled = await asyncio.to_thread(replicator.pull, table)
                    except Exception as exc:
                        logger.error("Error pulling %s: %s", table.name, exc)
                        errors.append(f"pull {table.name}: {exc}")
                        continue
                    stats.pulled[table.name] = pulled.pulled
                    stats.conflicts += pulled.conflicts

                self.state.phase = SyncPhase.PUSHING
                for table in self.registry.tables:
                    try:
                        pushed = await asyncio.to_thread(replicator.push, table)
                    except Exception as exc:
                        logger.error("Error pushing %s: %s", table.name, exc)
                        errors.append(f"push {table.name}: {exc}")
                        continue
                    stats.pushed[table.name] = pushed.pushed

        except Exception as exc:
            logger.exception("Sync failed")
            duration = time.monotonic() - started
            self.state.phase = SyncPhase.FAILED
            self.state.last_error = str(exc)
            await self._journal(stats, "error", duration, error_message=str(exc))
            return SyncResult(
                success=False,
                status="error",
                stats=stats,
                duration=round(duration, 2),
                error=str(exc),
            )

        duration = time.monotonic() - started
        status = "partial" if errors else "success"
        error_message = "; ".join(errors) if errors else None

        self.state.last_sync_time = utcnow()
        self.state.last_error = error_message
        await self._journal(stats, status, duration, error_message=error_message)
        self.state.phase = SyncPhase.IDLE

        logger.info(
            "Sync %s in %.2fs: pulled %d, pushed %d, conflicts %d",
            status, duration, stats.total_pulled, stats.total_pushed, stats.conflicts,
        )
        return SyncResult(
            success=True,
            status=status,
            stats=stats,
            duration=round(duration, 2),
            timestamp=self.state.last_sync_time,
            error=error_message,
        )

    async def _evolve_schemas(self, remote_engine) -> List[str]:
        """Add tracking columns on both stores. Column failures are reported, not raised."""
        errors: List[str] = []
        for label, engine in (("local", self.local_engine), ("master", remote_engine)):
            try:
                await asyncio.to_thread(ensure_tracking_columns, engine, self.registry.tables)
            except SchemaEvolutionError as exc:
                logger.error("Schema evolution failed on %s store: %s", label, exc)
                errors.append(f"schema {label}: {exc}")
        return errors

    async def _journal(
        self,
        stats: SyncStats,
        status: str,
        duration: float,
        *,
        error_message: Optional[str] = None,
    ) -> None:
        run = SyncRun(
            timestamp=aware_utcnow(),
            direction="bidirectional",
            status=status,
            records_pulled=stats.total_pulled,
            records_pushed=stats.total_pushed,
            conflicts=stats.conflicts,
            error_message=error_message,
            duration_ms=int(duration * 1000),
        )
        await asyncio.to_thread(self.journal.log_sync, run)

    # ─── Scheduling ──────────────────────────────────────────────────────────

    def start_scheduled_sync(self, interval_minutes: Optional[int] = None) -> None:
        """
        Run sync() now and then every `interval_minutes`.

        Must be called from a running event loop. A tick that lands while a
        run is still in flight is dropped by the single-flight guard.
        """
        interval = interval_minutes or self.interval_minutes
        self.stop_scheduled_sync()
        self.interval_minutes = interval

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.sync,
            trigger="interval",
            minutes=interval,
            id=SCHEDULED_JOB_ID,
            replace_existing=True,
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Scheduled sync every %d minutes", interval)

    def stop_scheduled_sync(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduled sync stopped")

    # ─── Read side ───────────────────────────────────────────────────────────

    def get_status(self) -> SyncStatus:
        state = self.state
        return SyncStatus(
            enabled=True,
            is_syncing=state.is_syncing,
            phase=state.phase.value,
            last_sync_time=state.last_sync_time,
            last_error=state.last_error,
            stats=state.stats.to_dict(),
            scheduled_sync=self._scheduler is not None,
            interval_minutes=self.interval_minutes,
            username=self.username,
            remote_path=self.remote_db_path or "Not configured",
        )

    def get_sync_history(self, limit: int = 50) -> List[SyncRun]:
        if self.journal is None:
            return []
        return self.journal.get_sync_history(limit)

    async def test_connection(self) -> Dict[str, Any]:
        """Probe the master's directory without syncing."""
        if await check_remote_access(self.remote_db_path):
            return {"success": True, "message": "Master database directory is accessible"}
        return {"success": False, "message": NAS_UNAVAILABLE_MESSAGE}

    # ─── Conflicts ───────────────────────────────────────────────────────────

    def get_pending_conflicts(self) -> List[SyncConflict]:
        if self.local_engine is None:
            return []
        with Session(self.local_engine) as s:
            return list(s.exec(
                select(SyncConflict)
                .where(SyncConflict.resolved == False)  # noqa: E712
                .order_by(SyncConflict.created_at.desc())
            ).all())

    def resolve_conflict(
        self, conflict_id: int, resolution: Union[str, Dict[str, Any]]
    ) -> SyncConflict:
        """
        Close a recorded conflict.

        Args:
            conflict_id: SyncConflict id.
            resolution: "local" keeps the local row as is; "remote" restores
                the superseded master version locally; a dict is written
                as merged values. "remote" and dict resolutions count as a
                fresh local edit and reach the master on the next push.

        Raises:
            ConflictNotFoundError: No conflict with that id.
            ConfigError: The conflict's table is no longer replicated.
            ValueError: Unknown resolution.
        """
        if isinstance(resolution, str) and resolution not in ("local", "remote"):
            raise ValueError(f"Unknown resolution {resolution!r}")
        if self.local_engine is None:
            raise ConflictNotFoundError(f"Conflict {conflict_id} not found")

        with Session(self.local_engine) as s:
            conflict = s.get(SyncConflict, conflict_id)
            if conflict is None:
                raise ConflictNotFoundError(f"Conflict {conflict_id} not found")
            try:
                table = self.registry.get(conflict.table_name)
            except KeyError:
                raise ConfigError(f"{conflict.table_name} is not a replicated table") from None

            if resolution == "remote":
                values = load_snapshot(conflict.remote_data)
            elif isinstance(resolution, dict):
                values = resolution
            else:
                values = None

            if values is not None:
                key = values.get(table.primary_key, conflict.record_key)
                apply_local_edit(s.connection(), table, key, values, self.username)

            conflict.resolved = True
            conflict.resolution = resolution if isinstance(resolution, str) else dump_snapshot(resolution)
            conflict.resolved_at = aware_utcnow()
            s.add(conflict)
            s.commit()
            s.refresh(conflict)
            return conflict

    # ─── Shutdown ────────────────────────────────────────────────────────────

    def cleanup(self) -> None:
        """Stop the scheduler and release the local store."""
        self.stop_scheduled_sync()
        if self.local_engine is not None:
            self.local_engine.dispose()
