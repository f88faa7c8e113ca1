"""Sync journal and conflict side-table models (local store only)."""
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def aware_utcnow() -> datetime:
    """Timezone-aware UTC now, for journal and conflict timestamps."""
    return datetime.now(timezone.utc)


class SyncRun(SQLModel, table=True):
    """One row per orchestrated sync run. Append-only."""

    __tablename__ = "sync_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=aware_utcnow, index=True)
    direction: str = "bidirectional"  # "pull", "push", "bidirectional"
    status: str  # "success", "error", "partial"
    records_pulled: int = 0
    records_pushed: int = 0
    conflicts: int = 0
    error_message: Optional[str] = None
    duration_ms: int = 0


class SyncConflict(SQLModel, table=True):
    """
    A remote row version that lost to a newer local edit during pull.

    The local version overwrites the remote one on the following push, so
    this row is the only surviving copy of the superseded remote data.
    """

    __tablename__ = "sync_conflicts"

    id: Optional[int] = Field(default=None, primary_key=True)
    table_name: str = Field(index=True)
    record_key: str
    local_data: str  # JSON
    remote_data: str  # JSON
    conflict_type: str = "update_conflict"
    resolved: bool = Field(default=False, index=True)
    resolution: Optional[str] = None  # "local", "remote" or merged JSON
    created_at: datetime = Field(default_factory=aware_utcnow)
    resolved_at: Optional[datetime] = None
