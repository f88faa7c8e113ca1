"""Read-only engine snapshot handed to the UI."""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class SyncStatus(BaseModel):
    enabled: bool = True
    is_syncing: bool
    phase: str
    last_sync_time: Optional[datetime]
    last_error: Optional[str] = None
    stats: Dict[str, Any]
    scheduled_sync: bool
    interval_minutes: int
    username: str
    remote_path: str
