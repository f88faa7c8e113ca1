"""Engine state owned by SyncManager, plus the per-run result types."""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class SyncPhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    PULLING = "pulling"
    PUSHING = "pushing"
    FAILED = "failed"


# Phases from which a new run may start.
RESTING_PHASES = (SyncPhase.IDLE, SyncPhase.FAILED)


@dataclass
class SyncStats:
    """Counts for a single run. Replaced at the start of each run."""

    pulled: Dict[str, int] = field(default_factory=dict)
    pushed: Dict[str, int] = field(default_factory=dict)
    conflicts: int = 0

    @property
    def total_pulled(self) -> int:
        return sum(self.pulled.values())

    @property
    def total_pushed(self) -> int:
        return sum(self.pushed.values())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EngineState:
    phase: SyncPhase = SyncPhase.IDLE
    last_sync_time: Optional[datetime] = None
    stats: SyncStats = field(default_factory=SyncStats)
    last_error: Optional[str] = None

    @property
    def is_syncing(self) -> bool:
        return self.phase not in RESTING_PHASES


@dataclass
class PullResult:
    pulled: int = 0
    conflicts: int = 0


@dataclass
class PushResult:
    pushed: int = 0


@dataclass
class SyncResult:
    """Outcome of one sync() call. Unset fields are left out of to_dict()."""

    success: bool
    status: Optional[str] = None  # journal status: "success", "partial", "error"
    stats: Optional[SyncStats] = None
    duration: Optional[float] = None  # seconds
    timestamp: Optional[datetime] = None
    reason: Optional[str] = None  # "already_syncing", "nas_unavailable"
    message: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        for key in ("status", "duration", "reason", "message", "error"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        if self.stats is not None:
            out["stats"] = self.stats.to_dict()
        if self.timestamp is not None:
            out["timestamp"] = self.timestamp.isoformat()
        return out
