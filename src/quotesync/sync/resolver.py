"""
Last-write-wins conflict resolution.

Resolution is whole-row: the side with the greater updated_at wins, with
no field-level merge. Timestamps arrive in whatever form the stores hold
them (SQLite CURRENT_TIMESTAMP text, ISO-8601 with or without offset,
epoch numbers), so both sides are parsed to naive UTC before comparing.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any

EPOCH = datetime(1970, 1, 1)

# Numbers above this are epoch milliseconds, below it epoch seconds.
_MS_THRESHOLD = 100_000_000_000


class Resolution(str, Enum):
    REMOTE_WINS = "remote_wins"
    LOCAL_WINS = "local_wins"
    EQUAL = "equal"


def parse_timestamp(value: Any) -> datetime:
    """Parse a stored timestamp to naive UTC. NULL or garbage reads as the epoch."""
    if value is None or value == "":
        return EPOCH
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, str):
        value = value.strip()
        try:
            return _to_naive_utc(datetime.fromisoformat(value))
        except ValueError:
            pass
    try:
        return _from_number(float(value))
    except (TypeError, ValueError, OverflowError, OSError):
        return EPOCH


def format_timestamp(value: datetime) -> str:
    """Storage form for timestamps the engine writes (synced_at, updated_at)."""
    return _to_naive_utc(value).strftime("%Y-%m-%d %H:%M:%S.%f")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve(local_ts: Any, remote_ts: Any) -> Resolution:
    """Decide which version of a row wins."""
    local = parse_timestamp(local_ts)
    remote = parse_timestamp(remote_ts)
    if remote > local:
        return Resolution.REMOTE_WINS
    if local > remote:
        return Resolution.LOCAL_WINS
    return Resolution.EQUAL


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_number(value: float) -> datetime:
    seconds = value / 1000 if abs(value) > _MS_THRESHOLD else value
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
