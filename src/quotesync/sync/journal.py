"""Append-only log of sync runs, stored in the local database."""
import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from quotesync.models.sync import SyncRun

logger = logging.getLogger(__name__)


class SyncJournal:
    """Writes and reads SyncRun rows. Never raises to the caller."""

    def __init__(self, engine):
        self.engine = engine

    def log_sync(self, run: SyncRun) -> None:
        """Append a run. Failures are logged and dropped."""
        try:
            with Session(self.engine) as s:
                s.add(run)
                s.commit()
                s.refresh(run)
        except Exception as exc:
            logger.error("Failed to log sync run: %s", exc)

    def get_sync_history(self, limit: int = 50) -> List[SyncRun]:
        """Most recent runs first. Empty if the journal table is missing."""
        try:
            with Session(self.engine) as s:
                runs = s.exec(
                    select(SyncRun)
                    .order_by(SyncRun.timestamp.desc(), SyncRun.id.desc())
                    .limit(limit)
                ).all()
                return list(runs)
        except SQLAlchemyError as exc:
            if "no such table" not in str(exc):
                logger.error("Error reading sync history: %s", exc)
            return []
