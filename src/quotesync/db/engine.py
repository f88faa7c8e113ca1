"""Store engine construction and scoped remote store acquisition."""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy.engine import Engine
from sqlmodel import create_engine

logger = logging.getLogger(__name__)


def create_store_engine(db_path: str) -> Engine:
    """Engine for a SQLite file. Shared across worker threads."""
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )


@contextmanager
def remote_store(db_path: str) -> Generator[Engine, None, None]:
    """
    Open the master database for one run and always release it.

    The engine is disposed on every exit path so no pooled connection to a
    network share outlives the run that opened it.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    engine = create_store_engine(db_path)
    logger.info("Remote store opened: %s", db_path)
    try:
        yield engine
    finally:
        engine.dispose()
        logger.info("Remote store closed")
