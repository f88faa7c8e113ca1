"""Reachability check for the master database's directory."""
import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


async def check_remote_access(remote_path: Optional[str]) -> bool:
    """
    Return True if the directory holding the master database is accessible.

    Any filesystem error (missing path, permission denied, a stale mount)
    reads as unreachable. Single attempt, no retries.
    """
    if not remote_path:
        return False
    parent = Path(remote_path).parent
    try:
        return await asyncio.to_thread(_probe, parent)
    except OSError as exc:
        logger.debug("Remote directory %s not accessible: %s", parent, exc)
        return False


def _probe(directory: Path) -> bool:
    # stat() raises for missing paths and unreachable mounts
    directory.stat()
    return directory.is_dir() and os.access(directory, os.R_OK | os.X_OK)
