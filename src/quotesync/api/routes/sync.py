"""Sync trigger, status, history and conflict routes."""
import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from quotesync.errors import ConfigError, ConflictNotFoundError
from quotesync.models.status import SyncStatus
from quotesync.models.sync import SyncRun
from quotesync.sync.manager import SyncManager

router = APIRouter()


class ConflictResponse(BaseModel):
    id: int
    table_name: str
    record_key: str
    local_data: Dict[str, Any]
    remote_data: Dict[str, Any]
    conflict_type: str
    resolved: bool
    resolution: Optional[str]
    created_at: datetime
    resolved_at: Optional[datetime]


class ResolveRequest(BaseModel):
    resolution: Union[str, Dict[str, Any]]  # "local", "remote" or merged values


def get_manager(request: Request) -> SyncManager:
    """Dependency: the SyncManager owned by the app."""
    return request.app.state.sync_manager


@router.post("/trigger")
async def trigger_sync(manager: SyncManager = Depends(get_manager)):
    """
    Run a sync now and return its result.

    A second trigger while a run is in flight returns immediately with
    reason "already_syncing".
    """
    result = await manager.sync()
    return result.to_dict()


@router.get("/status", response_model=SyncStatus)
def sync_status(manager: SyncManager = Depends(get_manager)):
    return manager.get_status()


@router.get("/history", response_model=List[SyncRun])
def sync_history(
    limit: int = Query(50, ge=1, le=1000),
    manager: SyncManager = Depends(get_manager),
):
    """Most recent sync runs, newest first."""
    return manager.get_sync_history(limit)


@router.get("/test-connection")
async def test_connection(manager: SyncManager = Depends(get_manager)):
    return await manager.test_connection()


@router.get("/conflicts", response_model=List[ConflictResponse])
def pending_conflicts(manager: SyncManager = Depends(get_manager)):
    return [_conflict_response(c) for c in manager.get_pending_conflicts()]


@router.post("/conflicts/{conflict_id}/resolve", response_model=ConflictResponse)
def resolve_conflict(
    conflict_id: int,
    request: ResolveRequest,
    manager: SyncManager = Depends(get_manager),
):
    try:
        conflict = manager.resolve_conflict(conflict_id, request.resolution)
    except ConflictNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except (ConfigError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _conflict_response(conflict)


def _conflict_response(conflict) -> ConflictResponse:
    return ConflictResponse(
        id=conflict.id,
        table_name=conflict.table_name,
        record_key=conflict.record_key,
        local_data=json.loads(conflict.local_data),
        remote_data=json.loads(conflict.remote_data),
        conflict_type=conflict.conflict_type,
        resolved=conflict.resolved,
        resolution=conflict.resolution,
        created_at=conflict.created_at,
        resolved_at=conflict.resolved_at,
    )
