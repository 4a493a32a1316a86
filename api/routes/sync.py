"""
Sync trigger, status and target maintenance endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from api.dependencies import get_sync_client
from core.exceptions import SyncException, ValidationError
from models.base import CleanMode, SyncMode
from schemas.api import CleanResponse, TargetTablesResponse, UnsyncedCountsResponse
from schemas.results import SyncResult
from sync.runner import SyncClient
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Sync"])


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


def _reject_while_running(client: SyncClient, detail: str):
    if client.is_running:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


@router.get("/status", response_model=UnsyncedCountsResponse)
async def get_status(request: Request, client: SyncClient = Depends(get_sync_client)):
    """
    Unsynced row counts for every enabled table.

    Returns 409 while a sync is running.
    """
    logger.info(f"[{_request_id(request)}] GET /status")
    _reject_while_running(client, "A sync is running; unsynced counts are available once it finishes")

    try:
        counts = await client.get_unsynced_counts()
    except SyncException as e:
        logger.error(f"Failed to count unsynced rows: {e.message}", extra={"error_context": e.to_dict()})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.to_dict())

    return UnsyncedCountsResponse(tables=counts, total_unsynced=sum(counts.values()))


@router.get("/tables", response_model=TargetTablesResponse)
async def get_target_tables(request: Request, client: SyncClient = Depends(get_sync_client)):
    """
    Row counts of the target tables, plus every table in the target schema.

    Returns 409 while a sync is running.
    """
    logger.info(f"[{_request_id(request)}] GET /tables")
    _reject_while_running(client, "A sync is running; table counts are available once it finishes")

    try:
        counts = await client.get_target_counts()
        all_tables = await client.list_target_tables()
    except SyncException as e:
        logger.error(f"Failed to inspect target tables: {e.message}", extra={"error_context": e.to_dict()})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.to_dict())

    return TargetTablesResponse(
        tables=counts,
        all_tables=all_tables,
        total_records=sum(c for c in counts.values() if c is not None)
    )


@router.post("/sync", response_model=SyncResult)
async def trigger_sync(
    request: Request,
    mode: SyncMode = Query(SyncMode.INCREMENTAL, description="Sync mode: incremental or full"),
    client: SyncClient = Depends(get_sync_client)
):
    """
    Run a sync and return its result.

    Returns 409 if a sync (manual or scheduled) is already running.
    Table failures are reported inside the result, not as an HTTP error.
    """
    logger.info(f"[{_request_id(request)}] POST /sync mode={mode}")
    _reject_while_running(client, "A sync is already running")

    try:
        return await client.sync(mode)
    except SyncException as e:
        logger.error(f"Sync request failed: {e.message}", extra={"error_context": e.to_dict()})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.to_dict())


@router.post("/clean", response_model=CleanResponse)
async def clean_target_tables(
    request: Request,
    mode: CleanMode = Query(..., description="truncate (keep tables) or reset (drop and recreate)"),
    table: Optional[str] = Query(None, description="Only clean this target table"),
    client: SyncClient = Depends(get_sync_client)
):
    """
    Truncate or reset the target tables.

    Source rows keep their sync flag, so follow up with a full sync.
    Returns 409 while a sync is running and 404 for an unknown table.
    """
    logger.info(f"[{_request_id(request)}] POST /clean mode={mode} table={table or '*'}")
    _reject_while_running(client, "A sync is running; clean the target once it finishes")

    try:
        outcomes = await client.clean(mode, table=table)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.to_dict())
    except SyncException as e:
        logger.error(f"Clean request failed: {e.message}", extra={"error_context": e.to_dict()})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.to_dict())

    return CleanResponse(mode=mode, tables=outcomes)


@router.get("/sync/last", response_model=SyncResult)
async def get_last_sync(client: SyncClient = Depends(get_sync_client)):
    """Result of the most recent sync."""
    if client.last_result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No sync has run yet")
    return client.last_result
