"""
Health check endpoint with source and target connectivity
"""

from fastapi import APIRouter, Depends
from api.dependencies import get_sync_client
from schemas.api import HealthCheckResponse
from sync.runner import SyncClient

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(client: SyncClient = Depends(get_sync_client)):
    """
    Health check endpoint.

    Returns:
    - PostgreSQL and MotherDuck connectivity
    - Whether a sync is currently running
    - Outcome of the last sync, if any
    """
    # Last known state while a sync holds the connections
    postgres_connected, motherduck_connected = await client.check_connectivity()

    last = client.last_result
    return HealthCheckResponse(
        postgres_connected=postgres_connected,
        motherduck_connected=motherduck_connected,
        sync_running=client.is_running,
        last_sync_success=last.success if last is not None else None
    )
