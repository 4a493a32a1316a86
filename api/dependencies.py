"""
FastAPI dependencies
"""

from typing import Optional

from fastapi import HTTPException, status

from sync.runner import SyncClient

_sync_client: Optional[SyncClient] = None


def set_sync_client(client: Optional[SyncClient]):
    """Register the process-wide sync client (set on startup, cleared on shutdown)."""
    global _sync_client
    _sync_client = client


def get_sync_client() -> SyncClient:
    """Provide the sync client to route handlers."""
    if _sync_client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync client is not initialized"
        )
    return _sync_client
