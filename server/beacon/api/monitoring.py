"""Health check and monitoring endpoints."""

from __future__ import annotations

import os

from fastapi import APIRouter, Request

router = APIRouter(prefix="/api")


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from beacon.main import VERSION, get_stats, get_store

    store = get_store()
    snapshot = get_stats().snapshot()
    return {
        "status": "ok",
        "version": VERSION,
        "uptime_seconds": snapshot["uptime_seconds"],
        "visits_stored": await store.count(),
        "storage_writable": os.access(store.path, os.W_OK),
    }


@router.get("/stats")
async def stats(request: Request) -> dict:
    """Detailed server counters. Admin only.

    ``active_visitors.total`` counts distinct clients seen within the last
    ``window_seconds``; ``admins_connected`` is the live broadcast group size.
    """
    from beacon.api.admin import session_token
    from beacon.core.errors import AuthError
    from beacon.main import get_hub, get_sessions, get_stats

    if not get_sessions().is_valid(session_token(request)):
        raise AuthError("admin session required")
    return get_stats().snapshot(admins_connected=get_hub().member_count())
