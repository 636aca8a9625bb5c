"""Beacon ingestion endpoint.

This is the thin FastAPI adapter. It parses the HTTP request into
BeaconData and hands it to the ingestor.
"""

from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from beacon.core.errors import StoreError, ValidationError
from beacon.core.models import BeaconData

router = APIRouter()

log = structlog.get_logger()

# Longest value kept for any beacon field.
MAX_FIELD_LENGTH = 2048


def _text(value: object) -> str:
    """Coerce a beacon field to a bounded, UTF-8 encodable string; anything else is empty."""
    if not isinstance(value, str):
        return ""
    # JSON escapes can carry lone surrogates, which cannot be written back out.
    return value[:MAX_FIELD_LENGTH].encode("utf-8", "replace").decode("utf-8")


def _parse_body(body_bytes: bytes) -> dict:
    """Decode a beacon body. Raises ValidationError if it is not a JSON object."""
    if not body_bytes:
        return {}
    try:
        body = json.loads(body_bytes)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("beacon body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError(f"beacon body is a JSON {type(body).__name__}, expected object")
    return body


def _parse_beacon(request: Request, body: dict) -> BeaconData:
    headers = request.headers
    # The client-sent "ts" is ignored; the server clock stamps every visit.
    return BeaconData(
        path=_text(body.get("path")) or _text(body.get("url")),
        referer=_text(headers.get("referer")) or _text(body.get("referer")),
        user_agent=_text(headers.get("user-agent")) or _text(body.get("userAgent")),
        forwarded_for=_text(headers.get("x-forwarded-for")),
        remote_addr=request.client.host if request.client else "",
    )


@router.post("/track")
async def track(request: Request) -> JSONResponse:
    """Record one page view reported by the embed script.

    Always answers quickly: enrichment and publishing are best-effort, only
    a rate limit (429) or a failed write (500) produce an error.
    """
    from beacon.main import get_ingestor

    try:
        body = _parse_body(await request.body())
    except ValidationError as exc:
        # Still worth counting the page view; fields fall back to empty.
        log.debug("beacon_body_invalid", error=str(exc))
        body = {}
    beacon = _parse_beacon(request, body)

    try:
        await get_ingestor().ingest(beacon)
    except StoreError:
        return JSONResponse(status_code=500, content={"ok": False, "error": "store_unavailable"})

    return JSONResponse(content={"ok": True})
