"""Admin login, session and visit query endpoints."""

from __future__ import annotations

import json
import secrets
from urllib.parse import parse_qs

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

router = APIRouter()

ADMIN_PAGE = "/admin.html"


def session_token(request: Request) -> str | None:
    from beacon.main import get_config

    return request.cookies.get(get_config().admin.cookie_name)


async def _read_password(request: Request) -> str:
    """Pull the password out of a form-encoded or JSON login body."""
    body = await request.body()
    content_type = request.headers.get("content-type", "")
    if "json" in content_type:
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return ""
        value = data.get("password") if isinstance(data, dict) else None
        return value if isinstance(value, str) else ""
    try:
        form = parse_qs(body.decode("utf-8"))
    except UnicodeDecodeError:
        return ""
    return form.get("password", [""])[0]


@router.get("/api/session")
async def session_status(request: Request) -> dict:
    """Tell the admin page whether it is logged in."""
    from beacon.main import get_config, get_sessions

    return {
        "authed": get_sessions().is_valid(session_token(request)),
        "anonymize": get_config().privacy.anonymize_ips,
    }


@router.post("/login")
async def login(request: Request):
    from beacon.main import get_config, get_sessions

    config = get_config()
    password = await _read_password(request)
    if not secrets.compare_digest(password.encode("utf-8"), config.admin.password.encode("utf-8")):
        return PlainTextResponse("Unauthorized", status_code=401)

    sessions = get_sessions()
    # Never reuse a session id across a login.
    sessions.destroy(session_token(request))
    _, token = sessions.create()

    response = RedirectResponse(ADMIN_PAGE, status_code=303)
    response.set_cookie(
        config.admin.cookie_name,
        token,
        max_age=config.admin.session_max_age_seconds,
        httponly=True,
        secure=config.admin.cookie_secure,
        samesite="none" if config.admin.cookie_secure else "lax",
    )
    return response


@router.post("/logout")
async def logout(request: Request):
    from beacon.main import get_config, get_hub, get_sessions

    session = get_sessions().destroy(session_token(request))
    if session is not None:
        await get_hub().evict_session(session.session_id)

    response = RedirectResponse(ADMIN_PAGE, status_code=303)
    response.delete_cookie(get_config().admin.cookie_name)
    return response


@router.get("/api/search")
async def search(
    request: Request,
    q: str = "",
    limit: int = Query(default=200),
    offset: int = Query(default=0),
) -> JSONResponse:
    """Free-text search over stored visits, newest first.

    ``limit`` is capped at the configured maximum (2000 by default).
    """
    from beacon.main import get_queries

    rows = await get_queries().search(session_token(request), q, limit=limit, offset=offset)
    return JSONResponse(content={"rows": [r.to_dict() for r in rows]})


@router.get("/api/hits")
async def recent_hits(request: Request) -> JSONResponse:
    """Latest visits, unfiltered. Kept for older admin pages."""
    from beacon.main import get_config, get_queries

    rows = await get_queries().recent(session_token(request), limit=get_config().limits.recent_limit)
    return JSONResponse(content=[r.to_dict() for r in rows])
