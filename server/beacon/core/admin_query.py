"""Authenticated read access to the visit store."""

from __future__ import annotations

from typing import TYPE_CHECKING

from beacon.core.errors import AuthError

if TYPE_CHECKING:
    from beacon.core.models import VisitRecord
    from beacon.core.sessions import SessionRegistry
    from beacon.storage.base import VisitStore

DEFAULT_SEARCH_LIMIT = 200
RECENT_LIMIT = 100


class AdminQueryService:
    """Gates VisitStore reads behind a valid admin session."""

    def __init__(self, store: VisitStore, sessions: SessionRegistry) -> None:
        self._store = store
        self._sessions = sessions

    def _require_session(self, token: str | None) -> None:
        if not self._sessions.is_valid(token):
            raise AuthError("admin session required")

    async def search(
        self,
        token: str | None,
        term: str = "",
        limit: int = DEFAULT_SEARCH_LIMIT,
        offset: int = 0,
    ) -> list[VisitRecord]:
        self._require_session(token)
        return await self._store.query(term, limit=limit, offset=offset)

    async def recent(self, token: str | None, limit: int = RECENT_LIMIT) -> list[VisitRecord]:
        self._require_session(token)
        return await self._store.query("", limit=limit, offset=0)
