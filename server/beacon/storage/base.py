"""Storage interface (port) for persisting visit records."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from beacon.core.models import VisitRecord


class VisitStore(Protocol):
    """Port: append-only visit log with filtered, paginated reads."""

    async def append(self, record: VisitRecord) -> None: ...

    async def query(self, term: str = "", limit: int = 200, offset: int = 0) -> list[VisitRecord]: ...

    async def count(self) -> int: ...
