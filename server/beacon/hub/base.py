"""Publisher interface (port) for live visit events."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from beacon.core.models import VisitRecord


class VisitPublisher(Protocol):
    """Port: pushes newly stored visits to live subscribers."""

    async def publish(self, record: VisitRecord) -> int: ...
