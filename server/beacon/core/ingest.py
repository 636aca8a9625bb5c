"""Visit ingestor: rate-limits, anonymizes, enriches, stores and publishes beacons.

This is the core business logic. It depends on the VisitStore and
VisitPublisher protocols, not concrete implementations.
"""

from __future__ import annotations

import time
from typing import Callable, TYPE_CHECKING

import structlog

from beacon.core.errors import RateLimitError, StoreError
from beacon.core.models import ANONYMIZED_IP, VisitRecord

if TYPE_CHECKING:
    from beacon.core.models import BeaconData
    from beacon.core.ratelimit import RateLimiter
    from beacon.core.stats import ServerStats
    from beacon.geo.lookup import GeoEnricher
    from beacon.hub.base import VisitPublisher
    from beacon.storage.base import VisitStore

log = structlog.get_logger()

UNKNOWN_IP = "unknown"


def derive_client_ip(forwarded_for: str, remote_addr: str) -> str:
    """First X-Forwarded-For entry if present, else the socket peer."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return remote_addr.strip() or UNKNOWN_IP


class VisitIngestor:
    """Turns beacon submissions into stored, broadcast VisitRecords."""

    def __init__(
        self,
        store: VisitStore,
        publisher: VisitPublisher,
        stats: ServerStats,
        limiter: RateLimiter,
        enricher: GeoEnricher | None = None,
        anonymize: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._stats = stats
        self._limiter = limiter
        self._enricher = enricher
        self._anonymize = anonymize
        self._clock = clock

    @property
    def anonymize(self) -> bool:
        return self._anonymize

    async def ingest(self, beacon: BeaconData) -> VisitRecord:
        """Process one beacon.

        Raises RateLimitError if the client is over quota and StoreError if
        the record could not be written. Publishing never raises.
        """
        client_ip = derive_client_ip(beacon.forwarded_for, beacon.remote_addr)

        try:
            self._limiter.hit(client_ip)
        except RateLimitError:
            self._stats.record_rate_limited()
            log.info("visit_rate_limited",
                     client=ANONYMIZED_IP if self._anonymize else client_ip)
            raise

        self._stats.record_visit(client_ip)

        geo = None
        if self._anonymize:
            ip = ANONYMIZED_IP
        else:
            ip = client_ip
            if self._enricher is not None and self._enricher.should_resolve(ip):
                geo = await self._enricher.resolve(ip)
                self._stats.record_geo_lookup(geo is not None)

        record = VisitRecord(
            ip=ip,
            user_agent=beacon.user_agent,
            path=beacon.path,
            referer=beacon.referer,
            timestamp=int(self._clock()),
            geo=geo,
        )

        try:
            await self._store.append(record)
        except StoreError:
            self._stats.record_storage_error()
            log.error("visit_store_failed", path=record.path, exc_info=True)
            raise
        self._stats.record_stored()
        log.info("visit_stored", ip=record.ip, path=record.path,
                 country=geo.country if geo else None)

        await self._publish(record)
        return record

    async def _publish(self, record: VisitRecord) -> None:
        try:
            delivered = await self._publisher.publish(record)
        except Exception:
            self._stats.record_publish_error()
            log.error("visit_publish_failed", exc_info=True)
            return
        self._stats.record_published(delivered)
        if delivered:
            log.debug("visit_published", recipients=delivered)
