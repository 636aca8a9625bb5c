"""Best-effort IP geolocation with an in-process TTL cache.

Lookups go to an ipinfo.io-compatible JSON endpoint. Every failure mode
(timeout, connection error, bad status, unexpected payload) resolves to
``None``: enrichment must never hold up or fail ingestion.

The cache is a plain dict with lazy expiry and no size bound. Entries are
small and the number of distinct visitor IPs is assumed low; a busy public
deployment would want an LRU or an external cache instead.
"""

from __future__ import annotations

import asyncio
import ipaddress
import time
from dataclasses import dataclass
from typing import Callable

import httpx
import structlog

from beacon.core.errors import EnrichmentError
from beacon.core.models import GeoInfo

log = structlog.get_logger()

DEFAULT_BASE_URL = "https://ipinfo.io"
DEFAULT_TIMEOUT_SECONDS = 4.0
DEFAULT_CACHE_TTL_SECONDS = 6 * 60 * 60

_MAPPED_PREFIX = "::ffff:"


def normalize_ip(ip: str) -> str:
    """Strip whitespace and the IPv4-mapped IPv6 prefix."""
    ip = (ip or "").strip()
    if ip.lower().startswith(_MAPPED_PREFIX):
        ip = ip[len(_MAPPED_PREFIX):]
    return ip


def is_public_ip(ip: str) -> bool:
    """True only for a parseable, globally routable address."""
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_multicast
        or addr.is_unspecified
    )


@dataclass(frozen=True)
class GeoCacheEntry:
    ip: str
    data: GeoInfo
    cached_at_epoch: float


def parse_geo_payload(payload: object) -> GeoInfo:
    """Convert an ipinfo-style response body into GeoInfo.

    Raises EnrichmentError if the payload is not usable.
    """
    if not isinstance(payload, dict):
        raise EnrichmentError("geo payload is not a JSON object")
    if payload.get("bogon") or "error" in payload:
        raise EnrichmentError(f"geo provider refused lookup: {payload.get('error', 'bogon')}")

    lat = lon = None
    loc = payload.get("loc")
    if isinstance(loc, str) and "," in loc:
        try:
            lat_s, lon_s = loc.split(",", 1)
            lat, lon = float(lat_s), float(lon_s)
        except ValueError as exc:
            raise EnrichmentError(f"bad loc field {loc!r}") from exc

    geo = GeoInfo(
        city=str(payload.get("city") or ""),
        region=str(payload.get("region") or ""),
        country=str(payload.get("country") or ""),
        lat=lat,
        lon=lon,
    )
    if not (geo.city or geo.region or geo.country or geo.lat is not None):
        raise EnrichmentError("geo payload has no location fields")
    return geo


class GeoEnricher:
    """Resolves IPs to approximate locations, caching successful lookups."""

    def __init__(
        self,
        token: str = "",
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._ttl = cache_ttl_seconds
        self._transport = transport
        self._clock = clock
        self._cache: dict[str, GeoCacheEntry] = {}

    def cache_size(self) -> int:
        return len(self._cache)

    def _cached(self, ip: str) -> GeoInfo | None:
        entry = self._cache.get(ip)
        if entry is None:
            return None
        if self._clock() - entry.cached_at_epoch > self._ttl:
            del self._cache[ip]
            return None
        return entry.data

    async def _fetch(self, ip: str) -> GeoInfo:
        params = {"token": self._token} if self._token else None
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.get(f"{self._base_url}/{ip}/json", params=params)
        if resp.status_code != 200:
            raise EnrichmentError(f"geo provider returned {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise EnrichmentError("geo provider returned invalid JSON") from exc
        return parse_geo_payload(payload)

    def should_resolve(self, ip: str) -> bool:
        """False for addresses that are never sent to the provider."""
        return is_public_ip(normalize_ip(ip))

    async def resolve(self, ip: str) -> GeoInfo | None:
        """Return location info for ``ip``, or None. Never raises."""
        ip = normalize_ip(ip)
        if not is_public_ip(ip):
            return None

        cached = self._cached(ip)
        if cached is not None:
            return cached

        try:
            geo = await asyncio.wait_for(self._fetch(ip), timeout=self._timeout)
        except asyncio.TimeoutError:
            log.warning("geo_lookup_timeout", ip=ip, timeout=self._timeout)
            return None
        except (httpx.HTTPError, EnrichmentError) as exc:
            log.warning("geo_lookup_failed", ip=ip, error=str(exc))
            return None
        except Exception:
            log.error("geo_lookup_crashed", ip=ip, exc_info=True)
            return None

        self._cache[ip] = GeoCacheEntry(ip=ip, data=geo, cached_at_epoch=self._clock())
        log.debug("geo_lookup_cached", ip=ip, country=geo.country)
        return geo
