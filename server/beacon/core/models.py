"""Core internal data models.

These are plain dataclasses with no framework dependencies.
JSON payloads are converted to/from these at the boundary.
"""

from __future__ import annotations

from dataclasses import dataclass

# Stored in place of the client address when IP anonymization is on.
ANONYMIZED_IP = "0.0.0.0"


@dataclass(frozen=True)
class GeoInfo:
    city: str = ""
    region: str = ""
    country: str = ""
    lat: float | None = None
    lon: float | None = None

    def to_dict(self) -> dict:
        return {
            "city": self.city,
            "region": self.region,
            "country": self.country,
            "lat": self.lat,
            "lon": self.lon,
        }

    @classmethod
    def from_dict(cls, data: dict) -> GeoInfo:
        lat = data.get("lat")
        lon = data.get("lon")
        return cls(
            city=str(data.get("city") or ""),
            region=str(data.get("region") or ""),
            country=str(data.get("country") or ""),
            lat=float(lat) if lat is not None else None,
            lon=float(lon) if lon is not None else None,
        )


@dataclass(frozen=True)
class BeaconData:
    """One beacon submission, as parsed from the HTTP request."""

    path: str = ""
    referer: str = ""
    user_agent: str = ""
    forwarded_for: str = ""
    remote_addr: str = ""


@dataclass(frozen=True)
class VisitRecord:
    """One tracked page view. Never mutated after it is appended."""

    ip: str
    user_agent: str
    path: str
    referer: str
    timestamp: int
    geo: GeoInfo | None = None

    def to_dict(self) -> dict:
        return {
            "ip": self.ip,
            "userAgent": self.user_agent,
            "path": self.path,
            "referer": self.referer,
            "timestamp": self.timestamp,
            "geo": self.geo.to_dict() if self.geo is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> VisitRecord:
        """Rebuild a record from its log/wire form.

        Raises KeyError, TypeError or ValueError when ``data`` is not a
        well-formed record.
        """
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")
        ip = data["ip"]
        if not isinstance(ip, str):
            raise TypeError("ip must be a string")
        timestamp = data["timestamp"]
        if isinstance(timestamp, bool) or not isinstance(timestamp, int):
            raise TypeError("timestamp must be an integer")
        geo = data.get("geo")
        return cls(
            ip=ip,
            user_agent=str(data.get("userAgent") or ""),
            path=str(data.get("path") or ""),
            referer=str(data.get("referer") or ""),
            timestamp=timestamp,
            geo=GeoInfo.from_dict(geo) if isinstance(geo, dict) else None,
        )

    def search_text(self) -> str:
        """Lower-cased haystack for free-text filtering."""
        parts = [self.ip, self.path, self.user_agent, self.referer]
        if self.geo is not None:
            parts.extend([self.geo.city, self.geo.region, self.geo.country])
        return " ".join(parts).lower()
