"""Error taxonomy shared by the core and the API adapters.

Only AuthError and RateLimitError reach the caller as distinct failures.
Everything else degrades gracefully inside the core.
"""

from __future__ import annotations


class BeaconError(Exception):
    """Base class for all beacon server errors."""


class ValidationError(BeaconError):
    """Malformed ingestion payload. Offending fields fall back to empty."""


class AuthError(BeaconError):
    """Missing, invalid or expired admin session."""


class RateLimitError(BeaconError):
    """Submission quota for a client key exceeded."""

    def __init__(self, key: str, retry_after: float) -> None:
        super().__init__(f"rate limit exceeded, retry in {retry_after:.0f}s")
        self.key = key
        self.retry_after = retry_after


class StoreError(BeaconError):
    """I/O failure while writing to or reading from the visit store."""


class EnrichmentError(BeaconError):
    """Geo lookup failure. Always swallowed by the enricher."""
