"""Tests for the visit ingestor, using in-memory fakes for its ports."""

from __future__ import annotations

import asyncio
import json
import random

import httpx
import pytest

from beacon.core.errors import RateLimitError, StoreError
from beacon.core.ingest import VisitIngestor, derive_client_ip
from beacon.core.models import ANONYMIZED_IP, BeaconData, GeoInfo
from beacon.core.ratelimit import RateLimiter
from beacon.core.stats import ServerStats
from beacon.geo.lookup import GeoEnricher
from beacon.storage.file_storage import FileVisitStore


class MemoryStore:
    def __init__(self, fail: bool = False) -> None:
        self.records = []
        self.fail = fail

    async def append(self, record):
        if self.fail:
            raise StoreError("read-only filesystem")
        self.records.append(record)


class RecordingPublisher:
    def __init__(self, fail: bool = False) -> None:
        self.published = []
        self.fail = fail

    async def publish(self, record):
        if self.fail:
            raise RuntimeError("hub is gone")
        self.published.append(record)
        return 1


class FakeEnricher:
    def __init__(self) -> None:
        self.calls = []

    def should_resolve(self, ip):
        return True

    async def resolve(self, ip):
        self.calls.append(ip)
        return GeoInfo(city="Lyon", country="FR")


def _ingestor(store=None, publisher=None, enricher=None, anonymize=False, max_requests=120):
    return VisitIngestor(
        store=store or MemoryStore(),
        publisher=publisher or RecordingPublisher(),
        stats=ServerStats(),
        limiter=RateLimiter(max_requests=max_requests, window_seconds=60),
        enricher=enricher,
        anonymize=anonymize,
        clock=lambda: 1_700_000_123.9,
    )


def test_derive_client_ip():
    assert derive_client_ip("203.0.113.5, 10.0.0.1", "127.0.0.1") == "203.0.113.5"
    assert derive_client_ip("", "198.51.100.3") == "198.51.100.3"
    assert derive_client_ip(" , 10.0.0.1", "198.51.100.3") == "198.51.100.3"
    assert derive_client_ip("", "") == "unknown"


@pytest.mark.asyncio
async def test_ingest_stores_then_publishes():
    store, publisher, enricher = MemoryStore(), RecordingPublisher(), FakeEnricher()
    ingestor = _ingestor(store, publisher, enricher)

    record = await ingestor.ingest(BeaconData(
        path="/home", referer="https://ref.example/", user_agent="UA/1",
        forwarded_for="203.0.113.5", remote_addr="10.0.0.2",
    ))

    assert record.ip == "203.0.113.5"
    assert record.path == "/home"
    assert record.timestamp == 1_700_000_123
    assert record.geo == GeoInfo(city="Lyon", country="FR")
    assert store.records == [record]
    assert publisher.published == [record]
    assert enricher.calls == ["203.0.113.5"]


@pytest.mark.asyncio
async def test_anonymized_ip_never_leaves_ingestor():
    store, publisher, enricher = MemoryStore(), RecordingPublisher(), FakeEnricher()
    ingestor = _ingestor(store, publisher, enricher, anonymize=True)

    for ip in ["203.0.113.5", "8.8.8.8", "2001:db8::1"]:
        await ingestor.ingest(BeaconData(path="/", forwarded_for=ip))

    assert {r.ip for r in store.records} == {ANONYMIZED_IP}
    assert {r.ip for r in publisher.published} == {ANONYMIZED_IP}
    assert all(r.geo is None for r in store.records)
    assert enricher.calls == []


@pytest.mark.asyncio
async def test_anonymized_clients_are_still_rate_limited_separately():
    ingestor = _ingestor(anonymize=True, max_requests=1)
    await ingestor.ingest(BeaconData(forwarded_for="203.0.113.5"))
    await ingestor.ingest(BeaconData(forwarded_for="203.0.113.6"))
    with pytest.raises(RateLimitError):
        await ingestor.ingest(BeaconData(forwarded_for="203.0.113.5"))


@pytest.mark.asyncio
async def test_rate_limited_visit_is_not_stored():
    store, publisher = MemoryStore(), RecordingPublisher()
    ingestor = _ingestor(store, publisher, max_requests=2)

    for _ in range(2):
        await ingestor.ingest(BeaconData(path="/ok", remote_addr="198.51.100.1"))
    with pytest.raises(RateLimitError):
        await ingestor.ingest(BeaconData(path="/over", remote_addr="198.51.100.1"))

    assert [r.path for r in store.records] == ["/ok", "/ok"]
    assert len(publisher.published) == 2


@pytest.mark.asyncio
async def test_store_failure_propagates_and_skips_publish():
    publisher = RecordingPublisher()
    ingestor = _ingestor(MemoryStore(fail=True), publisher)

    with pytest.raises(StoreError):
        await ingestor.ingest(BeaconData(path="/x"))
    assert publisher.published == []


@pytest.mark.asyncio
async def test_publish_failure_does_not_fail_ingest():
    store = MemoryStore()
    ingestor = _ingestor(store, RecordingPublisher(fail=True))

    record = await ingestor.ingest(BeaconData(path="/still-stored"))
    assert store.records == [record]


class SlowEnricher:
    """Answers after a random delay so concurrent beacons finish out of order."""

    def __init__(self, seed: int = 7) -> None:
        self._random = random.Random(seed)

    def should_resolve(self, ip):
        return True

    async def resolve(self, ip):
        await asyncio.sleep(self._random.uniform(0, 0.01))
        return GeoInfo(country="FR")


class TickingClock:
    def __init__(self, start: float = 1_700_000_000.0, step: float = 0.4) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


@pytest.mark.asyncio
async def test_concurrent_ingest_keeps_log_timestamps_ordered(tmp_path):
    store = FileVisitStore(tmp_path / "visits.jsonl")
    ingestor = VisitIngestor(
        store=store,
        publisher=RecordingPublisher(),
        stats=ServerStats(),
        limiter=RateLimiter(max_requests=1000, window_seconds=60),
        enricher=SlowEnricher(),
        clock=TickingClock(),
    )

    await asyncio.gather(*(
        ingestor.ingest(BeaconData(path=f"/p{i}", forwarded_for=f"203.0.113.{i % 250 + 1}"))
        for i in range(100)
    ))

    lines = store.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 100
    timestamps = [json.loads(line)["timestamp"] for line in lines]
    assert timestamps == sorted(timestamps)
    assert await store.count() == 100


@pytest.mark.asyncio
async def test_geo_stats_count_only_attempted_lookups():
    calls = []

    def provider(request):
        calls.append(request)
        return httpx.Response(503)

    stats = ServerStats()
    ingestor = VisitIngestor(
        store=MemoryStore(),
        publisher=RecordingPublisher(),
        stats=stats,
        limiter=RateLimiter(max_requests=120, window_seconds=60),
        enricher=GeoEnricher(transport=httpx.MockTransport(provider)),
    )

    for ip in ["10.0.0.4", "127.0.0.1", "::ffff:192.168.1.2", "unknown"]:
        await ingestor.ingest(BeaconData(path="/", forwarded_for=ip))
    assert calls == []
    assert stats.geo_lookups == 0
    assert stats.geo_failures == 0

    await ingestor.ingest(BeaconData(path="/", forwarded_for="8.8.4.4"))
    assert len(calls) == 1
    assert stats.geo_lookups == 1
    assert stats.geo_failures == 1
